# tests/test_settings.py
from pathlib import Path

import pytest

from certsmith.errors import CaCertNotFound, CaKeyNotFound, WorkingDirNotFound
from certsmith.settings import Settings

_VARS = (
    "CERTSMITH_LOG_LEVEL", "CERTSMITH_WORKING_DIR", "CERTSMITH_OUTPUT_DIR", "CERTSMITH_KEY_SIZE",
    "CERTSMITH_CERT_DAYS", "CERTSMITH_PRIVATE_KEY_MODE", "CERTSMITH_CERTIFICATE_MODE",
    "CERTSMITH_PARALLEL", "CERTSMITH_MAX_WORKERS", "CERTSMITH_VERIFY_CA", "CERTSMITH_CA_CERT",
    "CERTSMITH_CA_KEY",
)

def _clear(monkeypatch):
    for v in _VARS:
        monkeypatch.delenv(v, raising=False)

def test_settings_defaults(monkeypatch):
    _clear(monkeypatch)
    s = Settings.from_env()
    assert s.LOG_LEVEL == "INFO"
    assert s.WORKING_DIR == Path("/root/ca")
    assert s.OUTPUT_DIR == Path("/home/fluxadmin/ssl/pem-out")
    assert s.KEY_SIZE == 4096
    assert s.CERT_DAYS == 375
    assert s.PRIVATE_KEY_MODE == 0o400
    assert s.CERTIFICATE_MODE == 0o755
    assert s.PARALLEL is True
    assert s.VERIFY_CA_CONSISTENCY is True
    assert s.ca_cert_path == Path("/root/ca/intermediate/certs/intermediate.cert.pem")
    assert s.ca_key_path == Path("/root/ca/intermediate/private/intermediate.key.pem")

def test_settings_parsing(monkeypatch, tmp_path):
    _clear(monkeypatch)
    monkeypatch.setenv("CERTSMITH_LOG_LEVEL", "debug")
    monkeypatch.setenv("CERTSMITH_WORKING_DIR", str(tmp_path))
    monkeypatch.setenv("CERTSMITH_KEY_SIZE", "2048")
    monkeypatch.setenv("CERTSMITH_CERTIFICATE_MODE", "644")
    monkeypatch.setenv("CERTSMITH_PARALLEL", "no")
    monkeypatch.setenv("CERTSMITH_MAX_WORKERS", "8")
    monkeypatch.setenv("CERTSMITH_CA_KEY", str(tmp_path / "k.pem"))

    s = Settings.from_env()
    assert s.LOG_LEVEL == "DEBUG"
    assert s.KEY_SIZE == 2048
    assert s.CERTIFICATE_MODE == 0o644
    assert s.PARALLEL is False
    assert s.MAX_WORKERS == 8
    assert s.private_dir == tmp_path / "intermediate" / "private"
    assert s.ca_key_path == tmp_path / "k.pem"

def test_invalid_numbers_fall_back(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("CERTSMITH_CERT_DAYS", "soon")
    monkeypatch.setenv("CERTSMITH_MAX_WORKERS", "0")
    monkeypatch.setenv("CERTSMITH_PRIVATE_KEY_MODE", "999")
    s = Settings.from_env()
    assert s.CERT_DAYS == 375
    assert s.MAX_WORKERS == 4
    assert s.PRIVATE_KEY_MODE == 0o400

def test_validate_reports_missing_material(tmp_path):
    with pytest.raises(WorkingDirNotFound):
        Settings(WORKING_DIR=tmp_path / "nope").validate()

    s = Settings(WORKING_DIR=tmp_path)
    with pytest.raises(CaKeyNotFound) as ei:
        s.validate()
    assert ei.value.path == str(s.ca_key_path)

    s.ca_key_path.parent.mkdir(parents=True)
    s.ca_key_path.write_text("key")
    with pytest.raises(CaCertNotFound):
        s.validate()
