# tests/test_x509meta.py
import datetime as dt

import pytest
from cryptography.hazmat.primitives.serialization import Encoding

from _util import ca_certificate, csr_pem, rsa_key, write_ca
from certsmith.authority import load_ca
from certsmith.csr import CertificateSigningRequest
from certsmith.errors import CertParseError, IoFailure
from certsmith.signing import sign
from certsmith.x509meta import cert_to_meta, cert_warnings, load_certificate

def test_meta_for_issued_certificate(tmp_path):
    cert_path, key_path = write_ca(tmp_path)
    with load_ca(cert_path, key_path) as ca:
        csr = CertificateSigningRequest.from_pem(csr_pem("web01", ("web01.example.com",)))
        issued = sign(csr, ca, 10)

    meta = cert_to_meta(issued.certificate)
    assert meta["subject_cn"] == "web01"
    assert meta["issuer_cn"] == "Test Intermediate CA"
    assert meta["san"] == ["DNS:web01.example.com"]
    assert meta["serial_hex"] == format(issued.serial_number, "x")
    assert meta["not_after"].endswith("Z")
    assert meta["expired"] is False
    assert meta["expiring_soon"] is True
    assert meta["public_key"] == {"type": "RSA", "size": 2048, "public_exponent": 65537}
    assert meta["signature_hash"] == "sha256"
    assert len(meta["fingerprint_sha256"].split(":")) == 32
    assert len(meta["fingerprint_sha1"].split(":")) == 20

    codes = [w["code"] for w in cert_warnings(meta)]
    assert codes == ["CERT_SOON_EXPIRES"]

def test_ca_certificate_meta():
    meta = cert_to_meta(ca_certificate(rsa_key(), days=400))
    assert meta["basic_constraints"] == {"ca": True, "path_len": 0}
    assert "keyCertSign" in meta["key_usage"]
    assert meta["expiring_soon"] is False
    assert cert_warnings(meta) == []

def test_expired_warning():
    meta = {"expired": True, "public_key": {"type": "RSA", "size": 1024}, "signature_hash": "sha1"}
    codes = {w["code"] for w in cert_warnings(meta)}
    assert codes == {"CERT_EXPIRED", "RSA_WEAK_KEY", "WEAK_SIGNATURE_HASH"}

def test_load_certificate_pem_and_der(tmp_path):
    cert = ca_certificate(rsa_key())
    pem = tmp_path / "c.pem"
    der = tmp_path / "c.der"
    pem.write_bytes(cert.public_bytes(Encoding.PEM))
    der.write_bytes(cert.public_bytes(Encoding.DER))
    assert load_certificate(pem) == cert
    assert load_certificate(der) == cert

    with pytest.raises(IoFailure):
        load_certificate(tmp_path / "missing.pem")
    junk = tmp_path / "junk.pem"
    junk.write_bytes(b"\x00\x01junk")
    with pytest.raises(CertParseError):
        load_certificate(junk)
