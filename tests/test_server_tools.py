# tests/test_server_tools.py
from __future__ import annotations
import base64

import pytest
from cryptography import x509
from fastmcp import Client

from _util import CA_PASSWORD, csr_pem, tamper_csr, write_ca
from certsmith.keys import KeyMaterial, is_encrypted

@pytest.fixture
def env(tmp_path, monkeypatch):
    cert_path, key_path = write_ca(tmp_path / "authority", password=CA_PASSWORD)
    monkeypatch.setenv("CERTSMITH_WORKING_DIR", str(tmp_path / "ca"))
    monkeypatch.setenv("CERTSMITH_CA_CERT", str(cert_path))
    monkeypatch.setenv("CERTSMITH_CA_KEY", str(key_path))
    monkeypatch.setenv("CERTSMITH_CA_PASSWORD", CA_PASSWORD)
    return cert_path

@pytest.mark.asyncio
async def test_sign_csr(env):
    from certsmith.server import mcp
    pem = csr_pem("api.example.com", ("api.example.com",)).decode()
    async with Client(mcp) as client:
        res = await client.call_tool("sign_csr", {"csr_pem": pem, "validity_days": 90})
    data = res.data
    assert data["success"] is True
    cert = data["certificate"]
    assert cert["subject"] == "CN=api.example.com"
    assert "CN=Test Intermediate CA" in cert["issuer"]
    assert cert["sans"] == ["DNS:api.example.com"]
    parsed = x509.load_pem_x509_certificate(cert["pem"].encode())
    assert (parsed.not_valid_after_utc - parsed.not_valid_before_utc).days == 90

@pytest.mark.asyncio
async def test_sign_csr_errors(env, monkeypatch):
    from certsmith.server import mcp
    async with Client(mcp) as client:
        res = await client.call_tool("sign_csr", {"csr_pem": "garbage"})
        assert res.data["success"] is False
        assert res.data["error"]["kind"] == "csr_parse"

        tampered = tamper_csr(csr_pem("x"))
        pem = ("-----BEGIN CERTIFICATE REQUEST-----\n"
               + base64.encodebytes(tampered).decode()
               + "-----END CERTIFICATE REQUEST-----\n")
        res = await client.call_tool("sign_csr", {"csr_pem": pem})
        assert res.data["error"]["kind"] == "invalid_csr"

        res = await client.call_tool("sign_csr", {"csr_pem": csr_pem("x").decode(), "validity_days": 826})
        assert res.data["error"]["kind"] == "validation"

        monkeypatch.setenv("CERTSMITH_CA_PASSWORD", "wrong")
        res = await client.call_tool("sign_csr", {"csr_pem": csr_pem("x").decode()})
        assert res.data["error"]["kind"] == "decryption_failed"

@pytest.mark.asyncio
async def test_generate_certificate(env):
    from certsmith.server import mcp
    args = {
        "common_name": "example.com",
        "sans": ["DNS:www.example.com", "IP:10.1.2.3"],
        "key_size": 2048,
        "password_protect": True,
        "key_password": "s3cr3t",
    }
    async with Client(mcp) as client:
        res = await client.call_tool("generate_certificate", args)
    data = res.data
    assert data["success"] is True
    cert = data["certificate"]
    assert cert["sans"] == ["DNS:www.example.com", "IP:10.1.2.3"]
    assert cert["ca_chain"] == env.read_text()
    assert is_encrypted(cert["private_key"].encode())
    key = KeyMaterial.deserialize(cert["private_key"].encode(), "s3cr3t")
    parsed = x509.load_pem_x509_certificate(cert["pem"].encode())
    assert parsed.public_key().public_numbers() == key.public_key.public_numbers()

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "args",
    [
        {"common_name": "", "key_size": 2048},
        {"common_name": "x" * 65, "key_size": 2048},
        {"common_name": "example.com", "key_size": 1024},
        {"common_name": "example.com", "key_size": 2048, "validity_days": 0},
        {"common_name": "example.com", "key_size": 2048, "password_protect": True},
        {"common_name": "example.com", "key_size": 2048, "sans": ["URI:http://x"]},
    ],
)
async def test_generate_certificate_validation(env, args):
    from certsmith.server import mcp
    async with Client(mcp) as client:
        res = await client.call_tool("generate_certificate", args)
    assert res.data["success"] is False
    assert res.data["error"]["kind"] == "validation"

@pytest.mark.asyncio
async def test_certificate_info(env):
    from certsmith.server import mcp
    async with Client(mcp) as client:
        by_path = await client.call_tool("certificate_info", {"path": str(env)})
        by_pem = await client.call_tool("certificate_info", {"pem": env.read_text()})
        missing = await client.call_tool("certificate_info", {})
    assert by_path.data["success"] is True
    assert by_path.data["certificate"]["subject_cn"] == "Test Intermediate CA"
    assert by_path.data["certificate"]["fingerprint_sha256"] == by_pem.data["certificate"]["fingerprint_sha256"]
    assert by_path.data["warnings"] == []
    assert missing.data["error"]["kind"] == "validation"
