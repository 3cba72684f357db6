# tests/test_signing.py
import datetime as dt

import pytest
from cryptography.exceptions import InvalidSignature
from cryptography import x509
from cryptography.x509.oid import ExtensionOID

from _util import csr_pem, rsa_key, tamper_csr, write_ca
from certsmith.authority import load_ca
from certsmith.csr import CertificateSigningRequest
from certsmith.errors import CaKeyMismatch, InvalidCsr, ValidationError
from certsmith.signing import sign

@pytest.fixture
def ca(tmp_path):
    cert_path, key_path = write_ca(tmp_path)
    with load_ca(cert_path, key_path) as authority:
        yield authority

def test_sign_carries_csr_fields(ca):
    key = rsa_key()
    csr = CertificateSigningRequest.from_pem(csr_pem("web01.example.com", ("web01.example.com", "web01"), key))
    now = dt.datetime(2030, 1, 1, tzinfo=dt.timezone.utc)
    issued = sign(csr, ca, 375, now=now)
    cert = issued.certificate

    assert cert.version is x509.Version.v3
    assert cert.issuer == ca.certificate.subject
    assert issued.issuer == ca.subject
    assert cert.subject == csr.subject
    assert issued.not_before == now
    assert issued.not_after - issued.not_before == dt.timedelta(days=375)
    assert cert.public_key().public_numbers() == key.public_key().public_numbers()

    san = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
    assert san.critical is False
    assert san.value.get_values_for_type(x509.DNSName) == ["web01.example.com", "web01"]
    cert.verify_directly_issued_by(ca.certificate)

def test_serials_are_distinct_and_large(ca):
    csr = CertificateSigningRequest.from_pem(csr_pem("a"))
    serials = {sign(csr, ca, 1).serial_number for _ in range(5)}
    assert len(serials) == 5
    assert all(s > 0 and s.bit_length() > 64 for s in serials)

def test_pem_and_der_encodings(ca):
    issued = sign(CertificateSigningRequest.from_pem(csr_pem("a")), ca, 30)
    assert issued.to_pem().startswith(b"-----BEGIN CERTIFICATE-----")
    assert x509.load_der_x509_certificate(issued.to_der()) == issued.certificate
    assert issued.info()["subject_cn"] == "a"

def test_invalid_signature_rejected(ca):
    csr = CertificateSigningRequest.from_pem(tamper_csr(csr_pem("evil.example.com")))
    with pytest.raises(InvalidCsr):
        sign(csr, ca, 30)

def test_validity_must_be_positive(ca):
    csr = CertificateSigningRequest.from_pem(csr_pem("a"))
    with pytest.raises(ValidationError):
        sign(csr, ca, 0)

@pytest.mark.parametrize("days", [4_000_000, 10**12])
def test_validity_past_year_9999_is_a_validation_error(ca, days):
    csr = CertificateSigningRequest.from_pem(csr_pem("a"))
    with pytest.raises(ValidationError) as ei:
        sign(csr, ca, days)
    assert ei.value.kind == "validation"

def test_validity_up_to_the_last_encodable_day(ca):
    csr = CertificateSigningRequest.from_pem(csr_pem("a"))
    now = dt.datetime(9999, 1, 1, tzinfo=dt.timezone.utc)
    issued = sign(csr, ca, 364, now=now)
    assert issued.not_after == dt.datetime(9999, 12, 31, tzinfo=dt.timezone.utc)
    with pytest.raises(ValidationError):
        sign(csr, ca, 366, now=now)

def test_mismatched_ca_refused_when_hardened(tmp_path):
    cert_path, key_path = write_ca(tmp_path, mismatched=True)
    csr = CertificateSigningRequest.from_pem(csr_pem("a"))
    with load_ca(cert_path, key_path) as ca:
        with pytest.raises(CaKeyMismatch):
            sign(csr, ca, 30)
        # relaxed mode signs, but the result does not chain to the certificate
        issued = sign(csr, ca, 30, hardened=False)
        with pytest.raises(InvalidSignature):
            issued.certificate.verify_directly_issued_by(ca.certificate)
