from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed448, ed25519
from cryptography.hazmat.primitives.serialization import Encoding

from .authority import CertificateAuthority
from .common import as_utc, utcnow
from .csr import CertificateSigningRequest
from .errors import CaKeyMismatch, CertSigningFailed, InvalidCsr, ValidationError
from .x509meta import cert_to_meta

log = logging.getLogger(__name__)

# Not caller-configurable.
SIGNATURE_HASH = hashes.SHA256

# GeneralizedTime upper bound
MAX_NOT_AFTER = dt.datetime(9999, 12, 31, 23, 59, 59, tzinfo=dt.timezone.utc)


@dataclass(frozen=True)
class IssuedCertificate:
    certificate: x509.Certificate
    subject: str
    issuer: str
    serial_number: int
    not_before: dt.datetime
    not_after: dt.datetime
    extensions: List[x509.Extension]

    @staticmethod
    def from_certificate(cert: x509.Certificate) -> "IssuedCertificate":
        return IssuedCertificate(
            certificate=cert,
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            serial_number=cert.serial_number,
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            extensions=list(cert.extensions),
        )

    def to_pem(self) -> bytes:
        return self.certificate.public_bytes(Encoding.PEM)

    def to_der(self) -> bytes:
        return self.certificate.public_bytes(Encoding.DER)

    def info(self) -> Dict[str, Any]:
        return cert_to_meta(self.certificate)


def _signature_algorithm(private_key) -> Optional[hashes.HashAlgorithm]:
    if isinstance(private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return None
    return SIGNATURE_HASH()


def _not_after(not_before: dt.datetime, validity_days: int) -> dt.datetime:
    try:
        not_after = not_before + dt.timedelta(days=validity_days)
    except OverflowError:
        not_after = None
    if not_after is None or not_after > MAX_NOT_AFTER:
        raise ValidationError(f"Validity of {validity_days} days ends after {MAX_NOT_AFTER.date()}")
    return not_after


def sign(
    csr: Union[CertificateSigningRequest, x509.CertificateSigningRequest],
    ca: CertificateAuthority,
    validity_days: int,
    *,
    hardened: bool = True,
    now: Optional[dt.datetime] = None,
) -> IssuedCertificate:
    """Issue a v3 certificate for ``csr`` signed by ``ca``.

    The CSR's self-signature is checked before any of its fields are used.
    Subject, public key and every requested extension are carried over
    verbatim; the issuer is the CA subject and the serial is random.
    Restricting which SANs a CSR may request is the caller's job.
    """
    if validity_days < 1:
        raise ValidationError(f"Validity must be at least 1 day, got {validity_days}")
    not_before = as_utc(now) if now is not None else utcnow()
    not_after = _not_after(not_before, validity_days)

    raw = csr.raw if isinstance(csr, CertificateSigningRequest) else csr
    if not raw.is_signature_valid:
        raise InvalidCsr("CSR signature does not verify against its public key")
    if hardened and not ca.verify_self_consistency():
        raise CaKeyMismatch(f"CA certificate {ca.subject} does not match the loaded CA key")

    try:
        builder = (
            x509.CertificateBuilder()
            .subject_name(raw.subject)
            .issuer_name(ca.certificate.subject)
            .public_key(raw.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
        )
        for ext in raw.extensions:
            builder = builder.add_extension(ext.value, critical=ext.critical)
        private_key = ca.key.private_key
        cert = builder.sign(private_key, _signature_algorithm(private_key))
    except (ValueError, TypeError) as exc:
        raise CertSigningFailed(str(exc)) from exc

    issued = IssuedCertificate.from_certificate(cert)
    log.debug("Signed serial %x for %s", issued.serial_number, issued.subject)
    return issued
