from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, cast

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import ExtensionOID, NameOID

from .errors import CsrGenerationFailed, CsrParseError, NoCsrFilesFound, io_failure
from .keys import KeyMaterial
from .san import SanEntry, sans_from_extension

log = logging.getLogger(__name__)

_PEM_CSR_MARKERS = (b"-----BEGIN CERTIFICATE REQUEST-----", b"-----BEGIN NEW CERTIFICATE REQUEST-----")


def _name_to_cn(name: x509.Name) -> Optional[str]:
    try:
        return cast(str, name.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value)
    except IndexError:
        return None


@dataclass(frozen=True)
class CertificateSigningRequest:
    raw: x509.CertificateSigningRequest

    @property
    def subject(self) -> x509.Name:
        return self.raw.subject

    @property
    def subject_common_name(self) -> Optional[str]:
        return _name_to_cn(self.raw.subject)

    @property
    def public_key(self):
        return self.raw.public_key()

    @property
    def requested_sans(self) -> List[SanEntry]:
        try:
            ext = self.raw.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        except x509.ExtensionNotFound:
            return []
        return sans_from_extension(cast(x509.SubjectAlternativeName, ext.value))

    @property
    def is_signature_valid(self) -> bool:
        return self.raw.is_signature_valid

    def to_pem(self) -> bytes:
        return self.raw.public_bytes(Encoding.PEM)

    @staticmethod
    def from_pem(data: bytes) -> "CertificateSigningRequest":
        try:
            if any(m in data for m in _PEM_CSR_MARKERS):
                return CertificateSigningRequest(x509.load_pem_x509_csr(data))
            return CertificateSigningRequest(x509.load_der_x509_csr(data))
        except ValueError as exc:
            raise CsrParseError(f"Failed to parse CSR: {exc}") from exc


def build_csr(
    key: KeyMaterial,
    identifier: str,
    sans: Sequence[SanEntry] = (),
    common_name: Optional[str] = None,
) -> CertificateSigningRequest:
    """Build a CSR self-signed by ``key``; the CN defaults to the identifier."""
    cn = common_name or identifier
    try:
        builder = x509.CertificateSigningRequestBuilder().subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
        )
        if sans:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([s.to_general_name() for s in sans]),
                critical=False,
            )
        csr = builder.sign(key.private_key, hashes.SHA256())
    except (ValueError, TypeError) as exc:
        raise CsrGenerationFailed(str(exc)) from exc
    return CertificateSigningRequest(csr)


def load_csr(path: Path) -> CertificateSigningRequest:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise io_failure(path, exc, "read") from exc
    return CertificateSigningRequest.from_pem(data)


@dataclass(frozen=True)
class CsrFile:
    path: Path
    name: str


def find_csr_files(directory: Path) -> List[CsrFile]:
    """``*.csr`` files directly inside ``directory``, sorted by name."""
    directory = Path(directory)
    try:
        entries = list(directory.iterdir())
    except OSError as exc:
        raise io_failure(directory, exc, "list") from exc
    files = [CsrFile(path=p, name=p.stem) for p in entries if p.is_file() and p.suffix == ".csr"]
    if not files:
        raise NoCsrFilesFound(directory)
    files.sort(key=lambda f: f.name)
    log.debug("Found %d CSR files in %s", len(files), directory)
    return files


def filter_csr_files(files: Sequence[CsrFile], pattern: str) -> List[CsrFile]:
    return [f for f in files if pattern in f.name]
