"""Per-identifier issuance pipeline: key, CSR, certificate, published copies.

Steps run in a fixed order and stop at the first failure, which is raised as
``IssuanceFailed`` naming the step. Nothing already written is rolled back;
every file is replaced atomically, so running the job again is the recovery
path.
"""
from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Union

from .authority import CertificateAuthority
from .csr import CertificateSigningRequest, build_csr, load_csr
from .errors import InvalidCertName, IssuanceFailed, UserCancelled
from .keys import KeyMaterial, Secret
from .path_utils import ensure_dir, publish_file, write_file
from .prompts import confirmed_passphrase_provider
from .san import SanEntry
from .settings import Settings
from .signing import IssuedCertificate, sign

log = logging.getLogger(__name__)

PassphraseProvider = Callable[[str], Secret]
SanInput = Union[str, Sequence[SanEntry], None]

PRIVATE_DIR_MODE = 0o700

STEPS = (
    "prepare_directories",
    "generate_key",
    "write_private_key",
    "build_csr",
    "write_csr",
    "sign",
    "write_certificate",
    "publish",
)

_NAME_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9._-]*$")


def validate_identifier(identifier: str) -> str:
    if not identifier or not _NAME_RE.match(identifier):
        raise InvalidCertName(
            f"Invalid certificate name {identifier!r}: use letters, digits, '-', '_' or '.', not starting with '.'"
        )
    return identifier


def coerce_sans(sans: SanInput) -> List[SanEntry]:
    if sans is None:
        return []
    if isinstance(sans, str):
        return SanEntry.parse_many(sans)
    return list(sans)


@contextmanager
def _step(identifier: str, name: str) -> Iterator[None]:
    log.debug("%s: %s", identifier, name, extra={"identifier": identifier, "step": name})
    try:
        yield
    except IssuanceFailed:
        raise
    except Exception as exc:
        log.error("%s: %s failed: %s", identifier, name, exc, extra={"identifier": identifier, "step": name})
        raise IssuanceFailed(identifier, name, exc) from exc


@dataclass(frozen=True)
class IssuanceOutcome:
    identifier: str
    certificate: IssuedCertificate
    cert_path: Path
    crt_path: Path
    key_path: Optional[Path] = None
    csr_path: Optional[Path] = None
    published: List[Path] = field(default_factory=list)
    key_encrypted: bool = False


class IssuanceJob:
    def __init__(
        self,
        identifier: str,
        sans: SanInput,
        settings: Settings,
        ca: CertificateAuthority,
        passphrase: Optional[Secret] = None,
        common_name: Optional[str] = None,
    ) -> None:
        self.identifier = validate_identifier(identifier)
        self.sans = coerce_sans(sans)
        self.settings = settings
        self.ca = ca
        self.common_name = common_name
        self._passphrase = passphrase
        self._encrypted = passphrase is not None

    @property
    def key_path(self) -> Path:
        return self.settings.private_dir / f"{self.identifier}.key.pem"

    @property
    def csr_path(self) -> Path:
        return self.settings.csr_dir / f"{self.identifier}.csr.pem"

    @property
    def cert_path(self) -> Path:
        return self.settings.certs_dir / f"{self.identifier}.cert.pem"

    @property
    def crt_path(self) -> Path:
        return self.settings.certs_dir / f"{self.identifier}.crt"

    def run(self) -> IssuanceOutcome:
        s = self.settings
        name = self.identifier
        out_dir = Path(s.OUTPUT_DIR)

        with _step(name, "prepare_directories"):
            ensure_dir(s.private_dir, PRIVATE_DIR_MODE)
            ensure_dir(s.csr_dir, s.OUTPUT_DIR_MODE)
            ensure_dir(s.certs_dir, s.OUTPUT_DIR_MODE)
            ensure_dir(out_dir, s.OUTPUT_DIR_MODE)

        with _step(name, "generate_key"):
            key = KeyMaterial.generate(s.KEY_SIZE)

        with key:
            with _step(name, "write_private_key"):
                write_file(self.key_path, key.serialize(self._passphrase), s.PRIVATE_KEY_MODE)
            self._passphrase = None

            with _step(name, "build_csr"):
                csr = build_csr(key, name, self.sans, self.common_name)

        with _step(name, "write_csr"):
            write_file(self.csr_path, csr.to_pem(), s.CSR_MODE)

        with _step(name, "sign"):
            issued = sign(csr, self.ca, s.CERT_DAYS, hardened=s.VERIFY_CA_CONSISTENCY)

        with _step(name, "write_certificate"):
            pem = issued.to_pem()
            write_file(self.cert_path, pem, s.CERTIFICATE_MODE)
            write_file(self.crt_path, pem, s.CERTIFICATE_MODE)

        with _step(name, "publish"):
            published = [
                publish_file(self.cert_path, out_dir / self.cert_path.name, s.CERTIFICATE_MODE),
                publish_file(self.crt_path, out_dir / self.crt_path.name, s.CERTIFICATE_MODE),
                publish_file(self.key_path, out_dir / self.key_path.name, s.PRIVATE_KEY_MODE),
            ]

        log.info("Issued %s (serial %x)", name, issued.serial_number, extra={"identifier": name})
        return IssuanceOutcome(
            identifier=name,
            certificate=issued,
            cert_path=self.cert_path,
            crt_path=self.crt_path,
            key_path=self.key_path,
            csr_path=self.csr_path,
            published=published,
            key_encrypted=self._encrypted,
        )

    def __repr__(self) -> str:
        return f"IssuanceJob(identifier={self.identifier!r}, sans={len(self.sans)})"


def request_passphrase(identifier: str, provider: PassphraseProvider) -> Secret:
    try:
        return provider(identifier)
    except (KeyboardInterrupt, EOFError) as exc:
        raise UserCancelled() from exc


def issue_one(
    identifier: str,
    sans: SanInput,
    password_protect: bool,
    ca: CertificateAuthority,
    settings: Optional[Settings] = None,
    passphrase_provider: Optional[PassphraseProvider] = None,
    common_name: Optional[str] = None,
) -> IssuanceOutcome:
    settings = settings or Settings.from_env()
    validate_identifier(identifier)
    passphrase = None
    if password_protect:
        if passphrase_provider is None:
            passphrase_provider = confirmed_passphrase_provider
        passphrase = request_passphrase(identifier, passphrase_provider)
    return IssuanceJob(identifier, sans, settings, ca, passphrase, common_name).run()


def issue_from_csr(
    identifier: str,
    csr: Union[CertificateSigningRequest, Path, str],
    ca: CertificateAuthority,
    settings: Optional[Settings] = None,
    validity_days: Optional[int] = None,
) -> IssuanceOutcome:
    """Sign an existing CSR and persist only the certificate.

    There is no private key on this path; the requester keeps it.
    """
    settings = settings or Settings.from_env()
    name = validate_identifier(identifier)
    out_dir = Path(settings.OUTPUT_DIR)
    cert_path = settings.certs_dir / f"{name}.cert.pem"
    crt_path = settings.certs_dir / f"{name}.crt"

    with _step(name, "prepare_directories"):
        ensure_dir(settings.certs_dir, settings.OUTPUT_DIR_MODE)
        ensure_dir(out_dir, settings.OUTPUT_DIR_MODE)
        if not isinstance(csr, CertificateSigningRequest):
            csr = load_csr(Path(csr))

    with _step(name, "sign"):
        days = validity_days if validity_days is not None else settings.CERT_DAYS
        issued = sign(csr, ca, days, hardened=settings.VERIFY_CA_CONSISTENCY)

    with _step(name, "write_certificate"):
        pem = issued.to_pem()
        write_file(cert_path, pem, settings.CERTIFICATE_MODE)
        write_file(crt_path, pem, settings.CERTIFICATE_MODE)

    with _step(name, "publish"):
        published = [
            publish_file(cert_path, out_dir / cert_path.name, settings.CERTIFICATE_MODE),
            publish_file(crt_path, out_dir / crt_path.name, settings.CERTIFICATE_MODE),
        ]

    log.info("Signed CSR for %s (serial %x)", name, issued.serial_number, extra={"identifier": name})
    return IssuanceOutcome(
        identifier=name,
        certificate=issued,
        cert_path=cert_path,
        crt_path=crt_path,
        published=published,
    )
