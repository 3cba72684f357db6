"""Intermediate CA custody.

A ``CaSource`` points at CA material on disk (locked). ``unlock`` reads the
certificate, decrypts the key if needed and returns a ``CertificateAuthority``
(loaded). When the on-disk key is encrypted, the loaded authority owns a
plaintext copy in an owner-only temporary file, for consumers that need a
key path; that file is removed by ``close``, on context exit, or when the
object is collected, whichever comes first.
"""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from .errors import (
    CaCertNotFound,
    CaKeyNotFound,
    DecryptionFailed,
    UserCancelled,
    io_failure,
)
from .keys import KeyMaterial, encryption_info, is_encrypted, same_public_key
from .x509meta import parse_certificate

log = logging.getLogger(__name__)

PasswordProvider = Callable[[str], str]

CA_PASSWORD_PROMPT = "Enter intermediate CA private key password"


def _read(path: Path, missing: type) -> bytes:
    try:
        return path.read_bytes()
    except FileNotFoundError as exc:
        raise missing(path) from exc
    except OSError as exc:
        raise io_failure(path, exc, "read") from exc


def _write_guarded_copy(key: KeyMaterial) -> Path:
    """Write an unencrypted copy of ``key`` to a fresh 0600 temp file."""
    fd, name = tempfile.mkstemp(prefix="certsmith-ca-", suffix=".key.pem")
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as fh:
            os.fchmod(fh.fileno(), 0o600)
            fh.write(key.serialize(None))
    except OSError as exc:
        _remove(path)
        raise io_failure(path, exc, "write") from exc
    except BaseException:
        _remove(path)
        raise
    return path


def _remove(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        log.warning("Failed to remove decrypted CA key copy %s: %s", path, exc)
        return False
    return True


class CertificateAuthority:
    """A loaded CA: signing key plus certificate, read-only after construction."""

    def __init__(
        self,
        key: KeyMaterial,
        certificate: x509.Certificate,
        key_path: Optional[Path] = None,
        temp_key_path: Optional[Path] = None,
    ) -> None:
        self._key = key
        self._certificate = certificate
        self._temp_key_path = temp_key_path
        self._key_path = temp_key_path or key_path
        # derived values are fixed before any worker sees the handle
        self._subject = certificate.subject.rfc4514_string()
        cns = certificate.subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)
        self._common_name = str(cns[0].value) if cns else None
        self._consistent = same_public_key(certificate.public_key(), key.public_key)

    @property
    def key(self) -> KeyMaterial:
        return self._key

    @property
    def certificate(self) -> x509.Certificate:
        return self._certificate

    @property
    def subject(self) -> str:
        return self._subject

    @property
    def common_name(self) -> Optional[str]:
        return self._common_name

    @property
    def key_path(self) -> Optional[Path]:
        return self._key_path

    @property
    def temp_key_path(self) -> Optional[Path]:
        return self._temp_key_path

    def verify_self_consistency(self) -> bool:
        return self._consistent

    def chain_pem(self) -> bytes:
        return self._certificate.public_bytes(Encoding.PEM)

    def close(self) -> None:
        path, self._temp_key_path = self._temp_key_path, None
        if path is not None:
            if _remove(path):
                log.debug("Removed decrypted CA key copy %s", path)
            if self._key_path == path:
                self._key_path = None

    def __enter__(self) -> "CertificateAuthority":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __del__(self) -> None:
        if getattr(self, "_temp_key_path", None) is not None:
            self.close()

    def __repr__(self) -> str:
        return f"CertificateAuthority(subject={self._subject!r})"


@dataclass(frozen=True)
class CaSource:
    cert_path: Path
    key_path: Path

    def unlock(self, password_provider: Optional[PasswordProvider] = None) -> CertificateAuthority:
        cert_path, key_path = Path(self.cert_path), Path(self.key_path)
        certificate = parse_certificate(_read(cert_path, CaCertNotFound))
        key_bytes = _read(key_path, CaKeyNotFound)

        if not is_encrypted(key_bytes):
            key = KeyMaterial.deserialize(key_bytes, None)
            log.info("Loaded CA %s (unencrypted key)", certificate.subject.rfc4514_string())
            return CertificateAuthority(key, certificate, key_path=key_path)

        info = encryption_info(key_bytes)
        for w in (info or {}).get("warnings", []):
            log.warning("CA key protection: %s", w["message"])

        if password_provider is None:
            raise DecryptionFailed("CA key is encrypted and no password provider was supplied")
        try:
            password = password_provider(CA_PASSWORD_PROMPT)
        except (KeyboardInterrupt, EOFError) as exc:
            raise UserCancelled() from exc
        key = KeyMaterial.deserialize(key_bytes, password)
        del password

        temp_path = _write_guarded_copy(key)
        try:
            ca = CertificateAuthority(key, certificate, key_path=key_path, temp_key_path=temp_path)
        except BaseException:
            _remove(temp_path)
            raise
        log.info("Unlocked CA %s", ca.subject)
        return ca


def load_ca(
    cert_path: "os.PathLike[str] | str",
    key_path: "os.PathLike[str] | str",
    password_provider: Optional[PasswordProvider] = None,
) -> CertificateAuthority:
    return CaSource(Path(cert_path), Path(key_path)).unlock(password_provider)


__all__ = ["CaSource", "CertificateAuthority", "PasswordProvider", "load_ca"]
