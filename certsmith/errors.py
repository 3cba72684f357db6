"""Error taxonomy shared by every certsmith component.

Each class carries a stable ``kind`` so callers can branch on the failure
category without parsing messages.
"""
from __future__ import annotations

import os
from typing import Optional


class CertsmithError(Exception):
    kind = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def as_dict(self) -> dict:
        return {"kind": self.kind, "message": str(self)}


# configuration

class ConfigurationError(CertsmithError):
    kind = "configuration"


class _PathError(ConfigurationError):
    _label = "Path not found"

    def __init__(self, path: "os.PathLike[str] | str") -> None:
        self.path = os.fspath(path)
        super().__init__(f"{self._label}: {self.path}")


class CaCertNotFound(_PathError):
    kind = "ca_cert_not_found"
    _label = "CA certificate not found"


class CaKeyNotFound(_PathError):
    kind = "ca_key_not_found"
    _label = "CA key not found"


class WorkingDirNotFound(_PathError):
    kind = "working_dir_not_found"
    _label = "Working directory not found"


class NoCsrFilesFound(_PathError):
    kind = "no_csr_files_found"
    _label = "No CSR files found in directory"


class CaKeyMismatch(ConfigurationError):
    kind = "ca_key_mismatch"


# parsing

class ParseError(CertsmithError):
    kind = "parse"


class CertParseError(ParseError):
    kind = "cert_parse"


class CsrParseError(ParseError):
    kind = "csr_parse"


class KeyParseError(ParseError):
    kind = "key_parse"


class DecryptionFailed(CertsmithError):
    kind = "decryption_failed"


# signing

class SigningFailed(CertsmithError):
    kind = "signing_failed"


class CertSigningFailed(SigningFailed):
    kind = "cert_signing_failed"


class CsrGenerationFailed(SigningFailed):
    kind = "csr_generation_failed"


class IoFailure(CertsmithError):
    kind = "io"

    def __init__(self, path: "os.PathLike[str] | str", reason: str) -> None:
        self.path = os.fspath(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


# validation

class ValidationError(CertsmithError):
    kind = "validation"


class InvalidSanFormat(ValidationError):
    kind = "invalid_san"


class InvalidCertName(ValidationError):
    kind = "invalid_cert_name"


class InvalidCsr(ValidationError):
    kind = "invalid_csr"


class KeyGenerationError(ValidationError):
    kind = "key_generation"


class UserCancelled(CertsmithError):
    kind = "user_cancelled"

    def __init__(self, message: str = "Operation cancelled by user") -> None:
        super().__init__(message)


class IssuanceFailed(CertsmithError):
    """First failure of an issuance pipeline, tagged with the step that raised it."""

    def __init__(self, identifier: str, step: str, cause: BaseException) -> None:
        self.identifier = identifier
        self.step = step
        self.cause = cause
        super().__init__(f"{step}: {cause}")

    @property
    def kind(self) -> str:  # type: ignore[override]
        return getattr(self.cause, "kind", "error")

    def as_dict(self) -> dict:
        return {"kind": self.kind, "step": self.step, "message": str(self)}


def describe(exc: BaseException) -> str:
    """Human-readable one-liner for any exception, used in batch reports."""
    if isinstance(exc, CertsmithError):
        return str(exc)
    text = str(exc)
    return f"{exc.__class__.__name__}: {text}" if text else exc.__class__.__name__


def io_failure(path: "os.PathLike[str] | str", exc: OSError, action: Optional[str] = None) -> IoFailure:
    reason = exc.strerror or str(exc)
    if action:
        reason = f"{action} failed: {reason}"
    return IoFailure(path, reason)
