# certsmith/mcp_contracts.py
from __future__ import annotations
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from .errors import CertsmithError, InvalidSanFormat
from .san import SanEntry

MAX_VALIDITY_DAYS = 825
DEFAULT_VALIDITY_DAYS = 375


def _check_sans(values: List[str]) -> List[str]:
    for v in values:
        try:
            SanEntry.parse(v)
        except InvalidSanFormat as exc:
            raise ValueError(str(exc)) from exc
    return values


class SignCsrRequest(BaseModel):
    csr_pem: str = Field(..., min_length=1)
    validity_days: int = Field(DEFAULT_VALIDITY_DAYS, ge=1, le=MAX_VALIDITY_DAYS)


class GenerateCertificateRequest(BaseModel):
    common_name: str = Field(..., min_length=1, max_length=64, examples=["example.com"])
    sans: List[str] = Field(default_factory=list, examples=[["DNS:www.example.com"]])
    validity_days: int = Field(DEFAULT_VALIDITY_DAYS, ge=1, le=MAX_VALIDITY_DAYS)
    key_size: Literal[2048, 4096] = 4096
    password_protect: bool = False
    key_password: Optional[SecretStr] = None

    @field_validator("sans")
    @classmethod
    def _valid_sans(cls, v: List[str]) -> List[str]:
        return _check_sans(v)

    @model_validator(mode="after")
    def _password_when_protected(self) -> "GenerateCertificateRequest":
        if self.password_protect and not (self.key_password and self.key_password.get_secret_value()):
            raise ValueError("Password required when password_protect is true")
        return self


class CertificateOut(BaseModel):
    pem: str
    subject: str
    issuer: str
    serial: str
    not_before: str
    not_after: str
    sans: List[str] = []


class CertificateWithKey(CertificateOut):
    private_key: str
    ca_chain: Optional[str] = None


class ErrorOut(BaseModel):
    kind: str = Field(..., examples=["invalid_csr"])
    message: str
    step: Optional[str] = None


class WarningItem(BaseModel):
    code: str = Field(..., examples=["CERT_SOON_EXPIRES"])
    message: str
    severity: str = "warn"


def error_response(exc: CertsmithError) -> dict:
    return {"success": False, "error": ErrorOut(**exc.as_dict()).model_dump(exclude_none=True)}
