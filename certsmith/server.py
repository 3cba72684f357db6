import logging
from pathlib import Path
from typing import Annotated, List, Optional

from fastmcp import FastMCP
from pydantic import Field, SecretStr
from pydantic import ValidationError as ModelValidationError

from .authority import CertificateAuthority, load_ca
from .csr import CertificateSigningRequest, build_csr
from .errors import CertsmithError, ValidationError
from .keys import KeyMaterial
from .logging_conf import setup_logging
from .mcp_contracts import (
    DEFAULT_VALIDITY_DAYS,
    CertificateOut,
    CertificateWithKey,
    GenerateCertificateRequest,
    SignCsrRequest,
    WarningItem,
    error_response,
)
from .path_utils import resolve_path
from .prompts import env_password_provider
from .san import SanEntry
from .settings import Settings
from .signing import IssuedCertificate, sign
from .x509meta import cert_to_meta, cert_warnings, load_certificate, parse_certificate

log = logging.getLogger(__name__)

CA_PASSWORD_ENV = "CERTSMITH_CA_PASSWORD"

mcp = FastMCP(
    name="Certsmith",
    instructions=(
        "Purpose: issue X.509 certificates from the configured intermediate CA and inspect certificates.\n\n"
        "Use me when: you need a certificate signed for an existing CSR, a fresh key pair plus certificate, "
        "or a JSON summary of a certificate.\n"
        "Do NOT use me for: revocation, chain validation, or anything involving the CA private key itself.\n\n"
        "How to call:\n"
        "- Existing CSR → `sign_csr(csr_pem=..., validity_days=?)`.\n"
        "- New key and certificate → `generate_certificate(common_name=..., sans=?, validity_days=?, key_size=?, "
        "password_protect=?, key_password=?)`.\n"
        "- Inspection → `certificate_info(path=...)` or `certificate_info(pem=...)`.\n\n"
        "Inputs:\n"
        "- SANs are `KIND:value` strings with KIND in DNS, IP, EMAIL (e.g. `DNS:www.example.com`).\n"
        "- `validity_days` is 1 to 825; `key_size` is 2048 or 4096.\n\n"
        "Outputs: `{success: true, certificate: {...}}` or `{success: false, error: {kind, message}}`.\n\n"
        "Safety: the CA key is never returned; key passwords are never logged or persisted; "
        "generated private keys are returned to the caller only."
    ),
)


def _open_ca(settings: Settings) -> CertificateAuthority:
    return load_ca(settings.ca_cert_path, settings.ca_key_path, env_password_provider(CA_PASSWORD_ENV))


def _certificate_out(issued: IssuedCertificate) -> dict:
    meta = issued.info()
    return CertificateOut(
        pem=issued.to_pem().decode("ascii"),
        subject=issued.subject,
        issuer=issued.issuer,
        serial=meta["serial_hex"],
        not_before=meta["not_before"],
        not_after=meta["not_after"],
        sans=meta["san"],
    ).model_dump()


def _invalid(exc: ModelValidationError) -> dict:
    details = "; ".join(e["msg"] for e in exc.errors())
    return error_response(ValidationError(f"Validation failed: {details}"))


@mcp.tool(
    description="Health check. Returns 'pong'.",
    tags={"certsmith", "health"},
    annotations={"title": "Ping", "readOnlyHint": True, "idempotentHint": True, "openWorldHint": False},
)
def ping() -> str:
    return "pong"


@mcp.tool(
    description=(
        "Sign a PEM certificate signing request with the intermediate CA and return the certificate. "
        "The CSR signature is verified first; its subject and requested extensions are kept."
    ),
    tags={"certsmith", "x509", "signing"},
    annotations={
        "title": "Sign CSR",
        "readOnlyHint": False,
        "idempotentHint": False,
        "openWorldHint": False,
    },
)
def sign_csr(
    csr_pem: Annotated[
        str,
        Field(description="PEM-encoded PKCS#10 certificate signing request."),
    ],
    validity_days: Annotated[
        int,
        Field(description="Certificate lifetime in days (1-825)."),
    ] = DEFAULT_VALIDITY_DAYS,
) -> dict:
    """
    Examples:

    - { "csr_pem": "-----BEGIN CERTIFICATE REQUEST-----\\n..." }
    - { "csr_pem": "<PEM>", "validity_days": 90 }
    """
    try:
        req = SignCsrRequest(csr_pem=csr_pem, validity_days=validity_days)
    except ModelValidationError as exc:
        return _invalid(exc)

    settings = Settings.from_env()
    try:
        csr = CertificateSigningRequest.from_pem(req.csr_pem.encode("utf-8"))
        log.info("Signing CSR for CN=%s", csr.subject_common_name)
        with _open_ca(settings) as ca:
            issued = sign(csr, ca, req.validity_days, hardened=settings.VERIFY_CA_CONSISTENCY)
    except CertsmithError as exc:
        log.warning("sign_csr failed: %s", exc)
        return error_response(exc)
    return {"success": True, "certificate": _certificate_out(issued)}


@mcp.tool(
    description=(
        "Generate an RSA key pair, build a CSR for the given common name and SANs, sign it with the "
        "intermediate CA, and return the certificate, the private key PEM and the CA certificate."
    ),
    tags={"certsmith", "x509", "signing", "keygen"},
    annotations={
        "title": "Generate certificate",
        "readOnlyHint": False,
        "idempotentHint": False,
        "openWorldHint": False,
    },
)
def generate_certificate(
    common_name: Annotated[
        str,
        Field(description="Subject common name (1-64 characters)."),
    ],
    sans: Annotated[
        Optional[List[str]],
        Field(description="Subject alternative names as KIND:value, KIND in DNS, IP, EMAIL."),
    ] = None,
    validity_days: Annotated[
        int,
        Field(description="Certificate lifetime in days (1-825)."),
    ] = DEFAULT_VALIDITY_DAYS,
    key_size: Annotated[
        int,
        Field(description="RSA key size: 2048 or 4096."),
    ] = 4096,
    password_protect: Annotated[
        bool,
        Field(description="Encrypt the returned private key with key_password."),
    ] = False,
    key_password: Annotated[
        Optional[str],
        Field(description="Password for the private key. Required when password_protect is true."),
    ] = None,
) -> dict:
    """
    Examples:

    - { "common_name": "example.com", "sans": ["DNS:www.example.com"] }
    - { "common_name": "api.internal", "key_size": 2048, "password_protect": true, "key_password": "s3cr3t" }
    """
    try:
        req = GenerateCertificateRequest(
            common_name=common_name,
            sans=list(sans or []),
            validity_days=validity_days,
            key_size=key_size,
            password_protect=password_protect,
            key_password=SecretStr(key_password) if key_password is not None else None,
        )
    except ModelValidationError as exc:
        return _invalid(exc)

    settings = Settings.from_env()
    try:
        entries = [SanEntry.parse(s) for s in req.sans]
        log.info("Generating %d-bit key for CN=%s", req.key_size, req.common_name)
        with KeyMaterial.generate(req.key_size) as key:
            key_pem = key.serialize(req.key_password if req.password_protect else None)
            csr = build_csr(key, req.common_name, entries)
        with _open_ca(settings) as ca:
            issued = sign(csr, ca, req.validity_days, hardened=settings.VERIFY_CA_CONSISTENCY)
            chain = ca.chain_pem().decode("ascii")
    except CertsmithError as exc:
        log.warning("generate_certificate failed: %s", exc)
        return error_response(exc)

    cert = CertificateWithKey(
        **_certificate_out(issued),
        private_key=key_pem.decode("ascii"),
        ca_chain=chain,
    )
    return {"success": True, "certificate": cert.model_dump()}


@mcp.tool(
    description=(
        "Summarize a certificate (local path or PEM text): subject, issuer, validity, fingerprints, "
        "SANs, key usage and warnings such as upcoming expiry. Read-only and idempotent."
    ),
    tags={"certsmith", "x509", "analysis"},
    annotations={
        "title": "Certificate info",
        "readOnlyHint": True,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
def certificate_info(
    path: Annotated[
        Optional[str],
        Field(description="Local path or file:// URI of a PEM or DER certificate."),
    ] = None,
    pem: Annotated[
        Optional[str],
        Field(description="PEM text of a certificate, used when no path is given."),
    ] = None,
) -> dict:
    try:
        if path:
            p: Path = resolve_path(path)
            cert = load_certificate(p)
        elif pem:
            cert = parse_certificate(pem.encode("utf-8"))
        else:
            raise ValidationError("Either path or pem is required")
    except CertsmithError as exc:
        return error_response(exc)

    meta = cert_to_meta(cert)
    warnings = [WarningItem(**w).model_dump() for w in cert_warnings(meta)]
    return {"success": True, "certificate": meta, "warnings": warnings}


if __name__ == "__main__":
    setup_logging(Settings.from_env())
    mcp.run()
