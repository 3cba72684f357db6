from pathlib import Path
from typing import Any, Dict, List, Optional, cast

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID as EKUOID, NameOID

from .common import colon_hex, days_until, iso_utc, utcnow, Warn
from .errors import CertParseError, io_failure
from .san import sans_from_extension

EXPIRING_SOON_DAYS = 30

def _name_to_cn(name: x509.Name) -> Optional[str]:
    try:
        return name.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value  # type: ignore[return-value]
    except IndexError:
        return None

def _public_key_info(cert: x509.Certificate) -> Dict[str, Any]:
    pk = cert.public_key()
    if isinstance(pk, rsa.RSAPublicKey):
        return {"type": "RSA", "size": pk.key_size, "public_exponent": pk.public_numbers().e}
    if isinstance(pk, ec.EllipticCurvePublicKey):
        return {"type": "EC", "curve": getattr(pk.curve, "name", "EC")}
    if isinstance(pk, ed25519.Ed25519PublicKey):
        return {"type": "Ed25519"}
    if isinstance(pk, ed448.Ed448PublicKey):
        return {"type": "Ed448"}
    return {"type": pk.__class__.__name__}

def _san_list(cert: x509.Certificate) -> List[str]:
    try:
        ext = cert.extensions.get_extension_for_oid(x509.oid.ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
    except x509.ExtensionNotFound:
        return []
    return [str(s) for s in sans_from_extension(cast(x509.SubjectAlternativeName, ext.value))]

def _key_usage(cert: x509.Certificate) -> List[str]:
    try:
        ext = cert.extensions.get_extension_for_oid(x509.oid.ExtensionOID.KEY_USAGE)
        ku = cast(x509.KeyUsage, ext.value)
    except x509.ExtensionNotFound:
        return []
    names: List[str] = []
    if ku.digital_signature: names.append("digitalSignature")
    if ku.content_commitment: names.append("contentCommitment")
    if ku.key_encipherment: names.append("keyEncipherment")
    if ku.data_encipherment: names.append("dataEncipherment")
    if ku.key_agreement:
        names.append("keyAgreement")
        if ku.encipher_only: names.append("encipherOnly")
        if ku.decipher_only: names.append("decipherOnly")
    if ku.key_cert_sign: names.append("keyCertSign")
    if ku.crl_sign: names.append("cRLSign")
    return names

def _eku_list(cert: x509.Certificate) -> List[str]:
    try:
        ext = cert.extensions.get_extension_for_oid(x509.oid.ExtensionOID.EXTENDED_KEY_USAGE)
        eku = cast(x509.ExtendedKeyUsage, ext.value)
    except x509.ExtensionNotFound:
        return []
    def _eku_name(oid: x509.ObjectIdentifier) -> str:
        if oid == EKUOID.SERVER_AUTH: return "serverAuth"
        if oid == EKUOID.CLIENT_AUTH: return "clientAuth"
        if oid == EKUOID.CODE_SIGNING: return "codeSigning"
        if oid == EKUOID.EMAIL_PROTECTION: return "emailProtection"
        if oid == EKUOID.TIME_STAMPING: return "timeStamping"
        if oid == EKUOID.OCSP_SIGNING: return "OCSPSigning"
        return oid.dotted_string
    return [_eku_name(oid) for oid in eku]

def _basic_constraints(cert: x509.Certificate) -> Optional[Dict[str, Any]]:
    try:
        ext = cert.extensions.get_extension_for_oid(x509.oid.ExtensionOID.BASIC_CONSTRAINTS)
        bc = cast(x509.BasicConstraints, ext.value)
        return {"ca": bool(bc.ca), "path_len": bc.path_length}
    except x509.ExtensionNotFound:
        return None

def _extensions(cert: x509.Certificate) -> List[Dict[str, Any]]:
    return [
        {"oid": ext.oid.dotted_string, "name": getattr(ext.oid, "_name", ext.oid.dotted_string), "critical": ext.critical}
        for ext in cert.extensions
    ]

def cert_to_meta(cert: x509.Certificate) -> Dict[str, Any]:
    nb = cert.not_valid_before_utc
    na = cert.not_valid_after_utc
    now = utcnow()
    sig_hash = None
    algo = cert.signature_hash_algorithm
    if isinstance(algo, hashes.HashAlgorithm):
        sig_hash = algo.name

    days_left = days_until(na)
    expired = na < now
    meta: Dict[str, Any] = {
        "subject_dn": cert.subject.rfc4514_string(),
        "issuer_dn": cert.issuer.rfc4514_string(),
        "subject_cn": _name_to_cn(cert.subject),
        "issuer_cn": _name_to_cn(cert.issuer),
        "serial_hex": format(cert.serial_number, "x"),
        "not_before": iso_utc(nb),
        "not_after": iso_utc(na),
        "days_until_expiry": days_left,
        "expired": expired,
        "expiring_soon": not expired and days_left < EXPIRING_SOON_DAYS,
        "not_yet_valid": nb > now,
        "public_key": _public_key_info(cert),
        "signature_hash": sig_hash,
        "fingerprint_sha1": colon_hex(cert.fingerprint(hashes.SHA1())),
        "fingerprint_sha256": colon_hex(cert.fingerprint(hashes.SHA256())),
        "san": _san_list(cert),
        "key_usage": _key_usage(cert),
        "eku": _eku_list(cert),
        "basic_constraints": _basic_constraints(cert),
        "extensions": _extensions(cert),
    }
    return meta

def cert_warnings(meta: Dict[str, Any]) -> List[dict]:
    out: List[dict] = []
    if meta.get("expired"):
        out.append(Warn("CERT_EXPIRED", "Certificate is expired", "error").as_dict())
    elif meta.get("expiring_soon"):
        days = int(meta.get("days_until_expiry", 0))
        out.append(Warn("CERT_SOON_EXPIRES", f"Certificate expires in {days} days", "warn").as_dict())

    pk = meta.get("public_key", {})
    if pk.get("type") == "RSA" and int(pk.get("size", 0)) < 2048:
        out.append(Warn("RSA_WEAK_KEY", "RSA key size < 2048", "warn").as_dict())

    sig = (meta.get("signature_hash") or "").lower()
    if sig in {"md5", "sha1"}:
        out.append(Warn("WEAK_SIGNATURE_HASH", f"Weak signature hash: {sig}", "warn").as_dict())

    if "serverAuth" in meta.get("eku", []) and not meta.get("san"):
        out.append(Warn("MISSING_SAN", "serverAuth present but SAN is empty", "warn").as_dict())

    bc = meta.get("basic_constraints") or {}
    if bc.get("ca") is True and "keyCertSign" not in meta.get("key_usage", []):
        out.append(Warn("CA_MISSING_KU", "CA certificate without keyCertSign", "warn").as_dict())
    return out

def parse_certificate(data: bytes) -> x509.Certificate:
    try:
        if b"-----BEGIN CERTIFICATE-----" in data:
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)
    except ValueError as exc:
        raise CertParseError(f"Failed to parse certificate: {exc}") from exc

def load_certificate(path: Path) -> x509.Certificate:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise io_failure(path, exc, "read") from exc
    return parse_certificate(data)
