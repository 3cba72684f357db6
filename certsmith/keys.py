"""Asymmetric key material: generation, PEM (de)serialization, protection checks."""
from __future__ import annotations

import base64
import hashlib
import logging
from typing import Any, Dict, List, Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)
from pyasn1.codec.der import decoder as der_decoder
from pyasn1.error import PyAsn1Error
from pyasn1_modules import rfc5208, rfc8018
from pydantic import SecretStr

from .errors import DecryptionFailed, KeyGenerationError, KeyParseError, ValidationError

log = logging.getLogger(__name__)

Secret = Union[str, bytes, SecretStr]

MIN_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537

# PEM labels of private keys we write (PKCS#8) or accept (traditional RSA)
ENCRYPTED_KEY_LABEL = "ENCRYPTED PRIVATE KEY"
PRIVATE_KEY_LABELS = (ENCRYPTED_KEY_LABEL, "PRIVATE KEY", "RSA PRIVATE KEY")

_PEM_BEGIN_ENC = f"-----BEGIN {ENCRYPTED_KEY_LABEL}-----".encode("ascii")
_PEM_END_ENC = f"-----END {ENCRYPTED_KEY_LABEL}-----".encode("ascii")
_LEGACY_ENC = b"Proc-Type: 4,ENCRYPTED"


def secret_bytes(password: Optional[Secret]) -> Optional[bytes]:
    if password is None:
        return None
    if isinstance(password, SecretStr):
        password = password.get_secret_value()
    if isinstance(password, str):
        password = password.encode("utf-8")
    return bytes(password)


def is_encrypted(data: bytes) -> bool:
    """Look for an encryption marker in the PEM armor; never tries to decrypt."""
    return _PEM_BEGIN_ENC in data or _LEGACY_ENC in data


class KeyMaterial:
    """A private/public key pair.

    The private half is only turned into bytes by ``serialize``; callers
    drop it with ``discard`` (or a ``with`` block) once persisted.
    """

    def __init__(self, private_key) -> None:
        self._private_key = private_key

    @staticmethod
    def generate(key_size_bits: int) -> "KeyMaterial":
        if key_size_bits < MIN_KEY_SIZE:
            raise KeyGenerationError(f"RSA key size must be at least {MIN_KEY_SIZE} bits, got {key_size_bits}")
        try:
            key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size_bits)
        except (ValueError, UnsupportedAlgorithm) as exc:
            raise KeyGenerationError(f"Key generation failed: {exc}") from exc
        return KeyMaterial(key)

    @staticmethod
    def deserialize(data: bytes, password: Optional[Secret] = None) -> "KeyMaterial":
        encrypted = is_encrypted(data)
        if encrypted and password is None:
            raise DecryptionFailed("Key is encrypted and no password was supplied")
        try:
            key = load_pem_private_key(data, password=secret_bytes(password) if encrypted else None)
        except TypeError as exc:
            # encrypted body without a recognizable marker
            raise DecryptionFailed(f"Key could not be decrypted: {exc}") from exc
        except ValueError as exc:
            if encrypted:
                raise DecryptionFailed("Incorrect password for encrypted key") from exc
            raise KeyParseError(f"Not a valid private key container: {exc}") from exc
        except UnsupportedAlgorithm as exc:
            raise KeyParseError(f"Unsupported key algorithm: {exc}") from exc
        return KeyMaterial(key)

    @property
    def private_key(self):
        if self._private_key is None:
            raise ValueError("Key material has been discarded")
        return self._private_key

    @property
    def public_key(self):
        return self.private_key.public_key()

    @property
    def key_size_bits(self) -> Optional[int]:
        return getattr(self.private_key, "key_size", None)

    def serialize(self, password: Optional[Secret] = None) -> bytes:
        pwd = secret_bytes(password)
        if pwd is None:
            algorithm = NoEncryption()
        elif not pwd:
            raise ValidationError("An empty password cannot protect a private key")
        else:
            algorithm = BestAvailableEncryption(pwd)
        return self.private_key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.PKCS8,
            encryption_algorithm=algorithm,
        )

    def public_pem(self) -> bytes:
        return self.public_key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)

    def fingerprint(self) -> str:
        return spki_sha256(self.public_key)

    def discard(self) -> None:
        self._private_key = None

    def __enter__(self) -> "KeyMaterial":
        return self

    def __exit__(self, *exc_info) -> None:
        self.discard()

    def __repr__(self) -> str:
        if self._private_key is None:
            return "KeyMaterial(discarded)"
        return f"KeyMaterial(type={self._private_key.__class__.__name__}, bits={self.key_size_bits})"


def spki_sha256(public_key) -> str:
    spki = public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    return hashlib.sha256(spki).hexdigest()


def same_public_key(a, b) -> bool:
    fmt = (serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)
    return a.public_bytes(*fmt) == b.public_bytes(*fmt)


# ---------------------------
# PKCS#8 protection inspection
# ---------------------------

_PBES1_NAMES = {
    "1.2.840.113549.1.5.3": "pbeWithMD5AndDES-CBC",
    "1.2.840.113549.1.5.6": "pbeWithMD5AndRC2-CBC",
    "1.2.840.113549.1.5.10": "pbeWithSHA1AndDES-CBC",
    "1.2.840.113549.1.5.11": "pbeWithSHA1AndRC2-CBC",
}
_PRF_NAMES = {
    "1.2.840.113549.2.7": "hmacWithSHA1",
    "1.2.840.113549.2.8": "hmacWithSHA224",
    "1.2.840.113549.2.9": "hmacWithSHA256",
    "1.2.840.113549.2.10": "hmacWithSHA384",
    "1.2.840.113549.2.11": "hmacWithSHA512",
}
_CIPHER_NAMES = {
    "1.2.840.113549.3.7": "des-EDE3-CBC",
    "2.16.840.1.101.3.4.1.2": "aes-128-cbc",
    "2.16.840.1.101.3.4.1.22": "aes-192-cbc",
    "2.16.840.1.101.3.4.1.42": "aes-256-cbc",
}
_PBES2_OID = "1.2.840.113549.1.5.13"
_PBKDF2_OID = "1.2.840.113549.1.5.12"


def _oid(value) -> str:
    return ".".join(str(x) for x in value.asTuple())


def _epki_der(data: bytes) -> Optional[bytes]:
    s = data.find(_PEM_BEGIN_ENC)
    if s == -1:
        return None
    e = data.find(_PEM_END_ENC, s)
    if e == -1:
        return None
    lines = data[s:e].splitlines()[1:]
    b64 = b"".join(line.strip() for line in lines if not line.startswith(b"-"))
    try:
        return base64.b64decode(b64, validate=True)
    except ValueError:
        return None


def encryption_info(data: bytes) -> Optional[Dict[str, Any]]:
    """Describe how a PKCS#8 PEM key is protected, or None if it is not PKCS#8-encrypted."""
    der = _epki_der(data)
    if der is None:
        return None
    try:
        epki, _ = der_decoder.decode(der, asn1Spec=rfc5208.EncryptedPrivateKeyInfo())
    except PyAsn1Error:
        log.debug("EncryptedPrivateKeyInfo could not be decoded")
        return None

    algo_oid = _oid(epki["encryptionAlgorithm"]["algorithm"])
    info: Dict[str, Any] = {"algorithm_oid": algo_oid}
    if algo_oid != _PBES2_OID:
        info["algorithm"] = _PBES1_NAMES.get(algo_oid, algo_oid)
        info["warnings"] = protection_warnings(info)
        return info

    info["algorithm"] = "pbes2"
    try:
        params, _ = der_decoder.decode(epki["encryptionAlgorithm"]["parameters"], asn1Spec=rfc8018.PBES2_params())
        kdf = params["keyDerivationFunc"]
        kdf_oid = _oid(kdf["algorithm"])
        kdf_info: Dict[str, Any] = {"oid": kdf_oid}
        if kdf_oid == _PBKDF2_OID:
            pbkdf2, _ = der_decoder.decode(kdf["parameters"], asn1Spec=rfc8018.PBKDF2_params())
            prf_oid = "1.2.840.113549.2.7"
            if pbkdf2["prf"].isValue:
                prf_oid = _oid(pbkdf2["prf"]["algorithm"])
            kdf_info.update(
                {"name": "pbkdf2", "iterations": int(pbkdf2["iterationCount"]),
                 "prf": _PRF_NAMES.get(prf_oid, prf_oid)}
            )
        enc_oid = _oid(params["encryptionScheme"]["algorithm"])
        info["kdf"] = kdf_info
        info["cipher"] = {"name": _CIPHER_NAMES.get(enc_oid, enc_oid), "oid": enc_oid}
    except PyAsn1Error:
        log.debug("PBES2 parameters could not be decoded")
    info["warnings"] = protection_warnings(info)
    return info


def protection_warnings(info: Dict[str, Any]) -> List[dict]:
    warns: List[dict] = []
    alg = (info.get("algorithm") or "").lower()
    if "pbe" in alg and alg != "pbes2":
        warns.append({"code": "PKCS8_PBES1_WEAK", "message": "PKCS#5 v1 (PBES1) is outdated", "severity": "warn"})
    cipher = ((info.get("cipher") or {}).get("name") or "").lower()
    if cipher == "des-ede3-cbc":
        warns.append({"code": "PKCS8_3DES", "message": "3DES in use", "severity": "warn"})
    kdf = info.get("kdf") or {}
    if kdf.get("name") == "pbkdf2":
        iters = int(kdf.get("iterations", 0))
        if iters and iters < 100_000:
            warns.append({"code": "PKCS8_PBKDF2_LOW_ITER", "message": f"PBKDF2 iterations={iters} look low", "severity": "warn"})
        if (kdf.get("prf") or "").lower() == "hmacwithsha1":
            warns.append({"code": "PKCS8_PBKDF2_SHA1", "message": "PBKDF2 PRF is HMAC-SHA1", "severity": "warn"})
    return warns
