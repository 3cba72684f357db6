"""Subject Alternative Name entries and their ``KIND:value`` textual form."""
from __future__ import annotations

import enum
import ipaddress
from dataclasses import dataclass
from typing import Iterable, List

from cryptography import x509

from .errors import InvalidSanFormat


class SanKind(str, enum.Enum):
    DNS = "DNS"
    IP = "IP"
    EMAIL = "EMAIL"


@dataclass(frozen=True)
class SanEntry:
    kind: SanKind
    value: str

    @classmethod
    def dns(cls, name: str) -> "SanEntry":
        return cls(SanKind.DNS, name)

    @classmethod
    def ip(cls, address: str) -> "SanEntry":
        return cls(SanKind.IP, address)

    @classmethod
    def email(cls, address: str) -> "SanEntry":
        return cls(SanKind.EMAIL, address)

    @classmethod
    def parse(cls, text: str) -> "SanEntry":
        """Parse ``KIND:value``; the kind is case-insensitive, the value is kept verbatim."""
        kind_text, sep, value = text.partition(":")
        if not sep:
            raise InvalidSanFormat(f"Invalid SAN format: {text!r} (expected KIND:value)")
        try:
            kind = SanKind(kind_text.strip().upper())
        except ValueError:
            raise InvalidSanFormat(f"Unknown SAN type: {kind_text.strip().upper()}") from None
        if not value:
            raise InvalidSanFormat(f"Empty SAN value in {text!r}")
        if kind is SanKind.IP:
            try:
                ipaddress.ip_address(value)
            except ValueError:
                raise InvalidSanFormat(f"Invalid IP address in SAN: {value!r}") from None
        return cls(kind, value)

    @classmethod
    def parse_many(cls, text: str) -> List["SanEntry"]:
        if not text.strip():
            return []
        return [cls.parse(token.strip()) for token in text.split(",")]

    @classmethod
    def from_general_name(cls, name: x509.GeneralName) -> "SanEntry":
        if isinstance(name, x509.DNSName):
            return cls.dns(name.value)
        if isinstance(name, x509.IPAddress):
            return cls.ip(str(name.value))
        if isinstance(name, x509.RFC822Name):
            return cls.email(name.value)
        raise InvalidSanFormat(f"Unsupported SAN type: {name.__class__.__name__}")

    def to_general_name(self) -> x509.GeneralName:
        if self.kind is SanKind.DNS:
            return x509.DNSName(self.value)
        if self.kind is SanKind.IP:
            return x509.IPAddress(ipaddress.ip_address(self.value))
        return x509.RFC822Name(self.value)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"


def format_sans(entries: Iterable[SanEntry]) -> str:
    return ",".join(str(e) for e in entries)


def sans_from_extension(ext: x509.SubjectAlternativeName) -> List[SanEntry]:
    out: List[SanEntry] = []
    for name in ext:
        try:
            out.append(SanEntry.from_general_name(name))
        except InvalidSanFormat:
            continue
    return out
