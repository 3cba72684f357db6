# tests/test_san.py
import ipaddress

import pytest
from cryptography import x509

from certsmith.errors import InvalidSanFormat
from certsmith.san import SanEntry, SanKind, format_sans, sans_from_extension

def test_parse_kinds_case_insensitive():
    assert SanEntry.parse("dns:Example.COM") == SanEntry(SanKind.DNS, "Example.COM")
    assert SanEntry.parse("Ip:10.0.0.1") == SanEntry.ip("10.0.0.1")
    assert SanEntry.parse("EMAIL:ops@example.com").kind is SanKind.EMAIL

def test_parse_many_preserves_order_and_trims():
    entries = SanEntry.parse_many(" DNS:a.example , IP:::1,EMAIL:x@y.z ")
    assert [str(e) for e in entries] == ["DNS:a.example", "IP:::1", "EMAIL:x@y.z"]
    assert SanEntry.parse_many("   ") == []

@pytest.mark.parametrize("text", ["URI:http://x", "DNS:", "example.com", "IP:999.1.1.1", ""])
def test_parse_rejects(text):
    with pytest.raises(InvalidSanFormat):
        SanEntry.parse(text)

def test_parse_many_rejects_empty_token():
    with pytest.raises(InvalidSanFormat):
        SanEntry.parse_many("DNS:a.example,,DNS:b.example")

def test_general_name_conversion():
    entries = [SanEntry.dns("a.example"), SanEntry.ip("192.168.1.2"), SanEntry.email("x@y.z")]
    names = [e.to_general_name() for e in entries]
    assert names[1] == x509.IPAddress(ipaddress.ip_address("192.168.1.2"))
    assert [SanEntry.from_general_name(n) for n in names] == entries

    ext = x509.SubjectAlternativeName(names + [x509.UniformResourceIdentifier("https://x")])
    assert sans_from_extension(ext) == entries
    assert format_sans(entries) == "DNS:a.example,IP:192.168.1.2,EMAIL:x@y.z"
    assert SanEntry.parse_many(format_sans(entries)) == entries
