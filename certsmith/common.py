import datetime as dt
from dataclasses import dataclass
from typing import Literal

def colon_hex(digest: bytes) -> str:
    return ":".join(f"{b:02X}" for b in digest)

def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)

def as_utc(d: dt.datetime) -> dt.datetime:
    if d.tzinfo is None:
        return d.replace(tzinfo=dt.timezone.utc)
    return d.astimezone(dt.timezone.utc)

def iso_utc(d: dt.datetime) -> str:
    return as_utc(d).isoformat().replace("+00:00", "Z")

def days_until(ts: dt.datetime) -> int:
    delta = as_utc(ts) - utcnow()
    return int(delta.total_seconds() // 86400)

Severity = Literal["info", "warn", "error"]

@dataclass
class Warn:
    code: str
    message: str
    severity: Severity = "warn"

    def as_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "severity": self.severity}
