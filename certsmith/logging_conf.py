import json
import logging
import os
import re
from typing import Any

from .keys import PRIVATE_KEY_LABELS
from .settings import Settings

KEY_PLACEHOLDER = "[REDACTED-PRIVATE-KEY]"

# CA password, per-key passphrases and the key_password tool argument
_SECRET_KV = re.compile(r"((?:ca_|key_)?pass(?:word|phrase)?)\s*[=:]\s*([^\s,;]+)", re.IGNORECASE)

_LABEL = "(?:" + "|".join(re.escape(label) for label in PRIVATE_KEY_LABELS) + ")"
_PEM_KEY = re.compile(rf"-----BEGIN {_LABEL}-----.*?-----END {_LABEL}-----", re.DOTALL)


def redact(text: str) -> str:
    """Mask private key PEM blocks and password assignments in ``text``."""
    text = _PEM_KEY.sub(KEY_PLACEHOLDER, text)
    return _SECRET_KV.sub(lambda m: f"{m.group(1)}=[REDACTED]", text)


class _Redact(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)
        return True


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr in ("identifier", "step"):
            if hasattr(record, attr):
                payload[attr] = getattr(record, attr)
        if record.exc_info:
            payload["exc_info"] = redact(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(settings: Settings, json_mode: bool | None = None) -> None:
    root = logging.getLogger()
    if getattr(root, "_certsmith_configured", False):
        return

    level = getattr(logging, settings.LOG_LEVEL, logging.INFO)
    root.setLevel(level)

    if json_mode is None:
        json_mode = os.getenv("CERTSMITH_LOG_JSON", "false").lower() in ("1", "true", "yes")

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.addFilter(_Redact())
    handler.setFormatter(_JsonFormatter() if json_mode else logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)

    setattr(root, "_certsmith_configured", True)
