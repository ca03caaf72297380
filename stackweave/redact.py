from __future__ import annotations

import re
from typing import Any

TOKENISH = re.compile(r"(?i)(secret_?string|token|password|apikey|api_key)")
HEX_LONG = re.compile(r"\b[0-9a-f]{32,}\b", re.I)

REDACTED = "[REDACTED]"


def redact_string(s: str) -> str:
    if TOKENISH.search(s) or HEX_LONG.search(s):
        return REDACTED
    return s


def redact_value(value: Any, key: str = "") -> Any:
    """Redact values whose key looks sensitive, recursing into dicts and lists."""
    if key and TOKENISH.search(key):
        return REDACTED
    if isinstance(value, dict):
        return {k: redact_value(v, str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    if isinstance(value, str) and HEX_LONG.search(value):
        return REDACTED
    return value
