from __future__ import annotations

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

REDACTED_VALUE = "<redacted>"

# Matched case-insensitively against mapping keys at any depth.
SENSITIVE_KEY_SUBSTRINGS = (
    "password",
    "secret",
    "token",
    "private_key",
    "passphrase",
    "connection_string",
)


def is_sensitive_key(key: Any) -> bool:
    return isinstance(key, str) and any(part in key.lower() for part in SENSITIVE_KEY_SUBSTRINGS)


def _model_dict(value: Any) -> Optional[Dict[str, Any]]:
    # azure-mgmt-* models expose as_dict(); plain objects fall back to public attributes.
    for name in ("as_dict", "to_dict"):
        method = getattr(value, name, None)
        if callable(method):
            return method()
    if hasattr(value, "__dict__"):
        return {k: v for k, v in vars(value).items() if not k.startswith("_")}
    return None


def sanitize_for_json(value: Any) -> Any:
    """
    Reduce Azure SDK models and other Python values to JSON-compatible data,
    replacing the value of every sensitive key with REDACTED_VALUE.
    """
    if isinstance(value, Enum):
        return sanitize_for_json(value.value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", "replace")
    if isinstance(value, Mapping):
        return {k: REDACTED_VALUE if is_sensitive_key(k) else sanitize_for_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [sanitize_for_json(v) for v in value]
    try:
        converted = _model_dict(value)
    except Exception:
        return str(value)
    return str(value) if converted is None else sanitize_for_json(converted)


def stable_json_dumps(obj: Any, *, indent: Optional[int] = None) -> str:
    """
    Dump JSON with sorted keys. Compact separators unless indent is given.
    """
    if indent is None:
        return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return json.dumps(obj, sort_keys=True, indent=indent, ensure_ascii=False)
