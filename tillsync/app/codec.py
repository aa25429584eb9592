"""
Persistence codec for values kept in local durable storage.

This is content hiding, NOT encryption: anyone with the token can reverse it.
It only keeps business data from being readable at a glance in the storage
file. Do not describe or rely on it as a confidentiality control.

Token shapes accepted by `decode`:
- `TSY1::<reversed base64 of the URI-escaped JSON>` (written by `encode`)
- plain JSON (legacy entries written before the prefix existed)
- anything else -> fallback
"""

import base64
import json
from typing import Any, Optional, TypeVar
from urllib.parse import quote, unquote

from .logs import json_log

TOKEN_PREFIX = "TSY1::"

# Same unreserved set as a URI component escape.
_SAFE_CHARS = "-_.!~*'()"

T = TypeVar("T")


def encode(value: Any) -> str:
    try:
        text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        escaped = quote(text, safe=_SAFE_CHARS)
        b64 = base64.b64encode(escaped.encode("ascii")).decode("ascii")
        return TOKEN_PREFIX + b64[::-1]
    except Exception as ex:
        json_log("warning", "codec.encode_failed", error=str(ex), value_type=type(value).__name__)
        return ""


def decode(token: Optional[str], fallback: T) -> Any:
    if not token or not isinstance(token, str):
        return fallback
    if not token.startswith(TOKEN_PREFIX):
        try:
            return json.loads(token)
        except Exception:
            return fallback
    try:
        b64 = token[len(TOKEN_PREFIX):][::-1]
        escaped = base64.b64decode(b64.encode("ascii"), validate=True).decode("ascii")
        return json.loads(unquote(escaped))
    except Exception:
        return fallback
