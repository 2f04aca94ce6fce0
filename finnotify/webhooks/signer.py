"""Webhook secrets, canonical envelopes and HMAC-SHA256 signatures."""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from datetime import date, datetime
from enum import Enum
from typing import Any


def generate_secret() -> str:
    """Return a new 32-byte hex secret from the OS CSPRNG."""
    return secrets.token_hex(32)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(payload: Any) -> bytes:
    """Serialize a payload to the exact bytes that are signed and sent."""
    return json.dumps(
        payload,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")


def build_envelope(event: str, created_at: datetime, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "event": event,
        "created_at": created_at.isoformat().replace("+00:00", "Z"),
        "data": data,
    }


def sign(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed by ``secret``."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify(body: bytes, signature: str, secret: str) -> bool:
    """Validate a received signature against the raw request body.

    Returns False if no secret is configured (rejects unauthenticated requests).
    """
    if not secret:
        return False
    if not signature:
        return False
    return hmac.compare_digest(sign(body, secret).encode(), signature.encode())
