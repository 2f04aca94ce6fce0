"""Owner tokens for the realtime socket and user routes."""

from __future__ import annotations

import hmac
import time
from typing import Any

import jwt

from finnotify.utils.logging import get_logger

log = get_logger(__name__)

ALGORITHM = "HS256"
DEFAULT_TTL = 86400


def issue_token(user_id: int, secret: str, ttl: int = DEFAULT_TTL) -> str:
    """Create a signed access token for ``user_id``."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "type": "access",
        "iat": now,
        "exp": now + ttl,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str) -> int | None:
    """Return the owner id for a valid, unexpired token, else None.

    Returns None if no secret is configured (rejects unauthenticated requests).
    """
    if not secret or not token:
        return None
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        log.debug("token_expired")
        return None
    except jwt.InvalidTokenError as exc:
        log.debug("token_invalid", error=str(exc))
        return None

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        return None
    return int(subject)


def validate_admin_token(provided: str, configured: str) -> bool:
    """Constant-time comparison of the operator token."""
    if not configured:
        return False
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), configured.encode())
