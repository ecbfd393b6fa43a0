# warpio_gateway/core/tokens.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import Callable, Optional

from pydantic import ValidationError

from ..models.user import SessionClaims
from ..utils.logger import get_logger

logger = get_logger("warpio_gateway.tokens")


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(raw: str) -> bytes:
    padding = "=" * ((4 - (len(raw) % 4)) % 4)
    return base64.urlsafe_b64decode(raw + padding)


def resolve_session_secret(configured: str) -> bytes:
    if configured:
        return configured.encode("utf-8")
    # Fallback keeps app operable, but all sessions are invalidated after restart.
    logger.warning("WARPIO_SESSION_SECRET is not set; using a random per-process secret")
    return secrets.token_urlsafe(32).encode("utf-8")


class SessionTokens:
    """Issues and verifies self-contained HMAC-SHA256 signed session tokens."""

    def __init__(self, secret: bytes, ttl_seconds: int = 24 * 60 * 60, clock: Callable[[], float] = time.time):
        self.secret = secret
        self.ttl_seconds = max(1, int(ttl_seconds))
        self.clock = clock

    def _sign(self, payload_raw: bytes) -> bytes:
        return hmac.new(self.secret, payload_raw, hashlib.sha256).digest()

    def issue(self, claims: SessionClaims) -> str:
        payload = {
            "uid": claims.user_id,
            "u": claims.username,
            "home": claims.working_directory,
            "key": claims.api_key,
            "exp": int(self.clock()) + self.ttl_seconds,
            "n": secrets.token_hex(8),
        }
        payload_raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return f"{_b64url_encode(payload_raw)}.{_b64url_encode(self._sign(payload_raw))}"

    def verify(self, token: Optional[str]) -> Optional[SessionClaims]:
        if not token or not isinstance(token, str) or "." not in token:
            return None
        try:
            payload_b64, sig_b64 = token.split(".", 1)
            payload_raw = _b64url_decode(payload_b64)
            sig_raw = _b64url_decode(sig_b64)
        except (ValueError, TypeError):
            return None

        if not hmac.compare_digest(sig_raw, self._sign(payload_raw)):
            return None

        try:
            payload = json.loads(payload_raw.decode("utf-8"))
            exp = int(payload.get("exp") or 0)
            claims = SessionClaims(
                user_id=payload["uid"],
                username=payload["u"],
                working_directory=payload["home"],
                api_key=payload.get("key"),
            )
        except (ValueError, TypeError, KeyError, AttributeError, ValidationError):
            return None
        if exp <= int(self.clock()):
            return None
        return claims
