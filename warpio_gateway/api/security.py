# warpio_gateway/api/security.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
from typing import Optional

from fastapi import HTTPException, Request
from starlette.requests import HTTPConnection

from ..core.context import context
from ..models.user import SessionClaims


def extract_token(conn: HTTPConnection) -> Optional[str]:
    """Bearer header first, then an established server-side session, then the cookie."""
    header = conn.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        if token:
            return token
    session = conn.scope.get("session") or {}
    token = session.get("token") if isinstance(session, dict) else None
    if token:
        return token
    return conn.cookies.get(context.config.SESSION_COOKIE) or None


def require_session(request: Request) -> SessionClaims:
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")
    claims = context.tokens.verify(token)
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    request.state.principal = claims
    return claims
