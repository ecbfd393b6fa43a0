# warpio_gateway/api/system.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
from datetime import datetime, timezone

from fastapi import APIRouter

from ..core.context import context

router = APIRouter(tags=["System"])


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": context.config.APP_VERSION,
        "type": "terminal-integrated",
        "sessions": len(context.sessions) if context.sessions is not None else 0,
    }
