# warpio_gateway/__main__.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import os

import uvicorn

from .utils.config import settings


def main():
    host = os.getenv("WARPIO_SERVER_HOST", settings.SERVER_HOST)
    port = int(os.getenv("WARPIO_SERVER_PORT", str(settings.SERVER_PORT)))
    reload_enabled = os.getenv("WARPIO_RELOAD", "false").lower() == "true"
    # Terminal sessions live in process memory: one worker only.
    uvicorn.run("warpio_gateway.main:app",
                host=host,
                port=port,
                reload=reload_enabled,
                workers=1,
                log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
