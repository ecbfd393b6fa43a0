# warpio_gateway/main.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from .api import api_router, terminal_router
from .core.context import context
from .core.sandbox import AccessDenied
from .db import RegistryError
from .utils.config import Settings, settings
from .utils.logger import setup_logger

COPYRIGHT_NOTICE = "Copyright (c) 2026 Monolink Systems"
LICENSE_NOTICE = "Licensed under AGPLv3"


def create_app(config: Optional[Settings] = None) -> FastAPI:
    config = config or settings
    logger = setup_logger("warpio_gateway", level=config.LOG_LEVEL.upper(), log_dir=config.LOG_DIR)
    context.logger = logger
    context.configure(config)

    app = FastAPI(
        title=config.APP_NAME,
        version=config.APP_VERSION,
        docs_url=None if config.ENV == "production" else "/docs",
        redoc_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"Request: {request.method} {request.url.path}")
        response = await call_next(request)
        logger.info(f"Response: {response.status_code} {request.url.path}")
        return response

    @app.exception_handler(AccessDenied)
    async def access_denied_handler(request: Request, exc: AccessDenied):
        return JSONResponse(status_code=403, content={"detail": "Access denied"})

    @app.exception_handler(PermissionError)
    async def permission_error_handler(request: Request, exc: PermissionError):
        logger.warning(f"Permission error on {request.url.path}: {exc}")
        return JSONResponse(status_code=403, content={"detail": "Access denied"})

    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError):
        logger.error(f"Registry failure on {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": "User registry unavailable"})

    app.include_router(api_router)
    app.include_router(terminal_router)

    @app.on_event("startup")
    async def on_startup():
        logger.info(f"{config.APP_NAME} {config.APP_VERSION} startup")
        logger.info(COPYRIGHT_NOTICE)
        logger.info(LICENSE_NOTICE)
        logger.info(f"User registry: {context.users.registry.path}")
        logger.info(f"Terminal command: {config.TERMINAL_COMMAND} {config.TERMINAL_ARGS}")

    @app.on_event("shutdown")
    async def on_shutdown():
        logger.info("Shutdown: tearing down terminal sessions")
        await context.sessions.shutdown()

    return app


app = create_app()
