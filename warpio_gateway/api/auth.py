# warpio_gateway/api/auth.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from ..core.context import context
from ..models.user import LoginRequest, SessionClaims, UserCreate
from ..services.user_service import DuplicateUsernameError, HomeDirectoryError, SetupCompletedError
from ..utils.logger import get_logger
from .security import extract_token, require_session

router = APIRouter(prefix="/auth", tags=["Auth"])
logger = get_logger("warpio_gateway.auth")


def _set_auth_cookie(response: Response, token: str):
    response.set_cookie(
        context.config.SESSION_COOKIE,
        token,
        max_age=context.config.SESSION_TTL_SECONDS,
        httponly=True,
        secure=context.config.COOKIE_SECURE,
        samesite="lax",
    )


@router.post("/login")
async def login(body: LoginRequest, request: Request, response: Response):
    claims = await asyncio.to_thread(context.users.authenticate, body.username, body.password)
    if not claims:
        logger.warning(f"Failed login for {body.username!r}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = context.tokens.issue(claims)
    session = request.scope.get("session")
    if isinstance(session, dict):
        session["token"] = token
    _set_auth_cookie(response, token)
    logger.info(f"User logged in: {claims.username}")
    return {"success": True, "token": token, "user": claims.public()}


@router.post("/logout")
async def logout(request: Request, response: Response):
    session = request.scope.get("session")
    if isinstance(session, dict):
        session.pop("token", None)
    response.delete_cookie(context.config.SESSION_COOKIE)
    return {"success": True}


@router.get("/session")
async def current_session(claims: SessionClaims = Depends(require_session)):
    return {"user": claims.public()}


@router.post("/validate")
async def validate(request: Request):
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")
    claims = context.tokens.verify(token)
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return {"valid": True, "user": claims.public()}


@router.post("/users", status_code=201)
async def create_user(body: UserCreate, claims: SessionClaims = Depends(require_session)):
    try:
        user = await asyncio.to_thread(context.users.create_user, body)
    except DuplicateUsernameError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HomeDirectoryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(f"User {user.username} created by {claims.username}")
    return {"user": user.model_dump(by_alias=True)}


@router.get("/users")
async def list_users(_: SessionClaims = Depends(require_session)):
    users = await asyncio.to_thread(context.users.list_users)
    return {"users": [u.model_dump(by_alias=True) for u in users]}


@router.get("/setup-status")
async def setup_status():
    has_users = await asyncio.to_thread(context.users.has_any_user)
    return {"hasUsers": has_users, "needsSetup": not has_users}


@router.post("/setup", status_code=201)
async def setup(body: UserCreate):
    try:
        user = await asyncio.to_thread(context.users.create_first_user, body)
    except SetupCompletedError:
        raise HTTPException(status_code=409, detail="Setup already completed")
    except HomeDirectoryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(f"First user created via setup: {user.username}")
    return {
        "success": True,
        "message": "First user created successfully",
        "user": user.model_dump(by_alias=True),
    }
