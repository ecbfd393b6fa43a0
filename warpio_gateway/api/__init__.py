from fastapi import APIRouter
from .system import router as system_router
from .auth import router as auth_router
from .files import router as files_router
from .terminal import router as terminal_router

api_router = APIRouter(prefix="/api")

# Routers for public API endpoints
api_router.include_router(system_router)
api_router.include_router(auth_router)
api_router.include_router(files_router)
