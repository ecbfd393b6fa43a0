# warpio_gateway/api/files.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from ..core.context import context
from ..models.user import SessionClaims
from ..services.file_service import SandboxFileService, UploadTooLargeError
from .security import require_session

router = APIRouter(prefix="/files", tags=["Files"])


class FileWrite(BaseModel):
    path: str = Field(..., min_length=1)
    content: str


def _files_for(claims: SessionClaims) -> SandboxFileService:
    return SandboxFileService(claims.working_directory, max_upload_bytes=context.config.UPLOAD_MAX_BYTES)


@router.get("/ls")
async def list_directory(path: str = Query("."), claims: SessionClaims = Depends(require_session)):
    try:
        return await _files_for(claims).list_dir(path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Directory not found")
    except NotADirectoryError:
        raise HTTPException(status_code=400, detail="Path is not a directory")


@router.get("/read")
async def read_file(path: str = Query(..., min_length=1), claims: SessionClaims = Depends(require_session)):
    try:
        return await _files_for(claims).read_file(path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    except IsADirectoryError:
        raise HTTPException(status_code=400, detail="Path is a directory, not a file")


@router.post("/write")
async def write_file(body: FileWrite, claims: SessionClaims = Depends(require_session)):
    try:
        result = await _files_for(claims).write_file(body.path, body.content)
    except IsADirectoryError:
        raise HTTPException(status_code=400, detail="Path is a directory, not a file")
    return {"success": True, **result}


@router.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    path: Optional[str] = Form(None),
    claims: SessionClaims = Depends(require_session),
):
    target = path or file.filename
    if not target:
        raise HTTPException(status_code=400, detail="No target path for upload")
    try:
        result = await _files_for(claims).save_upload(target, file.file)
    except UploadTooLargeError:
        raise HTTPException(status_code=413, detail="Uploaded file is too large")
    except IsADirectoryError:
        raise HTTPException(status_code=400, detail="Path is a directory, not a file")
    finally:
        await file.close()
    return {"success": True, **result}


@router.delete("/delete")
async def delete_path(path: str = Query(..., min_length=1), claims: SessionClaims = Depends(require_session)):
    try:
        result = await _files_for(claims).delete(path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    return {"success": True, **result}
