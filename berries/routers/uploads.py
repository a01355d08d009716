"""
File upload endpoint for attachments sent from the chat bar.
"""
from typing import List
import os

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

from berries.config import settings
from berries.routers.auth import current_identity
from berries.services.storage_service import StorageService, storage_service
import logging

logger = logging.getLogger(__name__)


router = APIRouter()


class UploadedFile(BaseModel):
    name: str
    path: str
    type: str


class UploadResponse(BaseModel):
    files: List[UploadedFile]


def get_storage_service() -> StorageService:
    return storage_service


@router.post("/upload", response_model=UploadResponse)
async def upload_files(
    files: List[UploadFile] = File(...),
    identity: str = Depends(current_identity),
    storage: StorageService = Depends(get_storage_service),
):
    """
    Store one or more files on local disk.

    - Every file must have a name, be non-empty and fit the size limit.
    - When allowed_file_extensions is configured, only those types are accepted.
    """
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded.")

    allowed_extensions = settings.allowed_file_extensions_list
    max_size_bytes = settings.max_file_size_mb * 1024 * 1024  # Convert MB to bytes

    stored = []
    for file in files:
        if not file.filename:
            raise HTTPException(status_code=400, detail="Filename is required.")

        file_ext = os.path.splitext(file.filename)[1].lower()
        if allowed_extensions and file_ext not in allowed_extensions:
            raise HTTPException(
                status_code=400,
                detail=f"File type not allowed. Allowed types: {', '.join(allowed_extensions)}"
            )

        contents = await file.read()
        if len(contents) > max_size_bytes:
            raise HTTPException(
                status_code=400,
                detail=f"File size exceeds maximum allowed size of {settings.max_file_size_mb} MB."
            )
        if not contents:
            raise HTTPException(status_code=400, detail="Uploaded file is empty.")

        try:
            saved = storage.save(contents, file.filename, file.content_type)
        except OSError as exc:
            logger.error(f"Error storing upload {file.filename}: {exc}")
            raise HTTPException(status_code=500, detail=f"Error storing upload: {exc}")
        stored.append(UploadedFile(name=saved.name, path=saved.path, type=saved.type))

    logger.info(f"{identity} uploaded {len(stored)} file(s)")
    return UploadResponse(files=stored)
