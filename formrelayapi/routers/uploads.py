import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from formrelayapi.storage import (
    MAX_OBJECT_PATH,
    StorageConfigError,
    build_object_path,
    create_signed_upload_url,
    sanitize_filename,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class UploadUrlIn(BaseModel):
    fileName: Optional[str] = None
    fileType: Optional[str] = None


@router.post("/upload-url", status_code=200)
async def create_upload_url(body: UploadUrlIn):
    if not body.fileName or not body.fileType:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="fileName and fileType are required",
        )

    sanitized = sanitize_filename(body.fileName)
    path = build_object_path(sanitized)
    if len(path) > MAX_OBJECT_PATH:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File path too long")

    try:
        signed = await run_in_threadpool(create_signed_upload_url, path)
    except StorageConfigError as e:
        logger.error(f"Storage is not configured: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        )
    except Exception as e:
        logger.error(f"Failed to create upload URL for {path}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create upload URL",
        )

    logger.debug(f"Upload URL created for {body.fileName!r} as {path}")
    return {
        "uploadUrl": signed["signedUrl"],
        "path": signed["path"],
        "token": signed["token"],
        "originalFileName": body.fileName,
        "sanitizedFileName": sanitized,
    }
