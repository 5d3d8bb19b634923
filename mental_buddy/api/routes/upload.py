"""Attachment upload route.

POST /api/upload accepts one multipart `file`, checks type and size, and
stores it under UPLOAD_DIR with a random name. Chats never reference
uploaded files yet; the controller still rejects attachments.
"""
import logging
from pathlib import Path
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, File, UploadFile, status
from fastapi.responses import JSONResponse

from mental_buddy.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["upload"])

ALLOWED_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/pdf",
    "text/plain",
    "text/markdown",
    "text/csv",
)


def _error(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/upload")
async def upload_file(file: Optional[UploadFile] = File(default=None)):
    """
    Validate and store an attachment.

    Returns:
        {"success": true, "filePath": "/uploads/<name>", "fileName": <original name>}
        or {"error": str} with 400 for invalid input, 500 for storage failures
    """
    if file is None or not file.filename:
        return _error("No file provided.")

    if file.content_type not in ALLOWED_TYPES:
        return _error(f"Invalid file type: {file.content_type}")

    max_bytes = settings.UPLOAD_MAX_BYTES
    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        return _error(f"File size exceeds limit ({max_bytes // (1024 * 1024)}MB)")

    stored_name = f"{uuid4()}{Path(file.filename).suffix}"
    try:
        upload_dir = Path(settings.UPLOAD_DIR)
        upload_dir.mkdir(parents=True, exist_ok=True)
        (upload_dir / stored_name).write_bytes(data)
    except OSError as e:
        logger.error(f"Upload storage failed: {str(e)}")
        return _error("Server filesystem error during upload.", status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info(f"File uploaded: name={file.filename}, stored={stored_name}, bytes={len(data)}")
    return {"success": True, "filePath": f"/uploads/{stored_name}", "fileName": file.filename}
