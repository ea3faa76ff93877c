import logging
import os
import secrets

from fastapi import APIRouter, Depends, File, UploadFile
from starlette.concurrency import run_in_threadpool

from chatsync.config import Settings
from chatsync.exceptions import ValidationFailed
from chatsync.schemas.chat import UploadedFile
from chatsync.utils.dependencies import app_settings, get_current_user


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["uploads"])

ALLOWED_PREFIXES = ("image/", "application/", "text/")
CHUNK_SIZE = 1024 * 1024


def _write_file(path: str, data: bytes) -> None:
    with open(path, "wb") as fh:
        fh.write(data)


@router.post("", response_model=UploadedFile)
async def upload_file(file: UploadFile = File(...), current_user: dict = Depends(get_current_user), settings: Settings = Depends(app_settings)):
    mime_type = file.content_type or "application/octet-stream"
    if not mime_type.startswith(ALLOWED_PREFIXES):
        raise ValidationFailed("File type not allowed")

    data = bytearray()
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        data.extend(chunk)
        if len(data) > settings.max_upload_bytes:
            raise ValidationFailed("File too large")
    if not data:
        raise ValidationFailed("No file uploaded")

    original_name = os.path.basename(file.filename or "file")
    _, ext = os.path.splitext(original_name)
    stored_name = f"{secrets.token_hex(12)}{ext.lower()}"
    os.makedirs(settings.upload_dir, exist_ok=True)
    await run_in_threadpool(_write_file, os.path.join(settings.upload_dir, stored_name), bytes(data))
    logger.info("User %s uploaded %s (%s bytes)", current_user["_id"], stored_name, len(data))

    return UploadedFile(
        file_url=f"/uploads/{stored_name}",
        file_name=original_name,
        file_size=len(data),
        mime_type=mime_type,
    )
