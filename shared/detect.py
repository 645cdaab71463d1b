# shared/detect.py
from __future__ import annotations

from pathlib import PurePath
from typing import Optional

from shared.errors import ValidationError

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

ALLOWED_MIMETYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
}

_EXT_TO_MIME = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".txt": "text/plain",
}


def guess_mimetype(name: str) -> Optional[str]:
    return _EXT_TO_MIME.get(PurePath(name).suffix.lower())


def validate_upload(name: str, size: int, mimetype: Optional[str] = None,
                    max_bytes: int = MAX_UPLOAD_BYTES) -> str:
    """
    Check an incoming blob by existence, size and MIME type only.
    Returns the effective MIME type; raises ValidationError otherwise.
    """
    if not name:
        raise ValidationError("No file uploaded.")
    if size <= 0:
        raise ValidationError("Uploaded file is empty.")
    mt = mimetype or guess_mimetype(name)
    if mt not in ALLOWED_MIMETYPES:
        raise ValidationError("Invalid file type. Only PDF, Word, and TXT files are allowed.")
    if size > max_bytes:
        raise ValidationError(f"File size exceeds {max_bytes // (1024 * 1024)}MB.")
    return mt
