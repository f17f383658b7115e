"""
Signature image ingestion.

Two shapes are accepted: a multipart file (written under UPLOAD_DIR) and an
inline data URL (stored as-is on the record). Both are limited to PNG/JPEG.
"""

import base64
import binascii
import logging
import re
from pathlib import Path
from typing import Tuple

from errors import ValidationFailed
from settings import get_settings

logger = logging.getLogger(__name__)

ALLOWED_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
}
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg"}

DATA_URL_RE = re.compile(r"^data:(?P<mime>image/[a-zA-Z0-9.+-]+);base64,(?P<payload>.+)$", re.DOTALL)


def _reject(field: str, message: str) -> ValidationFailed:
    return ValidationFailed(message, details=[{"field": field, "message": message}])


def check_content_type(content_type: str, field: str = "signature") -> str:
    mime = (content_type or "").lower()
    if mime not in ALLOWED_TYPES:
        raise _reject(field, "Unsupported file format. Use PNG, JPG or JPEG.")
    return mime


def validate_data_url(data_url: str) -> Tuple[str, bytes]:
    """Validate an inline signature and return its MIME type and decoded bytes."""
    settings = get_settings()
    if len(data_url) > settings.max_signature_data_url_chars:
        raise _reject("signature", "Image too large")

    match = DATA_URL_RE.match(data_url)
    if not match:
        raise _reject("signature", "Invalid image format")
    mime = check_content_type(match.group("mime"))
    try:
        raw = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError):
        raise _reject("signature", "Image payload is not valid base64")
    if not raw:
        raise _reject("signature", "Empty image")
    return mime, raw


def store_signature_file(user_id: str, content_type: str, filename: str, data: bytes) -> str:
    """Write an uploaded signature to disk and return its path."""
    settings = get_settings()
    mime = check_content_type(content_type)
    if not data:
        raise _reject("signature", "Empty file")
    if len(data) > settings.max_signature_bytes:
        limit_mb = settings.max_signature_bytes // (1024 * 1024)
        raise _reject("signature", f"File too large. Maximum size: {limit_mb}MB")

    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        ext = ALLOWED_TYPES[mime]

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    for stale in upload_dir.glob(f"user_{user_id}_signature.*"):
        stale.unlink()
    target = upload_dir / f"user_{user_id}_signature{ext}"
    target.write_bytes(data)
    logger.debug("Wrote %d bytes to %s", len(data), target)
    return str(target)
