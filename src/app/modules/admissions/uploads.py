"""
Admission file uploads: photo / ID documents and signature images.

Used at intake and when an edit window replaces a signature.
"""

import base64
import binascii
import logging
import mimetypes
from uuid import uuid4

from app.core.config import settings
from app.core.storage import upload_bytes
from app.modules.admissions.exceptions import UploadFailedError, ValidationFailedError
from app.modules.admissions.schemas import UploadedDocument

logger = logging.getLogger(__name__)

DATA_IMAGE_PREFIX = "data:image"

_UPLOAD_FOLDERS = {
    "photo": "admissions/photos",
    "pan": "admissions/pan",
    "aadhaar": "admissions/aadhaar",
}


def is_image_data_url(value: str | None) -> bool:
    return isinstance(value, str) and value.startswith(DATA_IMAGE_PREFIX)


def data_url(document: UploadedDocument) -> str | None:
    if not document.content_type.startswith("image/"):
        return None
    encoded = base64.b64encode(document.content).decode("ascii")
    return f"data:{document.content_type};base64,{encoded}"


def decode_data_url(value: str, label: str) -> tuple[bytes, str]:
    header, _, encoded = value.partition(",")
    content_type = header[len("data:") :].split(";")[0] or "image/png"
    try:
        return base64.b64decode(encoded, validate=True), content_type
    except (binascii.Error, ValueError) as e:
        raise ValidationFailedError(f"{label} signature is not a valid image") from e


async def store_upload(name: str, document: UploadedDocument) -> str:
    """
    Raises:
        ValidationFailedError: If the file is larger than allowed
        UploadFailedError: If storage rejects the file
    """
    if len(document.content) > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes / (1024 * 1024)
        raise ValidationFailedError(f"{name.capitalize()} upload exceeds {limit_mb:g} MB")

    extension = mimetypes.guess_extension(document.content_type) or ""
    key = f"{_UPLOAD_FOLDERS.get(name, 'admissions/files')}/{uuid4()}{extension}"
    try:
        return await upload_bytes(key, document.content, document.content_type)
    except Exception as e:
        logger.error(f"Upload of {name} failed: {e}")
        raise UploadFailedError(name) from e


async def store_signature(role: str, sign_data_url: str) -> str:
    """
    Raises:
        ValidationFailedError: If the data URL cannot be decoded
        UploadFailedError: If storage rejects the image
    """
    content, content_type = decode_data_url(sign_data_url, role.capitalize())
    extension = mimetypes.guess_extension(content_type) or ".png"
    key = f"admissions/signatures/{uuid4()}-{role}{extension}"
    try:
        return await upload_bytes(key, content, content_type)
    except Exception as e:
        logger.error(f"Upload of {role} signature failed: {e}")
        raise UploadFailedError(f"{role} signature") from e
