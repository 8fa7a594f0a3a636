"""
Blob Storage

Stores uploaded documents and generated PDFs and returns a public URL.

Backends (settings.storage_backend):
- "s3": S3 or any S3-compatible endpoint via boto3, with retry and backoff
- "local": files written under settings.local_storage_dir and served by the
  API at /files (development)
"""

import asyncio
import logging
import time
from functools import wraps
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings

logger = logging.getLogger(__name__)

LOCAL_FILES_ROUTE = "/files"


class StorageError(Exception):
    """Raised when an object could not be stored."""


def retry_with_backoff(max_retries: int = 3, base_delay: float = 0.5, max_delay: float = 8.0):
    """
    Retry a blocking storage call with exponential backoff.

    Only transport and service errors are retried.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_exception: Exception | None = None
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except (ClientError, BotoCoreError, ConnectionError, TimeoutError) as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        delay = min(base_delay * (2**attempt), max_delay)
                        logger.warning(
                            f"Storage attempt {attempt + 1}/{max_retries} failed: {e}. "
                            f"Retrying in {delay:.1f}s"
                        )
                        time.sleep(delay)
            logger.error(f"Storage call failed after {max_retries} attempts: {last_exception}")
            raise StorageError(str(last_exception)) from last_exception

        return wrapper

    return decorator


_s3_client = None


def _get_s3_client():
    global _s3_client
    if _s3_client is None:
        kwargs = {
            "region_name": settings.s3_region,
            "config": Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        }
        if settings.s3_endpoint_url:
            kwargs["endpoint_url"] = settings.s3_endpoint_url
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            kwargs["aws_access_key_id"] = settings.aws_access_key_id
            kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
        _s3_client = boto3.client("s3", **kwargs)
    return _s3_client


def _s3_public_url(key: str) -> str:
    if settings.s3_public_base_url:
        return f"{settings.s3_public_base_url.rstrip('/')}/{key}"
    if settings.s3_endpoint_url:
        return f"{settings.s3_endpoint_url.rstrip('/')}/{settings.s3_bucket}/{key}"
    return f"https://{settings.s3_bucket}.s3.{settings.s3_region}.amazonaws.com/{key}"


@retry_with_backoff()
def _put_s3(key: str, content: bytes, content_type: str) -> str:
    _get_s3_client().put_object(
        Bucket=settings.s3_bucket,
        Key=key,
        Body=content,
        ContentType=content_type,
    )
    return _s3_public_url(key)


def _put_local(key: str, content: bytes) -> str:
    path = Path(settings.local_storage_dir) / key
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    except OSError as e:
        raise StorageError(str(e)) from e
    return f"{settings.public_base_url.rstrip('/')}{LOCAL_FILES_ROUTE}/{key}"


async def upload_bytes(key: str, content: bytes, content_type: str) -> str:
    """
    Store an object and return its public URL.

    Args:
        key: Object key, e.g. "admissions/pdf/<id>-student.pdf"
        content: Raw bytes
        content_type: MIME type

    Returns:
        Public URL of the stored object

    Raises:
        StorageError: If the object could not be stored
    """
    if settings.storage_backend == "s3":
        url = await asyncio.to_thread(_put_s3, key, content, content_type)
    else:
        url = await asyncio.to_thread(_put_local, key, content)

    logger.info(f"Stored {key} ({len(content)} bytes)")
    return url
