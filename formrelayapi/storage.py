import logging
import re
import secrets
import string
import time
import unicodedata
from datetime import timedelta
from typing import List, Optional
from urllib.parse import parse_qs, urlparse

from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error

from formrelayapi.config import config

logger = logging.getLogger(__name__)

UPLOAD_FOLDER = "form-attachments"
UPLOAD_URL_EXPIRES = timedelta(minutes=15)
MAX_OBJECT_PATH = 1024
MAX_NAME_LENGTH = 50

_BASE36 = string.digits + string.ascii_lowercase


class StorageConfigError(Exception):
    pass


class StorageError(Exception):
    pass


def sanitize_filename(filename: str) -> str:
    """ASCII-safe object name: stem reduced to word characters, extension kept."""
    dot = filename.rfind(".")
    stem, ext = (filename[:dot], filename[dot:]) if dot != -1 else (filename, "")

    stem = unicodedata.normalize("NFD", stem)
    stem = "".join(c for c in stem if not unicodedata.combining(c))
    stem = re.sub(r"[^A-Za-z0-9_\-]", "_", stem)
    stem = re.sub(r"_+", "_", stem).strip("_")[:MAX_NAME_LENGTH]

    ext = re.sub(r"[^A-Za-z0-9_.]", "", ext).lower()
    return f"{stem or 'file'}{ext}"


def random_token(length: int = 11) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def build_object_path(sanitized_name: str) -> str:
    return f"{UPLOAD_FOLDER}/{int(time.time() * 1000)}_{random_token()}_{sanitized_name}"


def get_minio_client() -> Minio:
    if not (config.MINIO_ROOT_USER and config.MINIO_ROOT_PASSWORD):
        raise StorageConfigError("Object storage credentials are not configured")
    return Minio(
        endpoint=config.MINIO_ENDPOINT,
        access_key=config.MINIO_ROOT_USER,
        secret_key=config.MINIO_ROOT_PASSWORD,
        secure=config.MINIO_SECURE,
    )


def create_signed_upload_url(path: str) -> dict:
    client = get_minio_client()
    try:
        url = client.presigned_put_object(config.MINIO_BUCKET, path, expires=UPLOAD_URL_EXPIRES)
    except S3Error as e:
        raise StorageError(str(e)) from e
    signature = parse_qs(urlparse(url).query).get("X-Amz-Signature", [""])[0]
    return {"signedUrl": url, "path": path, "token": signature}


def download_file(path: str) -> bytes:
    client = get_minio_client()
    response = client.get_object(config.MINIO_BUCKET, path)
    try:
        return response.read()
    finally:
        response.close()
        response.release_conn()


def remove_files(paths: List[str]) -> List[str]:
    """Remove objects; returns the paths that could not be deleted."""
    client = get_minio_client()
    errors = client.remove_objects(config.MINIO_BUCKET, [DeleteObject(p) for p in paths])
    failed = []
    for error in errors:
        logger.error(f"Failed to delete {error.name}: {error.message}")
        failed.append(error.name)
    return failed


def ensure_bucket(client: Optional[Minio] = None) -> None:
    client = client or get_minio_client()
    bucket = config.MINIO_BUCKET
    if not client.bucket_exists(bucket):
        client.make_bucket(bucket)
    logger.info(f"MinIO bucket '{bucket}' is ready.")
