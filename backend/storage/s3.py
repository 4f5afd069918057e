import mimetypes
import os
import uuid
from typing import Dict, Optional

import boto3
from botocore.config import Config
from django.conf import settings
from django.utils.text import slugify


def _client():
    cfg = Config(signature_version="s3v4")
    return boto3.client(
        "s3",
        region_name=settings.AWS_S3_REGION_NAME,
        endpoint_url=settings.AWS_S3_ENDPOINT_URL,
        config=cfg,
    )


def vehicle_prefix(vehicle_id: int) -> str:
    prefix = (getattr(settings, "S3_UPLOADS_PREFIX", "") or "").strip("/")
    return "/".join(part for part in (prefix, str(vehicle_id)) if part)


def object_key(vehicle_id: int, filename: str) -> str:
    name, ext = os.path.splitext(filename or "")
    safe_name = slugify(name) or "upload"
    ext = ext.lower().lstrip(".")
    combined_name = f"{uuid.uuid4()}-{safe_name}"
    if ext:
        combined_name = f"{combined_name}.{ext}"
    return f"{vehicle_prefix(vehicle_id)}/{combined_name}"


def presign_put(
    key: str,
    *,
    content_type: str,
    size_hint: Optional[int] = None,
) -> Dict:
    max_size = getattr(settings, "S3_MAX_UPLOAD_BYTES", None)
    if size_hint is not None and max_size is not None and size_hint > max_size:
        raise ValueError("Upload exceeds the maximum allowed size.")

    url = _client().generate_presigned_url(
        ClientMethod="put_object",
        Params={
            "Bucket": settings.AWS_STORAGE_BUCKET_NAME,
            "Key": key,
            "ContentType": content_type,
        },
        ExpiresIn=900,
    )
    return {"upload_url": url, "headers": {"Content-Type": content_type}}


def delete_object(key: str) -> None:
    _client().delete_object(Bucket=settings.AWS_STORAGE_BUCKET_NAME, Key=key)


def public_url(key: str) -> str:
    base_url = getattr(settings, "MEDIA_BASE_URL", "") or ""
    if base_url:
        return f"{base_url.rstrip('/')}/{key}"
    endpoint = settings.AWS_S3_ENDPOINT_URL
    bucket = settings.AWS_STORAGE_BUCKET_NAME
    if endpoint:
        return f"{endpoint.rstrip('/')}/{bucket}/{key}"
    return f"https://{bucket}.s3.{settings.AWS_S3_REGION_NAME}.amazonaws.com/{key}"


def guess_content_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"
