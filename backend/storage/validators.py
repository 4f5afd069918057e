from __future__ import annotations

from typing import Optional

from django.conf import settings


def is_image_content_type(content_type: str) -> bool:
    return (content_type or "").lower().startswith("image/")


def coerce_int(value) -> Optional[int]:
    if value in (None, "", False):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def validate_image_upload(*, content_type: str, size) -> Optional[str]:
    """Return an error message for an unacceptable upload, or None."""
    allowed = [value.lower() for value in getattr(settings, "S3_ALLOWED_IMAGE_TYPES", [])]
    if not is_image_content_type(content_type) or (
        allowed and content_type.lower() not in allowed
    ):
        return f"Unsupported content type: {content_type or 'unknown'}."

    size_int = coerce_int(size)
    if size_int is None:
        return "size must be an integer."
    if size_int <= 0:
        return "size must be greater than zero."
    max_bytes = getattr(settings, "S3_MAX_UPLOAD_BYTES", None)
    if max_bytes and size_int > max_bytes:
        return f"File too large. Max allowed is {max_bytes} bytes."
    return None
