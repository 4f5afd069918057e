from __future__ import annotations

import re

from django.core.exceptions import ValidationError

FORMATTING_RE = re.compile(r"[\s\-().]+")
COUNTRY_CODE = "254"
INVALID_PHONE_MESSAGE = (
    "Invalid phone number format. Use 07XXXXXXXX, +2547XXXXXXXX or 2547XXXXXXXX."
)


def normalize_phone(raw_phone: str | None) -> str:
    """
    Return the canonical ``254XXXXXXXXX`` form of a Kenyan mobile number.

    Accepted shapes: ``0XXXXXXXXX``, ``+254XXXXXXXXX``, ``254XXXXXXXXX`` and the
    bare nine digit subscriber number (``7XXXXXXXX`` / ``1XXXXXXXX``). Spaces,
    dashes and brackets are ignored.
    """
    value = FORMATTING_RE.sub("", (raw_phone or "").strip())
    if value.startswith("+"):
        value = value[1:]
    if not value.isdigit():
        raise ValidationError(INVALID_PHONE_MESSAGE)

    if value.startswith(COUNTRY_CODE) and len(value) == 12:
        subscriber = value[3:]
    elif value.startswith("0") and len(value) == 10:
        subscriber = value[1:]
    elif len(value) == 9:
        subscriber = value
    else:
        raise ValidationError(INVALID_PHONE_MESSAGE)

    if subscriber[0] not in ("7", "1"):
        raise ValidationError(INVALID_PHONE_MESSAGE)
    return f"{COUNTRY_CODE}{subscriber}"
