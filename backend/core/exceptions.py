"""Error taxonomy and the DRF exception handler that renders it."""

from __future__ import annotations

import logging
from typing import Any

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError
from django.db.models import ProtectedError
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_INTERNAL_MESSAGE = "Internal server error"


class Conflict(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Resource already exists."
    default_code = "conflict"


class InternalServiceError(Exception):
    """
    Failure of a collaborator (payment provider, database write) that the caller
    cannot fix. Rendered as a 500 with a generic message unless DEBUG is on.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message = GENERIC_INTERNAL_MESSAGE


class ServiceUnavailableError(InternalServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    public_message = "Service temporarily unavailable"


def _django_validation_detail(exc: DjangoValidationError) -> Any:
    if hasattr(exc, "error_dict"):
        return exc.message_dict
    return exc.messages


def _first_message(data: Any) -> str | None:
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        if "detail" in data:
            return _first_message(data["detail"])
        for key in ("non_field_errors", "__all__"):
            if key in data:
                return _first_message(data[key])
        for value in data.values():
            message = _first_message(value)
            if message:
                return message
    if isinstance(data, (list, tuple)):
        for item in data:
            message = _first_message(item)
            if message:
                return message
    return None


def envelope_exception_handler(exc: Exception, context: dict) -> Response | None:
    """Render every handled error as ``{success: false, message, errors}``."""
    if isinstance(exc, DjangoValidationError):
        exc = exceptions.ValidationError(_django_validation_detail(exc))
    elif isinstance(exc, ProtectedError):
        exc = Conflict("Resource is referenced by other records and cannot be deleted.")
    elif isinstance(exc, IntegrityError):
        logger.info("api: integrity error mapped to conflict", exc_info=True)
        exc = Conflict()

    if isinstance(exc, InternalServiceError):
        view = context.get("view")
        logger.error(
            "api: internal service error",
            exc_info=exc,
            extra={"view": view.__class__.__name__ if view else None},
        )
        message = exc.public_message
        if settings.DEBUG:
            message = str(exc) or exc.public_message
        return Response(
            {"success": False, "message": message, "data": None},
            status=exc.status_code,
        )

    response = drf_exception_handler(exc, context)
    if response is None:
        return None

    errors = response.data
    message = _first_message(errors) or "Request failed"
    response.data = {"success": False, "message": str(message), "errors": errors}
    return response
