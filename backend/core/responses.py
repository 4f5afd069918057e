from __future__ import annotations

from typing import Any

from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


def envelope(data: Any = None, message: str = "Success") -> dict:
    return {"success": True, "message": message, "data": data}


def success_response(
    data: Any = None,
    message: str = "Success",
    status_code: int = status.HTTP_200_OK,
) -> Response:
    return Response(envelope(data, message), status=status_code)


def created_response(data: Any, message: str = "Resource created successfully") -> Response:
    return success_response(data, message, status.HTTP_201_CREATED)


def deleted_response(message: str = "Resource deleted successfully") -> Response:
    return success_response(None, message)


METHOD_ACTIONS = {
    "POST": "create",
    "PUT": "update",
    "PATCH": "partial_update",
    "DELETE": "destroy",
}


def is_envelope(data: Any) -> bool:
    return isinstance(data, dict) and "success" in data and "message" in data


class EnvelopePagination(PageNumberPagination):
    page_size_query_param = "limit"
    max_page_size = 100

    def get_paginated_response(self, data):
        page = self.page
        return Response(
            {
                "success": True,
                "message": "Success",
                "data": data,
                "pagination": {
                    "page": page.number,
                    "limit": page.paginator.per_page,
                    "total": page.paginator.count,
                    "total_pages": page.paginator.num_pages,
                    "has_next": page.has_next(),
                    "has_previous": page.has_previous(),
                },
            }
        )


class EnvelopeResponseMixin:
    """
    Wrap successful ViewSet responses in the ``{success, message, data}`` envelope.

    Responses that are already enveloped (paginated lists, explicit
    ``success_response`` calls) pass through unchanged.
    """

    envelope_messages = {
        "create": "Resource created successfully",
        "update": "Resource updated successfully",
        "partial_update": "Resource updated successfully",
        "destroy": "Resource deleted successfully",
    }

    def finalize_response(self, request, response, *args, **kwargs):
        if (
            isinstance(response, Response)
            and 200 <= response.status_code < 300
            and not is_envelope(response.data)
        ):
            action = getattr(self, "action", None) or METHOD_ACTIONS.get(request.method)
            message = self.envelope_messages.get(action, "Success")
            if response.status_code == status.HTTP_204_NO_CONTENT:
                response.status_code = status.HTTP_200_OK
            response.data = envelope(response.data, message)
        return super().finalize_response(request, response, *args, **kwargs)
