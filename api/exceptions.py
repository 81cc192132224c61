from __future__ import annotations

import logging

from django.http import Http404
from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)

ValidationError = exceptions.ValidationError


class ConflictError(exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The request conflicts with the current state of the resource."
    default_code = "conflict"


class ForbiddenError(exceptions.PermissionDenied):
    default_detail = "You do not have permission to perform this action."
    default_code = "forbidden"


class NotFoundError(exceptions.NotFound):
    default_detail = "Resource not found."
    default_code = "not_found"


class DependencyError(exceptions.APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "A backing service failed."
    default_code = "dependency_error"


_ERROR_CODES: list[tuple[type[Exception], str]] = [
    (ConflictError, "conflict"),
    (ForbiddenError, "forbidden"),
    (NotFoundError, "not_found"),
    (DependencyError, "dependency_error"),
    (exceptions.ValidationError, "validation_error"),
    (exceptions.ParseError, "validation_error"),
    (exceptions.NotAuthenticated, "not_authenticated"),
    (exceptions.AuthenticationFailed, "not_authenticated"),
    (exceptions.PermissionDenied, "forbidden"),
    (exceptions.NotFound, "not_found"),
    (Http404, "not_found"),
    (DjangoPermissionDenied, "forbidden"),
    (exceptions.MethodNotAllowed, "method_not_allowed"),
    (exceptions.Throttled, "throttled"),
]


def error_code_for(exc: Exception) -> str:
    for exc_type, code in _ERROR_CODES:
        if isinstance(exc, exc_type):
            return code
    return "error"


def _first_message(detail) -> str:
    if isinstance(detail, dict):
        if "detail" in detail:
            return _first_message(detail["detail"])
        for key, value in detail.items():
            message = _first_message(value)
            if key == "non_field_errors":
                return message
            return f"{key}: {message}"
        return ""
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else ""
    return str(detail)


def envelope_exception_handler(exc, context):
    """Render every API error as ``{success: false, error, message, errors?}``."""
    response = exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception(
            "Unhandled error in %s", type(view).__name__ if view else "view", exc_info=exc)
        return Response(
            {
                "success": False,
                "error": "internal_error",
                "message": "An unexpected error occurred.",
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    detail = response.data
    payload = {
        "success": False,
        "error": error_code_for(exc),
        "message": _first_message(detail),
    }
    if isinstance(exc, exceptions.ValidationError):
        payload["errors"] = detail
    response.data = payload
    return response
