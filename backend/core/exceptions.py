import logging

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class BookingPlatformError(exceptions.APIException):
    """Base class for errors raised by the booking and payment services."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The request could not be completed."
    default_code = "error"
    kind = "error"

    def __init__(self, detail=None, code=None, field=None):
        super().__init__(detail=detail, code=code)
        self.field = field


class ValidationError(BookingPlatformError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid data."
    kind = "validation_error"


class NotFound(BookingPlatformError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    kind = "not_found"


class Forbidden(BookingPlatformError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not permitted."
    kind = "forbidden"


class Conflict(BookingPlatformError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The space is not available for the selected period."
    kind = "conflict"


class InvalidState(BookingPlatformError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Operation not allowed in the current status."
    kind = "invalid_state"


class UpstreamError(BookingPlatformError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "The payment processor could not be reached."
    kind = "upstream_error"


class Unauthorized(BookingPlatformError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid signature."
    kind = "unauthorized"


class ConfigurationError(BookingPlatformError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Server is not configured for this operation."
    kind = "configuration_error"


_DRF_KINDS = {
    exceptions.ValidationError: "validation_error",
    exceptions.ParseError: "validation_error",
    exceptions.NotAuthenticated: "unauthorized",
    exceptions.AuthenticationFailed: "unauthorized",
    exceptions.PermissionDenied: "forbidden",
    exceptions.NotFound: "not_found",
    exceptions.MethodNotAllowed: "method_not_allowed",
    exceptions.Throttled: "throttled",
}


def _error_kind(exc) -> str:
    kind = getattr(exc, "kind", None)
    if kind:
        return kind
    for exc_class, name in _DRF_KINDS.items():
        if isinstance(exc, exc_class):
            return name
    return "error"


def envelope_exception_handler(exc, context):
    """
    Render every API error as ``{"success": false, "message", "error"}``.

    Field-level validation detail is kept under ``errors`` so clients can still
    highlight the offending inputs.
    """
    if isinstance(exc, Http404):
        exc = exceptions.NotFound()
    elif isinstance(exc, DjangoPermissionDenied):
        exc = exceptions.PermissionDenied()

    response = exception_handler(exc, context)
    if response is None:
        return None

    payload = {"success": False, "error": _error_kind(exc)}
    if isinstance(exc, exceptions.ValidationError):
        payload["message"] = "Invalid data."
        payload["errors"] = response.data
    else:
        detail = getattr(exc, "detail", None)
        payload["message"] = str(detail) if detail is not None else str(exc)
        if getattr(exc, "field", None):
            payload["errors"] = {exc.field: [payload["message"]]}

    if response.status_code >= 500:
        view = context.get("view")
        logger.error("%s failed: %s", type(view).__name__ if view else "request", payload["message"])

    response.data = payload
    return response
