from __future__ import annotations

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.serializers import as_serializer_error
from rest_framework.views import exception_handler

from pulse_app.surveys.exceptions import (
    AccessDenied,
    Conflict,
    EmailDeliveryError,
    InvalidTransition,
    InvitationMismatch,
    NotFound,
)

logger = logging.getLogger(__name__)


class ConflictError(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The resource was changed by another request."
    default_code = "conflict"


class DependencyFailure(exceptions.APIException):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "A downstream service failed."
    default_code = "dependency_failure"


def pulse_exception_handler(exc, context):
    """Map survey core errors onto HTTP responses.

    Anything not listed here goes to DRF's default handler; unknown
    exceptions still propagate to Django as a 500.
    """
    if isinstance(exc, InvalidTransition):
        return Response(
            {"detail": str(exc), "from": exc.from_status, "to": exc.to_status},
            status=status.HTTP_409_CONFLICT,
        )

    if isinstance(exc, DjangoValidationError):
        exc = exceptions.ValidationError(detail=as_serializer_error(exc))
    elif isinstance(exc, AccessDenied):
        logger.info(f"Request denied: {exc.reason}")
        exc = exceptions.PermissionDenied()
    elif isinstance(exc, (NotFound, InvitationMismatch)):
        exc = exceptions.NotFound()
    elif isinstance(exc, Conflict):
        exc = ConflictError(detail=str(exc) or None)
    elif isinstance(exc, EmailDeliveryError):
        exc = DependencyFailure(detail=str(exc))

    return exception_handler(exc, context)
