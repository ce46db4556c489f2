"""Error kinds raised by the survey core.

Validation problems use Django's ``ValidationError`` directly; authorization
failures subclass ``PermissionDenied`` so Django and DRF already know how to
treat them. Everything else derives from ``PulseError``.
"""

from __future__ import annotations

from django.core.exceptions import ObjectDoesNotExist, PermissionDenied

GENERIC_DENIAL_MESSAGE = "You do not have permission to perform this action."


class PulseError(Exception):
    """Base class for survey core errors that are not validation/authz errors."""


class NotFound(ObjectDoesNotExist):
    pass


class SurveyNotFound(NotFound):
    pass


class InvitationNotFound(NotFound):
    pass


class TenantNotFound(NotFound):
    pass


class AccessDenied(PermissionDenied):
    """Authorization failure.

    ``reason`` tells callers (and logs) why access was refused; the message
    itself never does.
    """

    TENANT_NOT_FOUND = "tenant_not_found"
    NOT_ASSIGNED = "not_assigned"
    NOT_AUTHORIZED = "not_authorized"

    def __init__(self, reason: str = NOT_AUTHORIZED):
        self.reason = reason
        super().__init__(GENERIC_DENIAL_MESSAGE)


class InvalidTransition(PulseError):
    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot change survey status from '{from_status}' to '{to_status}'."
        )


class Conflict(PulseError):
    pass


class StaleSurvey(Conflict):
    """The survey changed between read and conditional write."""


class InvitationConflict(Conflict):
    """Another request created the same (survey, company, email) invitation."""


class InvitationMismatch(PulseError):
    """The invitation exists but does not belong to the presented identity."""


class EmailDeliveryError(PulseError):
    def __init__(self, email: str, message: str = ""):
        self.email = email
        super().__init__(message or f"Failed to send invitation email to {email}.")
