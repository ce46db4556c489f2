"""
Survey status state machine.

    draft -> scheduled -> active -> completed
                 \\           \\          \\
                  +-----------+----------+--> archived

``scheduled`` and ``active`` can also be recalled to ``draft`` by the
operator. Legacy ``pending``/``in_progress`` values are read as
``scheduled``/``active`` and never written.
"""

from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from .exceptions import AccessDenied, InvalidTransition, StaleSurvey
from .models import Survey, UserProfile
from .permissions import Principal, require_access

logger = logging.getLogger(__name__)

Status = Survey.Status
Role = UserProfile.Role

# (from, to) -> role allowed to perform the change
TRANSITIONS: dict[tuple[str, str], str] = {
    (Status.DRAFT, Status.SCHEDULED): Role.MEDITEC_ADMIN,
    (Status.SCHEDULED, Status.ACTIVE): Role.COMPANY_ADMIN,
    (Status.SCHEDULED, Status.DRAFT): Role.MEDITEC_ADMIN,
    (Status.ACTIVE, Status.DRAFT): Role.MEDITEC_ADMIN,
    (Status.ACTIVE, Status.COMPLETED): Role.COMPANY_ADMIN,
    (Status.SCHEDULED, Status.ARCHIVED): Role.MEDITEC_ADMIN,
    (Status.ACTIVE, Status.ARCHIVED): Role.MEDITEC_ADMIN,
    (Status.COMPLETED, Status.ARCHIVED): Role.MEDITEC_ADMIN,
}

WRITABLE_STATUSES = frozenset(
    {
        Status.DRAFT,
        Status.SCHEDULED,
        Status.ACTIVE,
        Status.COMPLETED,
        Status.ARCHIVED,
    }
)

TIMESTAMP_ON_ENTRY = {
    Status.ACTIVE: "activated_at",
    Status.COMPLETED: "completed_at",
    Status.ARCHIVED: "archived_at",
}


def canonical_status(value: str) -> str:
    return Survey.LEGACY_STATUS_ALIASES.get(value, value)


def transition(principal: Principal, survey: Survey, target_status: str) -> Survey:
    """Move ``survey`` to ``target_status`` on behalf of ``principal``.

    Raises ``ValidationError`` for an unknown target, ``InvalidTransition``
    when the edge does not exist, ``AccessDenied`` when the principal may not
    take it and ``StaleSurvey`` when someone else changed the status first.
    """
    target = (target_status or "").strip()
    if target not in WRITABLE_STATUSES:
        raise ValidationError({"status": f"Unknown survey status '{target}'."})

    current = survey.canonical_status
    role = TRANSITIONS.get((current, target))
    if role is None:
        raise InvalidTransition(current, target)
    if principal.role != role:
        raise AccessDenied(AccessDenied.NOT_AUTHORIZED)
    require_access(principal, survey)

    now = timezone.now()
    changes = {
        "status": target,
        "updated_at": now,
        "last_status_change_at": now,
        "last_status_change_by_id": principal.user_id,
    }
    stamp_field = TIMESTAMP_ON_ENTRY.get(target)
    if stamp_field:
        changes[stamp_field] = now

    with transaction.atomic():
        # Keyed on the status we read so a concurrent change is not overwritten
        updated = Survey.objects.filter(pk=survey.pk, status=survey.status).update(
            **changes
        )
    if not updated:
        raise StaleSurvey(f"Survey {survey.pk} was changed by another request.")

    logger.info(
        f"Survey {survey.pk} status {current} -> {target} "
        f"by {principal.role} (user {principal.user_id})"
    )
    survey.refresh_from_db()
    return survey


def require_draft(survey: Survey) -> None:
    if not survey.is_draft:
        raise ValidationError("Survey structure can only be edited while in draft.")
