"""
InvitationService - issue, verify, resend and complete survey invitations.

An invitation is keyed by (survey, company, email). Inviting the same person
again updates the existing record in place and keeps its code, so links that
were already mailed keep working.

Emails are sent after the database write has committed. A failed dispatch is
reported back to the caller but never undoes the invitation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import secrets
import string
from typing import Iterable

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from .. import email_utils
from ..directory import department_for_company, get_company
from ..exceptions import (
    AccessDenied,
    EmailDeliveryError,
    InvitationConflict,
    InvitationMismatch,
    InvitationNotFound,
)
from ..models import Company, Survey, SurveyInvitation
from ..permissions import Principal, is_assigned, require_access
from .survey_service import SurveyService

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8

INVITABLE_STATUSES = (Survey.Status.SCHEDULED, Survey.Status.ACTIVE)
VERIFIABLE_STATUSES = (Survey.Status.ACTIVE, Survey.Status.COMPLETED)

NAME_MAX_LENGTH = SurveyInvitation._meta.get_field("name").max_length
EMAIL_MAX_LENGTH = SurveyInvitation._meta.get_field("email").max_length


def normalize_email(email) -> str:
    return str(email or "").strip().lower()


def normalize_code(code) -> str:
    return str(code or "").strip().upper()


@dataclass
class ParticipantFailure:
    index: int
    name: str
    email: str
    errors: list[str]


@dataclass
class InviteBatchResult:
    created: list[SurveyInvitation] = field(default_factory=list)
    updated: list[SurveyInvitation] = field(default_factory=list)
    failures: list[ParticipantFailure] = field(default_factory=list)
    # Records that were written but whose email could not be sent
    email_failures: list[SurveyInvitation] = field(default_factory=list)


@dataclass
class VerifiedInvitation:
    invitation: SurveyInvitation
    survey: Survey


class InvitationService:
    @staticmethod
    def generate_code() -> str:
        return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))

    @classmethod
    def generate_unique_code(cls) -> str:
        attempts = getattr(settings, "PULSE_INVITATION_CODE_ATTEMPTS", 5)
        for _ in range(attempts):
            code = cls.generate_code()
            if not SurveyInvitation.objects.filter(code=code).exists():
                return code
        raise InvitationConflict("Could not generate a unique invitation code.")

    @classmethod
    def invite(
        cls,
        principal: Principal,
        survey: Survey,
        participants: Iterable[dict],
        message: str = "",
        company_id=None,
    ) -> InviteBatchResult:
        """Invite ``participants`` to ``survey`` on behalf of one company.

        Participants are processed one by one in input order. A bad entry is
        recorded in ``failures`` and the rest of the batch carries on.
        """
        decision = require_access(principal, survey)
        company = cls._target_company(principal, decision.scope_tenant_id, company_id)
        if not is_assigned(survey, company):
            raise ValidationError(
                {"company_id": "This company is not assigned to the survey."}
            )
        if survey.canonical_status not in INVITABLE_STATUSES:
            raise ValidationError(
                "Invitations can only be sent for released or active surveys."
            )

        result = InviteBatchResult()
        for index, participant in enumerate(participants):
            name = str(participant.get("name") or "").strip()
            email = normalize_email(participant.get("email"))

            errors = []
            if not name:
                errors.append("Name is required.")
            elif len(name) > NAME_MAX_LENGTH:
                errors.append(f"Name must be at most {NAME_MAX_LENGTH} characters.")
            if not email:
                errors.append("Email is required.")
            elif len(email) > EMAIL_MAX_LENGTH:
                errors.append(f"Email must be at most {EMAIL_MAX_LENGTH} characters.")
            else:
                try:
                    validate_email(email)
                except ValidationError:
                    errors.append(f"'{email}' is not a valid email address.")
            if errors:
                result.failures.append(ParticipantFailure(index, name, email, errors))
                continue

            department_id = participant.get("department_id")
            department = department_for_company(company, department_id)
            if department_id not in (None, "") and department is None:
                logger.warning(
                    f"Ignoring department {department_id} for {email}: "
                    f"not a department of company {company.pk}"
                )

            try:
                invitation, created = cls._upsert(
                    survey, company, email, name, department
                )
            except (InvitationConflict, DatabaseError) as exc:
                logger.warning(f"Could not store invitation for {email}: {exc}")
                result.failures.append(
                    ParticipantFailure(
                        index, name, email, ["The invitation could not be stored."]
                    )
                )
                continue
            (result.created if created else result.updated).append(invitation)

            if not email_utils.send_invitation_email(invitation, message):
                result.email_failures.append(invitation)

        logger.info(
            f"Invited to survey {survey.pk} for company {company.pk}: "
            f"{len(result.created)} created, {len(result.updated)} updated, "
            f"{len(result.failures)} failed, {len(result.email_failures)} not emailed"
        )
        return result

    @staticmethod
    def _target_company(principal: Principal, scope_tenant_id, company_id) -> Company:
        if scope_tenant_id is not None:
            # Company admins always invite for their own company
            if company_id not in (None, "") and str(company_id) != str(scope_tenant_id):
                raise AccessDenied(AccessDenied.NOT_AUTHORIZED)
            return get_company(scope_tenant_id)
        if company_id in (None, ""):
            raise ValidationError({"company_id": "A company is required."})
        return get_company(company_id)

    @classmethod
    def _upsert(cls, survey, company, email, name, department):
        attempts = getattr(settings, "PULSE_INVITATION_CODE_ATTEMPTS", 5)
        for _ in range(attempts):
            with transaction.atomic():
                existing = (
                    SurveyInvitation.objects.select_for_update()
                    .filter(survey=survey, company=company, email=email)
                    .first()
                )
                if existing is not None:
                    existing.name = name
                    existing.status = SurveyInvitation.Status.PENDING
                    existing.sent_at = timezone.now()
                    update_fields = ["name", "status", "sent_at", "updated_at"]
                    if department is not None:
                        existing.department = department
                        update_fields.append("department")
                    existing.save(update_fields=update_fields)
                    logger.info(f"Refreshed invitation {existing.pk} for {email}")
                    return existing, False

                code = cls.generate_unique_code()
                try:
                    with transaction.atomic():
                        invitation = SurveyInvitation.objects.create(
                            survey=survey,
                            company=company,
                            email=email,
                            name=name,
                            department=department,
                            code=code,
                            sent_at=timezone.now(),
                        )
                except IntegrityError:
                    # Either another request created the same invitation or the
                    # code was taken in the meantime; both are retried
                    logger.info(f"Invitation create for {email} lost a race, retrying")
                    continue
                logger.info(f"Created invitation {invitation.pk} for {email}")
                return invitation, True
        raise InvitationConflict(f"Could not store the invitation for {email}.")

    @classmethod
    def verify(cls, survey_identifier, code, email=None) -> VerifiedInvitation:
        """Check that ``code`` is an invitation to the given survey.

        A code belonging to another survey is reported exactly like an
        unknown code.
        """
        survey = SurveyService.resolve_survey(survey_identifier)
        code = normalize_code(code)
        if not code:
            raise InvitationNotFound("Invitation not found.")
        try:
            invitation = SurveyInvitation.objects.select_related(
                "company", "department"
            ).get(survey=survey, code=code)
        except SurveyInvitation.DoesNotExist:
            raise InvitationNotFound("Invitation not found.")

        if email is not None and normalize_email(email) != invitation.email:
            raise InvitationMismatch("Invitation not found.")
        if survey.canonical_status not in VERIFIABLE_STATUSES:
            raise ValidationError("This survey is not open for participation.")

        return VerifiedInvitation(invitation=invitation, survey=survey)

    @staticmethod
    def get_invitation(invitation_id) -> SurveyInvitation:
        try:
            return SurveyInvitation.objects.select_related(
                "survey", "company", "department"
            ).get(pk=invitation_id)
        except (SurveyInvitation.DoesNotExist, ValueError, TypeError):
            raise InvitationNotFound(f"Invitation {invitation_id} does not exist.")

    @classmethod
    def mark_completed(cls, invitation_id) -> SurveyInvitation:
        """Mark an invitation completed. Calling it again changes nothing."""
        now = timezone.now()
        SurveyInvitation.objects.filter(pk=invitation_id).exclude(
            status=SurveyInvitation.Status.COMPLETED
        ).update(
            status=SurveyInvitation.Status.COMPLETED,
            completed_at=now,
            updated_at=now,
        )
        return cls.get_invitation(invitation_id)

    @classmethod
    def list_invitations(cls, principal: Principal, survey: Survey) -> list[SurveyInvitation]:
        decision = require_access(principal, survey)
        invitations = survey.invitations.select_related("company", "department")
        if decision.scope_tenant_id is not None:
            invitations = invitations.filter(company_id=decision.scope_tenant_id)
        return list(invitations.order_by("-sent_at", "-id"))

    @classmethod
    def _get_scoped_invitation(cls, principal: Principal, invitation_id) -> SurveyInvitation:
        invitation = cls.get_invitation(invitation_id)
        decision = require_access(principal, invitation.survey)
        if (
            decision.scope_tenant_id is not None
            and invitation.company_id != decision.scope_tenant_id
        ):
            raise AccessDenied(AccessDenied.NOT_AUTHORIZED)
        return invitation

    @classmethod
    def resend(cls, principal: Principal, invitation_id, message: str = "") -> SurveyInvitation:
        """Send the invitation email again with the same code.

        Expired invitations become pending again. Completed ones are refused.
        """
        invitation = cls._get_scoped_invitation(principal, invitation_id)
        if invitation.is_completed:
            raise ValidationError("This invitation has already been completed.")

        invitation.sent_at = timezone.now()
        if invitation.status == SurveyInvitation.Status.EXPIRED:
            invitation.status = SurveyInvitation.Status.PENDING
        invitation.save(update_fields=["sent_at", "status", "updated_at"])

        if not email_utils.send_invitation_email(invitation, message):
            raise EmailDeliveryError(invitation.email)
        logger.info(f"Resent invitation {invitation.pk} to {invitation.email}")
        return invitation

    @classmethod
    def revoke(cls, principal: Principal, invitation_id) -> None:
        invitation = cls._get_scoped_invitation(principal, invitation_id)
        invitation_pk = invitation.pk
        invitation.delete()
        logger.info(f"Revoked invitation {invitation_pk} by user {principal.user_id}")
