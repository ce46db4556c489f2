"""
ResponseService - store answers submitted by survey participants.

Two ways in:
- an invitation (code already verified by the caller), or
- a logged-in employee whose company is assigned to the survey.

Answers are checked against the blocks the respondent can actually see, so a
respondent cannot answer questions from a block restricted to another
department.
"""

from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

from ..directory import department_for_company
from ..exceptions import InvitationNotFound
from ..models import Survey, SurveyInvitation, SurveyResponse
from ..permissions import Principal, require_participation
from ..visibility import respondent_department_key, visible_blocks
from .invitation_service import InvitationService

logger = logging.getLogger(__name__)

ALREADY_USED_MESSAGE = "This invitation has already been used."


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


class ResponseService:
    @staticmethod
    def validate_answers(survey: Survey, answers, department_key: str | None) -> dict:
        """Return ``answers`` keyed by question id as strings.

        Unknown question ids (including questions the respondent cannot see)
        and missing answers to required visible questions are rejected.
        """
        if not isinstance(answers, dict):
            raise ValidationError({"answers": "Answers must be a mapping of question id to value."})

        questions = {
            str(question.pk): question
            for block in visible_blocks(survey, department_key)
            for question in block.questions.all()
        }
        cleaned = {str(key): value for key, value in answers.items()}

        unknown = sorted(key for key in cleaned if key not in questions)
        if unknown:
            raise ValidationError(
                {"answers": f"Unknown question(s): {', '.join(unknown)}."}
            )

        missing = [
            key
            for key, question in questions.items()
            if question.required and _is_blank(cleaned.get(key))
        ]
        if missing:
            raise ValidationError(
                {"answers": f"Required question(s) not answered: {', '.join(missing)}."}
            )
        return cleaned

    @staticmethod
    def _require_active(survey: Survey) -> None:
        if not survey.is_active:
            raise ValidationError("This survey is not accepting responses.")

    @classmethod
    def submit_response(
        cls,
        survey: Survey,
        answers,
        invitation_id=None,
        principal: Principal | None = None,
    ) -> SurveyResponse:
        if invitation_id is not None:
            return cls._submit_for_invitation(survey, answers, invitation_id)
        if principal is not None:
            return cls._submit_for_employee(survey, answers, principal)
        raise ValidationError("An invitation or a signed-in employee is required.")

    @classmethod
    def _submit_for_invitation(cls, survey, answers, invitation_id) -> SurveyResponse:
        invitation = (
            SurveyInvitation.objects.select_related("company", "department")
            .filter(pk=invitation_id)
            .first()
        )
        if invitation is None:
            raise InvitationNotFound(f"Invitation {invitation_id} does not exist.")
        if invitation.survey_id != survey.pk:
            raise ValidationError("This invitation does not belong to the survey.")
        if (
            invitation.is_completed
            or SurveyResponse.objects.filter(invitation=invitation).exists()
        ):
            raise ValidationError(ALREADY_USED_MESSAGE)
        cls._require_active(survey)

        department_key = respondent_department_key(survey, invitation.department)
        cleaned = cls.validate_answers(survey, answers, department_key)

        try:
            with transaction.atomic():
                response = SurveyResponse.objects.create(
                    survey=survey,
                    company=invitation.company,
                    respondent_type=SurveyResponse.RespondentType.INVITATION,
                    invitation=invitation,
                    respondent_name="" if survey.is_anonymous else invitation.name,
                    respondent_email="" if survey.is_anonymous else invitation.email,
                    respondent_department=department_key or "",
                    answers=cleaned,
                )
                InvitationService.mark_completed(invitation.pk)
        except IntegrityError:
            raise ValidationError(ALREADY_USED_MESSAGE)

        logger.info(
            f"Response {response.pk} stored for survey {survey.pk} "
            f"via invitation {invitation.pk}"
        )
        return response

    @classmethod
    def _submit_for_employee(cls, survey, answers, principal: Principal) -> SurveyResponse:
        company = require_participation(principal, survey)
        cls._require_active(survey)

        department = department_for_company(company, principal.department_id)
        department_key = respondent_department_key(survey, department)
        cleaned = cls.validate_answers(survey, answers, department_key)

        already = "You have already answered this survey."
        if SurveyResponse.objects.filter(survey=survey, user_id=principal.user_id).exists():
            raise ValidationError(already)
        try:
            with transaction.atomic():
                response = SurveyResponse.objects.create(
                    survey=survey,
                    company=company,
                    respondent_type=SurveyResponse.RespondentType.USER,
                    user_id=principal.user_id,
                    respondent_department=department_key or "",
                    answers=cleaned,
                )
        except IntegrityError:
            raise ValidationError(already)

        logger.info(
            f"Response {response.pk} stored for survey {survey.pk} "
            f"by user {principal.user_id}"
        )
        return response
