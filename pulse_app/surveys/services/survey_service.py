"""
SurveyService - read and mutate surveys on behalf of a principal.

Every operation re-runs the access check; nothing is cached between calls.
Structure (blocks and questions) is only editable while the survey is a
draft, and is always written as a whole so block and question ``order``
stay dense and zero-based.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable

from django.core.exceptions import ValidationError
from django.db import transaction

from .. import lifecycle
from ..directory import find_company, get_company, parse_department_key
from ..exceptions import AccessDenied, SurveyNotFound, TenantNotFound
from ..models import (
    CatalogQuestion,
    Company,
    QuestionType,
    Survey,
    SurveyBlock,
    SurveyQuestion,
)
from ..permissions import Principal, require_access, require_meditec_admin

logger = logging.getLogger(__name__)


class SurveyService:
    """Operation surface for surveys."""

    EDITABLE_FIELDS = (
        "title",
        "description",
        "is_anonymous",
        "start_date",
        "end_date",
    )

    @staticmethod
    def resolve_survey(identifier) -> Survey:
        """Look a survey up by row key or by its stable ``survey_id``."""
        if isinstance(identifier, Survey):
            return identifier
        value = str(identifier or "").strip()
        lookup: dict[str, Any]
        if value.isdigit():
            lookup = {"pk": int(value)}
        else:
            try:
                lookup = {"survey_id": uuid.UUID(value)}
            except ValueError:
                raise SurveyNotFound(f"Survey {value!r} does not exist.")
        try:
            return Survey.objects.get(**lookup)
        except Survey.DoesNotExist:
            raise SurveyNotFound(f"Survey {value!r} does not exist.")

    @classmethod
    def get_survey(cls, principal: Principal, identifier) -> Survey:
        survey = cls.resolve_survey(identifier)
        require_access(principal, survey)
        return survey

    @classmethod
    def list_surveys(cls, principal: Principal) -> list[Survey]:
        """All surveys for the operator, assigned ones for a company admin."""
        surveys = Survey.objects.prefetch_related("assigned_companies").order_by(
            "-created_at", "-id"
        )
        if principal.is_meditec_admin:
            return list(surveys)
        if not principal.is_company_admin:
            raise AccessDenied(AccessDenied.NOT_AUTHORIZED)

        company = find_company(principal.tenant_id)
        if company is None:
            raise AccessDenied(AccessDenied.TENANT_NOT_FOUND)

        # Name matching happens in Python; JSON containment is not portable
        return [
            survey
            for survey in surveys
            if any(c.pk == company.pk for c in survey.assigned_companies.all())
            or company.name in (survey.special_company_names or [])
        ]

    @classmethod
    def create_survey(cls, principal: Principal, data: dict) -> Survey:
        require_meditec_admin(principal)

        title = str(data.get("title") or "").strip()
        if not title:
            raise ValidationError({"title": "A survey needs a title."})

        with transaction.atomic():
            survey = Survey(
                title=title,
                description=data.get("description") or "",
                is_anonymous=data.get("is_anonymous", True),
                start_date=data.get("start_date"),
                end_date=data.get("end_date"),
                special_company_names=cls._clean_company_names(
                    data.get("special_company_names")
                ),
                created_by_id=principal.user_id,
            )
            cls._validate_schedule(survey)
            survey.save()
            if data.get("assigned_companies") is not None:
                cls._set_assigned_companies(survey, data["assigned_companies"])
            cls.replace_structure(survey, data.get("blocks") or [])

        logger.info(f"Survey {survey.pk} '{survey.title}' created by user {principal.user_id}")
        return survey

    @classmethod
    def update_survey(cls, principal: Principal, identifier, patch: dict) -> Survey:
        """Apply ``patch`` to a draft survey.

        Only the keys present in ``patch`` change. ``blocks``, when given,
        replaces the whole structure.
        """
        require_meditec_admin(principal)
        survey = cls.get_survey(principal, identifier)
        lifecycle.require_draft(survey)

        with transaction.atomic():
            for field in cls.EDITABLE_FIELDS:
                if field in patch:
                    value = patch[field]
                    if field == "title":
                        value = str(value or "").strip()
                        if not value:
                            raise ValidationError({"title": "A survey needs a title."})
                    elif field == "description":
                        value = value or ""
                    setattr(survey, field, value)
            if "special_company_names" in patch:
                survey.special_company_names = cls._clean_company_names(
                    patch["special_company_names"]
                )
            cls._validate_schedule(survey)
            survey.save()

            if "assigned_companies" in patch:
                cls._set_assigned_companies(survey, patch["assigned_companies"] or [])
            if "blocks" in patch:
                cls.replace_structure(survey, patch["blocks"] or [])

        logger.info(f"Survey {survey.pk} updated by user {principal.user_id}")
        return survey

    @classmethod
    def delete_survey(cls, principal: Principal, identifier) -> None:
        require_meditec_admin(principal)
        survey = cls.get_survey(principal, identifier)
        survey_pk = survey.pk
        survey.delete()
        logger.info(f"Survey {survey_pk} deleted by user {principal.user_id}")

    @classmethod
    def update_status(cls, principal: Principal, identifier, target_status: str) -> Survey:
        survey = cls.resolve_survey(identifier)
        return lifecycle.transition(principal, survey, target_status)

    @classmethod
    def replace_structure(cls, survey: Survey, blocks: Iterable[dict]) -> list[SurveyBlock]:
        """Replace all blocks and questions of ``survey``.

        Blocks and questions are numbered from 0 in the order given.
        """
        lifecycle.require_draft(survey)
        blocks = list(blocks)
        cleaned = [cls._clean_block(raw, index) for index, raw in enumerate(blocks)]

        created: list[SurveyBlock] = []
        with transaction.atomic():
            survey.blocks.all().delete()
            for order, (block_data, questions) in enumerate(cleaned):
                block = SurveyBlock.objects.create(survey=survey, order=order, **block_data)
                SurveyQuestion.objects.bulk_create(
                    [
                        SurveyQuestion(block=block, order=q_order, **question)
                        for q_order, question in enumerate(questions)
                    ]
                )
                created.append(block)
        return created

    @classmethod
    def _clean_block(cls, raw: dict, index: int) -> tuple[dict, list[dict]]:
        title = str(raw.get("title") or "").strip()
        if not title:
            raise ValidationError({"blocks": f"Block {index + 1} needs a title."})

        restricted = bool(raw.get("restrict_to_departments", False))
        departments: list[str] = []
        if restricted:
            for key in raw.get("departments") or []:
                try:
                    parse_department_key(key)
                except ValueError:
                    raise ValidationError(
                        {"blocks": f"Block {index + 1} has an invalid department '{key}'."}
                    )
                if key not in departments:
                    departments.append(key)

        questions = [
            cls._clean_question(q, index, q_index)
            for q_index, q in enumerate(raw.get("questions") or [])
        ]
        block_data = {
            "title": title,
            "description": raw.get("description") or "",
            "restrict_to_departments": restricted,
            "departments": departments,
        }
        return block_data, questions

    @staticmethod
    def _clean_question(raw: dict, block_index: int, index: int) -> dict:
        where = f"Question {index + 1} in block {block_index + 1}"
        text = str(raw.get("text") or "").strip()
        if not text:
            raise ValidationError({"blocks": f"{where} needs a text."})
        question_type = raw.get("type") or QuestionType.YES_NO
        if question_type not in QuestionType.values:
            raise ValidationError(
                {"blocks": f"{where} has an unknown type '{question_type}'."}
            )

        catalog_ref = raw.get("catalog_ref")
        if catalog_ref is not None and not isinstance(catalog_ref, CatalogQuestion):
            catalog_ref = CatalogQuestion.objects.filter(pk=catalog_ref).first()
            if catalog_ref is None:
                raise ValidationError(
                    {"blocks": f"{where} references an unknown catalog question."}
                )
        return {
            "text": text,
            "type": question_type,
            "required": bool(raw.get("required", True)),
            "catalog_ref": catalog_ref,
        }

    @staticmethod
    def _validate_schedule(survey: Survey) -> None:
        if survey.start_date and survey.end_date and survey.end_date < survey.start_date:
            raise ValidationError({"end_date": "End date must not be before the start date."})

    @staticmethod
    def _clean_company_names(names) -> list[str]:
        cleaned: list[str] = []
        for name in names or []:
            name = str(name).strip()
            if name and name not in cleaned:
                cleaned.append(name)
        return cleaned

    @staticmethod
    def _set_assigned_companies(survey: Survey, company_ids) -> None:
        companies = []
        for company_id in company_ids:
            if isinstance(company_id, Company):
                companies.append(company_id)
                continue
            try:
                companies.append(get_company(company_id))
            except TenantNotFound:
                raise ValidationError(
                    {"assigned_companies": f"Company {company_id} does not exist."}
                )
        survey.assigned_companies.set(companies)
