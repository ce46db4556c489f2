from __future__ import annotations

import logging
from typing import Iterable

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Max

from .. import lifecycle
from ..models import (
    CatalogQuestion,
    QuestionCategory,
    Survey,
    SurveyBlock,
    SurveyQuestion,
)
from ..permissions import Principal, require_meditec_admin

logger = logging.getLogger(__name__)


class CatalogService:
    """Reusable questions from the operator's question catalog."""

    @staticmethod
    def active_questions(
        category: QuestionCategory | int | None = None, question_type: str | None = None
    ) -> list[CatalogQuestion]:
        questions = CatalogQuestion.objects.select_related("category").filter(
            is_active=True, category__is_active=True
        )
        if category is not None:
            questions = questions.filter(category=category)
        if question_type is not None:
            questions = questions.filter(type=question_type)
        return list(questions.order_by("text", "id"))

    @classmethod
    def add_to_survey(
        cls, principal: Principal, survey: Survey, block_id, catalog_question_ids
    ) -> list[SurveyQuestion]:
        """Copy catalog entries into one block of ``survey``. Operator only."""
        require_meditec_admin(principal)
        try:
            block = survey.blocks.get(pk=block_id)
        except (SurveyBlock.DoesNotExist, ValueError, TypeError):
            raise ValidationError({"block": f"Block {block_id} is not part of this survey."})

        ids = list(dict.fromkeys(catalog_question_ids))
        entries = CatalogQuestion.objects.in_bulk(ids)
        missing = [str(pk) for pk in ids if pk not in entries]
        if missing:
            raise ValidationError(
                {"catalog_questions": f"Unknown catalog question(s): {', '.join(missing)}."}
            )
        return cls.add_catalog_questions(block, [entries[pk] for pk in ids])

    @classmethod
    def add_catalog_questions(
        cls, block: SurveyBlock, catalog_questions: Iterable[CatalogQuestion]
    ) -> list[SurveyQuestion]:
        """Append copies of ``catalog_questions`` to ``block``.

        Text, type and the required flag are copied; the new question keeps a
        reference to the catalog entry it came from.
        """
        lifecycle.require_draft(block.survey)
        catalog_questions = list(catalog_questions)
        inactive = [q.pk for q in catalog_questions if not q.is_active]
        if inactive:
            raise ValidationError(
                {
                    "catalog_questions": "Inactive catalog questions cannot be added: "
                    + ", ".join(str(pk) for pk in inactive)
                }
            )

        with transaction.atomic():
            last = block.questions.aggregate(last=Max("order"))["last"]
            start = 0 if last is None else last + 1
            created = SurveyQuestion.objects.bulk_create(
                [
                    SurveyQuestion(
                        block=block,
                        text=entry.text,
                        type=entry.type,
                        required=entry.required,
                        order=start + offset,
                        catalog_ref=entry,
                    )
                    for offset, entry in enumerate(catalog_questions)
                ]
            )

        logger.info(
            f"Added {len(created)} catalog question(s) to block {block.pk} "
            f"of survey {block.survey_id}"
        )
        return created
