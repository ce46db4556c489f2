from __future__ import annotations

from django.db.models import Prefetch

from .models import Department, Survey, SurveyBlock, SurveyQuestion


def is_block_visible(block: SurveyBlock, department_key: str | None) -> bool:
    if not block.restrict_to_departments:
        return True
    # Anonymous respondents never see department-restricted blocks
    if department_key is None:
        return False
    return department_key in (block.departments or [])


def visible_blocks(survey: Survey, department_key: str | None = None) -> list[SurveyBlock]:
    """Blocks of ``survey`` a respondent from ``department_key`` may see.

    Blocks come back ordered by ``order`` with their questions prefetched in
    ``order`` as well, so ``block.questions.all()`` needs no further queries.
    """
    blocks = survey.blocks.order_by("order", "id").prefetch_related(
        Prefetch("questions", queryset=SurveyQuestion.objects.order_by("order", "id"))
    )
    return [block for block in blocks if is_block_visible(block, department_key)]


def respondent_department_key(
    survey: Survey, department: Department | None
) -> str | None:
    if survey.is_anonymous or department is None:
        return None
    return department.key
