"""Shared fixtures: two tenants, one user per role and a survey factory."""

from django.contrib.auth import get_user_model
import pytest

from pulse_app.surveys.models import (
    Company,
    Department,
    Survey,
    SurveyBlock,
    SurveyQuestion,
    UserProfile,
)

User = get_user_model()


@pytest.fixture
def company(db):
    return Company.objects.create(name="Acme GmbH", email="hr@acme.example")


@pytest.fixture
def other_company(db):
    return Company.objects.create(name="Globex AG", email="hr@globex.example")


@pytest.fixture
def sales(company):
    return Department.objects.create(company=company, name="Sales")


@pytest.fixture
def make_user(db):
    def _make(username, role, company=None, department=None):
        user = User.objects.create_user(
            username=username, email=f"{username}@example.com", password="x"
        )
        UserProfile.objects.create(
            user=user, role=role, company=company, department=department
        )
        return user

    return _make


@pytest.fixture
def meditec_admin(make_user):
    return make_user("operator", UserProfile.Role.MEDITEC_ADMIN)


@pytest.fixture
def company_admin(make_user, company):
    return make_user("acme_admin", UserProfile.Role.COMPANY_ADMIN, company=company)


@pytest.fixture
def other_company_admin(make_user, other_company):
    return make_user(
        "globex_admin", UserProfile.Role.COMPANY_ADMIN, company=other_company
    )


@pytest.fixture
def employee(make_user, company, sales):
    return make_user(
        "acme_employee", UserProfile.Role.EMPLOYEE, company=company, department=sales
    )


@pytest.fixture
def make_survey(db):
    """Build a survey with optional assignment and a simple block structure.

    ``blocks`` is a list of ``(title, departments, question_texts)`` tuples;
    an empty ``departments`` list leaves the block unrestricted.
    """

    def _make(
        status=Survey.Status.DRAFT,
        companies=(),
        names=(),
        blocks=(),
        is_anonymous=False,
        **kwargs,
    ):
        survey = Survey.objects.create(
            title=kwargs.pop("title", "Pulse Q1"),
            status=status,
            is_anonymous=is_anonymous,
            special_company_names=list(names),
            **kwargs,
        )
        if companies:
            survey.assigned_companies.set(companies)
        for order, (title, departments, questions) in enumerate(blocks):
            block = SurveyBlock.objects.create(
                survey=survey,
                title=title,
                order=order,
                restrict_to_departments=bool(departments),
                departments=list(departments),
            )
            for q_order, text in enumerate(questions):
                SurveyQuestion.objects.create(block=block, text=text, order=q_order)
        return survey

    return _make


@pytest.fixture
def scheduled_survey(make_survey, company):
    return make_survey(status=Survey.Status.SCHEDULED, companies=[company])


@pytest.fixture
def active_survey(make_survey, company, sales):
    return make_survey(
        status=Survey.Status.ACTIVE,
        companies=[company],
        blocks=[
            ("General", [], ["How are you?"]),
            ("Sales only", [sales.key], ["Are targets realistic?"]),
        ],
    )
