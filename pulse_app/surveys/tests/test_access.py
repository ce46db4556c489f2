"""
Tests for tenant access rules: structured assignment, legacy name assignment
and the roles that may see a survey at all.
"""

from django.core.exceptions import PermissionDenied
import pytest

from pulse_app.surveys.exceptions import AccessDenied
from pulse_app.surveys.models import Company, UserProfile
from pulse_app.surveys.permissions import (
    MATCH_BY_ID,
    MATCH_BY_NAME,
    Principal,
    require_access,
    resolve_access,
)


@pytest.mark.django_db
class TestResolveAccess:
    def test_meditec_admin_always_allowed_without_scope(self, make_survey):
        survey = make_survey()
        decision = resolve_access(Principal(role=UserProfile.Role.MEDITEC_ADMIN), survey)
        assert decision.allow
        assert decision.scope_tenant_id is None

    def test_company_admin_allowed_by_structured_id(self, make_survey, company):
        survey = make_survey(companies=[company])
        principal = Principal(role=UserProfile.Role.COMPANY_ADMIN, tenant_id=company.pk)

        decision = resolve_access(principal, survey)

        assert decision.allow
        assert decision.scope_tenant_id == company.pk
        assert decision.match == MATCH_BY_ID

    def test_company_admin_allowed_by_legacy_name(self, make_survey, company):
        survey = make_survey(names=["Acme GmbH"])
        principal = Principal(role=UserProfile.Role.COMPANY_ADMIN, tenant_id=company.pk)

        decision = resolve_access(principal, survey)

        assert decision.allow
        assert decision.scope_tenant_id == company.pk
        assert decision.match == MATCH_BY_NAME

    def test_lists_are_checked_independently(self, make_survey, company, other_company):
        # Assigned by id to one tenant and by name to another
        survey = make_survey(companies=[other_company], names=["Acme GmbH"])
        for tenant in (company, other_company):
            principal = Principal(
                role=UserProfile.Role.COMPANY_ADMIN, tenant_id=tenant.pk
            )
            assert resolve_access(principal, survey).allow

    def test_unassigned_company_admin_denied(self, make_survey, company, other_company):
        survey = make_survey(companies=[company])
        principal = Principal(
            role=UserProfile.Role.COMPANY_ADMIN, tenant_id=other_company.pk
        )

        decision = resolve_access(principal, survey)

        assert not decision.allow
        assert decision.reason == AccessDenied.NOT_ASSIGNED

    def test_unknown_tenant_denied(self, make_survey):
        survey = make_survey(names=["Acme GmbH"])
        principal = Principal(role=UserProfile.Role.COMPANY_ADMIN, tenant_id=999999)

        decision = resolve_access(principal, survey)

        assert not decision.allow
        assert decision.reason == AccessDenied.TENANT_NOT_FOUND

    def test_company_admin_without_tenant_denied(self, make_survey):
        survey = make_survey()
        decision = resolve_access(Principal(role=UserProfile.Role.COMPANY_ADMIN), survey)
        assert decision.reason == AccessDenied.TENANT_NOT_FOUND

    def test_employee_denied(self, make_survey, company):
        survey = make_survey(companies=[company])
        principal = Principal(role=UserProfile.Role.EMPLOYEE, tenant_id=company.pk)

        decision = resolve_access(principal, survey)

        assert not decision.allow
        assert decision.reason == AccessDenied.NOT_AUTHORIZED

    def test_name_match_is_exact(self, make_survey, company):
        survey = make_survey(names=["acme gmbh", "Acme"])
        principal = Principal(role=UserProfile.Role.COMPANY_ADMIN, tenant_id=company.pk)
        assert not resolve_access(principal, survey).allow

    def test_renaming_tenant_changes_name_based_access(self, make_survey, company):
        survey = make_survey(names=["Acme GmbH"])
        principal = Principal(role=UserProfile.Role.COMPANY_ADMIN, tenant_id=company.pk)
        assert resolve_access(principal, survey).allow

        Company.objects.filter(pk=company.pk).update(name="Acme Holding")

        assert not resolve_access(principal, survey).allow

    def test_access_is_not_cached(self, make_survey, company):
        survey = make_survey()
        principal = Principal(role=UserProfile.Role.COMPANY_ADMIN, tenant_id=company.pk)
        assert not resolve_access(principal, survey).allow

        survey.assigned_companies.add(company)

        assert resolve_access(principal, survey).allow


@pytest.mark.django_db
class TestRequireAccess:
    def test_raises_permission_denied_with_generic_message(
        self, make_survey, other_company
    ):
        survey = make_survey()
        principal = Principal(
            role=UserProfile.Role.COMPANY_ADMIN, tenant_id=other_company.pk
        )

        with pytest.raises(PermissionDenied) as excinfo:
            require_access(principal, survey)

        assert excinfo.value.reason == AccessDenied.NOT_ASSIGNED
        assert "assigned" not in str(excinfo.value)

    def test_returns_decision_when_allowed(self, make_survey, company):
        survey = make_survey(companies=[company])
        principal = Principal(role=UserProfile.Role.COMPANY_ADMIN, tenant_id=company.pk)
        assert require_access(principal, survey).scope_tenant_id == company.pk


@pytest.mark.django_db
class TestPrincipalFromUser:
    def test_profile_role_and_tenant(self, employee, company, sales):
        principal = Principal.from_user(employee)
        assert principal.role == UserProfile.Role.EMPLOYEE
        assert principal.tenant_id == company.pk
        assert principal.department_id == sales.pk
        assert principal.user_id == employee.pk

    def test_user_without_profile_has_no_role(self, django_user_model):
        user = django_user_model.objects.create_user(username="nobody", password="x")
        principal = Principal.from_user(user)
        assert principal.role is None
        assert principal.user_id == user.pk

    def test_anonymous_user(self):
        from django.contrib.auth.models import AnonymousUser

        assert Principal.from_user(AnonymousUser()).role is None
