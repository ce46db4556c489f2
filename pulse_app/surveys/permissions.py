from __future__ import annotations

from dataclasses import dataclass
import logging

from .directory import find_company
from .exceptions import AccessDenied
from .models import Company, Survey, UserProfile

logger = logging.getLogger(__name__)

Role = UserProfile.Role

MATCH_BY_ID = "by_id"
MATCH_BY_NAME = "by_name"


@dataclass(frozen=True)
class Principal:
    """The trusted caller identity handed to the core.

    ``tenant_id`` is only meaningful for company-scoped roles.
    """

    role: str | None
    tenant_id: int | None = None
    department_id: int | None = None
    user_id: int | None = None

    @classmethod
    def from_user(cls, user) -> "Principal":
        if user is None or not user.is_authenticated:
            return cls(role=None)
        try:
            profile = user.pulse_profile
        except UserProfile.DoesNotExist:
            return cls(role=None, user_id=user.pk)
        return cls(
            role=profile.role,
            tenant_id=profile.company_id,
            department_id=profile.department_id,
            user_id=user.pk,
        )

    @property
    def is_meditec_admin(self) -> bool:
        return self.role == Role.MEDITEC_ADMIN

    @property
    def is_company_admin(self) -> bool:
        return self.role == Role.COMPANY_ADMIN


@dataclass(frozen=True)
class AccessDecision:
    allow: bool
    scope_tenant_id: int | None = None
    reason: str | None = None
    match: str | None = None


def assignment_match(survey: Survey, company: Company) -> str | None:
    """How ``company`` is assigned to ``survey``, or ``None`` if it is not.

    Structured ids and legacy display names are two independent lists; a hit
    on either one is enough.
    """
    if survey.assigned_companies.filter(pk=company.pk).exists():
        return MATCH_BY_ID
    if company.name in (survey.special_company_names or []):
        return MATCH_BY_NAME
    return None


def is_assigned(survey: Survey, company: Company) -> bool:
    return assignment_match(survey, company) is not None


def resolve_access(principal: Principal, survey: Survey) -> AccessDecision:
    if principal.is_meditec_admin:
        return AccessDecision(allow=True)

    if not principal.is_company_admin:
        return _deny(principal, survey, AccessDenied.NOT_AUTHORIZED)

    company = find_company(principal.tenant_id)
    if company is None:
        return _deny(principal, survey, AccessDenied.TENANT_NOT_FOUND)

    match = assignment_match(survey, company)
    if match is None:
        return _deny(principal, survey, AccessDenied.NOT_ASSIGNED)

    logger.debug(
        f"Company {company.pk} granted access to survey {survey.pk} ({match})"
    )
    return AccessDecision(allow=True, scope_tenant_id=company.pk, match=match)


def _deny(principal: Principal, survey: Survey, reason: str) -> AccessDecision:
    logger.info(
        f"Access to survey {survey.pk} denied for role={principal.role} "
        f"tenant={principal.tenant_id}: {reason}"
    )
    return AccessDecision(allow=False, reason=reason)


def require_access(principal: Principal, survey: Survey) -> AccessDecision:
    decision = resolve_access(principal, survey)
    if not decision.allow:
        raise AccessDenied(decision.reason)
    return decision


def require_meditec_admin(principal: Principal) -> None:
    if not principal.is_meditec_admin:
        raise AccessDenied(AccessDenied.NOT_AUTHORIZED)


def require_company_member(principal: Principal) -> Company:
    if principal.role not in (Role.COMPANY_ADMIN, Role.EMPLOYEE):
        raise AccessDenied(AccessDenied.NOT_AUTHORIZED)
    company = find_company(principal.tenant_id)
    if company is None:
        raise AccessDenied(AccessDenied.TENANT_NOT_FOUND)
    return company


def require_participation(principal: Principal, survey: Survey) -> Company:
    """Employees may answer a survey only when their company is assigned to it."""
    if principal.role != Role.EMPLOYEE:
        raise AccessDenied(AccessDenied.NOT_AUTHORIZED)
    company = find_company(principal.tenant_id)
    if company is None:
        raise AccessDenied(AccessDenied.TENANT_NOT_FOUND)
    if not is_assigned(survey, company):
        raise AccessDenied(AccessDenied.NOT_ASSIGNED)
    return company
