"""Tenant directory: companies and their departments."""

from __future__ import annotations

from .exceptions import TenantNotFound
from .models import Company, Department


def get_company(company_id) -> Company:
    if company_id in (None, ""):
        raise TenantNotFound("No company given.")
    try:
        return Company.objects.get(pk=company_id)
    except (Company.DoesNotExist, ValueError, TypeError):
        raise TenantNotFound(f"Company {company_id} does not exist.")


def find_company(company_id) -> Company | None:
    """Like ``get_company`` but returns ``None`` for unknown tenants."""
    try:
        return get_company(company_id)
    except TenantNotFound:
        return None


def list_departments(company: Company) -> list[Department]:
    return list(company.departments.order_by("name"))


def department_for_company(company: Company, department_id) -> Department | None:
    """Return the department only if it belongs to ``company``.

    Unknown ids and departments of another tenant both come back as ``None``;
    callers decide whether that is an error or just a dropped reference.
    """
    if department_id in (None, ""):
        return None
    try:
        return Department.objects.get(pk=department_id, company=company)
    except (Department.DoesNotExist, ValueError, TypeError):
        return None


def parse_department_key(key: str) -> tuple[str, str]:
    """Split ``"<company id>:<department name>"`` into its two parts.

    Department names may themselves contain colons, so only the first one
    separates the tenant.
    """
    company_id, sep, name = (key or "").partition(":")
    if not sep or not company_id or not name:
        raise ValueError(f"Malformed department key: {key!r}")
    return company_id, name
