"""Platform role ladder and the privilege tier each role belongs to."""

from __future__ import annotations

from enum import Enum


class Tier(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class Role(str, Enum):
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    HR_ADMIN = "HR_ADMIN"
    GENERAL_MANAGER = "GENERAL_MANAGER"
    TERRITORY_MANAGER = "TERRITORY_MANAGER"
    MANAGER = "MANAGER"
    TEAM_LEAD = "TEAM_LEAD"
    EMPLOYEE = "EMPLOYEE"
    FIELD_TECH = "FIELD_TECH"
    SALES_REP = "SALES_REP"
    CONTRACTOR = "CONTRACTOR"


# Legacy spellings still stored on older user rows.
ROLE_ALIASES: dict[str, Role] = {
    "TRUE_ADMIN": Role.SYSTEM_ADMIN,
    "ADMIN": Role.HR_ADMIN,
    "HR_MANAGER": Role.HR_ADMIN,
    "TERRITORY_SALES_MANAGER": Role.TERRITORY_MANAGER,
    "SALES": Role.SALES_REP,
}

ROLE_TIERS: dict[Role, Tier] = {
    Role.SYSTEM_ADMIN: Tier.ADMIN,
    Role.HR_ADMIN: Tier.ADMIN,
    Role.GENERAL_MANAGER: Tier.MANAGER,
    Role.TERRITORY_MANAGER: Tier.MANAGER,
    Role.MANAGER: Tier.MANAGER,
    Role.TEAM_LEAD: Tier.EMPLOYEE,
    Role.EMPLOYEE: Tier.EMPLOYEE,
    Role.FIELD_TECH: Tier.EMPLOYEE,
    Role.SALES_REP: Tier.EMPLOYEE,
    Role.CONTRACTOR: Tier.EMPLOYEE,
}


def canonical_role(role: str | Role | None) -> Role | None:
    """Resolve a stored role string (legacy or current) to a ``Role``."""
    if role is None:
        return None
    if isinstance(role, Role):
        return role
    key = str(role).strip().upper()
    if key in ROLE_ALIASES:
        return ROLE_ALIASES[key]
    try:
        return Role(key)
    except ValueError:
        return None


def tier_for(role: str | Role | None) -> Tier | None:
    """Tier for *role*; ``None`` for anything unrecognised."""
    resolved = canonical_role(role)
    return ROLE_TIERS.get(resolved) if resolved is not None else None
