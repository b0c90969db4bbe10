"""
Role Classifier — maps role strings to (level, category).

Role strings follow a naming convention:

    Junior<Category>      JuniorArchitect, JuniorSupervisor1, …
    Assistant<Category>   AssistantStructuralEngineer, …
    ExecutiveEngineer | CityEngineer | Clerk | Admin   (exact match)
    anything else         → applicant ("User"), no category

Classification is total: unknown strings never raise.

Usage:
    from pmcrms.services.roles import classify_role, RoleLevel

    info = classify_role("AssistantArchitect")
    info.level     → RoleLevel.ASSISTANT
    info.category  → PositionType.ARCHITECT
"""

from dataclasses import dataclass
from enum import Enum

from pmcrms.models.enums import PositionType


class RoleLevel(str, Enum):
    JUNIOR = "Junior"
    ASSISTANT = "Assistant"
    EXECUTIVE = "Executive"
    CITY_ENGINEER = "CityEngineer"
    CLERK = "Clerk"
    ADMIN = "Admin"
    USER = "User"


@dataclass(frozen=True)
class RoleInfo:
    level: RoleLevel
    category: PositionType | None = None

    @property
    def is_officer(self) -> bool:
        return is_officer(self.level)


APPLICANT_ROLE = "User"
ADMIN_ROLE = "Admin"

_EXACT_ROLES = {
    "ExecutiveEngineer": RoleLevel.EXECUTIVE,
    "CityEngineer": RoleLevel.CITY_ENGINEER,
    "Clerk": RoleLevel.CLERK,
    "Admin": RoleLevel.ADMIN,
}

_CATEGORY_PREFIXES = {
    "Junior": RoleLevel.JUNIOR,
    "Assistant": RoleLevel.ASSISTANT,
}

_LEVEL_TITLES = {
    RoleLevel.JUNIOR: "Junior",
    RoleLevel.ASSISTANT: "Assistant",
}

_CATEGORY_TITLES = {
    PositionType.ARCHITECT: "Architect",
    PositionType.STRUCTURAL_ENGINEER: "Structural Engineer",
    PositionType.LICENCE_ENGINEER: "Licence Engineer",
    PositionType.SUPERVISOR1: "Supervisor (Category 1)",
    PositionType.SUPERVISOR2: "Supervisor (Category 2)",
}

_FIXED_TITLES = {
    RoleLevel.EXECUTIVE: "Executive Engineer",
    RoleLevel.CITY_ENGINEER: "City Engineer",
    RoleLevel.CLERK: "Administrative Officer",
}

DEFAULT_OFFICER_TITLE = "PMC Officer"


def classify_role(role: str | None) -> RoleInfo:
    """Return the level and (for Junior/Assistant) the category of *role*."""
    if not role:
        return RoleInfo(RoleLevel.USER)

    level = _EXACT_ROLES.get(role)
    if level is not None:
        return RoleInfo(level)

    for prefix, prefixed_level in _CATEGORY_PREFIXES.items():
        if role.startswith(prefix):
            suffix = role[len(prefix):]
            try:
                return RoleInfo(prefixed_level, PositionType(suffix))
            except ValueError:
                break

    return RoleInfo(RoleLevel.USER)


def is_officer(level: RoleLevel) -> bool:
    """Officers are every level except the applicant."""
    return level is not RoleLevel.USER


def role_name(level: RoleLevel, category: PositionType | None = None) -> str:
    """Inverse of ``classify_role`` — build the role string for a level."""
    if level in _CATEGORY_PREFIXES.values():
        if category is None:
            raise ValueError(f"{level.value} roles require a category")
        return f"{level.value}{PositionType(category).value}"
    for name, exact_level in _EXACT_ROLES.items():
        if exact_level is level:
            return name
    return APPLICANT_ROLE


def officer_role_names() -> list[str]:
    """Every valid officer role string (Admin excluded)."""
    names = [role_name(level, cat)
             for level in (RoleLevel.JUNIOR, RoleLevel.ASSISTANT)
             for cat in PositionType]
    names += ["ExecutiveEngineer", "CityEngineer", "Clerk"]
    return names


def display_name(role: str | None) -> str:
    """Human-readable officer title used in notifications."""
    info = classify_role(role)
    if info.category is not None:
        return f"{_LEVEL_TITLES[info.level]} {_CATEGORY_TITLES[info.category]}"
    return _FIXED_TITLES.get(info.level, DEFAULT_OFFICER_TITLE)
