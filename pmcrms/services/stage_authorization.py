"""
Stage Authorization Engine — role × stage × category rights.

Decision procedure (view and mutate share it):
    1. Classify the role into (level, category).
    2. Deny if the application's current stage is not owned by the level.
    3. Executive, CityEngineer, Clerk: allow (category-agnostic).
    4. Junior, Assistant: allow only when the application's category equals
       the officer's category.

Admin owns no stage, so it is denied at step 2. An applicant may always
view (never mutate) their own application.

Usage:
    from pmcrms.services.stage_authorization import authorize_mutation

    authorize_mutation(user.role, app.current_stage, app.position_type)
"""

import logging

from pmcrms.core.exceptions import UnauthorizedError
from pmcrms.models.enums import ApplicationStage, PositionType
from pmcrms.services.roles import RoleInfo, RoleLevel, classify_role

logger = logging.getLogger(__name__)

S = ApplicationStage

STAGE_OWNERSHIP: dict[RoleLevel, frozenset[ApplicationStage]] = {
    RoleLevel.JUNIOR: frozenset({S.JUNIOR_ENGINEER_PENDING, S.DOCUMENT_VERIFICATION_PENDING}),
    RoleLevel.ASSISTANT: frozenset({S.ASSISTANT_ENGINEER_PENDING}),
    RoleLevel.EXECUTIVE: frozenset({S.EXECUTIVE_ENGINEER_PENDING, S.EXECUTIVE_ENGINEER_SIGN_PENDING}),
    RoleLevel.CITY_ENGINEER: frozenset({S.CITY_ENGINEER_PENDING, S.CITY_ENGINEER_SIGN_PENDING}),
    RoleLevel.CLERK: frozenset({S.CLERK_PENDING}),
}

# Levels whose rights are further restricted to their own category
CATEGORY_SCOPED_LEVELS = frozenset({RoleLevel.JUNIOR, RoleLevel.ASSISTANT})


def _as_stage(stage) -> ApplicationStage | None:
    try:
        return ApplicationStage(stage)
    except ValueError:
        return None


def _as_category(category) -> PositionType | None:
    if category is None:
        return None
    try:
        return PositionType(category)
    except ValueError:
        return None


def visible_stages(level: RoleLevel) -> frozenset[ApplicationStage]:
    """Stages an officer level owns (empty for Admin and applicants)."""
    return STAGE_OWNERSHIP.get(level, frozenset())


def owners_of(stage) -> list[RoleLevel]:
    """Levels that own *stage*, in hierarchy order."""
    stage = _as_stage(stage)
    return [level for level, stages in STAGE_OWNERSHIP.items() if stage in stages]


def _decide(info: RoleInfo, stage, category) -> tuple[bool, str | None]:
    current = _as_stage(stage)
    if current is None or current not in visible_stages(info.level):
        return False, f"{info.level.value} officers cannot act on stage {stage}"
    if info.level in CATEGORY_SCOPED_LEVELS and info.category != _as_category(category):
        return False, (
            f"{info.level.value} officer for {info.category.value if info.category else '-'} "
            f"cannot act on {category} applications"
        )
    return True, None


def can_view(role: str | None, current_stage, category) -> bool:
    allowed, _ = _decide(classify_role(role), current_stage, category)
    return allowed


def can_mutate(role: str | None, current_stage, category) -> bool:
    """Same rule as ``can_view``; kept separate so the two can diverge."""
    allowed, _ = _decide(classify_role(role), current_stage, category)
    return allowed


def authorize_mutation(role: str | None, current_stage, category) -> RoleInfo:
    """Raise ``UnauthorizedError`` unless *role* may mutate at *current_stage*.

    Returns the classified role on success so callers need not re-classify.
    """
    info = classify_role(role)
    allowed, reason = _decide(info, current_stage, category)
    if not allowed:
        logger.info("Mutation denied: role=%s stage=%s category=%s", role, current_stage, category)
        raise UnauthorizedError(reason)
    return info


def can_view_application(user_id: int, role: str | None, application) -> bool:
    """Owner view right plus officer stage rights."""
    if application.applicant_id == user_id:
        return True
    return can_view(role, application.current_stage, application.position_type)
