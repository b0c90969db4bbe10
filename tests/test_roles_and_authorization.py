"""
Role classifier and stage authorization engine.

Covers:
    - classify_role: exact roles, category-prefixed roles, unknown strings
    - role_name / display_name round trips
    - view / mutate decisions per level, stage and category
    - Admin and applicants never mutate
"""

import pytest

from pmcrms.core.exceptions import UnauthorizedError
from pmcrms.models.enums import ApplicationStage, PositionType
from pmcrms.services.roles import (
    RoleInfo,
    RoleLevel,
    classify_role,
    display_name,
    officer_role_names,
    role_name,
)
from pmcrms.services.stage_authorization import (
    STAGE_OWNERSHIP,
    authorize_mutation,
    can_mutate,
    can_view,
    can_view_application,
    owners_of,
    visible_stages,
)

S = ApplicationStage


# ═════════════════════════════════════════════════════════════════════════════
# Role classifier
# ═════════════════════════════════════════════════════════════════════════════


class TestClassifyRole:
    @pytest.mark.parametrize("role,expected", [
        ("JuniorArchitect", RoleInfo(RoleLevel.JUNIOR, PositionType.ARCHITECT)),
        ("JuniorSupervisor2", RoleInfo(RoleLevel.JUNIOR, PositionType.SUPERVISOR2)),
        ("AssistantStructuralEngineer", RoleInfo(RoleLevel.ASSISTANT, PositionType.STRUCTURAL_ENGINEER)),
        ("AssistantLicenceEngineer", RoleInfo(RoleLevel.ASSISTANT, PositionType.LICENCE_ENGINEER)),
        ("ExecutiveEngineer", RoleInfo(RoleLevel.EXECUTIVE)),
        ("CityEngineer", RoleInfo(RoleLevel.CITY_ENGINEER)),
        ("Clerk", RoleInfo(RoleLevel.CLERK)),
        ("Admin", RoleInfo(RoleLevel.ADMIN)),
        ("User", RoleInfo(RoleLevel.USER)),
    ])
    def test_known_roles(self, role, expected):
        assert classify_role(role) == expected

    @pytest.mark.parametrize("role", [None, "", "Junior", "JuniorPlumber", "Superuser", "junior_architect"])
    def test_unknown_roles_are_applicants(self, role):
        info = classify_role(role)
        assert info.level is RoleLevel.USER
        assert info.category is None
        assert not info.is_officer

    def test_officer_flag(self):
        assert classify_role("Clerk").is_officer
        assert classify_role("Admin").is_officer
        assert not classify_role("User").is_officer

    def test_role_name_round_trip(self):
        for name in officer_role_names():
            info = classify_role(name)
            assert role_name(info.level, info.category) == name

    def test_role_name_requires_category_for_junior(self):
        with pytest.raises(ValueError):
            role_name(RoleLevel.JUNIOR)

    def test_officer_role_names_excludes_admin(self):
        names = officer_role_names()
        assert "Admin" not in names
        assert len(names) == 13

    @pytest.mark.parametrize("role,title", [
        ("JuniorArchitect", "Junior Architect"),
        ("AssistantSupervisor1", "Assistant Supervisor (Category 1)"),
        ("ExecutiveEngineer", "Executive Engineer"),
        ("CityEngineer", "City Engineer"),
        ("Clerk", "Administrative Officer"),
        ("Unknown", "PMC Officer"),
        (None, "PMC Officer"),
    ])
    def test_display_name(self, role, title):
        assert display_name(role) == title


# ═════════════════════════════════════════════════════════════════════════════
# Stage authorization
# ═════════════════════════════════════════════════════════════════════════════


class TestStageOwnership:
    def test_owned_stages(self):
        assert visible_stages(RoleLevel.JUNIOR) == {S.JUNIOR_ENGINEER_PENDING, S.DOCUMENT_VERIFICATION_PENDING}
        assert visible_stages(RoleLevel.CLERK) == {S.CLERK_PENDING}
        assert visible_stages(RoleLevel.ADMIN) == frozenset()
        assert visible_stages(RoleLevel.USER) == frozenset()

    def test_payment_and_terminal_stages_have_no_owner(self):
        for stage in (S.PAYMENT_PENDING, S.APPROVED, S.REJECTED):
            assert owners_of(stage) == []

    def test_every_other_stage_has_exactly_one_owner(self):
        owned = [s for stages in STAGE_OWNERSHIP.values() for s in stages]
        assert len(owned) == len(set(owned)) == 8
        assert owners_of(S.EXECUTIVE_ENGINEER_SIGN_PENDING) == [RoleLevel.EXECUTIVE]


class TestMutationRights:
    def test_junior_same_category_allowed(self):
        assert can_mutate("JuniorArchitect", "JUNIOR_ENGINEER_PENDING", "Architect")
        info = authorize_mutation("JuniorArchitect", "DOCUMENT_VERIFICATION_PENDING", "Architect")
        assert info.level is RoleLevel.JUNIOR

    def test_junior_other_category_denied(self):
        assert not can_mutate("JuniorArchitect", "JUNIOR_ENGINEER_PENDING", "StructuralEngineer")
        with pytest.raises(UnauthorizedError):
            authorize_mutation("JuniorArchitect", "JUNIOR_ENGINEER_PENDING", "StructuralEngineer")

    def test_assistant_category_scoped(self):
        assert can_mutate("AssistantSupervisor1", "ASSISTANT_ENGINEER_PENDING", "Supervisor1")
        assert not can_mutate("AssistantSupervisor1", "ASSISTANT_ENGINEER_PENDING", "Supervisor2")

    def test_executive_is_category_agnostic(self):
        for category in PositionType:
            assert can_mutate("ExecutiveEngineer", "EXECUTIVE_ENGINEER_PENDING", category.value)
            assert can_mutate("ExecutiveEngineer", "EXECUTIVE_ENGINEER_SIGN_PENDING", category.value)

    def test_wrong_stage_denied(self):
        assert not can_mutate("CityEngineer", "EXECUTIVE_ENGINEER_PENDING", "Architect")
        assert not can_mutate("Clerk", "PAYMENT_PENDING", "Architect")

    def test_admin_and_applicant_never_mutate(self):
        for stage in S:
            assert not can_mutate("Admin", stage.value, "Architect")
            assert not can_mutate("User", stage.value, "Architect")

    def test_unknown_stage_denied(self):
        assert not can_view("ExecutiveEngineer", "NOT_A_STAGE", "Architect")

    def test_owner_can_view_own_application(self, make_application, applicant):
        application = make_application(stage="CITY_ENGINEER_PENDING")
        assert can_view_application(applicant.id, "User", application)
        assert not can_view_application(applicant.id + 999, "User", application)
        assert can_view_application(applicant.id + 999, "CityEngineer", application)
