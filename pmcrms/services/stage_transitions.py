"""
Stage Transition Validator — one transition graph tagged by trigger.

Every legal stage change is an edge ``(source, target, trigger)``:

    OFFICER_DECISION        officer approves / forwards / rejects
    SIGNATURE_COMPLETION    successful HSM signature advances one step
    PAYMENT_COMPLETION      gateway confirms the licence fee
    APPOINTMENT_SCHEDULING  junior officer books document verification

Each edge carries the authorization guard for its trigger, so the graph
is the single source of truth for "who may move what where".

Officer-decision edges:
    JUNIOR_ENGINEER_PENDING         → DOCUMENT_VERIFICATION_PENDING
    DOCUMENT_VERIFICATION_PENDING   → ASSISTANT_ENGINEER_PENDING
    ASSISTANT_ENGINEER_PENDING      → EXECUTIVE_ENGINEER_PENDING
    EXECUTIVE_ENGINEER_PENDING      → CITY_ENGINEER_PENDING | EXECUTIVE_ENGINEER_SIGN_PENDING
    CITY_ENGINEER_PENDING           → PAYMENT_PENDING | CITY_ENGINEER_SIGN_PENDING
    PAYMENT_PENDING                 → CLERK_PENDING
    CLERK_PENDING                   → EXECUTIVE_ENGINEER_SIGN_PENDING
    EXECUTIVE_ENGINEER_SIGN_PENDING → CITY_ENGINEER_SIGN_PENDING
    CITY_ENGINEER_SIGN_PENDING      → APPROVED
    every non-terminal stage        → REJECTED

Signature-completion edges form the strict linear chain
JUNIOR → ASSISTANT → EXECUTIVE → CITY → PAYMENT → CLERK → EXEC_SIGN →
CITY_SIGN → APPROVED. APPROVED and REJECTED are terminal.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from pmcrms.core.exceptions import InvalidTransitionError, UnauthorizedError
from pmcrms.models.enums import ApplicationStage, ApplicationStatus
from pmcrms.services.roles import RoleLevel, classify_role
from pmcrms.services.stage_authorization import authorize_mutation

S = ApplicationStage


class Trigger(str, Enum):
    OFFICER_DECISION = "OFFICER_DECISION"
    SIGNATURE_COMPLETION = "SIGNATURE_COMPLETION"
    PAYMENT_COMPLETION = "PAYMENT_COMPLETION"
    APPOINTMENT_SCHEDULING = "APPOINTMENT_SCHEDULING"


@dataclass(frozen=True)
class Actor:
    """Who is driving a transition. ``user_id=None`` is the system itself."""

    user_id: int | None
    role: str | None

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, role=None)

    @property
    def is_system(self) -> bool:
        return self.user_id is None


# ── Guards ───────────────────────────────────────────────────────────────────

def _officer_guard(actor: Actor, application) -> None:
    authorize_mutation(actor.role, application.current_stage, application.position_type)


def _appointment_guard(actor: Actor, application) -> None:
    if classify_role(actor.role).level is not RoleLevel.JUNIOR:
        raise UnauthorizedError("Only Junior officers can schedule appointments")
    authorize_mutation(actor.role, application.current_stage, application.position_type)


def _payment_guard(actor: Actor, application) -> None:
    if not actor.is_system and actor.user_id != application.applicant_id:
        raise UnauthorizedError("Only the applicant or the payment gateway can complete payment")


_GUARDS: dict[Trigger, Callable[[Actor, object], None]] = {
    Trigger.OFFICER_DECISION: _officer_guard,
    Trigger.SIGNATURE_COMPLETION: _officer_guard,
    Trigger.PAYMENT_COMPLETION: _payment_guard,
    Trigger.APPOINTMENT_SCHEDULING: _appointment_guard,
}


@dataclass(frozen=True)
class Transition:
    source: ApplicationStage
    target: ApplicationStage
    trigger: Trigger

    def authorize(self, actor: Actor, application) -> None:
        """Raise ``UnauthorizedError`` if *actor* may not take this edge."""
        _GUARDS[self.trigger](actor, application)


# ── Edge tables ──────────────────────────────────────────────────────────────

TERMINAL_STAGES = frozenset({S.APPROVED, S.REJECTED})

OFFICER_TRANSITIONS: dict[ApplicationStage, tuple[ApplicationStage, ...]] = {
    S.JUNIOR_ENGINEER_PENDING: (S.DOCUMENT_VERIFICATION_PENDING,),
    S.DOCUMENT_VERIFICATION_PENDING: (S.ASSISTANT_ENGINEER_PENDING,),
    S.ASSISTANT_ENGINEER_PENDING: (S.EXECUTIVE_ENGINEER_PENDING,),
    S.EXECUTIVE_ENGINEER_PENDING: (S.CITY_ENGINEER_PENDING, S.EXECUTIVE_ENGINEER_SIGN_PENDING),
    S.CITY_ENGINEER_PENDING: (S.PAYMENT_PENDING, S.CITY_ENGINEER_SIGN_PENDING),
    S.PAYMENT_PENDING: (S.CLERK_PENDING,),
    S.CLERK_PENDING: (S.EXECUTIVE_ENGINEER_SIGN_PENDING,),
    S.EXECUTIVE_ENGINEER_SIGN_PENDING: (S.CITY_ENGINEER_SIGN_PENDING,),
    S.CITY_ENGINEER_SIGN_PENDING: (S.APPROVED,),
}

SIGNATURE_TRANSITIONS: dict[ApplicationStage, ApplicationStage] = {
    S.JUNIOR_ENGINEER_PENDING: S.ASSISTANT_ENGINEER_PENDING,
    S.ASSISTANT_ENGINEER_PENDING: S.EXECUTIVE_ENGINEER_PENDING,
    S.EXECUTIVE_ENGINEER_PENDING: S.CITY_ENGINEER_PENDING,
    S.CITY_ENGINEER_PENDING: S.PAYMENT_PENDING,
    S.PAYMENT_PENDING: S.CLERK_PENDING,
    S.CLERK_PENDING: S.EXECUTIVE_ENGINEER_SIGN_PENDING,
    S.EXECUTIVE_ENGINEER_SIGN_PENDING: S.CITY_ENGINEER_SIGN_PENDING,
    S.CITY_ENGINEER_SIGN_PENDING: S.APPROVED,
}

STAGE_STATUS: dict[ApplicationStage, ApplicationStatus] = {
    S.JUNIOR_ENGINEER_PENDING: ApplicationStatus.SUBMITTED,
    S.DOCUMENT_VERIFICATION_PENDING: ApplicationStatus.APPOINTMENT_SCHEDULED,
    S.ASSISTANT_ENGINEER_PENDING: ApplicationStatus.ASSISTANT_ENGINEER_APPROVED,
    S.EXECUTIVE_ENGINEER_PENDING: ApplicationStatus.EXECUTIVE_ENGINEER_APPROVED,
    S.CITY_ENGINEER_PENDING: ApplicationStatus.CITY_ENGINEER_APPROVED,
    S.PAYMENT_PENDING: ApplicationStatus.PAYMENT_PENDING,
    S.CLERK_PENDING: ApplicationStatus.PAYMENT_COMPLETED,
    S.EXECUTIVE_ENGINEER_SIGN_PENDING: ApplicationStatus.CLERK_APPROVED,
    S.CITY_ENGINEER_SIGN_PENDING: ApplicationStatus.DIGITALLY_SIGNED_BY_EXECUTIVE,
    S.APPROVED: ApplicationStatus.COMPLETED,
    S.REJECTED: ApplicationStatus.REJECTED,
}


def _build_graph() -> tuple[Transition, ...]:
    edges = []
    for source, targets in OFFICER_TRANSITIONS.items():
        edges.extend(Transition(source, t, Trigger.OFFICER_DECISION) for t in targets)
    for source in S:
        if source not in TERMINAL_STAGES:
            edges.append(Transition(source, S.REJECTED, Trigger.OFFICER_DECISION))
    edges.extend(
        Transition(source, target, Trigger.SIGNATURE_COMPLETION)
        for source, target in SIGNATURE_TRANSITIONS.items()
    )
    edges.append(Transition(S.PAYMENT_PENDING, S.CLERK_PENDING, Trigger.PAYMENT_COMPLETION))
    edges.append(Transition(
        S.JUNIOR_ENGINEER_PENDING, S.DOCUMENT_VERIFICATION_PENDING, Trigger.APPOINTMENT_SCHEDULING,
    ))
    return tuple(edges)


TRANSITION_GRAPH: tuple[Transition, ...] = _build_graph()


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════

def _as_stage(stage) -> ApplicationStage | None:
    try:
        return ApplicationStage(stage)
    except ValueError:
        return None


def edges_from(stage, trigger: Trigger | None = None) -> list[Transition]:
    source = _as_stage(stage)
    return [
        e for e in TRANSITION_GRAPH
        if e.source is source and (trigger is None or e.trigger is trigger)
    ]


def allowed_next_stages(stage, trigger: Trigger = Trigger.OFFICER_DECISION) -> list[ApplicationStage]:
    """Targets reachable from *stage* by one edge of *trigger*."""
    return [e.target for e in edges_from(stage, trigger)]


def validate_transition(current, new, trigger: Trigger = Trigger.OFFICER_DECISION) -> Transition:
    """Return the matching edge or raise ``InvalidTransitionError``.

    Unknown stage values are rejected the same way as illegal moves.
    """
    target = _as_stage(new)
    for edge in edges_from(current, trigger):
        if edge.target is target:
            return edge
    raise InvalidTransitionError(str(getattr(current, "value", current)),
                                 str(getattr(new, "value", new)),
                                 trigger.value)


def next_stage_after_signature(stage) -> ApplicationStage | None:
    source = _as_stage(stage)
    return SIGNATURE_TRANSITIONS.get(source) if source else None


def is_terminal(stage) -> bool:
    return _as_stage(stage) in TERMINAL_STAGES


def status_for_stage(stage) -> ApplicationStatus:
    return STAGE_STATUS[ApplicationStage(stage)]


def apply_transition(application, transition: Transition) -> None:
    """Move *application* along *transition*; status follows the stage."""
    if application.current_stage != transition.source.value:
        raise InvalidTransitionError(application.current_stage, transition.target.value,
                                     transition.trigger.value)
    application.current_stage = transition.target.value
    application.status = status_for_stage(transition.target).value
