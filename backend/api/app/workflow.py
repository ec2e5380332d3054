from __future__ import annotations

import enum

from app.errors import PreconditionFailed
from app.models import ArtifactStatus

S = ArtifactStatus

STATES: list[str] = [s.value for s in ArtifactStatus]

INITIAL_STATUS = S.COMMUNITY_REVIEW


class WorkflowError(PreconditionFailed):
    """Raised when a workflow transition is invalid."""


class Trigger(str, enum.Enum):
    WITHDRAW = "WITHDRAW"
    REVIEW_WINDOW_CLOSE = "REVIEW_WINDOW_CLOSE"
    EXPERT_DECISION = "EXPERT_DECISION"
    FLAG_THRESHOLD = "FLAG_THRESHOLD"


def list_states() -> list[str]:
    return list(STATES)


# Every status edge the system may take, grouped by what causes it.
# Submit (creation) and Edit (no status change) are not edges.
_TRANSITIONS: dict[Trigger, dict[ArtifactStatus, frozenset[ArtifactStatus]]] = {
    Trigger.WITHDRAW: {
        S.PENDING: frozenset({S.WITHDRAWN}),
        S.COMMUNITY_REVIEW: frozenset({S.WITHDRAWN}),
        S.EXPERT_REVIEW: frozenset({S.WITHDRAWN}),
        S.FLAGGED: frozenset({S.WITHDRAWN}),
    },
    Trigger.REVIEW_WINDOW_CLOSE: {
        S.COMMUNITY_REVIEW: frozenset({S.EXPERT_REVIEW, S.REJECTED}),
    },
    Trigger.EXPERT_DECISION: {
        S.EXPERT_REVIEW: frozenset({S.VERIFIED, S.REJECTED}),
    },
    Trigger.FLAG_THRESHOLD: {
        S.PENDING: frozenset({S.FLAGGED}),
        S.COMMUNITY_REVIEW: frozenset({S.FLAGGED}),
        S.EXPERT_REVIEW: frozenset({S.FLAGGED}),
    },
}


def _normalize_status(status: ArtifactStatus | str) -> ArtifactStatus:
    if isinstance(status, ArtifactStatus):
        return status
    try:
        return ArtifactStatus((status or "").strip().upper())
    except ValueError:
        raise WorkflowError(f"Unknown status: {status}")


def allowed_transitions(from_status: ArtifactStatus | str) -> list[str]:
    """
    Returns every status reachable in one step from `from_status`,
    whatever the trigger. Terminal statuses return [].
    """
    s = _normalize_status(from_status)
    targets: set[ArtifactStatus] = set()
    for edges in _TRANSITIONS.values():
        targets |= edges.get(s, frozenset())
    return sorted(t.value for t in targets)


def can_transition(trigger: Trigger, from_status: ArtifactStatus, to_status: ArtifactStatus) -> bool:
    return to_status in _TRANSITIONS[trigger].get(from_status, frozenset())


def validate_transition(
    trigger: Trigger,
    from_status: ArtifactStatus | str,
    to_status: ArtifactStatus | str,
) -> None:
    """
    Raises WorkflowError if the transition is not permitted.
    """
    s_from = _normalize_status(from_status)
    s_to = _normalize_status(to_status)

    if not can_transition(trigger, s_from, s_to):
        allowed = sorted(t.value for t in _TRANSITIONS[trigger].get(s_from, frozenset()))
        raise WorkflowError(
            f"Transition not allowed: {s_from.value} -> {s_to.value} on {trigger.value}. "
            f"Allowed: {allowed}"
        )
