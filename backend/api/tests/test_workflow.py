import pytest

from app.models import ArtifactStatus as S
from app.workflow import (
    INITIAL_STATUS,
    Trigger,
    WorkflowError,
    allowed_transitions,
    can_transition,
    list_states,
    validate_transition,
)


def test_states_cover_every_status():
    assert set(list_states()) == {s.value for s in S}
    assert INITIAL_STATUS == S.COMMUNITY_REVIEW


@pytest.mark.parametrize("terminal", [S.VERIFIED, S.REJECTED, S.WITHDRAWN])
def test_terminal_statuses_have_no_outgoing_edges(terminal):
    assert allowed_transitions(terminal) == []
    for trigger in Trigger:
        for target in S:
            assert not can_transition(trigger, terminal, target)


def test_review_window_close_edges():
    assert allowed_transitions("community_review") == ["EXPERT_REVIEW", "FLAGGED", "REJECTED", "WITHDRAWN"]
    validate_transition(Trigger.REVIEW_WINDOW_CLOSE, S.COMMUNITY_REVIEW, S.EXPERT_REVIEW)
    validate_transition(Trigger.REVIEW_WINDOW_CLOSE, S.COMMUNITY_REVIEW, S.REJECTED)
    with pytest.raises(WorkflowError):
        validate_transition(Trigger.REVIEW_WINDOW_CLOSE, S.COMMUNITY_REVIEW, S.VERIFIED)


def test_expert_decision_only_from_expert_review():
    validate_transition(Trigger.EXPERT_DECISION, S.EXPERT_REVIEW, S.VERIFIED)
    with pytest.raises(WorkflowError):
        validate_transition(Trigger.EXPERT_DECISION, S.COMMUNITY_REVIEW, S.VERIFIED)
    with pytest.raises(WorkflowError):
        validate_transition(Trigger.EXPERT_DECISION, S.FLAGGED, S.REJECTED)


def test_flag_threshold_not_from_flagged_or_terminal():
    assert can_transition(Trigger.FLAG_THRESHOLD, S.EXPERT_REVIEW, S.FLAGGED)
    assert not can_transition(Trigger.FLAG_THRESHOLD, S.FLAGGED, S.FLAGGED)
    assert not can_transition(Trigger.FLAG_THRESHOLD, S.VERIFIED, S.FLAGGED)


def test_withdraw_from_flagged():
    assert allowed_transitions(S.FLAGGED) == ["WITHDRAWN"]


def test_unknown_status_is_a_workflow_error():
    with pytest.raises(WorkflowError):
        allowed_transitions("PUBLISHED")
