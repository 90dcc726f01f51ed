"""
Unit tests for the permit lifecycle state machine.

These tests cover:
- The declared transition map and terminal states
- Trigger ownership of each edge
- Elapsed-time guards for EXPIRED and OVERSTAYED
- The review phase / presence state decomposition
"""

from datetime import timedelta

import pytest

from app.modules.permits.lifecycle import (
    CROSSABLE_STATUSES,
    TERMINAL_STATUSES,
    VALID_STATUS_TRANSITIONS,
    InvalidStatusTransitionError,
    PresenceState,
    ReviewPhase,
    TransitionTrigger,
    check_time_guard,
    presence_state,
    review_phase,
    source_statuses,
    trigger_for,
    validate_transition,
)
from app.modules.permits.models import ApplicationStatus

S = ApplicationStatus


class TestTransitionMap:
    """Tests for the declared transition map."""

    def test_all_statuses_are_in_transition_map(self):
        for status in ApplicationStatus:
            assert status in VALID_STATUS_TRANSITIONS

    def test_exact_edges(self):
        edges = {
            (source, target)
            for source, targets in VALID_STATUS_TRANSITIONS.items()
            for target in targets
        }
        assert edges == {
            (S.SUBMITTED, S.UNDER_REVIEW),
            (S.UNDER_REVIEW, S.PENDING_DOCUMENTS),
            (S.UNDER_REVIEW, S.APPROVED),
            (S.UNDER_REVIEW, S.REJECTED),
            (S.PENDING_DOCUMENTS, S.UNDER_REVIEW),
            (S.APPROVED, S.ACTIVE),
            (S.ACTIVE, S.EXITED),
            (S.ACTIVE, S.EXPIRED),
            (S.ACTIVE, S.OVERSTAYED),
        }

    def test_terminal_states_have_no_transitions(self):
        assert TERMINAL_STATUSES == {S.REJECTED, S.EXITED, S.EXPIRED, S.OVERSTAYED}
        for status in TERMINAL_STATUSES:
            assert VALID_STATUS_TRANSITIONS[status] == set()

    def test_crossable_statuses(self):
        assert CROSSABLE_STATUSES == {S.APPROVED, S.ACTIVE}

    def test_source_statuses(self):
        assert source_statuses(S.UNDER_REVIEW) == {S.SUBMITTED, S.PENDING_DOCUMENTS}
        assert source_statuses(S.ACTIVE) == {S.APPROVED}
        assert source_statuses(S.SUBMITTED) == set()


class TestTriggers:
    """Each edge is owned by exactly one trigger."""

    @pytest.mark.parametrize(
        "target,trigger",
        [
            (S.UNDER_REVIEW, TransitionTrigger.REVIEW),
            (S.PENDING_DOCUMENTS, TransitionTrigger.REVIEW),
            (S.APPROVED, TransitionTrigger.REVIEW),
            (S.REJECTED, TransitionTrigger.REVIEW),
            (S.ACTIVE, TransitionTrigger.CHECKPOINT),
            (S.EXITED, TransitionTrigger.CHECKPOINT),
            (S.EXPIRED, TransitionTrigger.COMPLIANCE),
            (S.OVERSTAYED, TransitionTrigger.COMPLIANCE),
        ],
    )
    def test_trigger_for(self, target, trigger):
        assert trigger_for(target) == trigger

    def test_review_edge_accepted(self):
        validate_transition(S.SUBMITTED, S.UNDER_REVIEW, TransitionTrigger.REVIEW)

    def test_undeclared_edge_rejected(self):
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            validate_transition(S.SUBMITTED, S.APPROVED, TransitionTrigger.REVIEW)
        assert exc_info.value.current_status == S.SUBMITTED
        assert exc_info.value.new_status == S.APPROVED

    def test_checkpoint_edge_refused_for_review_trigger(self):
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            validate_transition(S.APPROVED, S.ACTIVE, TransitionTrigger.REVIEW)
        assert "checkpoint" in str(exc_info.value)

    def test_compliance_edge_refused_for_review_trigger(self):
        with pytest.raises(InvalidStatusTransitionError):
            validate_transition(S.ACTIVE, S.EXPIRED, TransitionTrigger.REVIEW)

    def test_terminal_status_cannot_move(self):
        for target in ApplicationStatus:
            with pytest.raises(InvalidStatusTransitionError):
                validate_transition(S.REJECTED, target, trigger_for(target))


class TestInvalidStatusTransitionError:
    def test_error_message_lists_valid_transitions(self):
        error = InvalidStatusTransitionError(S.SUBMITTED, S.APPROVED)
        message = str(error)
        assert "SUBMITTED -> APPROVED" in message
        assert "UNDER_REVIEW" in message

    def test_error_is_value_error(self):
        assert isinstance(InvalidStatusTransitionError(S.SUBMITTED, S.ACTIVE), ValueError)


class TestTimeGuards:
    def test_expiry_guard_passes_after_expiry(self, application_factory, now):
        application = application_factory(
            S.ACTIVE, permit_expiry_date=now - timedelta(seconds=1)
        )
        check_time_guard(application, S.EXPIRED, now)

    def test_expiry_guard_fails_at_exact_expiry(self, application_factory, now):
        application = application_factory(S.ACTIVE, permit_expiry_date=now)
        with pytest.raises(InvalidStatusTransitionError):
            check_time_guard(application, S.EXPIRED, now)

    def test_expiry_guard_fails_without_expiry(self, application_factory, now):
        application = application_factory(S.ACTIVE, permit_expiry_date=None)
        with pytest.raises(InvalidStatusTransitionError):
            check_time_guard(application, S.EXPIRED, now)

    def test_overstay_guard(self, application_factory, now):
        overdue = application_factory(S.ACTIVE, visit_end_date=now - timedelta(hours=1))
        check_time_guard(overdue, S.OVERSTAYED, now)

        in_time = application_factory(S.ACTIVE, visit_end_date=now + timedelta(hours=1))
        with pytest.raises(InvalidStatusTransitionError):
            check_time_guard(in_time, S.OVERSTAYED, now)

    def test_other_targets_unguarded(self, application_factory, now):
        check_time_guard(application_factory(S.ACTIVE), S.EXITED, now)


class TestTwoAxisView:
    @pytest.mark.parametrize(
        "status,phase,presence",
        [
            (S.SUBMITTED, ReviewPhase.SUBMITTED, PresenceState.NOT_ENTERED),
            (S.UNDER_REVIEW, ReviewPhase.IN_REVIEW, PresenceState.NOT_ENTERED),
            (S.PENDING_DOCUMENTS, ReviewPhase.AWAITING_DOCUMENTS, PresenceState.NOT_ENTERED),
            (S.APPROVED, ReviewPhase.APPROVED, PresenceState.NOT_ENTERED),
            (S.REJECTED, ReviewPhase.REJECTED, PresenceState.NOT_ENTERED),
            (S.ACTIVE, ReviewPhase.APPROVED, PresenceState.INSIDE),
            (S.EXITED, ReviewPhase.APPROVED, PresenceState.DEPARTED),
            (S.EXPIRED, ReviewPhase.APPROVED, PresenceState.EXPIRED),
            (S.OVERSTAYED, ReviewPhase.APPROVED, PresenceState.OVERSTAYED),
        ],
    )
    def test_decomposition(self, status, phase, presence):
        assert review_phase(status) == phase
        assert presence_state(status) == presence

    def test_decomposition_is_lossless(self):
        pairs = {(review_phase(s), presence_state(s)) for s in ApplicationStatus}
        assert len(pairs) == len(ApplicationStatus)
