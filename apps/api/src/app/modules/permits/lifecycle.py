"""
Permit Lifecycle State Machine

The authoritative set of application states and the guarded transitions
between them. This module is pure: it decides whether a transition is
allowed, and the repository's compare-and-swap primitive performs it.

Every edge is owned by exactly one trigger:
- REVIEW: officer decisions through the transition endpoint
- CHECKPOINT: recorded ENTRY / EXIT crossings
- COMPLIANCE: elapsed-time sweeps (expiry, overstay)

The nine-state status also decomposes into a review phase and a presence
state (see review_phase / presence_state) for consumers that only care about
one axis.
"""

import enum
from datetime import datetime

from app.modules.permits.models import Application, ApplicationStatus


class TransitionTrigger(str, enum.Enum):
    """What is allowed to drive a transition."""

    REVIEW = "review"
    CHECKPOINT = "checkpoint"
    COMPLIANCE = "compliance"


# Valid status transitions, keyed by source status
VALID_STATUS_TRANSITIONS: dict[ApplicationStatus, set[ApplicationStatus]] = {
    ApplicationStatus.SUBMITTED: {
        ApplicationStatus.UNDER_REVIEW,
    },
    ApplicationStatus.UNDER_REVIEW: {
        ApplicationStatus.PENDING_DOCUMENTS,
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
    },
    ApplicationStatus.PENDING_DOCUMENTS: {
        ApplicationStatus.UNDER_REVIEW,  # Documents resubmitted
    },
    ApplicationStatus.APPROVED: {
        ApplicationStatus.ACTIVE,  # First entry recorded
    },
    ApplicationStatus.ACTIVE: {
        ApplicationStatus.EXITED,
        ApplicationStatus.EXPIRED,
        ApplicationStatus.OVERSTAYED,
    },
    # Terminal states
    ApplicationStatus.REJECTED: set(),
    ApplicationStatus.EXITED: set(),
    ApplicationStatus.EXPIRED: set(),
    # Terminal for this machine; escalation happens outside the permit core
    ApplicationStatus.OVERSTAYED: set(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in VALID_STATUS_TRANSITIONS.items() if not targets
)

# Statuses a checkpoint will accept a crossing for
CROSSABLE_STATUSES = frozenset({ApplicationStatus.APPROVED, ApplicationStatus.ACTIVE})

_CHECKPOINT_TARGETS = {ApplicationStatus.ACTIVE, ApplicationStatus.EXITED}
_COMPLIANCE_TARGETS = {ApplicationStatus.EXPIRED, ApplicationStatus.OVERSTAYED}


def trigger_for(target: ApplicationStatus) -> TransitionTrigger:
    """Return the trigger that owns transitions into target."""
    if target in _CHECKPOINT_TARGETS:
        return TransitionTrigger.CHECKPOINT
    if target in _COMPLIANCE_TARGETS:
        return TransitionTrigger.COMPLIANCE
    return TransitionTrigger.REVIEW


def source_statuses(target: ApplicationStatus) -> set[ApplicationStatus]:
    """Return every status from which target can be reached."""
    return {source for source, targets in VALID_STATUS_TRANSITIONS.items() if target in targets}


class InvalidStatusTransitionError(ValueError):
    """Raised when a transition is not allowed by the state machine."""

    def __init__(
        self,
        current_status: ApplicationStatus,
        new_status: ApplicationStatus,
        reason: str | None = None,
    ):
        self.current_status = current_status
        self.new_status = new_status
        valid_transitions = VALID_STATUS_TRANSITIONS.get(current_status, set())
        message = (
            f"Invalid status transition: {current_status.value} -> {new_status.value}. "
            f"Valid transitions: {sorted(s.value for s in valid_transitions)}"
        )
        if reason:
            message = f"{message}. {reason}"
        self.reason = reason
        super().__init__(message)


def validate_transition(
    current: ApplicationStatus,
    target: ApplicationStatus,
    trigger: TransitionTrigger,
) -> None:
    """
    Check that current -> target is a declared edge owned by trigger.

    Raises:
        InvalidStatusTransitionError: If the edge does not exist or belongs
            to a different trigger
    """
    if target not in VALID_STATUS_TRANSITIONS.get(current, set()):
        raise InvalidStatusTransitionError(current, target)

    owner = trigger_for(target)
    if owner != trigger:
        raise InvalidStatusTransitionError(
            current,
            target,
            reason=f"Transitions into {target.value} are driven by {owner.value} events only",
        )


def check_time_guard(
    application: Application,
    target: ApplicationStatus,
    now: datetime,
) -> None:
    """
    Enforce the elapsed-time guards on compliance transitions.

    ACTIVE -> EXPIRED requires now > permit_expiry_date.
    ACTIVE -> OVERSTAYED requires now > visit_end_date.

    Raises:
        InvalidStatusTransitionError: If the guard does not hold
    """
    if target == ApplicationStatus.EXPIRED:
        expiry = application.permit_expiry_date
        if expiry is None or not now > expiry:
            raise InvalidStatusTransitionError(
                application.status, target, reason="Permit has not passed its expiry date"
            )
    elif target == ApplicationStatus.OVERSTAYED:
        if not now > application.visit_end_date:
            raise InvalidStatusTransitionError(
                application.status, target, reason="Visit end date has not passed"
            )


# ============================================
# Two-axis view of the status
# ============================================


class ReviewPhase(str, enum.Enum):
    """Where the application stands in the review process."""

    SUBMITTED = "SUBMITTED"
    IN_REVIEW = "IN_REVIEW"
    AWAITING_DOCUMENTS = "AWAITING_DOCUMENTS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PresenceState(str, enum.Enum):
    """Where the permit holder physically is, as far as the permit core knows."""

    NOT_ENTERED = "NOT_ENTERED"
    INSIDE = "INSIDE"
    DEPARTED = "DEPARTED"
    EXPIRED = "EXPIRED"
    OVERSTAYED = "OVERSTAYED"


_REVIEW_PHASES: dict[ApplicationStatus, ReviewPhase] = {
    ApplicationStatus.SUBMITTED: ReviewPhase.SUBMITTED,
    ApplicationStatus.UNDER_REVIEW: ReviewPhase.IN_REVIEW,
    ApplicationStatus.PENDING_DOCUMENTS: ReviewPhase.AWAITING_DOCUMENTS,
    ApplicationStatus.REJECTED: ReviewPhase.REJECTED,
}

_PRESENCE_STATES: dict[ApplicationStatus, PresenceState] = {
    ApplicationStatus.ACTIVE: PresenceState.INSIDE,
    ApplicationStatus.EXITED: PresenceState.DEPARTED,
    ApplicationStatus.EXPIRED: PresenceState.EXPIRED,
    ApplicationStatus.OVERSTAYED: PresenceState.OVERSTAYED,
}


def review_phase(status: ApplicationStatus) -> ReviewPhase:
    """Review phase for a status; everything past approval is APPROVED."""
    return _REVIEW_PHASES.get(status, ReviewPhase.APPROVED)


def presence_state(status: ApplicationStatus) -> PresenceState:
    """Presence state for a status; anything before the first entry is NOT_ENTERED."""
    return _PRESENCE_STATES.get(status, PresenceState.NOT_ENTERED)
