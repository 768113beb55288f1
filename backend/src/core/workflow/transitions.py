"""
Workflow transition table.

Static lookups over WorkflowStatus: legal next statuses, progress
percentage and phase. Nothing here touches the database.
"""

from types import MappingProxyType

from src.core.models import WorkflowPhase, WorkflowStatus
from src.core.workflow.errors import InvalidTransitionError

S = WorkflowStatus

TRANSITIONS = MappingProxyType({
    S.DRAFT: frozenset({S.REVIEW, S.CANCELLED}),
    S.REVIEW: frozenset({S.APPROVED, S.DRAFT, S.CANCELLED}),
    S.APPROVED: frozenset({S.ACTIVE, S.REVIEW, S.CANCELLED}),
    S.ACTIVE: frozenset({S.APPLICATIONS_OPEN, S.ON_HOLD, S.CANCELLED}),
    S.APPLICATIONS_OPEN: frozenset({S.APPLICATIONS_CLOSED, S.ON_HOLD, S.CANCELLED}),
    S.APPLICATIONS_CLOSED: frozenset({S.EVALUATION, S.APPLICATIONS_OPEN, S.CANCELLED}),
    S.EVALUATION: frozenset({S.AWARDED, S.APPLICATIONS_OPEN, S.CANCELLED}),
    S.AWARDED: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.ON_HOLD, S.CANCELLED}),
    S.ON_HOLD: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    S.COMPLETED: frozenset({S.ARCHIVED}),
    S.CANCELLED: frozenset({S.ARCHIVED}),
    S.ARCHIVED: frozenset(),
})

STATUS_PROGRESS = MappingProxyType({
    S.DRAFT: 5,
    S.REVIEW: 10,
    S.APPROVED: 15,
    S.ACTIVE: 20,
    S.APPLICATIONS_OPEN: 30,
    S.APPLICATIONS_CLOSED: 40,
    S.EVALUATION: 50,
    S.AWARDED: 60,
    S.IN_PROGRESS: 75,
    S.ON_HOLD: 75,
    S.COMPLETED: 100,
    S.CANCELLED: 0,
    S.ARCHIVED: 100,
})

STATUS_PHASE = MappingProxyType({
    S.DRAFT: WorkflowPhase.PLANNING,
    S.REVIEW: WorkflowPhase.PLANNING,
    S.APPROVED: WorkflowPhase.PLANNING,
    S.ACTIVE: WorkflowPhase.PROCUREMENT,
    S.APPLICATIONS_OPEN: WorkflowPhase.PROCUREMENT,
    S.APPLICATIONS_CLOSED: WorkflowPhase.PROCUREMENT,
    S.EVALUATION: WorkflowPhase.SELECTION,
    S.AWARDED: WorkflowPhase.SELECTION,
    S.IN_PROGRESS: WorkflowPhase.EXECUTION,
    S.ON_HOLD: WorkflowPhase.EXECUTION,
    S.COMPLETED: WorkflowPhase.CLOSEOUT,
    S.CANCELLED: WorkflowPhase.CLOSEOUT,
    S.ARCHIVED: WorkflowPhase.MAINTENANCE,
})

# Statuses that can no longer be overdue
CLOSED_STATUSES = frozenset({S.COMPLETED, S.CANCELLED, S.ARCHIVED})

# Counted as "active" on the workflow board
ACTIVE_STATUSES = frozenset({S.ACTIVE, S.APPLICATIONS_OPEN, S.IN_PROGRESS})


def allowed_transitions(current: WorkflowStatus) -> frozenset[WorkflowStatus]:
    return TRANSITIONS[current]


def ordered_transitions(current: WorkflowStatus) -> list[WorkflowStatus]:
    """Allowed next statuses in lifecycle order."""
    allowed = TRANSITIONS[current]
    return [status for status in WorkflowStatus if status in allowed]


def can_transition(current: WorkflowStatus, target: WorkflowStatus) -> bool:
    return target in TRANSITIONS[current]


def validate_transition(current: WorkflowStatus, target: WorkflowStatus) -> None:
    """Raise InvalidTransitionError unless current -> target is an edge."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target, ordered_transitions(current))


def is_terminal(status: WorkflowStatus) -> bool:
    return not TRANSITIONS[status]


def progress_for(status: WorkflowStatus) -> int:
    return STATUS_PROGRESS[status]


def phase_for(status: WorkflowStatus) -> WorkflowPhase:
    return STATUS_PHASE[status]
