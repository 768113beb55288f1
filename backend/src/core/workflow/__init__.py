"""
Project Workflow
================

Status lifecycle of portal projects:

- transitions: static transition table, progress and phase lookups
- service: status changes, milestones, assignment, listing and stats
- notifications: webhook/log delivery of workflow events
- errors: not-found and invalid-request errors raised by the service
"""

from src.core.workflow.errors import (
    InvalidTransitionError,
    InvalidWorkflowRequestError,
    WorkflowError,
    WorkflowNotFoundError,
)
from src.core.workflow.notifications import WorkflowNotifier
from src.core.workflow.service import WorkflowFilters, WorkflowService
from src.core.workflow.transitions import (
    TRANSITIONS,
    allowed_transitions,
    can_transition,
    is_terminal,
    phase_for,
    progress_for,
    validate_transition,
)

__all__ = [
    "InvalidTransitionError",
    "InvalidWorkflowRequestError",
    "TRANSITIONS",
    "WorkflowError",
    "WorkflowFilters",
    "WorkflowNotFoundError",
    "WorkflowNotifier",
    "WorkflowService",
    "allowed_transitions",
    "can_transition",
    "is_terminal",
    "phase_for",
    "progress_for",
    "validate_transition",
]
