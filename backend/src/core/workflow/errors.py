"""
Workflow errors.

Two kinds reach the caller: something referenced does not exist, or the
request itself is invalid (including an illegal status transition).
"""

from typing import Iterable, Optional

from src.core.models import WorkflowStatus


class WorkflowError(Exception):
    """Base class for workflow domain errors."""

    code = "WORKFLOW_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class WorkflowNotFoundError(WorkflowError):
    """Referenced project, workflow, milestone or user does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, identifier: object):
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


class InvalidWorkflowRequestError(WorkflowError):
    """Missing, duplicate or otherwise unacceptable request data."""

    code = "INVALID_REQUEST"


class InvalidTransitionError(InvalidWorkflowRequestError):
    """Requested status edge is not in the transition table."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        from_status: WorkflowStatus,
        to_status: WorkflowStatus,
        allowed: Optional[Iterable[WorkflowStatus]] = None,
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = list(allowed or [])
        if self.allowed:
            targets = ", ".join(s.value for s in self.allowed)
            hint = f"allowed: {targets}"
        else:
            hint = f"{from_status.value} is terminal"
        super().__init__(
            f"Invalid transition from {from_status.value} to {to_status.value} ({hint})"
        )
