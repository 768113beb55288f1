"""
Member Portal Workflow - Workflows API
======================================

Project status workflow endpoints: board listing, status changes,
history, milestones and assignment.

Domain errors raised by WorkflowService are turned into 404/400 responses
by the exception handlers registered in src.api.main.
"""

from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from src.api.deps import CurrentAdminUser, CurrentUser, Workflows
from src.core.config import settings
from src.core.models import WorkflowPhase, WorkflowPriority, WorkflowStatus
from src.core.schemas import (
    AllowedTransitionsResponse,
    AssignUserRequest,
    MilestoneCreate,
    MilestoneResponse,
    StatusChangeRequest,
    StatusChangeResponse,
    TransitionOption,
    TransitionTableEntry,
    WorkflowCreate,
    WorkflowListResponse,
    WorkflowResponse,
    WorkflowStats,
    WorkflowSummary,
    WorkflowUpdate,
)
from src.core.workflow import WorkflowFilters
from src.core.workflow.transitions import (
    is_terminal,
    ordered_transitions,
    phase_for,
    progress_for,
)

router = APIRouter(prefix="/workflows", tags=["Workflows"])


# ==========================================================================
# Board
# ==========================================================================

@router.get(
    "",
    response_model=WorkflowListResponse,
    summary="List workflows",
    responses={
        200: {"description": "Workflow board"},
        401: {"description": "Not authenticated"},
    },
)
async def list_workflows(
    current_user: CurrentUser,
    workflows: Workflows,
    status_filter: Optional[list[WorkflowStatus]] = Query(
        None, alias="status", description="Filter by status (repeatable)"
    ),
    phase: Optional[list[WorkflowPhase]] = Query(None, description="Filter by phase (repeatable)"),
    priority: Optional[list[WorkflowPriority]] = Query(
        None, description="Filter by priority (repeatable)"
    ),
    assigned_to: Optional[UUID] = Query(None, alias="assignedTo", description="Filter by assignee"),
    overdue: bool = Query(False, description="Only overdue workflows"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(
        settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE,
        description="Items per page",
    ),
) -> WorkflowListResponse:
    """List workflows with optional filters, newest first."""
    filters = WorkflowFilters(
        statuses=status_filter or [],
        phases=phase or [],
        priorities=priority or [],
        assigned_to=assigned_to,
        overdue=overdue,
    )
    items, total = await workflows.list_workflows(filters, page=page, page_size=page_size)

    return WorkflowListResponse(
        items=[WorkflowSummary.model_validate(w) for w in items],
        total=total,
        page=page,
        page_size=page_size,
        pages=ceil(total / page_size) if total > 0 else 1,
    )


@router.get(
    "/stats",
    response_model=WorkflowStats,
    summary="Workflow board statistics",
    responses={403: {"description": "Admin access required"}},
)
async def get_workflow_stats(
    current_user: CurrentAdminUser,
    workflows: Workflows,
) -> WorkflowStats:
    """Totals per status and phase, active, overdue and completed counts."""
    return WorkflowStats(**await workflows.get_stats())


@router.get(
    "/transitions",
    response_model=list[TransitionTableEntry],
    summary="Full transition table",
)
async def get_transition_table(current_user: CurrentUser) -> list[TransitionTableEntry]:
    """Every status with its phase, progress and legal next statuses."""
    return [
        TransitionTableEntry(
            status=s,
            phase=phase_for(s),
            progress=progress_for(s),
            next_statuses=ordered_transitions(s),
        )
        for s in WorkflowStatus
    ]


@router.post(
    "",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create workflow",
    responses={
        201: {"description": "Workflow created"},
        400: {"description": "Invalid request or workflow already exists"},
        404: {"description": "Project or assignee not found"},
    },
)
async def create_workflow(
    data: WorkflowCreate,
    current_user: CurrentUser,
    workflows: Workflows,
) -> WorkflowResponse:
    workflow = await workflows.create_workflow(
        data.project_id,
        current_user,
        initial_status=data.initial_status,
        priority=data.priority,
        due_date=data.due_date,
        assigned_to=data.assigned_to,
        blockers=data.blockers,
        dependencies=data.dependencies,
        metadata=data.metadata,
        automation_rules=data.automation_rules,
    )
    return WorkflowResponse.model_validate(workflow)


# ==========================================================================
# Single Workflow
# ==========================================================================

@router.get(
    "/{project_id}",
    response_model=WorkflowResponse,
    summary="Get workflow",
    responses={404: {"description": "Workflow not found"}},
)
async def get_workflow(
    project_id: UUID,
    current_user: CurrentUser,
    workflows: Workflows,
) -> WorkflowResponse:
    workflow = await workflows.get_workflow(project_id)
    return WorkflowResponse.model_validate(workflow)


@router.patch(
    "/{project_id}",
    response_model=WorkflowResponse,
    summary="Update workflow details",
    responses={
        400: {"description": "Invalid field"},
        404: {"description": "Workflow not found"},
    },
)
async def update_workflow(
    project_id: UUID,
    data: WorkflowUpdate,
    current_user: CurrentUser,
    workflows: Workflows,
) -> WorkflowResponse:
    """Partial update; only the fields present in the body change."""
    workflow = await workflows.update_details(
        project_id, data.model_dump(exclude_unset=True)
    )
    return WorkflowResponse.model_validate(workflow)


@router.post(
    "/{project_id}/status",
    response_model=WorkflowResponse,
    summary="Change workflow status",
    responses={
        200: {"description": "Status changed"},
        400: {"description": "Invalid transition or missing reason"},
        404: {"description": "Workflow not found"},
    },
)
async def change_status(
    project_id: UUID,
    data: StatusChangeRequest,
    current_user: CurrentUser,
    workflows: Workflows,
) -> WorkflowResponse:
    """
    Move the workflow along one edge of the transition table.

    The response carries the recomputed progress and the appended history.
    """
    workflow = await workflows.change_status(
        project_id,
        data.new_status,
        data.reason,
        current_user,
        notes=data.notes,
    )
    return WorkflowResponse.model_validate(workflow)


@router.get(
    "/{project_id}/history",
    response_model=list[StatusChangeResponse],
    summary="Status history",
    responses={404: {"description": "Workflow not found"}},
)
async def get_status_history(
    project_id: UUID,
    current_user: CurrentUser,
    workflows: Workflows,
) -> list[StatusChangeResponse]:
    history = await workflows.get_history(project_id)
    return [StatusChangeResponse.model_validate(change) for change in history]


@router.get(
    "/{project_id}/transitions",
    response_model=AllowedTransitionsResponse,
    summary="Allowed next statuses",
    responses={404: {"description": "Workflow not found"}},
)
async def get_allowed_transitions(
    project_id: UUID,
    current_user: CurrentUser,
    workflows: Workflows,
) -> AllowedTransitionsResponse:
    workflow = await workflows.get_workflow(project_id)
    return AllowedTransitionsResponse(
        project_id=project_id,
        current_status=workflow.status,
        progress=workflow.progress,
        terminal=is_terminal(workflow.status),
        options=[
            TransitionOption(status=s, progress=progress_for(s), phase=phase_for(s))
            for s in ordered_transitions(workflow.status)
        ],
    )


@router.post(
    "/{project_id}/assign",
    response_model=WorkflowResponse,
    summary="Assign user",
    responses={404: {"description": "Workflow or user not found"}},
)
async def assign_user(
    project_id: UUID,
    data: AssignUserRequest,
    current_user: CurrentUser,
    workflows: Workflows,
) -> WorkflowResponse:
    workflow = await workflows.assign_user(project_id, data.user_id, current_user)
    return WorkflowResponse.model_validate(workflow)


# ==========================================================================
# Milestones
# ==========================================================================

@router.post(
    "/{project_id}/milestones",
    response_model=MilestoneResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add milestone",
    responses={
        201: {"description": "Milestone added"},
        404: {"description": "Workflow not found"},
    },
)
async def add_milestone(
    project_id: UUID,
    data: MilestoneCreate,
    current_user: CurrentUser,
    workflows: Workflows,
) -> MilestoneResponse:
    milestone = await workflows.add_milestone(
        project_id,
        data.title,
        data.description,
        data.due_date,
        dependencies=data.dependencies,
        deliverables=data.deliverables,
    )
    return MilestoneResponse.model_validate(milestone)


@router.post(
    "/{project_id}/milestones/{milestone_id}/complete",
    response_model=MilestoneResponse,
    summary="Complete milestone",
    responses={
        200: {"description": "Milestone complete (or already was)"},
        404: {"description": "Workflow or milestone not found"},
    },
)
async def complete_milestone(
    project_id: UUID,
    milestone_id: UUID,
    current_user: CurrentUser,
    workflows: Workflows,
) -> MilestoneResponse:
    """Completing an already completed milestone returns it unchanged."""
    milestone = await workflows.complete_milestone(project_id, milestone_id, current_user)
    return MilestoneResponse.model_validate(milestone)
