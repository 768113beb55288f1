"""
Member Portal Workflow - Pydantic Schemas
=========================================

Request and response schemas for API validation.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from src.core.config import settings
from src.core.models import (
    UserRole,
    WorkflowPhase,
    WorkflowPriority,
    WorkflowStatus,
)


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class TimestampSchema(BaseSchema):
    """Schema with timestamp fields."""

    created_at: datetime
    updated_at: datetime


# ==========================================================================
# Auth Schemas
# ==========================================================================

class UserCreate(BaseSchema):
    """Schema for member registration."""

    email: EmailStr
    password: str = Field(min_length=settings.PASSWORD_MIN_LENGTH, max_length=72)
    name: str = Field(min_length=1, max_length=255)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password strength."""
        if not any(c.isupper() for c in v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not any(c.islower() for c in v):
            raise ValueError("Password must contain at least one lowercase letter")
        if not any(c.isdigit() for c in v):
            raise ValueError("Password must contain at least one digit")
        return v


class UserLogin(BaseSchema):
    """Schema for login."""

    email: EmailStr
    password: str


class UserResponse(TimestampSchema):
    """User in responses (no password)."""

    id: UUID
    email: EmailStr
    name: str
    role: UserRole
    is_active: bool
    last_login: Optional[datetime] = None


class TokenResponse(BaseSchema):
    """Access token issued at login."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until the token expires


# ==========================================================================
# Project Schemas
# ==========================================================================

class ProjectCreate(BaseSchema):
    """Schema for creating a project."""

    title: str = Field(min_length=1, max_length=500)
    client_name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None


class ProjectResponse(TimestampSchema):
    """Project in responses."""

    id: UUID
    title: str
    client_name: Optional[str] = None
    description: Optional[str] = None
    created_by: Optional[UUID] = None


class ProjectListResponse(BaseSchema):
    """Paginated list of projects."""

    items: list[ProjectResponse]
    total: int
    page: int
    page_size: int
    pages: int


# ==========================================================================
# Workflow Schemas
# ==========================================================================

class WorkflowRule(BaseSchema):
    """
    Automation rule stored on a workflow.

    Trigger, conditions and actions are free-form JSON owned by whatever
    automation consumes them.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    trigger: dict[str, Any] = Field(default_factory=dict)
    conditions: list[Any] = Field(default_factory=list)
    actions: list[Any] = Field(default_factory=list)
    enabled: bool = True
    priority: int = 0


class WorkflowCreate(BaseSchema):
    """Start the workflow of a project."""

    project_id: UUID
    initial_status: WorkflowStatus = WorkflowStatus.DRAFT
    priority: WorkflowPriority = WorkflowPriority.MEDIUM
    due_date: Optional[datetime] = None
    assigned_to: Optional[UUID] = None
    blockers: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    automation_rules: list[WorkflowRule] = Field(default_factory=list)


class WorkflowUpdate(BaseSchema):
    """Partial update of workflow details. Status is not editable here."""

    model_config = ConfigDict(extra="forbid")

    priority: Optional[WorkflowPriority] = None
    due_date: Optional[datetime] = None
    blockers: Optional[list[str]] = None
    dependencies: Optional[list[str]] = None
    metadata: Optional[dict[str, Any]] = None
    automation_rules: Optional[list[WorkflowRule]] = None


class StatusChangeRequest(BaseSchema):
    """Request to move a workflow to a new status."""

    new_status: WorkflowStatus
    reason: str = Field(min_length=1, max_length=2000)
    notes: Optional[str] = None


class AssignUserRequest(BaseSchema):
    """Assign a user to a workflow."""

    user_id: UUID


class StatusChangeResponse(BaseSchema):
    """One entry of the status history."""

    id: UUID
    from_status: Optional[WorkflowStatus] = None
    to_status: WorkflowStatus
    changed_by: Optional[UUID] = None
    changed_at: datetime
    reason: str
    notes: Optional[str] = None
    automated: bool
    trigger_event: Optional[str] = None


class MilestoneCreate(BaseSchema):
    """Add a milestone to a workflow."""

    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    due_date: datetime
    dependencies: list[str] = Field(default_factory=list)
    deliverables: list[str] = Field(default_factory=list)


class MilestoneResponse(BaseSchema):
    """Milestone in responses."""

    id: UUID
    title: str
    description: str
    due_date: datetime
    completed: bool
    completed_at: Optional[datetime] = None
    completed_by: Optional[UUID] = None
    dependencies: list[str]
    deliverables: list[str]
    is_overdue: bool


class WorkflowSummary(TimestampSchema):
    """Workflow row on the board (no milestones or history)."""

    id: UUID
    project_id: UUID
    project_title: Optional[str] = None
    project_client: Optional[str] = None
    status: WorkflowStatus
    previous_status: Optional[WorkflowStatus] = None
    phase: WorkflowPhase
    priority: WorkflowPriority
    progress: int = Field(ge=0, le=100)
    assigned_to: Optional[UUID] = None
    due_date: Optional[datetime] = None
    is_overdue: bool
    blockers: list[str]


class WorkflowResponse(WorkflowSummary):
    """Full workflow with milestones and status history."""

    assigned_by: Optional[UUID] = None
    dependencies: list[str]
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="extra")
    automation_rules: list[WorkflowRule]
    allowed_transitions: list[WorkflowStatus]
    milestones: list[MilestoneResponse]
    status_history: list[StatusChangeResponse]


class WorkflowListResponse(BaseSchema):
    """Paginated workflow board."""

    items: list[WorkflowSummary]
    total: int
    page: int
    page_size: int
    pages: int


class TransitionOption(BaseSchema):
    """A status the workflow may move to next."""

    status: WorkflowStatus
    progress: int
    phase: WorkflowPhase


class AllowedTransitionsResponse(BaseSchema):
    """Next statuses for one workflow."""

    project_id: UUID
    current_status: WorkflowStatus
    progress: int
    terminal: bool
    options: list[TransitionOption]


class TransitionTableEntry(BaseSchema):
    """Row of the full transition table."""

    status: WorkflowStatus
    phase: WorkflowPhase
    progress: int
    next_statuses: list[WorkflowStatus]


class WorkflowStats(BaseSchema):
    """Counts for the workflow board."""

    total: int
    active: int
    in_progress: int
    completed: int
    overdue: int
    by_status: dict[str, int]
    by_phase: dict[str, int]


# ==========================================================================
# Common Schemas
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
