"""
Member Portal Workflow - Database Models
========================================

SQLAlchemy models for portal users, projects and project workflows.
Workflows are archived in place and status changes are append-only.
"""

import enum
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ==========================================================================
# Enums
# ==========================================================================

class UserRole(str, enum.Enum):
    """User roles for access control."""
    ADMIN = "admin"
    MEMBER = "member"


class WorkflowStatus(str, enum.Enum):
    """Lifecycle status of a project workflow."""
    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    ACTIVE = "active"
    APPLICATIONS_OPEN = "applications_open"
    APPLICATIONS_CLOSED = "applications_closed"
    EVALUATION = "evaluation"
    AWARDED = "awarded"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"  # Terminal


class WorkflowPhase(str, enum.Enum):
    """Coarse grouping of statuses shown alongside the status."""
    PLANNING = "planning"
    PROCUREMENT = "procurement"
    SELECTION = "selection"
    EXECUTION = "execution"
    CLOSEOUT = "closeout"
    MAINTENANCE = "maintenance"


class WorkflowPriority(str, enum.Enum):
    """Workflow priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ==========================================================================
# Models
# ==========================================================================

class User(Base, TimestampMixin):
    """Portal member account."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole),
        default=UserRole.MEMBER,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Project(Base, TimestampMixin):
    """
    Member-facing project (bid opportunity or community build).

    A project gets at most one workflow.
    """

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    created_by: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    client_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    workflow: Mapped[Optional["ProjectWorkflow"]] = relationship(
        back_populates="project",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<Project {self.title[:50]}>"


class ProjectWorkflow(Base, TimestampMixin):
    """
    Status workflow of a single project.

    Progress is never stored: it is derived from the status on read.
    """

    __tablename__ = "project_workflows"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    project_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )

    # Status
    status: Mapped[WorkflowStatus] = mapped_column(
        Enum(WorkflowStatus),
        default=WorkflowStatus.DRAFT,
        nullable=False,
        index=True,
    )
    previous_status: Mapped[Optional[WorkflowStatus]] = mapped_column(
        Enum(WorkflowStatus),
        nullable=True,
    )
    phase: Mapped[WorkflowPhase] = mapped_column(
        Enum(WorkflowPhase),
        default=WorkflowPhase.PLANNING,
        nullable=False,
        index=True,
    )
    priority: Mapped[WorkflowPriority] = mapped_column(
        Enum(WorkflowPriority),
        default=WorkflowPriority.MEDIUM,
        nullable=False,
    )

    # Assignment
    assigned_to: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    assigned_by: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    due_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Free-text lists
    blockers: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    dependencies: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    extra: Mapped[dict] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )
    # Stored rule definitions; nothing here evaluates them
    automation_rules: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )

    # Relationships
    project: Mapped["Project"] = relationship(
        back_populates="workflow",
        lazy="selectin",
    )
    milestones: Mapped[list["WorkflowMilestone"]] = relationship(
        back_populates="workflow",
        lazy="selectin",
        order_by="WorkflowMilestone.due_date",
    )
    status_history: Mapped[list["WorkflowStatusChange"]] = relationship(
        back_populates="workflow",
        lazy="selectin",
        order_by="WorkflowStatusChange.sequence",
    )

    @property
    def project_title(self) -> Optional[str]:
        return self.project.title if self.project else None

    @property
    def project_client(self) -> Optional[str]:
        return self.project.client_name if self.project else None

    @property
    def progress(self) -> int:
        from src.core.workflow.transitions import progress_for

        return progress_for(self.status)

    @property
    def allowed_transitions(self) -> list[WorkflowStatus]:
        from src.core.workflow.transitions import ordered_transitions

        return ordered_transitions(self.status)

    @property
    def is_overdue(self) -> bool:
        from src.core.workflow.transitions import CLOSED_STATUSES

        if self.due_date is None or self.status in CLOSED_STATUSES:
            return False
        return as_utc(self.due_date) < utcnow()

    def __repr__(self) -> str:
        return f"<ProjectWorkflow {self.project_id} {self.status.value}>"


class WorkflowMilestone(Base, TimestampMixin):
    """
    Dated sub-goal of a workflow.

    Dependencies and deliverables are descriptive; completion order is
    not enforced.
    """

    __tablename__ = "workflow_milestones"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    workflow_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("project_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        default="",
        nullable=False,
    )
    due_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Completion
    completed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_by: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    dependencies: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    deliverables: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )

    workflow: Mapped["ProjectWorkflow"] = relationship(
        back_populates="milestones",
    )

    @property
    def is_overdue(self) -> bool:
        return not self.completed and as_utc(self.due_date) < utcnow()

    def __repr__(self) -> str:
        return f"<WorkflowMilestone {self.title[:50]}>"


class WorkflowStatusChange(Base):
    """
    Audit record of one status change.

    Rows are only ever inserted. ``from_status`` is NULL for the record
    written when the workflow is created.
    """

    __tablename__ = "workflow_status_changes"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    workflow_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("project_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Position in the workflow history, 0 for the creation record
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    from_status: Mapped[Optional[WorkflowStatus]] = mapped_column(
        Enum(WorkflowStatus),
        nullable=True,
    )
    to_status: Mapped[WorkflowStatus] = mapped_column(
        Enum(WorkflowStatus),
        nullable=False,
    )
    changed_by: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    automated: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    trigger_event: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )

    workflow: Mapped["ProjectWorkflow"] = relationship(
        back_populates="status_history",
    )

    def __repr__(self) -> str:
        return f"<WorkflowStatusChange {self.from_status} -> {self.to_status}>"
