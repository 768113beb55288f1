"""
Workflow Service - project status workflow operations.

Every operation takes the database session at construction and the acting
user per call. Each mutating operation ends in a single commit; there is no
locking, so concurrent writers to the same workflow race (last write wins).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.models import (
    Project,
    ProjectWorkflow,
    User,
    WorkflowMilestone,
    WorkflowPhase,
    WorkflowPriority,
    WorkflowStatus,
    WorkflowStatusChange,
    as_utc,
    utcnow,
)
from src.core.schemas import WorkflowRule
from src.core.workflow.errors import (
    InvalidTransitionError,
    InvalidWorkflowRequestError,
    WorkflowNotFoundError,
)
from src.core.workflow.notifications import WorkflowNotifier
from src.core.workflow.transitions import (
    ACTIVE_STATUSES,
    CLOSED_STATUSES,
    phase_for,
    validate_transition,
)

logger = structlog.get_logger()

CREATION_REASON = "Workflow created"

# Fields that may be edited outside of a status change
EDITABLE_FIELDS = {
    "priority": "priority",
    "due_date": "due_date",
    "blockers": "blockers",
    "dependencies": "dependencies",
    "metadata": "extra",
    "automation_rules": "automation_rules",
}


@dataclass
class WorkflowFilters:
    """Filters for listing workflows. Empty lists mean "any"."""
    statuses: list[WorkflowStatus] = field(default_factory=list)
    phases: list[WorkflowPhase] = field(default_factory=list)
    priorities: list[WorkflowPriority] = field(default_factory=list)
    assigned_to: Optional[UUID] = None
    overdue: bool = False


def _normalize_date(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


def _clean_list(values: Optional[Sequence[str]]) -> list[str]:
    return [v.strip() for v in values or [] if v and v.strip()]


def _clean_rules(rules: Optional[Sequence[Any]]) -> list[dict[str, Any]]:
    """Validate automation rules and return them as JSON-ready dicts."""
    try:
        cleaned = [
            WorkflowRule.model_validate(rule).model_dump(mode="json")
            for rule in rules or []
        ]
    except ValidationError as e:
        raise InvalidWorkflowRequestError(f"Invalid automation rule: {e}") from e

    ids = [rule["id"] for rule in cleaned]
    if len(ids) != len(set(ids)):
        raise InvalidWorkflowRequestError("Automation rule ids must be unique")
    return cleaned


def _next_sequence(workflow: ProjectWorkflow) -> int:
    history = workflow.status_history
    return history[-1].sequence + 1 if history else 0


class WorkflowService:
    """Status workflow, milestones and assignment for portal projects."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[WorkflowNotifier] = None,
    ):
        self.db = db
        self.notifier = notifier

    # ==================== Lookups ====================

    async def get_project(self, project_id: UUID) -> Project:
        project = await self.db.get(Project, project_id)
        if project is None:
            raise WorkflowNotFoundError("Project", project_id)
        return project

    async def get_user(self, user_id: UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise WorkflowNotFoundError("User", user_id)
        return user

    async def _find_workflow(self, project_id: UUID) -> Optional[ProjectWorkflow]:
        result = await self.db.execute(
            select(ProjectWorkflow)
            .where(ProjectWorkflow.project_id == project_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_workflow(self, project_id: UUID) -> ProjectWorkflow:
        """Workflow of a project with milestones and history loaded."""
        workflow = await self._find_workflow(project_id)
        if workflow is None:
            raise WorkflowNotFoundError("Workflow for project", project_id)
        return workflow

    # ==================== Workflow lifecycle ====================

    async def create_workflow(
        self,
        project_id: UUID,
        actor: User,
        *,
        initial_status: WorkflowStatus = WorkflowStatus.DRAFT,
        priority: WorkflowPriority = WorkflowPriority.MEDIUM,
        due_date: Optional[datetime] = None,
        assigned_to: Optional[UUID] = None,
        blockers: Optional[list[str]] = None,
        dependencies: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
        automation_rules: Optional[Sequence[Any]] = None,
    ) -> ProjectWorkflow:
        """
        Start the workflow of a project.

        Writes the creation record (no from-status) to the history.

        Raises:
            WorkflowNotFoundError: project or assignee does not exist
            InvalidWorkflowRequestError: project already has a workflow or a
                rule is malformed
        """
        await self.get_project(project_id)

        if await self._find_workflow(project_id) is not None:
            raise InvalidWorkflowRequestError(
                f"Project {project_id} already has a workflow"
            )

        if assigned_to is not None:
            await self.get_user(assigned_to)
        rules = _clean_rules(automation_rules)

        workflow_id = uuid4()
        workflow = ProjectWorkflow(
            id=workflow_id,
            project_id=project_id,
            status=initial_status,
            previous_status=None,
            phase=phase_for(initial_status),
            priority=priority,
            due_date=_normalize_date(due_date),
            assigned_to=assigned_to,
            assigned_by=actor.id if assigned_to is not None else None,
            blockers=_clean_list(blockers),
            dependencies=_clean_list(dependencies),
            extra=dict(metadata or {}),
            automation_rules=rules,
            milestones=[],
            status_history=[
                WorkflowStatusChange(
                    id=uuid4(),
                    workflow_id=workflow_id,
                    sequence=0,
                    from_status=None,
                    to_status=initial_status,
                    changed_by=actor.id,
                    reason=CREATION_REASON,
                    automated=True,
                    trigger_event="workflow_created",
                )
            ],
        )
        self.db.add(workflow)
        await self.db.commit()

        logger.info(
            "workflow_created",
            project_id=str(project_id),
            status=initial_status.value,
            actor=str(actor.id),
        )
        return await self.get_workflow(project_id)

    async def change_status(
        self,
        project_id: UUID,
        new_status: WorkflowStatus | str,
        reason: str,
        actor: Optional[User],
        notes: Optional[str] = None,
        *,
        automated: bool = False,
        trigger_event: Optional[str] = None,
    ) -> ProjectWorkflow:
        """
        Move a workflow to ``new_status``.

        The status fields and the new history record are written in one
        commit. ``actor`` may be None only for automated changes.

        Raises:
            WorkflowNotFoundError: the project has no workflow
            InvalidTransitionError: the edge is not in the transition table
            InvalidWorkflowRequestError: reason or status missing/unknown
        """
        try:
            target = WorkflowStatus(new_status)
        except ValueError as e:
            raise InvalidWorkflowRequestError(f"Unknown status: {new_status}") from e

        if not reason or not reason.strip():
            raise InvalidWorkflowRequestError("A reason is required to change status")
        if actor is None and not automated:
            raise InvalidWorkflowRequestError("Manual status changes need an acting user")

        workflow = await self.get_workflow(project_id)
        current = workflow.status

        try:
            validate_transition(current, target)
        except InvalidTransitionError:
            logger.warning(
                "workflow_transition_rejected",
                project_id=str(project_id),
                from_status=current.value,
                to_status=target.value,
            )
            raise

        change = WorkflowStatusChange(
            id=uuid4(),
            workflow_id=workflow.id,
            sequence=_next_sequence(workflow),
            from_status=current,
            to_status=target,
            changed_by=actor.id if actor else None,
            reason=reason.strip(),
            notes=notes,
            automated=automated,
            trigger_event=trigger_event,
        )
        workflow.previous_status = current
        workflow.status = target
        workflow.phase = phase_for(target)
        workflow.status_history.append(change)

        await self.db.commit()

        logger.info(
            "workflow_status_changed",
            project_id=str(project_id),
            from_status=current.value,
            to_status=target.value,
            actor=str(actor.id) if actor else None,
            automated=automated,
        )

        workflow = await self.get_workflow(project_id)
        if self.notifier is not None:
            await self.notifier.notify_status_change(workflow, change)
        return workflow

    async def update_details(
        self,
        project_id: UUID,
        changes: dict[str, Any],
    ) -> ProjectWorkflow:
        """
        Partial update of priority, due date, blockers, dependencies,
        metadata and automation rules. Status only moves through
        change_status().
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidWorkflowRequestError(
                f"Fields cannot be updated here: {', '.join(sorted(unknown))}"
            )

        workflow = await self.get_workflow(project_id)
        for key, value in changes.items():
            if key == "due_date":
                value = _normalize_date(value)
            elif key in ("blockers", "dependencies"):
                value = _clean_list(value)
            elif key == "metadata":
                value = dict(value or {})
            elif key == "automation_rules":
                value = _clean_rules(value)
            elif key == "priority" and value is None:
                raise InvalidWorkflowRequestError("priority cannot be empty")
            setattr(workflow, EDITABLE_FIELDS[key], value)

        await self.db.commit()
        logger.info(
            "workflow_updated",
            project_id=str(project_id),
            fields=sorted(changes),
        )
        return await self.get_workflow(project_id)

    async def assign_user(
        self,
        project_id: UUID,
        user_id: UUID,
        actor: User,
    ) -> ProjectWorkflow:
        workflow = await self.get_workflow(project_id)
        await self.get_user(user_id)

        workflow.assigned_to = user_id
        workflow.assigned_by = actor.id
        await self.db.commit()

        logger.info(
            "workflow_assigned",
            project_id=str(project_id),
            assigned_to=str(user_id),
            actor=str(actor.id),
        )
        return await self.get_workflow(project_id)

    # ==================== Milestones ====================

    async def add_milestone(
        self,
        project_id: UUID,
        title: str,
        description: str,
        due_date: datetime,
        *,
        dependencies: Optional[list[str]] = None,
        deliverables: Optional[list[str]] = None,
    ) -> WorkflowMilestone:
        """
        Attach a milestone to a workflow.

        Dependencies and deliverables are stored as given; they are not
        checked against other milestones.
        """
        if not title or not title.strip():
            raise InvalidWorkflowRequestError("Milestone title is required")
        if due_date is None:
            raise InvalidWorkflowRequestError("Milestone due date is required")

        workflow = await self.get_workflow(project_id)
        milestone = WorkflowMilestone(
            id=uuid4(),
            workflow_id=workflow.id,
            title=title.strip(),
            description=description or "",
            due_date=as_utc(due_date),
            completed=False,
            dependencies=_clean_list(dependencies),
            deliverables=_clean_list(deliverables),
        )
        workflow.milestones.append(milestone)
        await self.db.commit()
        await self.db.refresh(milestone)

        logger.info(
            "milestone_added",
            project_id=str(project_id),
            milestone_id=str(milestone.id),
        )
        return milestone

    async def complete_milestone(
        self,
        project_id: UUID,
        milestone_id: UUID,
        actor: User,
    ) -> WorkflowMilestone:
        """
        Mark a milestone complete.

        Completing an already completed milestone changes nothing and is
        not an error.
        """
        workflow = await self.get_workflow(project_id)
        result = await self.db.execute(
            select(WorkflowMilestone).where(
                WorkflowMilestone.id == milestone_id,
                WorkflowMilestone.workflow_id == workflow.id,
            )
        )
        milestone = result.scalar_one_or_none()
        if milestone is None:
            raise WorkflowNotFoundError("Milestone", milestone_id)

        if milestone.completed:
            logger.debug(
                "milestone_already_completed",
                project_id=str(project_id),
                milestone_id=str(milestone_id),
            )
            return milestone

        milestone.completed = True
        milestone.completed_at = utcnow()
        milestone.completed_by = actor.id
        await self.db.commit()
        await self.db.refresh(milestone)

        logger.info(
            "milestone_completed",
            project_id=str(project_id),
            milestone_id=str(milestone_id),
            actor=str(actor.id),
        )
        if self.notifier is not None:
            await self.notifier.notify_milestone_completed(workflow, milestone)
        return milestone

    # ==================== Queries ====================

    async def get_history(self, project_id: UUID) -> list[WorkflowStatusChange]:
        workflow = await self.get_workflow(project_id)
        return list(workflow.status_history)

    def _overdue_clause(self):
        return (
            ProjectWorkflow.due_date.is_not(None),
            ProjectWorkflow.due_date < utcnow(),
            ProjectWorkflow.status.not_in(list(CLOSED_STATUSES)),
        )

    async def list_workflows(
        self,
        filters: Optional[WorkflowFilters] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[ProjectWorkflow], int]:
        """Filtered page of workflows, newest first, plus the total count."""
        filters = filters or WorkflowFilters()
        query = select(ProjectWorkflow)

        if filters.statuses:
            query = query.where(ProjectWorkflow.status.in_(filters.statuses))
        if filters.phases:
            query = query.where(ProjectWorkflow.phase.in_(filters.phases))
        if filters.priorities:
            query = query.where(ProjectWorkflow.priority.in_(filters.priorities))
        if filters.assigned_to is not None:
            query = query.where(ProjectWorkflow.assigned_to == filters.assigned_to)
        if filters.overdue:
            query = query.where(*self._overdue_clause())

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = (
            query.order_by(ProjectWorkflow.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_stats(self) -> dict[str, Any]:
        """Counts for the workflow board."""
        by_status: dict[str, int] = {s.value: 0 for s in WorkflowStatus}
        rows = await self.db.execute(
            select(ProjectWorkflow.status, func.count()).group_by(ProjectWorkflow.status)
        )
        for status, count in rows.all():
            by_status[status.value] = count

        by_phase: dict[str, int] = {p.value: 0 for p in WorkflowPhase}
        rows = await self.db.execute(
            select(ProjectWorkflow.phase, func.count()).group_by(ProjectWorkflow.phase)
        )
        for phase, count in rows.all():
            by_phase[phase.value] = count

        overdue = (
            await self.db.execute(
                select(func.count())
                .select_from(ProjectWorkflow)
                .where(*self._overdue_clause())
            )
        ).scalar() or 0

        return {
            "total": sum(by_status.values()),
            "active": sum(by_status[s.value] for s in ACTIVE_STATUSES),
            "in_progress": by_status[WorkflowStatus.IN_PROGRESS.value],
            "completed": by_status[WorkflowStatus.COMPLETED.value],
            "overdue": overdue,
            "by_status": by_status,
            "by_phase": by_phase,
        }
