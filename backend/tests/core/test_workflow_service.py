"""
WorkflowService tests against an in-memory database.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.models import (
    Project,
    User,
    WorkflowPhase,
    WorkflowPriority,
    WorkflowStatus,
    WorkflowStatusChange,
)
from src.core.workflow import (
    InvalidTransitionError,
    InvalidWorkflowRequestError,
    WorkflowFilters,
    WorkflowNotFoundError,
    WorkflowService,
)
from src.core.workflow.notifications import NotificationType

S = WorkflowStatus


def days_from_now(days: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


async def make_project(db: AsyncSession, title: str = "Bid Package") -> Project:
    project = Project(id=uuid4(), title=title, client_name="Client")
    db.add(project)
    await db.commit()
    return project


async def walk(service: WorkflowService, project_id, actor: User, *statuses: WorkflowStatus):
    workflow = None
    for status in statuses:
        workflow = await service.change_status(project_id, status, f"move to {status.value}", actor)
    return workflow


# ==========================================================================
# Creation
# ==========================================================================

class TestCreateWorkflow:

    async def test_create_defaults(self, service: WorkflowService, project: Project, test_user: User):
        workflow = await service.create_workflow(project.id, test_user)

        assert workflow.project_id == project.id
        assert workflow.status == S.DRAFT
        assert workflow.previous_status is None
        assert workflow.phase == WorkflowPhase.PLANNING
        assert workflow.priority == WorkflowPriority.MEDIUM
        assert workflow.progress == 5
        assert workflow.project_title == "Community Center Renovation"
        assert workflow.milestones == []

    async def test_creation_is_recorded(self, service: WorkflowService, project: Project, test_user: User):
        workflow = await service.create_workflow(project.id, test_user)

        assert len(workflow.status_history) == 1
        record = workflow.status_history[0]
        assert record.from_status is None
        assert record.to_status == S.DRAFT
        assert record.changed_by == test_user.id
        assert record.automated is True

    async def test_initial_status_sets_phase(self, service: WorkflowService, project: Project, test_user: User):
        workflow = await service.create_workflow(
            project.id, test_user, initial_status=S.APPLICATIONS_OPEN,
        )
        assert workflow.status == S.APPLICATIONS_OPEN
        assert workflow.phase == WorkflowPhase.PROCUREMENT
        assert workflow.progress == 30

    async def test_lists_are_cleaned(self, service: WorkflowService, project: Project, test_user: User):
        workflow = await service.create_workflow(
            project.id, test_user,
            blockers=["  permit pending ", "", "   "],
            dependencies=["site survey"],
            metadata={"source": "hubspot"},
        )
        assert workflow.blockers == ["permit pending"]
        assert workflow.dependencies == ["site survey"]
        assert workflow.extra == {"source": "hubspot"}

    async def test_unknown_project(self, service: WorkflowService, test_user: User):
        with pytest.raises(WorkflowNotFoundError):
            await service.create_workflow(uuid4(), test_user)

    async def test_duplicate_workflow(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)
        with pytest.raises(InvalidWorkflowRequestError):
            await service.create_workflow(project.id, test_user)

    async def test_unknown_assignee(self, service: WorkflowService, project: Project, test_user: User):
        with pytest.raises(WorkflowNotFoundError):
            await service.create_workflow(project.id, test_user, assigned_to=uuid4())

    async def test_assignee_recorded(
        self, service: WorkflowService, project: Project, test_user: User, other_user: User,
    ):
        workflow = await service.create_workflow(project.id, test_user, assigned_to=other_user.id)
        assert workflow.assigned_to == other_user.id
        assert workflow.assigned_by == test_user.id


# ==========================================================================
# Status changes
# ==========================================================================

class TestChangeStatus:

    async def test_accepted_transition(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)

        workflow = await service.change_status(project.id, S.REVIEW, "ready for review", test_user)

        assert workflow.status == S.REVIEW
        assert workflow.previous_status == S.DRAFT
        assert workflow.progress == 10
        assert len(workflow.status_history) == 2
        last = workflow.status_history[-1]
        assert (last.from_status, last.to_status) == (S.DRAFT, S.REVIEW)
        assert last.reason == "ready for review"
        assert last.automated is False

    async def test_review_panel_convened(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user, initial_status=S.APPLICATIONS_CLOSED)

        workflow = await service.change_status(
            project.id, S.EVALUATION, "review panel convened", test_user, notes="3 reviewers",
        )

        assert workflow.status == S.EVALUATION
        assert workflow.progress == 50
        assert workflow.phase == WorkflowPhase.SELECTION
        last = workflow.status_history[-1]
        assert last.reason == "review panel convened"
        assert last.notes == "3 reviewers"
        assert last.changed_by == test_user.id

    async def test_applications_open_cannot_skip_to_evaluation(
        self, service: WorkflowService, project: Project, test_user: User,
    ):
        await service.create_workflow(project.id, test_user, initial_status=S.APPLICATIONS_OPEN)

        with pytest.raises(InvalidTransitionError):
            await service.change_status(project.id, S.EVALUATION, "skip", test_user)

        workflow = await service.get_workflow(project.id)
        assert workflow.status == S.APPLICATIONS_OPEN
        assert len(workflow.status_history) == 1

    async def test_archived_is_terminal(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user, initial_status=S.COMPLETED)
        await service.change_status(project.id, S.ARCHIVED, "closed out", test_user)

        for target in WorkflowStatus:
            with pytest.raises(InvalidTransitionError):
                await service.change_status(project.id, target, "reopen", test_user)

        workflow = await service.get_workflow(project.id)
        assert workflow.status == S.ARCHIVED
        assert workflow.progress == 100

    async def test_full_lifecycle(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)

        workflow = await walk(
            service, project.id, test_user,
            S.REVIEW, S.APPROVED, S.ACTIVE, S.APPLICATIONS_OPEN, S.APPLICATIONS_CLOSED,
            S.EVALUATION, S.AWARDED, S.IN_PROGRESS, S.ON_HOLD, S.IN_PROGRESS,
            S.COMPLETED, S.ARCHIVED,
        )

        assert workflow.status == S.ARCHIVED
        assert workflow.phase == WorkflowPhase.MAINTENANCE
        history = workflow.status_history
        assert len(history) == 13
        # Every recorded change starts where the previous one ended
        for before, after in zip(history, history[1:]):
            assert after.from_status == before.to_status

    async def test_cancel_progress_is_zero(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)
        workflow = await service.change_status(project.id, S.CANCELLED, "funding withdrawn", test_user)
        assert workflow.progress == 0
        assert workflow.phase == WorkflowPhase.CLOSEOUT

    async def test_string_status_accepted(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)
        workflow = await service.change_status(project.id, "review", "ready", test_user)
        assert workflow.status == S.REVIEW

    async def test_unknown_status(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)
        with pytest.raises(InvalidWorkflowRequestError):
            await service.change_status(project.id, "paused", "why not", test_user)

    @pytest.mark.parametrize("reason", ["", "   ", None])
    async def test_reason_required(
        self, service: WorkflowService, project: Project, test_user: User, reason,
    ):
        await service.create_workflow(project.id, test_user)
        with pytest.raises(InvalidWorkflowRequestError):
            await service.change_status(project.id, S.REVIEW, reason, test_user)

    async def test_missing_workflow(self, service: WorkflowService, project: Project, test_user: User):
        with pytest.raises(WorkflowNotFoundError):
            await service.change_status(project.id, S.REVIEW, "ready", test_user)

    async def test_automated_change_without_actor(
        self, service: WorkflowService, project: Project, test_user: User,
    ):
        await service.create_workflow(project.id, test_user, initial_status=S.APPLICATIONS_OPEN)

        workflow = await service.change_status(
            project.id, S.APPLICATIONS_CLOSED, "deadline passed", None,
            automated=True, trigger_event="application_deadline",
        )

        last = workflow.status_history[-1]
        assert last.changed_by is None
        assert last.automated is True
        assert last.trigger_event == "application_deadline"

    async def test_manual_change_needs_actor(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)
        with pytest.raises(InvalidWorkflowRequestError):
            await service.change_status(project.id, S.REVIEW, "ready", None)

    async def test_history_rows_persisted(
        self, service: WorkflowService, db_session: AsyncSession, project: Project, test_user: User,
    ):
        workflow = await service.create_workflow(project.id, test_user)
        await walk(service, project.id, test_user, S.REVIEW, S.APPROVED)

        count = (
            await db_session.execute(
                select(func.count())
                .select_from(WorkflowStatusChange)
                .where(WorkflowStatusChange.workflow_id == workflow.id)
            )
        ).scalar()
        assert count == 3

    async def test_status_change_notifies(
        self, service: WorkflowService, notifier, project: Project, test_user: User,
    ):
        await service.create_workflow(project.id, test_user)
        await service.change_status(project.id, S.REVIEW, "ready", test_user)

        assert len(notifier.sent) == 1
        sent = notifier.sent[0]
        assert sent.type == NotificationType.PROJECT_STATUS_CHANGE
        assert sent.data["from_status"] == "draft"
        assert sent.data["to_status"] == "review"

    async def test_rejected_change_does_not_notify(
        self, service: WorkflowService, notifier, project: Project, test_user: User,
    ):
        await service.create_workflow(project.id, test_user)
        with pytest.raises(InvalidTransitionError):
            await service.change_status(project.id, S.COMPLETED, "done?", test_user)
        assert notifier.sent == []


# ==========================================================================
# Milestones
# ==========================================================================

class TestMilestones:

    async def test_add_milestone(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)

        milestone = await service.add_milestone(
            project.id, "Permits filed", "All permits submitted", days_from_now(14),
            dependencies=["site survey"], deliverables=["permit receipts"],
        )

        assert milestone.completed is False
        assert milestone.completed_at is None
        assert milestone.dependencies == ["site survey"]
        assert milestone.deliverables == ["permit receipts"]

        workflow = await service.get_workflow(project.id)
        assert [m.id for m in workflow.milestones] == [milestone.id]

    async def test_milestones_ordered_by_due_date(
        self, service: WorkflowService, project: Project, test_user: User,
    ):
        await service.create_workflow(project.id, test_user)
        later = await service.add_milestone(project.id, "Framing", "", days_from_now(30))
        sooner = await service.add_milestone(project.id, "Foundation", "", days_from_now(10))

        workflow = await service.get_workflow(project.id)
        assert [m.id for m in workflow.milestones] == [sooner.id, later.id]

    async def test_add_milestone_missing_workflow(self, service: WorkflowService, project: Project):
        with pytest.raises(WorkflowNotFoundError):
            await service.add_milestone(project.id, "Permits", "", days_from_now(1))

    async def test_add_milestone_requires_title(
        self, service: WorkflowService, project: Project, test_user: User,
    ):
        await service.create_workflow(project.id, test_user)
        with pytest.raises(InvalidWorkflowRequestError):
            await service.add_milestone(project.id, "  ", "", days_from_now(1))

    async def test_complete_milestone(
        self, service: WorkflowService, notifier, project: Project, test_user: User,
    ):
        await service.create_workflow(project.id, test_user)
        milestone = await service.add_milestone(project.id, "Permits", "", days_from_now(5))

        done = await service.complete_milestone(project.id, milestone.id, test_user)

        assert done.completed is True
        assert done.completed_at is not None
        assert done.completed_by == test_user.id
        assert [n.type for n in notifier.sent] == [NotificationType.MILESTONE_COMPLETED]

    async def test_complete_is_idempotent(
        self, service: WorkflowService, notifier, project: Project, test_user: User, other_user: User,
    ):
        await service.create_workflow(project.id, test_user)
        milestone = await service.add_milestone(project.id, "Permits", "", days_from_now(5))

        first = await service.complete_milestone(project.id, milestone.id, test_user)
        completed_at = first.completed_at

        second = await service.complete_milestone(project.id, milestone.id, other_user)

        assert second.completed is True
        assert second.completed_at == completed_at
        assert second.completed_by == test_user.id
        assert len(notifier.sent) == 1

    async def test_dependencies_are_not_enforced(
        self, service: WorkflowService, project: Project, test_user: User,
    ):
        await service.create_workflow(project.id, test_user)
        first = await service.add_milestone(project.id, "Foundation", "", days_from_now(5))
        second = await service.add_milestone(
            project.id, "Framing", "", days_from_now(10), dependencies=[str(first.id)],
        )

        done = await service.complete_milestone(project.id, second.id, test_user)
        assert done.completed is True

    async def test_complete_unknown_milestone(
        self, service: WorkflowService, project: Project, test_user: User,
    ):
        await service.create_workflow(project.id, test_user)
        with pytest.raises(WorkflowNotFoundError):
            await service.complete_milestone(project.id, uuid4(), test_user)

    async def test_milestone_of_other_project(
        self, service: WorkflowService, db_session: AsyncSession, project: Project, test_user: User,
    ):
        other = await make_project(db_session, "Other")
        await service.create_workflow(project.id, test_user)
        await service.create_workflow(other.id, test_user)
        milestone = await service.add_milestone(other.id, "Permits", "", days_from_now(5))

        with pytest.raises(WorkflowNotFoundError):
            await service.complete_milestone(project.id, milestone.id, test_user)

    async def test_overdue_milestone(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)
        past = await service.add_milestone(project.id, "Late", "", days_from_now(-2))
        future = await service.add_milestone(project.id, "Later", "", days_from_now(2))

        assert past.is_overdue is True
        assert future.is_overdue is False

        done = await service.complete_milestone(project.id, past.id, test_user)
        assert done.is_overdue is False


# ==========================================================================
# Details, assignment, listing, stats
# ==========================================================================

class TestUpdateAndAssign:

    async def test_update_details(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)
        due = days_from_now(20)

        workflow = await service.update_details(project.id, {
            "priority": WorkflowPriority.CRITICAL,
            "due_date": due,
            "blockers": ["waiting on city"],
        })

        assert workflow.priority == WorkflowPriority.CRITICAL
        assert workflow.blockers == ["waiting on city"]
        assert workflow.status == S.DRAFT

    async def test_update_rejects_status(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)
        with pytest.raises(InvalidWorkflowRequestError):
            await service.update_details(project.id, {"status": S.COMPLETED})

    async def test_assign_user(
        self, service: WorkflowService, project: Project, test_user: User, other_user: User,
    ):
        await service.create_workflow(project.id, test_user)
        workflow = await service.assign_user(project.id, other_user.id, test_user)
        assert workflow.assigned_to == other_user.id
        assert workflow.assigned_by == test_user.id

    async def test_assign_unknown_user(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)
        with pytest.raises(WorkflowNotFoundError):
            await service.assign_user(project.id, uuid4(), test_user)


class TestHistoryOrder:

    async def test_sequence_numbers(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user)
        workflow = await walk(service, project.id, test_user, S.REVIEW, S.APPROVED, S.ACTIVE)

        assert [c.sequence for c in workflow.status_history] == [0, 1, 2, 3]

    async def test_order_survives_identical_timestamps(
        self, service: WorkflowService, db_session: AsyncSession, project: Project, test_user: User,
    ):
        await service.create_workflow(project.id, test_user)
        await walk(service, project.id, test_user, S.REVIEW, S.DRAFT, S.REVIEW, S.APPROVED)

        same_instant = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await db_session.execute(update(WorkflowStatusChange).values(changed_at=same_instant))
        await db_session.commit()

        history = await service.get_history(project.id)

        assert [c.to_status for c in history] == [S.DRAFT, S.REVIEW, S.DRAFT, S.REVIEW, S.APPROVED]
        for before, after in zip(history, history[1:]):
            assert after.from_status == before.to_status


class TestAutomationRules:

    RULE = {
        "id": "notify-on-award",
        "name": "Notify coordinator on award",
        "trigger": {"type": "status_change", "to": "awarded"},
        "conditions": [{"field": "priority", "equals": "high"}],
        "actions": [{"type": "notify", "role": "coordinator"}],
        "priority": 10,
    }

    async def test_rules_stored_on_create(self, service: WorkflowService, project: Project, test_user: User):
        workflow = await service.create_workflow(
            project.id, test_user, automation_rules=[self.RULE, {"name": "Escalate"}],
        )

        first, second = workflow.automation_rules
        assert first["id"] == "notify-on-award"
        assert first["enabled"] is True
        assert first["trigger"] == {"type": "status_change", "to": "awarded"}
        assert second["name"] == "Escalate"
        assert second["id"]
        assert second["conditions"] == []

    async def test_no_rules_by_default(self, service: WorkflowService, project: Project, test_user: User):
        workflow = await service.create_workflow(project.id, test_user)
        assert workflow.automation_rules == []

    async def test_duplicate_rule_ids(self, service: WorkflowService, project: Project, test_user: User):
        with pytest.raises(InvalidWorkflowRequestError):
            await service.create_workflow(
                project.id, test_user, automation_rules=[self.RULE, dict(self.RULE)],
            )

    async def test_rule_needs_name(self, service: WorkflowService, project: Project, test_user: User):
        with pytest.raises(InvalidWorkflowRequestError):
            await service.create_workflow(project.id, test_user, automation_rules=[{"id": "x"}])

    async def test_update_replaces_rules(self, service: WorkflowService, project: Project, test_user: User):
        await service.create_workflow(project.id, test_user, automation_rules=[self.RULE])

        workflow = await service.update_details(
            project.id, {"automation_rules": [{"id": "r2", "name": "Remind", "enabled": False}]},
        )

        assert [r["id"] for r in workflow.automation_rules] == ["r2"]
        assert workflow.automation_rules[0]["enabled"] is False


class TestListAndStats:

    @pytest.fixture
    async def board(self, service: WorkflowService, db_session: AsyncSession, test_user: User, other_user: User):
        """Four workflows in different states."""
        specs = [
            ("Draft job", S.DRAFT, WorkflowPriority.LOW, None, None),
            ("Open bid", S.APPLICATIONS_OPEN, WorkflowPriority.HIGH, days_from_now(-3), other_user.id),
            ("Build", S.IN_PROGRESS, WorkflowPriority.HIGH, days_from_now(10), other_user.id),
            ("Done", S.COMPLETED, WorkflowPriority.MEDIUM, days_from_now(-10), None),
        ]
        for title, status, priority, due, assignee in specs:
            project = await make_project(db_session, title)
            await service.create_workflow(
                project.id, test_user,
                initial_status=status, priority=priority, due_date=due, assigned_to=assignee,
            )

    async def test_list_all(self, service: WorkflowService, board):
        items, total = await service.list_workflows()
        assert total == 4
        assert len(items) == 4

    async def test_filter_by_status(self, service: WorkflowService, board):
        items, total = await service.list_workflows(
            WorkflowFilters(statuses=[S.DRAFT, S.COMPLETED])
        )
        assert total == 2
        assert {w.status for w in items} == {S.DRAFT, S.COMPLETED}

    async def test_filter_by_phase_and_priority(self, service: WorkflowService, board):
        items, total = await service.list_workflows(
            WorkflowFilters(phases=[WorkflowPhase.EXECUTION], priorities=[WorkflowPriority.HIGH])
        )
        assert total == 1
        assert items[0].status == S.IN_PROGRESS

    async def test_filter_by_assignee(self, service: WorkflowService, board, other_user: User):
        _, total = await service.list_workflows(WorkflowFilters(assigned_to=other_user.id))
        assert total == 2

    async def test_overdue_excludes_closed(self, service: WorkflowService, board):
        items, total = await service.list_workflows(WorkflowFilters(overdue=True))
        assert total == 1
        assert items[0].status == S.APPLICATIONS_OPEN
        assert items[0].is_overdue is True

    async def test_pagination(self, service: WorkflowService, board):
        items, total = await service.list_workflows(page=2, page_size=3)
        assert total == 4
        assert len(items) == 1

    async def test_stats(self, service: WorkflowService, board):
        stats = await service.get_stats()

        assert stats["total"] == 4
        assert stats["active"] == 2  # applications_open + in_progress
        assert stats["in_progress"] == 1
        assert stats["completed"] == 1
        assert stats["overdue"] == 1
        assert stats["by_status"]["draft"] == 1
        assert stats["by_status"]["archived"] == 0
        assert stats["by_phase"]["procurement"] == 1

    async def test_stats_empty(self, service: WorkflowService):
        stats = await service.get_stats()
        assert stats["total"] == 0
        assert set(stats["by_status"]) == {s.value for s in WorkflowStatus}
