"""
Workflow Notifications
======================

Posts workflow events (status changes, completed milestones) to the
configured notification webhook. Without a webhook the notification is
only logged.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from src.core.config import settings
from src.core.models import ProjectWorkflow, WorkflowMilestone, WorkflowStatusChange

logger = structlog.get_logger()


class NotificationType(str, Enum):
    PROJECT_STATUS_CHANGE = "project_status_change"
    MILESTONE_COMPLETED = "milestone_completed"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class WorkflowNotification(BaseModel):
    type: NotificationType
    title: str
    body: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    project_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class WorkflowNotifier:
    """
    Client for the notification webhook.

    ``transport`` lets tests swap in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        api_key: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.NOTIFICATIONS_WEBHOOK_URL
        self.api_key = api_key if api_key is not None else settings.NOTIFICATIONS_API_KEY
        self._enabled = settings.NOTIFICATIONS_ENABLED if enabled is None else enabled
        self.timeout = timeout or settings.NOTIFICATIONS_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def enabled(self) -> bool:
        """Live delivery needs both the flag and a webhook URL."""
        return self._enabled and bool(self.webhook_url)

    async def send(self, notification: WorkflowNotification) -> bool:
        """Deliver or log a notification. Never raises on delivery failure."""
        if not self.enabled:
            logger.info(
                "workflow_notification_logged",
                type=notification.type.value,
                title=notification.title,
                project_id=notification.project_id,
                mode="logging_only",
            )
            return True

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.webhook_url,
                    json=notification.model_dump(mode="json"),
                    headers=headers,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(
                "workflow_notification_error",
                error=str(e),
                type=notification.type.value,
                project_id=notification.project_id,
            )
            return False

        if response.is_success:
            logger.debug("workflow_notification_sent", type=notification.type.value)
            return True

        logger.warning(
            "workflow_notification_failed",
            type=notification.type.value,
            project_id=notification.project_id,
            status_code=response.status_code,
        )
        return False

    # ==================== Templates ====================

    async def notify_status_change(
        self,
        workflow: ProjectWorkflow,
        change: WorkflowStatusChange,
    ) -> bool:
        from_status = change.from_status.value if change.from_status else None
        priority = NotificationPriority.NORMAL
        if change.to_status.value in ("cancelled", "on_hold"):
            priority = NotificationPriority.HIGH

        return await self.send(WorkflowNotification(
            type=NotificationType.PROJECT_STATUS_CHANGE,
            title=f"Project status: {change.to_status.value.replace('_', ' ')}",
            body=f"{workflow.project_title or workflow.project_id}\n"
                 f"{from_status} -> {change.to_status.value}\nReason: {change.reason}",
            priority=priority,
            project_id=str(workflow.project_id),
            data={
                "from_status": from_status,
                "to_status": change.to_status.value,
                "changed_by": str(change.changed_by) if change.changed_by else None,
                "reason": change.reason,
                "automated": change.automated,
            },
        ))

    async def notify_milestone_completed(
        self,
        workflow: ProjectWorkflow,
        milestone: WorkflowMilestone,
    ) -> bool:
        return await self.send(WorkflowNotification(
            type=NotificationType.MILESTONE_COMPLETED,
            title="Milestone completed",
            body=f"{workflow.project_title or workflow.project_id}\n{milestone.title}",
            project_id=str(workflow.project_id),
            data={
                "milestone_id": str(milestone.id),
                "completed_by": str(milestone.completed_by) if milestone.completed_by else None,
            },
        ))
