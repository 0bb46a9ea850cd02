"""Notification Manager — central dispatcher for notification channels.

The executor only needs one operation from it:
``notify(recipient, type, title, message, priority, data)``. Routing to
transports (in-app inbox, webhook) is the manager's business.
"""

from typing import Awaitable, Callable, Optional

import structlog

from core.constants import NotificationType
from notifications.channels import (
    BaseChannel,
    DeliveryResult,
    InAppChannel,
    Notification,
    NotificationChannel,
    NotificationPriority,
    WebhookChannel,
)

logger = structlog.get_logger(__name__)


class NotificationManager:
    """Central notification dispatcher.

    Manages channel registration and delivery. Every ``notify`` call is
    delivered to each registered channel.
    """

    def __init__(self):
        self._channels: dict[NotificationChannel, BaseChannel] = {}

    def register_channel(self, channel: BaseChannel) -> None:
        """Register a notification channel."""
        self._channels[channel.channel_type] = channel
        logger.info("Notification channel registered", channel=channel.channel_type.value)

    def get_channel(self, channel_type: NotificationChannel) -> Optional[BaseChannel]:
        return self._channels.get(channel_type)

    def configure_channels(self, config: dict) -> None:
        """Configure channels from app settings.

        Args:
            config: {"in_app": True, "webhook": {"url": ...}}
        """
        if config.get("in_app", True):
            self.register_channel(InAppChannel())
        if config.get("webhook"):
            self.register_channel(WebhookChannel(config["webhook"]))

    @classmethod
    def from_settings(cls, settings) -> "NotificationManager":
        manager = cls()
        config: dict = {"in_app": True}
        if settings.NOTIFICATION_WEBHOOK_URL:
            config["webhook"] = {"url": settings.NOTIFICATION_WEBHOOK_URL}
        manager.configure_channels(config)
        return manager

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through the channel it names."""
        channel = self._channels.get(notification.channel)
        if not channel:
            return DeliveryResult(
                success=False,
                channel=notification.channel,
                recipient=notification.recipient,
                error=f"Channel not configured: {notification.channel.value}",
            )

        result = await channel.send(notification)

        if result.success:
            logger.info(
                "Notification sent",
                channel=notification.channel.value,
                type=notification.type,
                recipient=notification.recipient,
            )
        else:
            logger.warning(
                "Notification failed",
                channel=notification.channel.value,
                error=result.error,
            )
        return result

    async def notify(
        self,
        recipient: Optional[str],
        type: str,
        title: str,
        message: str,
        priority: NotificationPriority | str = NotificationPriority.MEDIUM,
        data: Optional[dict] = None,
    ) -> list[DeliveryResult]:
        """Deliver one notification to every registered channel.

        Returns:
            One DeliveryResult per channel.
        """
        priority = _coerce_priority(priority)
        results = []
        for channel_type in list(self._channels):
            notification = Notification(
                title=title,
                message=message,
                channel=channel_type,
                type=type,
                priority=priority,
                recipient=recipient or "",
                data=data or {},
            )
            results.append(await self.send(notification))
        return results

    # ─── Convenience methods for executor events ───────────────

    async def notify_workflow_completed(
        self,
        recipient: Optional[str],
        workflow_name: str,
        execution_id: str,
        duration_ms: int = 0,
    ) -> list[DeliveryResult]:
        """Send notification when a workflow completes."""
        return await self.notify(
            recipient=recipient,
            type=NotificationType.WORKFLOW_COMPLETED.value,
            title=f"Workflow Completed: {workflow_name}",
            message=f'Your workflow "{workflow_name}" has completed successfully.',
            priority=NotificationPriority.MEDIUM,
            data={
                "workflow_execution_id": execution_id,
                "workflow_name": workflow_name,
                "duration_ms": duration_ms,
            },
        )

    async def notify_workflow_failed(
        self,
        recipient: Optional[str],
        workflow_name: str,
        execution_id: str,
        error: str,
    ) -> list[DeliveryResult]:
        """Send notification when a workflow fails."""
        return await self.notify(
            recipient=recipient,
            type=NotificationType.WORKFLOW_FAILED.value,
            title=f"Workflow Failed: {workflow_name}",
            message=f'Your workflow "{workflow_name}" has failed: {error}',
            priority=NotificationPriority.HIGH,
            data={
                "workflow_execution_id": execution_id,
                "workflow_name": workflow_name,
                "error": error,
            },
        )

    async def notify_approval_required(
        self,
        recipient: Optional[str],
        workflow_name: str,
        execution_id: str,
        node_id: str,
        message: str,
        priority: NotificationPriority | str = NotificationPriority.HIGH,
    ) -> list[DeliveryResult]:
        """Ask an approver to act on a waiting approval step."""
        return await self.notify(
            recipient=recipient,
            type=NotificationType.WORKFLOW_APPROVAL.value,
            title=f"Approval Required: {workflow_name}",
            message=message,
            priority=priority,
            data={
                "workflow_execution_id": execution_id,
                "node_id": node_id,
                "workflow_name": workflow_name,
            },
        )

    def get_status(self) -> dict:
        """Get notification manager status."""
        return {"channels": [ch.value for ch in self._channels.keys()]}


async def send_safely(send: Callable[..., Awaitable[list[DeliveryResult]]], **kwargs) -> bool:
    """Await a notification call, logging instead of raising on failure.

    Returns True when at least one channel delivered.
    """
    try:
        results = await send(**kwargs)
    except Exception as e:
        logger.warning(
            "Notification delivery failed",
            notification=getattr(send, "__name__", repr(send)),
            recipient=kwargs.get("recipient"),
            error=str(e),
        )
        return False
    return any(r.success for r in results or [])


def _coerce_priority(priority: NotificationPriority | str) -> NotificationPriority:
    if isinstance(priority, NotificationPriority):
        return priority
    try:
        return NotificationPriority(priority)
    except ValueError:
        return NotificationPriority.MEDIUM
