"""Notification channel implementations.

Each channel handles delivery for one transport. The NotificationManager
dispatches to the appropriate channel(s).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


# ─── Data Types ────────────────────────────────────────────────

class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationChannel(str, Enum):
    IN_APP = "in_app"
    WEBHOOK = "webhook"


@dataclass
class Notification:
    """A notification to be delivered."""
    title: str
    message: str
    channel: NotificationChannel
    type: str = "workflow_notification"
    priority: NotificationPriority = NotificationPriority.MEDIUM
    recipient: str = ""  # user id or webhook URL
    data: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class DeliveryResult:
    """Result of a notification delivery attempt."""
    success: bool
    channel: NotificationChannel
    recipient: str
    message: str = ""
    error: Optional[str] = None
    delivered_at: Optional[str] = None


# ─── Base Channel ──────────────────────────────────────────────

class BaseChannel(ABC):
    """Abstract base for notification channels."""

    channel_type: NotificationChannel

    @abstractmethod
    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through this channel."""
        ...


# ─── In-app Channel ───────────────────────────────────────────

class InAppChannel(BaseChannel):
    """Keeps notifications in a per-recipient inbox."""

    channel_type = NotificationChannel.IN_APP

    def __init__(self):
        self.inbox: dict[str, list[Notification]] = {}

    async def send(self, notification: Notification) -> DeliveryResult:
        recipient = notification.recipient or "unassigned"
        self.inbox.setdefault(recipient, []).append(notification)
        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=recipient,
            message="Stored in inbox",
            delivered_at=datetime.now(timezone.utc).isoformat(),
        )

    def for_recipient(self, recipient: str) -> list[Notification]:
        return list(self.inbox.get(recipient, []))


# ─── Webhook Channel ──────────────────────────────────────────

class WebhookChannel(BaseChannel):
    """Send notifications to an HTTP endpoint.

    Config:
        url: Target URL
        method: HTTP method (default POST)
        headers: Additional headers
        timeout: Seconds (default 15)
    """

    channel_type = NotificationChannel.WEBHOOK

    def __init__(self, config: dict = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or {}
        self._transport = transport

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send webhook notification."""
        url = self.config.get("url")
        if not url:
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient="",
                error="No webhook URL",
            )

        method = self.config.get("method", "POST").upper()
        headers = {
            "Content-Type": "application/json",
            "X-Workflow-Event": notification.type,
            **self.config.get("headers", {}),
        }
        payload = {
            "type": notification.type,
            "recipient": notification.recipient,
            "title": notification.title,
            "message": notification.message,
            "priority": notification.priority.value,
            "data": notification.data,
            "timestamp": notification.created_at,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.config.get("timeout", 15),
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Webhook send failed", url=url, error=str(e))
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient=url,
                error=str(e),
            )

        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=url,
            message=f"Webhook delivered (HTTP {response.status_code})",
            delivered_at=datetime.now(timezone.utc).isoformat(),
        )
