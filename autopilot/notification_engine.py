"""
Notification Engine - Best-Effort Task Progress Delivery

This module routes task progress messages (iterations, tool calls, tool
results, interruptions, completions) to registered channels.

IMPORTANT:
- Delivery is best effort: notify() never raises and never blocks a task
- Every failure is counted and logged, so lost notifications are visible
- Each delivery attempt is appended to a JSONL audit log
- Rate limiting is applied per recipient
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Any, Callable, Awaitable

import httpx

logger = logging.getLogger("notification_engine")

RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX = 30  # max notifications per window


class NotificationKind(str, Enum):
    """Task progress events."""
    ITERATION = "iteration"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    RESUMED = "resumed"
    SYSTEM = "system"


@dataclass
class Notification:
    """Represents a notification to be sent."""
    kind: NotificationKind
    message: str
    task_id: Optional[str] = None
    recipient: str = "default"
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)
    delivered_at: Optional[datetime] = None
    delivery_channel: Optional[str] = None
    delivery_error: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "task_id": self.task_id,
            "recipient": self.recipient,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "delivery_channel": self.delivery_channel,
            "delivery_error": self.delivery_error
        }


ChannelHandler = Callable[[Notification], Awaitable[bool]]


class NotificationEngine:
    """
    Notification dispatcher.

    Features:
    - Multiple delivery channels, tried in registration order
    - Delivered / failed / rate-limited counters
    - Delivery audit log
    """

    def __init__(self, log_file: Optional[Path] = None):
        """
        Args:
            log_file: JSONL audit log path (None disables the audit log)
        """
        self._channels: Dict[str, ChannelHandler] = {}
        self._rate_limits: Dict[str, List[datetime]] = {}
        self._log_file = log_file
        self.stats: Dict[str, int] = {"delivered": 0, "failed": 0, "rate_limited": 0}

    def register_channel(self, name: str, handler: ChannelHandler):
        """Register a notification delivery channel."""
        self._channels[name] = handler
        logger.info(f"Registered notification channel: {name}")

    @property
    def channels(self) -> List[str]:
        return list(self._channels.keys())

    def _check_rate_limit(self, recipient: str) -> bool:
        now = datetime.utcnow()
        window_start = now - timedelta(seconds=RATE_LIMIT_WINDOW)
        recent = [t for t in self._rate_limits.get(recipient, []) if t > window_start]
        if len(recent) >= RATE_LIMIT_MAX:
            self._rate_limits[recipient] = recent
            return False
        recent.append(now)
        self._rate_limits[recipient] = recent
        return True

    def _log_notification(self, notification: Notification):
        if self._log_file is None:
            return
        try:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_file, "a") as f:
                f.write(json.dumps(notification.to_dict()) + "\n")
        except OSError as e:
            logger.error(f"Failed to log notification: {e}")

    async def send(self, notification: Notification, channel: Optional[str] = None) -> bool:
        """
        Send a notification through one channel or the first that accepts it.

        Returns:
            True if delivered
        """
        if not self._check_rate_limit(notification.recipient):
            self.stats["rate_limited"] += 1
            notification.delivery_error = "Rate limit exceeded"
            self._log_notification(notification)
            return False

        names = [channel] if channel else list(self._channels.keys())
        delivered = False
        for name in names:
            handler = self._channels.get(name)
            if handler is None:
                continue
            try:
                if await handler(notification):
                    notification.delivered_at = datetime.utcnow()
                    notification.delivery_channel = name
                    delivered = True
                    break
                notification.delivery_error = f"{name} rejected the message"
            except Exception as e:
                logger.error(f"Channel {name} delivery failed: {type(e).__name__}: {e}")
                notification.delivery_error = str(e)

        if delivered:
            self.stats["delivered"] += 1
        else:
            self.stats["failed"] += 1
            logger.warning(
                f"Notification not delivered ({notification.kind.value}, task={notification.task_id}): "
                f"{notification.delivery_error or 'no channels'}"
            )
        self._log_notification(notification)
        return delivered

    async def notify(
        self,
        message: str,
        kind: NotificationKind = NotificationKind.SYSTEM,
        task_id: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> bool:
        """Notification sink used by the execution core. Never raises."""
        try:
            return await self.send(Notification(
                kind=kind,
                message=message,
                task_id=task_id,
                recipient=recipient or "default",
            ))
        except Exception as e:
            self.stats["failed"] += 1
            logger.error(f"Notification dispatch error: {type(e).__name__}: {e}")
            return False


# -----------------------------------------------------------------------------
# Channels
# -----------------------------------------------------------------------------
async def logging_channel(notification: Notification) -> bool:
    """Write the notification to the application log."""
    logger.info(f"[{notification.kind.value}] {notification.task_id or '-'}: {notification.message}")
    return True


def telegram_channel(
    bot_token: str,
    default_chat_id: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ChannelHandler:
    """
    Build a Telegram delivery channel.

    The notification recipient is used as the chat id unless it is "default".
    """
    async def send(notification: Notification) -> bool:
        chat_id = notification.recipient if notification.recipient != "default" else default_chat_id
        if not chat_id:
            return False

        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            try:
                response = await client.post(
                    f"https://api.telegram.org/bot{bot_token}/sendMessage",
                    json={
                        "chat_id": chat_id,
                        "text": notification.message,
                        "disable_web_page_preview": True
                    }
                )
            except httpx.HTTPError as e:
                logger.error(f"Telegram send error: {e}")
                return False
        return response.status_code == 200

    return send
