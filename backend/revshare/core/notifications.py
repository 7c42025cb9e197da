# backend/revshare/core/notifications.py
"""
Outbound notifications (email / in-app / real-time) are owned by another
service. The ledger only talks to a NotificationDispatcher and never lets a
delivery failure reach the caller.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

from revshare.core.config import settings

logger = logging.getLogger(__name__)

CHANNEL_EMAIL = "email"
CHANNEL_IN_APP = "in_app"
CHANNEL_REALTIME = "realtime"

# Categories understood by the dispatcher
CATEGORY_INFO = "info"
CATEGORY_SUCCESS = "success"
CATEGORY_ERROR = "error"
CATEGORY_BALANCE_REFRESH = "balance_summary_refresh"


@dataclass(frozen=True)
class Notification:
    recipient_id: uuid.UUID
    message: str
    category: str = CATEGORY_INFO
    channel: str = CHANNEL_IN_APP
    subject: Optional[str] = None


class NotificationDispatcher(Protocol):
    async def send(self, notification: Notification) -> None: ...


class LoggingDispatcher:
    """Default dispatcher: writes the notification to the log."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "notify recipient=%s channel=%s category=%s message=%s",
            notification.recipient_id,
            notification.channel,
            notification.category,
            notification.message,
        )


@dataclass
class RecordingDispatcher:
    """In-memory dispatcher (tests, dry runs)."""

    sent: list[Notification] = field(default_factory=list)
    fail: bool = False

    async def send(self, notification: Notification) -> None:
        if self.fail:
            raise RuntimeError("dispatcher unavailable")
        self.sent.append(notification)


async def dispatch_best_effort(
    dispatcher: NotificationDispatcher,
    notification: Notification,
    timeout: float | None = None,
) -> bool:
    """
    Deliver with a time bound. Returns False (and logs) on any failure.
    """
    try:
        await asyncio.wait_for(
            dispatcher.send(notification),
            timeout=timeout if timeout is not None else settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
        return True
    except Exception:
        logger.exception(
            "Notification failed recipient=%s channel=%s category=%s",
            notification.recipient_id,
            notification.channel,
            notification.category,
        )
        return False


# strong refs so scheduled tasks are not garbage-collected mid-flight
_background_tasks: set[asyncio.Task] = set()


def dispatch_in_background(
    dispatcher: NotificationDispatcher,
    notification: Notification,
    *,
    timeout: float | None = None,
    on_failure: Callable[[], Awaitable[None]] | None = None,
) -> asyncio.Task:
    """
    Fire-and-forget bounded delivery; the caller returns immediately.
    on_failure runs (best-effort) when delivery failed or timed out.
    """

    async def _run() -> None:
        ok = await dispatch_best_effort(dispatcher, notification, timeout=timeout)
        if not ok and on_failure is not None:
            try:
                await on_failure()
            except Exception:
                logger.exception("Notification failure hook raised recipient=%s", notification.recipient_id)

    task = asyncio.create_task(_run())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def wait_for_background_notifications() -> None:
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
