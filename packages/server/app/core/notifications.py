"""
Notification port.

Services queue notifications on the session while their transaction is open;
the session owner dispatches them after commit. Delivery is fire-and-forget:
a failing notifier never undoes a committed mutation, it produces a warning.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.redis import get_redis

log = structlog.get_logger()

PENDING_KEY = "pending_notifications"


@dataclass(frozen=True)
class Notification:
    event: str
    recipients: tuple[int, ...]
    payload: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    async def notify(self, event: str, recipients: Iterable[int], payload: dict[str, Any]) -> None: ...


class LogNotifier:
    """Writes notifications to the structured log only."""

    async def notify(self, event: str, recipients: Iterable[int], payload: dict[str, Any]) -> None:
        log.info("notification.sent", notification=event, recipients=list(recipients), payload=payload)


class RedisNotifier:
    """Publishes notifications to a Redis Pub/Sub channel for delivery workers."""

    def __init__(self, channel: str) -> None:
        self._channel = channel

    async def notify(self, event: str, recipients: Iterable[int], payload: dict[str, Any]) -> None:
        redis = await get_redis()
        message = {
            "event": event,
            "recipients": list(recipients),
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        await redis.publish(self._channel, json.dumps(message, default=str))


def get_notifier() -> Notifier:
    """FastAPI dependency returning the configured notifier."""
    settings = get_settings()
    if settings.notifier == "redis":
        return RedisNotifier(settings.notification_channel)
    return LogNotifier()


def queue_notification(
    session: AsyncSession,
    event: str,
    recipients: Iterable[int | None],
    payload: dict[str, Any],
) -> None:
    """Record a notification to send once the session's transaction commits."""
    targets = tuple(dict.fromkeys(r for r in recipients if r is not None))
    session.info.setdefault(PENDING_KEY, []).append(
        Notification(event=event, recipients=targets, payload=payload)
    )


def pending_notifications(session: AsyncSession) -> list[Notification]:
    return list(session.info.get(PENDING_KEY, []))


def discard_notifications(session: AsyncSession) -> None:
    session.info.pop(PENDING_KEY, None)


async def dispatch_notifications(session: AsyncSession, notifier: Notifier) -> list[str]:
    """Send queued notifications. Returns one warning per failed delivery."""
    warnings: list[str] = []
    for note in session.info.pop(PENDING_KEY, []):
        if not note.recipients:
            continue
        try:
            await notifier.notify(note.event, note.recipients, note.payload)
        except Exception as exc:
            log.warning("notification.failed", notification=note.event, error=str(exc))
            warnings.append(f"Notification '{note.event}' could not be delivered: {exc}")
    return warnings
