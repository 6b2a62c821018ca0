"""Shared helpers for v1 endpoints."""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.notifications import Notifier, dispatch_notifications
from eventflow_shared.schemas.common import APIResponse


async def commit_and_notify(session: AsyncSession, notifier: Notifier) -> list[str]:
    """Commit the request's transaction, then deliver queued notifications.

    Delivery failures come back as warnings; the commit stands regardless.
    """
    await session.commit()
    return await dispatch_notifications(session, notifier)


def respond(data: Any, warnings: list[str] | None = None) -> APIResponse:
    return APIResponse(data=data, warnings=warnings or [])
