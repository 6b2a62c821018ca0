"""
Identity port: resolves user ids to department membership.

The engine makes no authorization decisions; it only needs a user's
department to validate assignments and to stamp actor fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol

import httpx
import structlog
from fastapi import Depends, Header, HTTPException

from app.core.config import get_settings

log = structlog.get_logger()


@dataclass(frozen=True)
class UserRef:
    id: int
    department_id: Optional[int] = None
    roles: tuple[str, ...] = field(default_factory=tuple)


class UserDirectory(Protocol):
    async def get_user(self, user_id: int) -> Optional[UserRef]: ...


class StaticUserDirectory:
    """In-memory directory, used for local development and tests."""

    def __init__(self, users: Mapping[int, UserRef] | None = None) -> None:
        self._users = dict(users or {})

    def add(self, user: UserRef) -> None:
        self._users[user.id] = user

    async def get_user(self, user_id: int) -> Optional[UserRef]:
        return self._users.get(user_id)


class HttpUserDirectory:
    """Looks users up in the external identity service."""

    def __init__(self, base_url: str, timeout_seconds: int = 10) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds

    async def get_user(self, user_id: int) -> Optional[UserRef]:
        async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout)) as client:
            resp = await client.get(f"{self._base_url}/users/{user_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        data = resp.json()
        return UserRef(
            id=int(data["id"]),
            department_id=data.get("department_id"),
            roles=tuple(data.get("roles") or ()),
        )


_directory: UserDirectory | None = None


def get_user_directory() -> UserDirectory:
    """FastAPI dependency returning the configured directory."""
    global _directory
    if _directory is None:
        settings = get_settings()
        _directory = HttpUserDirectory(
            settings.identity_service_url, settings.identity_timeout_seconds
        )
    return _directory


def set_user_directory(directory: UserDirectory | None) -> None:
    global _directory
    _directory = directory


async def current_user(
    x_user_id: int = Header(..., alias="X-User-Id"),
    directory: UserDirectory = Depends(get_user_directory),
) -> UserRef:
    """Resolve the acting user from the gateway-supplied header."""
    try:
        user = await directory.get_user(x_user_id)
    except httpx.HTTPError as exc:
        log.error("identity.lookup_failed", user_id=x_user_id, error=str(exc))
        raise HTTPException(status_code=503, detail="Identity service unavailable")
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user
