"""Kernel activity of running workspaces.

The portal counts down to the idle shutdown of a workspace from the idle
limit in its container args and the last kernel activity, which the
workspace reports at ``{ambassador}/api/status``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

import httpx
from loguru import logger

from hatchway.launcher.errors import BackendError
from hatchway.launcher.models.enums import WorkspaceState
from hatchway.launcher.models.status import WorkspaceStatus

UNKNOWN_ACTIVITY = -1


@runtime_checkable
class KernelActivity(Protocol):
    async def last_activity(self, token: str) -> int:
        """Epoch milliseconds of the last kernel activity."""
        ...


class AmbassadorActivity:
    """Reads ``last_activity`` from the workspace status API behind ambassador."""

    def __init__(self, base_url: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def last_activity(self, token: str) -> int:
        if not token:
            msg = "No valid access token"
            raise BackendError(msg)
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {token}"},
            ) as client:
                resp = await client.get("/api/status")
        except httpx.HTTPError as exc:
            raise BackendError(str(exc)) from exc
        if resp.status_code != httpx.codes.OK:
            msg = f"Error occurred when getting workspace kernel status with error code {resp.status_code}"
            raise BackendError(msg)
        try:
            last = datetime.fromisoformat(resp.json()["last_activity"])
        except (ValueError, KeyError, TypeError) as exc:
            msg = f"Unable to parse last activity time: {exc}"
            raise BackendError(msg) from exc
        return int(last.timestamp()) * 1000


async def attach_activity(status: WorkspaceStatus, activity: KernelActivity | None, token: str) -> WorkspaceStatus:
    """Fill ``last_activity_time`` of a running workspace that has an idle limit."""
    if activity is None or status.status is not WorkspaceState.RUNNING or status.idle_time_limit <= 0:
        return status
    try:
        status.last_activity_time = await activity.last_activity(token)
    except BackendError as exc:
        logger.warning("Unable to read kernel activity: {}", exc)
        status.last_activity_time = UNKNOWN_ACTIVITY
    return status
