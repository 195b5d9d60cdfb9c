"""Workspace lifecycle endpoints.

Routes sit at the root because the platform proxy forwards
``/lw-workspace/*`` here with the prefix stripped.  The caller is
identified by the ``REMOTE_USER`` header set by that proxy.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import PlainTextResponse
from loguru import logger

from hatchway.launcher.deps import AccessToken, Dispatcher, RemoteUser
from hatchway.launcher.errors import HatchwayError
from hatchway.launcher.managers.workspaces import (
    NotAuthorizedError,
    PayModelInactiveError,
    PayModelNotSetError,
    UnknownContainerError,
)
from hatchway.launcher.models.container import ContainerOption
from hatchway.launcher.models.enums import BackendKind, LaunchOutcome
from hatchway.launcher.models.status import WorkspaceStatus

router = APIRouter(tags=["workspaces"])


@router.post("/launch", response_class=PlainTextResponse)
async def launch(
    dispatcher: Dispatcher,
    user: RemoteUser,
    token: AccessToken,
    app_id: str = Query("", alias="id"),
) -> str:
    """Start the workspace *id* for the calling user."""
    if not app_id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Missing 'id' parameter")
    if not user:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="No username found. Launch forbidden")

    try:
        outcome = await dispatcher.launch(user, app_id, token)
    except UnknownContainerError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Invalid 'id' parameter") from None
    except NotAuthorizedError:
        logger.info("User {} is not authorized to run container {}", user, app_id)
        raise HTTPException(
            status.HTTP_403_FORBIDDEN, detail="You do not have authorization to run this container"
        ) from None
    except PayModelNotSetError:
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Current Paymodel is not set. Launch forbidden"
        ) from None
    except PayModelInactiveError:
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Paymodel is not active. Launch forbidden"
        ) from None
    except HatchwayError as exc:
        logger.error("Launch of {} for user {} failed: {}", app_id, user, exc)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from None

    if outcome is LaunchOutcome.ACCEPTED:
        return "Launch accepted"
    return "Success"


@router.post("/terminate", response_class=PlainTextResponse)
async def terminate(
    dispatcher: Dispatcher,
    user: RemoteUser,
    token: AccessToken,
    workspace_id: str | None = Query(None, alias="id"),
) -> str:
    """Delete the caller's workspace (or every workspace when no *id* is given)."""
    if not user:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="No username found. Unable to terminate")

    try:
        kind = await dispatcher.terminate(user, token, workspace_id or None)
    except HatchwayError as exc:
        logger.error("Terminate for user {} failed: {}", user, exc)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from None

    if kind is BackendKind.MANAGED_CONTAINER:
        return "Terminated ECS workspace"
    return "Terminated workspace"


@router.get("/status", response_model=WorkspaceStatus, response_model_by_alias=True)
async def workspace_status(dispatcher: Dispatcher, user: RemoteUser, token: AccessToken) -> WorkspaceStatus:
    try:
        return await dispatcher.status(user, token)
    except HatchwayError as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from None


@router.get("/workspaces", response_model=list[WorkspaceStatus], response_model_by_alias=True)
async def list_workspaces(dispatcher: Dispatcher, user: RemoteUser, token: AccessToken) -> list[WorkspaceStatus]:
    """Every workspace of the caller, with its proxy URL."""
    try:
        return await dispatcher.list_workspaces(user, token)
    except HatchwayError as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from None


@router.get("/options", response_model=list[ContainerOption], response_model_by_alias=True)
async def options(dispatcher: Dispatcher, user: RemoteUser, token: AccessToken) -> list[ContainerOption]:
    """Containers the caller may launch."""
    return await dispatcher.options(user, token)
