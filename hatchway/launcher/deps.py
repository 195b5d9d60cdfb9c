"""FastAPI dependency injection for launcher services and request identity.

Usage in route handlers::

    @router.get("/status")
    async def status(dispatcher: Dispatcher, user: RemoteUser, token: AccessToken) -> WorkspaceStatus:
        ...

Service dependencies raise HTTP 503 if the lifespan did not configure
them (launcher config missing or invalid).
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from hatchway.launcher.managers.paymodels import PayModelResolver
from hatchway.launcher.managers.workspaces import WorkspaceDispatcher
from hatchway.launcher.settings import HatchwaySettings


def get_dispatcher(request: Request) -> WorkspaceDispatcher:
    dispatcher: WorkspaceDispatcher | None = request.app.state.dispatcher
    if dispatcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Launcher not configured (HATCHWAY_CONFIG_PATH missing or invalid).",
        )
    return dispatcher


def get_resolver(request: Request) -> PayModelResolver:
    resolver: PayModelResolver | None = request.app.state.resolver
    if resolver is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pay models not configured (HATCHWAY_CONFIG_PATH missing or invalid).",
        )
    return resolver


def get_app_settings(request: Request) -> HatchwaySettings:
    return request.app.state.settings


def get_remote_user(remote_user: Annotated[str, Header(alias="REMOTE_USER", convert_underscores=False)] = "") -> str:
    """User name set by the platform's auth proxy; empty when absent."""
    return remote_user.strip()


def get_access_token(authorization: Annotated[str, Header()] = "") -> str:
    """Bearer token from the ``Authorization`` header; empty when absent."""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


# -- Annotated type aliases for concise route signatures ---------------------

Dispatcher = Annotated[WorkspaceDispatcher, Depends(get_dispatcher)]
"""Annotated dependency: workspace dispatcher (503 when unconfigured)."""

Resolver = Annotated[PayModelResolver, Depends(get_resolver)]
"""Annotated dependency: pay-model resolver (503 when unconfigured)."""

AppSettings = Annotated[HatchwaySettings, Depends(get_app_settings)]

RemoteUser = Annotated[str, Depends(get_remote_user)]
AccessToken = Annotated[str, Depends(get_access_token)]
