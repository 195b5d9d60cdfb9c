"""Pay-model endpoints.

Switching or clearing the current pay model is refused while the user
has a workspace that is not ``Not Found``, so a running workspace never
changes backend underneath itself.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import PlainTextResponse

from hatchway.launcher.deps import AccessToken, Dispatcher, RemoteUser, Resolver
from hatchway.launcher.errors import HatchwayError
from hatchway.launcher.managers.workspaces import WorkspaceDispatcher
from hatchway.launcher.models.enums import WorkspaceState
from hatchway.launcher.models.paymodel import AllPayModels, PayModel

router = APIRouter(tags=["paymodels"])


async def _workspace_running(dispatcher: WorkspaceDispatcher, user: str, token: str) -> bool:
    try:
        current = await dispatcher.status(user, token)
    except HatchwayError as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from None
    return current.status is not WorkspaceState.NOT_FOUND


@router.get("/paymodels", response_model=PayModel, response_model_by_alias=True)
async def current_pay_model(resolver: Resolver, user: RemoteUser) -> PayModel:
    """The caller's current pay model."""
    try:
        pay_models = await resolver.get_pay_models_for_user(user)
    except HatchwayError as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from None
    if pay_models is None or pay_models.current_pay_model is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Current paymodel not set")
    return pay_models.current_pay_model


@router.get("/allpaymodels", response_model=AllPayModels, response_model_by_alias=True)
async def all_pay_models(resolver: Resolver, user: RemoteUser) -> AllPayModels:
    """Every active pay model of the caller plus the current selection."""
    try:
        pay_models = await resolver.get_pay_models_for_user(user)
    except HatchwayError as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from None
    if pay_models is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="No paymodels found")
    return pay_models


@router.post("/setpaymodel", response_model=PayModel, response_model_by_alias=True)
async def set_pay_model(
    resolver: Resolver,
    dispatcher: Dispatcher,
    user: RemoteUser,
    token: AccessToken,
    pay_model_id: str = Query("", alias="id"),
) -> PayModel:
    if not pay_model_id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Missing ID argument")
    if await _workspace_running(dispatcher, user, token):
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Can not update paymodel when workspace is running"
        )
    try:
        return await resolver.set_current_pay_model(user, pay_model_id)
    except HatchwayError as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from None


@router.post("/resetpaymodels", response_class=PlainTextResponse)
async def reset_pay_models(resolver: Resolver, dispatcher: Dispatcher, user: RemoteUser, token: AccessToken) -> str:
    if await _workspace_running(dispatcher, user, token):
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Can not reset paymodels when workspace is running"
        )
    try:
        await resolver.reset_current_pay_model(user)
    except HatchwayError as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from None
    return "Current Paymodel has been reset"
