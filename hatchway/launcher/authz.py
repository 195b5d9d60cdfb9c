"""Container launch authorization.

A container without an ``authz`` block may be launched by anyone.  Version
0.1 blocks combine leaf rules with ``and`` / ``or``; a leaf rule is either
a list of Arborist resource paths (the user needs ``jupyterhub:launch`` on
all of them) or a list of allowed pay-model names, where ``"None"``
admits users without a current pay model.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx
from loguru import logger

from hatchway.launcher.errors import HatchwayError
from hatchway.launcher.managers.paymodels import PayModelResolver
from hatchway.launcher.models.container import AuthzRule, ContainerDefinition

NO_PAY_MODEL = "None"


@runtime_checkable
class Authorizer(Protocol):
    async def is_authorized(self, user: str, token: str, container: ContainerDefinition) -> bool: ...


class ArboristClient:
    """Minimal client for Arborist's ``/auth/request`` endpoint."""

    def __init__(self, base_url: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def can_launch(self, token: str, resource_paths: list[str]) -> bool:
        body = {
            "user": {"token": token},
            "requests": [
                {"resource": path, "action": {"service": "jupyterhub", "method": "launch"}} for path in resource_paths
            ],
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.post(f"{self._base_url}/auth/request", json=body)
            resp.raise_for_status()
            answer = resp.json()
        return isinstance(answer, dict) and bool(answer.get("auth", False))


class PolicyAuthorizer:
    """Evaluates container ``authz`` blocks against Arborist and pay models."""

    def __init__(self, arborist: ArboristClient, resolver: PayModelResolver) -> None:
        self._arborist = arborist
        self._resolver = resolver

    async def is_authorized(self, user: str, token: str, container: ContainerDefinition) -> bool:
        authz = container.authz
        if authz is None:
            return True

        logger.debug("Checking user '{}' access to container '{}'", user, container.name)
        if authz.or_:
            allowed = False
            for rule in authz.or_:
                if await self._check_rule(user, token, rule):
                    allowed = True
                    break
        elif authz.and_:
            allowed = True
            for rule in authz.and_:
                if not await self._check_rule(user, token, rule):
                    allowed = False
                    break
        else:
            allowed = await self._check_rule(user, token, authz)

        logger.info("User '{}' is {}authorized to run container '{}'", user, "" if allowed else "not ", container.name)
        return allowed

    async def _check_rule(self, user: str, token: str, rule: AuthzRule) -> bool:
        if rule.resource_paths:
            return await self._check_resource_paths(user, token, rule.resource_paths)
        if rule.pay_models:
            return await self._check_pay_models(user, rule.pay_models)
        # Catalog validation rejects empty rules, so this is a config bug.
        msg = "unexpected container authz rule value"
        raise HatchwayError(msg)

    async def _check_resource_paths(self, user: str, token: str, resource_paths: list[str]) -> bool:
        logger.debug("Checking user '{}' access to resource paths {}", user, resource_paths)
        try:
            return await self._arborist.can_launch(token, resource_paths)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Arborist auth request failed, denying access: {}", exc)
            return False

    async def _check_pay_models(self, user: str, allowed: list[str]) -> bool:
        if not user:
            logger.info("User is not logged in, assume they are not allowed to run container")
            return False
        try:
            current = await self._resolver.get_current_pay_model(user)
        except HatchwayError as exc:
            logger.warning("Failed to get current pay model for user '{}', denying: {}", user, exc)
            return False
        name = current.name if current is not None else NO_PAY_MODEL
        if name not in allowed:
            logger.debug("Pay model '{}' is not allowed for container", name)
            return False
        return True
