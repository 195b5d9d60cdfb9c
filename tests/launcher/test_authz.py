"""Tests for container launch authorization."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from hatchway.launcher.authz import ArboristClient, PolicyAuthorizer
from hatchway.launcher.config import LauncherConfig
from hatchway.launcher.managers.paymodels import PayModelResolver
from hatchway.launcher.models.container import AuthzConfig, ContainerDefinition
from tests.launcher.fakes import FakePayModelStore, make_container, make_pay_model

USER = "alice@example.org"
TOKEN = "token-abc"


class ArboristStub:
    """Answers ``/auth/request`` with ``auth: true`` for allowed paths only."""

    def __init__(self, allowed: set[str], status_code: int = 200) -> None:
        self.allowed = allowed
        self.status_code = status_code
        self.requests: list[dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        paths = {r["resource"] for r in body["requests"]}
        return httpx.Response(self.status_code, json={"auth": paths <= self.allowed})


def _authorizer(arborist: ArboristStub, resolver: PayModelResolver | None = None) -> PolicyAuthorizer:
    client = ArboristClient("http://arborist/", transport=httpx.MockTransport(arborist))
    return PolicyAuthorizer(client, resolver or PayModelResolver(LauncherConfig()))


def _container(authz: dict[str, Any] | None) -> ContainerDefinition:
    return make_container(authz=AuthzConfig.model_validate(authz) if authz else None)


async def test_no_authz_block_allows_everyone() -> None:
    arborist = ArboristStub(set())
    assert await _authorizer(arborist).is_authorized(USER, TOKEN, _container(None))
    assert arborist.requests == []


async def test_resource_paths_request_body() -> None:
    arborist = ArboristStub({"/workspace/a", "/workspace/b"})
    container = _container({"version": 0.1, "resource_paths": ["/workspace/a", "/workspace/b"]})

    assert await _authorizer(arborist).is_authorized(USER, TOKEN, container)
    assert arborist.requests == [
        {
            "user": {"token": TOKEN},
            "requests": [
                {"resource": "/workspace/a", "action": {"service": "jupyterhub", "method": "launch"}},
                {"resource": "/workspace/b", "action": {"service": "jupyterhub", "method": "launch"}},
            ],
        }
    ]


async def test_or_stops_at_first_allowed_rule() -> None:
    arborist = ArboristStub({"/a"})
    container = _container({"version": 0.1, "or": [{"resource_paths": ["/a"]}, {"resource_paths": ["/b"]}]})

    assert await _authorizer(arborist).is_authorized(USER, TOKEN, container)
    assert len(arborist.requests) == 1


async def test_or_denies_when_no_rule_allows() -> None:
    arborist = ArboristStub(set())
    container = _container({"version": 0.1, "or": [{"resource_paths": ["/a"]}, {"resource_paths": ["/b"]}]})

    assert not await _authorizer(arborist).is_authorized(USER, TOKEN, container)
    assert len(arborist.requests) == 2


async def test_and_requires_every_rule() -> None:
    arborist = ArboristStub({"/a"})
    container = _container({"version": 0.1, "and": [{"resource_paths": ["/a"]}, {"resource_paths": ["/b"]}]})

    assert not await _authorizer(arborist).is_authorized(USER, TOKEN, container)


async def test_arborist_failure_denies() -> None:
    arborist = ArboristStub({"/a"}, status_code=500)
    container = _container({"version": 0.1, "resource_paths": ["/a"]})

    assert not await _authorizer(arborist).is_authorized(USER, TOKEN, container)


@pytest.mark.parametrize("content", [b"<html>Bad gateway</html>", b"[true]"])
async def test_unreadable_arborist_answer_denies(content: bytes) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=content))
    authorizer = PolicyAuthorizer(ArboristClient("http://arborist/", transport=transport), PayModelResolver(LauncherConfig()))
    container = _container({"version": 0.1, "resource_paths": ["/a"]})

    assert not await authorizer.is_authorized(USER, TOKEN, container)


# ---------------------------------------------------------------------------
# Pay-model rules
# ---------------------------------------------------------------------------


async def test_pay_model_name_allowed() -> None:
    store = FakePayModelStore([make_pay_model(current=True, name="Direct Pay")])
    resolver = PayModelResolver(LauncherConfig(), store)
    container = _container({"version": 0.1, "pay_models": ["Direct Pay"]})

    assert await _authorizer(ArboristStub(set()), resolver).is_authorized(USER, TOKEN, container)


async def test_pay_model_name_not_allowed() -> None:
    store = FakePayModelStore([make_pay_model(current=True, name="STRIDES Credits")])
    resolver = PayModelResolver(LauncherConfig(), store)
    container = _container({"version": 0.1, "pay_models": ["Direct Pay"]})

    assert not await _authorizer(ArboristStub(set()), resolver).is_authorized(USER, TOKEN, container)


async def test_none_admits_users_without_pay_model() -> None:
    container = _container({"version": 0.1, "pay_models": ["None"]})
    assert await _authorizer(ArboristStub(set())).is_authorized(USER, TOKEN, container)


async def test_pay_model_rule_denies_anonymous_user() -> None:
    container = _container({"version": 0.1, "pay_models": ["None"]})
    assert not await _authorizer(ArboristStub(set())).is_authorized("", TOKEN, container)


async def test_pay_model_lookup_failure_denies() -> None:
    store = FakePayModelStore()
    store.fail = True
    resolver = PayModelResolver(LauncherConfig(), store)
    container = _container({"version": 0.1, "pay_models": ["None"]})

    assert not await _authorizer(ArboristStub(set()), resolver).is_authorized(USER, TOKEN, container)


@pytest.mark.parametrize("current_name", ["Direct Pay", None])
async def test_mixed_or_rule(current_name: str | None) -> None:
    records = [make_pay_model(current=True, name=current_name)] if current_name else []
    resolver = PayModelResolver(LauncherConfig(), FakePayModelStore(records))
    container = _container({"version": 0.1, "or": [{"resource_paths": ["/a"]}, {"pay_models": ["Direct Pay"]}]})

    allowed = await _authorizer(ArboristStub(set()), resolver).is_authorized(USER, TOKEN, container)

    assert allowed is (current_name is not None)
