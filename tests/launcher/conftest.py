"""Shared fixtures for launcher tests."""

from __future__ import annotations

import pytest

from hatchway.launcher.config import ContainerCatalog, LauncherConfig
from hatchway.launcher.managers.paymodels import PayModelResolver
from hatchway.launcher.managers.workspaces import WorkspaceDispatcher
from hatchway.launcher.models.container import ContainerDefinition
from hatchway.launcher.models.enums import BackendKind
from hatchway.launcher.tasks import TaskRegistry
from tests.launcher.fakes import FakeAuthorizer, FakeDriver, FakePayModelStore, make_container

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def container() -> ContainerDefinition:
    return make_container()


@pytest.fixture
def launcher_config(container: ContainerDefinition) -> LauncherConfig:
    return LauncherConfig(containers=[container])


@pytest.fixture
def store() -> FakePayModelStore:
    return FakePayModelStore()


@pytest.fixture
def resolver(launcher_config: LauncherConfig, store: FakePayModelStore) -> PayModelResolver:
    return PayModelResolver(launcher_config, store)


@pytest.fixture
def drivers() -> dict[BackendKind, FakeDriver]:
    return {kind: FakeDriver(kind) for kind in BackendKind}


@pytest.fixture
def tasks() -> TaskRegistry:
    return TaskRegistry()


@pytest.fixture
def dispatcher(
    launcher_config: LauncherConfig,
    resolver: PayModelResolver,
    drivers: dict[BackendKind, FakeDriver],
    tasks: TaskRegistry,
) -> WorkspaceDispatcher:
    return WorkspaceDispatcher(
        ContainerCatalog(launcher_config.containers),
        resolver,
        drivers,  # type: ignore[arg-type]
        FakeAuthorizer(),
        tasks,
        poll_interval=0,
    )
