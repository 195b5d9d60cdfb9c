"""Tests for WorkspaceDispatcher: launch routing, termination confirmer, queries."""

from __future__ import annotations

import aiohttp
import pytest
from botocore.exceptions import ClientError

from hatchway.launcher.config import ContainerCatalog, LauncherConfig
from hatchway.launcher.errors import BackendError, HatchwayError
from hatchway.launcher.managers.paymodels import MissingUserError, PayModelResolver
from hatchway.launcher.managers.workspaces import (
    NotAuthorizedError,
    PayModelInactiveError,
    PayModelNotSetError,
    UnknownContainerError,
    WorkspaceDispatcher,
)
from hatchway.launcher.models.container import ContainerDefinition
from hatchway.launcher.models.enums import BackendKind, LaunchOutcome, WorkspaceState
from hatchway.launcher.models.paymodel import PayModel
from hatchway.launcher.models.status import WorkspaceStatus
from hatchway.launcher.tasks import TaskRegistry
from tests.launcher.fakes import FakeAuthorizer, FakeDriver, FakePayModelStore, make_container, make_pay_model

USER = "alice@example.org"
TOKEN = "tok"


class FlakyDriver(FakeDriver):
    """FakeDriver whose first status calls fail."""

    def __init__(
        self, kind: BackendKind, statuses: list[WorkspaceState], failures: int, error: Exception | None = None
    ) -> None:
        super().__init__(kind, statuses)
        self.failures = failures
        self.error = error or BackendError("cluster unreachable")

    async def status(self, user: str, token: str, pay_model: PayModel | None) -> WorkspaceStatus:
        if self.failures:
            self.failures -= 1
            raise self.error
        return await super().status(user, token, pay_model)


def _dispatcher(
    resolver: PayModelResolver,
    drivers: dict[BackendKind, FakeDriver],
    tasks: TaskRegistry,
    containers: list[ContainerDefinition],
    authorizer: FakeAuthorizer | None = None,
) -> WorkspaceDispatcher:
    return WorkspaceDispatcher(
        ContainerCatalog(containers),
        resolver,
        drivers,  # type: ignore[arg-type]
        authorizer or FakeAuthorizer(),
        tasks,
        poll_interval=0,
    )


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


async def test_launch_unknown_container(dispatcher: WorkspaceDispatcher) -> None:
    with pytest.raises(UnknownContainerError):
        await dispatcher.launch(USER, "no-such-app", TOKEN)


async def test_launch_requires_user(dispatcher: WorkspaceDispatcher, container: ContainerDefinition) -> None:
    with pytest.raises(MissingUserError):
        await dispatcher.launch("", container.app_id, TOKEN)


async def test_launch_unauthorized(
    resolver: PayModelResolver,
    drivers: dict[BackendKind, FakeDriver],
    tasks: TaskRegistry,
    container: ContainerDefinition,
) -> None:
    dispatcher = _dispatcher(resolver, drivers, tasks, [container], FakeAuthorizer({container.name}))

    with pytest.raises(NotAuthorizedError):
        await dispatcher.launch(USER, container.app_id, TOKEN)
    assert drivers[BackendKind.LOCAL].created == []


async def test_launch_without_pay_models_runs_locally(
    launcher_config: LauncherConfig,
    drivers: dict[BackendKind, FakeDriver],
    tasks: TaskRegistry,
    container: ContainerDefinition,
) -> None:
    dispatcher = _dispatcher(PayModelResolver(launcher_config), drivers, tasks, [container])

    outcome = await dispatcher.launch(USER, container.app_id, TOKEN)

    assert outcome is LaunchOutcome.STARTED
    assert drivers[BackendKind.LOCAL].created == [(USER, container.app_id, None)]


async def test_launch_with_pay_models_but_none_current(
    dispatcher: WorkspaceDispatcher, store: FakePayModelStore, container: ContainerDefinition
) -> None:
    store.records[USER] = [make_pay_model("a"), make_pay_model("b")]

    with pytest.raises(PayModelNotSetError):
        await dispatcher.launch(USER, container.app_id, TOKEN)


@pytest.mark.parametrize(
    ("flags", "kind"),
    [({"local": True}, BackendKind.LOCAL), ({}, BackendKind.EXTERNAL)],
)
async def test_launch_routes_by_current_pay_model(
    dispatcher: WorkspaceDispatcher,
    store: FakePayModelStore,
    drivers: dict[BackendKind, FakeDriver],
    container: ContainerDefinition,
    flags: dict[str, bool],
    kind: BackendKind,
) -> None:
    pay_model = make_pay_model("a", current=True, **flags)
    store.records[USER] = [pay_model]

    outcome = await dispatcher.launch(USER, container.app_id, TOKEN)

    assert outcome is LaunchOutcome.STARTED
    assert drivers[kind].created == [(USER, container.app_id, pay_model)]


async def test_launch_managed_container_runs_in_background(
    dispatcher: WorkspaceDispatcher,
    store: FakePayModelStore,
    drivers: dict[BackendKind, FakeDriver],
    tasks: TaskRegistry,
    container: ContainerDefinition,
) -> None:
    store.records[USER] = [make_pay_model("ecs", current=True, ecs=True)]

    outcome = await dispatcher.launch(USER, container.app_id, TOKEN)

    assert outcome is LaunchOutcome.ACCEPTED
    assert [t.name for t in tasks.all_tasks()] == [f"launch:{USER}#1"]
    assert await tasks.wait_until_drained(timeout=1)
    assert drivers[BackendKind.MANAGED_CONTAINER].created[0][1] == container.app_id


async def test_launch_managed_container_failure_is_logged_not_raised(
    dispatcher: WorkspaceDispatcher,
    store: FakePayModelStore,
    drivers: dict[BackendKind, FakeDriver],
    tasks: TaskRegistry,
    container: ContainerDefinition,
) -> None:
    store.records[USER] = [make_pay_model("ecs", current=True, ecs=True)]
    drivers[BackendKind.MANAGED_CONTAINER].create_error = BackendError("no capacity")

    assert await dispatcher.launch(USER, container.app_id, TOKEN) is LaunchOutcome.ACCEPTED
    assert await tasks.wait_until_drained(timeout=1)


async def test_launch_inactive_managed_container(
    dispatcher: WorkspaceDispatcher,
    store: FakePayModelStore,
    tasks: TaskRegistry,
    container: ContainerDefinition,
) -> None:
    store.records[USER] = [make_pay_model("ecs", current=True, ecs=True, status="above limit")]

    with pytest.raises(PayModelInactiveError):
        await dispatcher.launch(USER, container.app_id, TOKEN)
    assert tasks.active_count == 0


async def test_launch_without_driver(
    resolver: PayModelResolver, store: FakePayModelStore, tasks: TaskRegistry, container: ContainerDefinition
) -> None:
    store.records[USER] = [make_pay_model("a", current=True)]
    dispatcher = _dispatcher(resolver, {BackendKind.LOCAL: FakeDriver(BackendKind.LOCAL)}, tasks, [container])

    with pytest.raises(BackendError, match="No driver configured"):
        await dispatcher.launch(USER, container.app_id, TOKEN)


# ---------------------------------------------------------------------------
# Terminate
# ---------------------------------------------------------------------------


async def test_terminate_requires_user(dispatcher: WorkspaceDispatcher) -> None:
    with pytest.raises(MissingUserError):
        await dispatcher.terminate("", TOKEN)


async def test_terminate_confirms_and_resets_pay_model(
    resolver: PayModelResolver,
    store: FakePayModelStore,
    tasks: TaskRegistry,
    container: ContainerDefinition,
) -> None:
    store.records[USER] = [make_pay_model("ecs", current=True, ecs=True)]
    driver = FakeDriver(
        BackendKind.MANAGED_CONTAINER,
        [WorkspaceState.RUNNING, WorkspaceState.TERMINATING, WorkspaceState.NOT_FOUND],
    )
    dispatcher = _dispatcher(resolver, {BackendKind.MANAGED_CONTAINER: driver}, tasks, [container])

    kind = await dispatcher.terminate(USER, TOKEN, "ws-1")

    assert kind is BackendKind.MANAGED_CONTAINER
    assert driver.terminated == [(USER, "ws-1")]
    assert store.calls == []
    assert await tasks.wait_until_drained(timeout=1)
    assert driver.status_calls == 3
    assert store.calls == [("reset_current", USER)]
    assert store.records[USER][0].current_pay_model is False


async def test_confirmer_keeps_polling_through_errors(
    resolver: PayModelResolver,
    store: FakePayModelStore,
    tasks: TaskRegistry,
    container: ContainerDefinition,
) -> None:
    store.records[USER] = [make_pay_model("a", current=True, local=True)]
    driver = FlakyDriver(BackendKind.LOCAL, [WorkspaceState.NOT_FOUND], failures=2)
    dispatcher = _dispatcher(resolver, {BackendKind.LOCAL: driver}, tasks, [container])

    await dispatcher.confirm_termination(USER, TOKEN).wait()

    assert driver.failures == 0
    assert driver.status_calls == 1
    assert store.calls == [("reset_current", USER)]


@pytest.mark.parametrize(
    "error",
    [
        aiohttp.ClientConnectionError("connection refused"),
        ClientError({"Error": {"Code": "ExpiredToken", "Message": "expired"}}, "DescribeServices"),
        ValueError("unexpected payload"),
    ],
)
async def test_confirmer_keeps_polling_through_unexpected_errors(
    resolver: PayModelResolver,
    store: FakePayModelStore,
    tasks: TaskRegistry,
    container: ContainerDefinition,
    error: Exception,
) -> None:
    store.records[USER] = [make_pay_model("a", current=True, local=True)]
    driver = FlakyDriver(BackendKind.LOCAL, [WorkspaceState.NOT_FOUND], failures=1, error=error)
    dispatcher = _dispatcher(resolver, {BackendKind.LOCAL: driver}, tasks, [container])

    await dispatcher.confirm_termination(USER, TOKEN).wait()

    assert driver.status_calls == 1
    assert store.calls == [("reset_current", USER)]


async def test_terminate_while_shutting_down_still_reports_kind(
    dispatcher: WorkspaceDispatcher,
    store: FakePayModelStore,
    drivers: dict[BackendKind, FakeDriver],
    tasks: TaskRegistry,
) -> None:
    store.records[USER] = [make_pay_model("ecs", current=True, ecs=True)]
    tasks.begin_shutdown()

    kind = await dispatcher.terminate(USER, TOKEN)

    assert kind is BackendKind.MANAGED_CONTAINER
    assert drivers[BackendKind.MANAGED_CONTAINER].terminated == [(USER, None)]
    assert tasks.active_count == 0
    assert store.calls == []


async def test_managed_container_launch_while_shutting_down_is_refused(
    dispatcher: WorkspaceDispatcher,
    store: FakePayModelStore,
    drivers: dict[BackendKind, FakeDriver],
    tasks: TaskRegistry,
    container: ContainerDefinition,
) -> None:
    store.records[USER] = [make_pay_model("ecs", current=True, ecs=True)]
    tasks.begin_shutdown()

    with pytest.raises(HatchwayError, match="shutting down"):
        await dispatcher.launch(USER, container.app_id, TOKEN)
    assert drivers[BackendKind.MANAGED_CONTAINER].created == []


async def test_confirmer_survives_reset_failure(
    dispatcher: WorkspaceDispatcher, store: FakePayModelStore, tasks: TaskRegistry
) -> None:
    store.records[USER] = [make_pay_model("a", local=True)]
    store.fail_reset = True

    await dispatcher.confirm_termination(USER, TOKEN).wait()

    assert tasks.active_count == 0


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def test_status_and_listing_use_current_driver(
    dispatcher: WorkspaceDispatcher, store: FakePayModelStore, drivers: dict[BackendKind, FakeDriver]
) -> None:
    store.records[USER] = [make_pay_model("a", current=True)]

    status = await dispatcher.status(USER, TOKEN)
    listing = await dispatcher.list_workspaces(USER, TOKEN)

    assert status.status == WorkspaceState.NOT_FOUND
    assert drivers[BackendKind.EXTERNAL].status_calls == 1
    assert [w.workspace_id for w in listing] == ["ws-1"]


async def test_options_hide_unauthorized_containers(
    resolver: PayModelResolver, drivers: dict[BackendKind, FakeDriver], tasks: TaskRegistry
) -> None:
    jupyter = make_container()
    secret = make_container("Secret")
    dispatcher = _dispatcher(resolver, drivers, tasks, [jupyter, secret], FakeAuthorizer({"Secret"}))

    options = await dispatcher.options(USER, TOKEN)

    assert [o.name for o in options] == ["Jupyter"]
    assert options[0].id == jupyter.app_id
