"""Workspace lifecycle operations.

The dispatcher validates a request, resolves the user's current pay
model, and hands the work to the driver for that pay model's backend.
Users without any pay model run on the local cluster.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from hatchway.launcher.authz import Authorizer
from hatchway.launcher.config import ContainerCatalog
from hatchway.launcher.drivers.base import WorkspaceDriver
from hatchway.launcher.errors import BackendError, HatchwayError
from hatchway.launcher.managers.paymodels import MissingUserError, PayModelResolver
from hatchway.launcher.models.container import ContainerDefinition, ContainerOption
from hatchway.launcher.models.enums import BackendKind, LaunchOutcome, WorkspaceState
from hatchway.launcher.models.paymodel import PayModel
from hatchway.launcher.models.status import WorkspaceStatus
from hatchway.launcher.tasks import BackgroundTask, ShuttingDownError, TaskRegistry


class UnknownContainerError(HatchwayError, LookupError):
    """Raised when the requested app id is not in the catalog."""


class NotAuthorizedError(HatchwayError, PermissionError):
    """Raised when the user may not launch the requested container."""


class PayModelNotSetError(HatchwayError, RuntimeError):
    """Raised when the user has pay models but none is current."""


class PayModelInactiveError(HatchwayError, RuntimeError):
    """Raised when launching on a managed-container pay model that is not active."""


class WorkspaceDispatcher:
    def __init__(
        self,
        catalog: ContainerCatalog,
        resolver: PayModelResolver,
        drivers: dict[BackendKind, WorkspaceDriver],
        authorizer: Authorizer,
        tasks: TaskRegistry,
        *,
        poll_interval: float = 10.0,
    ) -> None:
        self._catalog = catalog
        self._resolver = resolver
        self._drivers = drivers
        self._authorizer = authorizer
        self._tasks = tasks
        self._poll_interval = poll_interval

    @property
    def catalog(self) -> ContainerCatalog:
        return self._catalog

    @property
    def resolver(self) -> PayModelResolver:
        return self._resolver

    def _driver(self, pay_model: PayModel | None) -> WorkspaceDriver:
        kind = BackendKind.LOCAL if pay_model is None else pay_model.backend_kind
        driver = self._drivers.get(kind)
        if driver is None:
            msg = f"No driver configured for {kind} workspaces"
            raise BackendError(msg)
        return driver

    async def _current_pay_model(self, user: str) -> PayModel | None:
        pay_models = await self._resolver.get_pay_models_for_user(user)
        if pay_models is None:
            return None
        return pay_models.current_pay_model

    # -- Launch ----------------------------------------------------------------

    async def launch(self, user: str, app_id: str, token: str) -> LaunchOutcome:
        """Start the workspace *app_id* for *user*.

        Managed-container launches take minutes; they run in the background
        and return ``ACCEPTED``.
        """
        app = self._catalog.get(app_id)
        if app is None:
            raise UnknownContainerError(app_id)
        if not user:
            raise MissingUserError
        if not await self._authorizer.is_authorized(user, token, app):
            raise NotAuthorizedError(user)

        pay_models = await self._resolver.get_pay_models_for_user(user)
        if pay_models is None:
            await self._driver(None).create(user, app, token, None)
            return LaunchOutcome.STARTED

        pay_model = pay_models.current_pay_model
        if pay_model is None:
            raise PayModelNotSetError(user)

        driver = self._driver(pay_model)
        if pay_model.backend_kind is BackendKind.MANAGED_CONTAINER:
            if not pay_model.is_active:
                raise PayModelInactiveError(pay_model.id)
            self._tasks.spawn(f"launch:{user}", self._launch_in_background(driver, user, app, token, pay_model))
            logger.info("Accepted {} launch of {} for user {}", driver.kind, app.name, user)
            return LaunchOutcome.ACCEPTED

        await driver.create(user, app, token, pay_model)
        return LaunchOutcome.STARTED

    async def _launch_in_background(
        self, driver: WorkspaceDriver, user: str, app: ContainerDefinition, token: str, pay_model: PayModel
    ) -> None:
        with logger.contextualize(user=user):
            await driver.create(user, app, token, pay_model)
            logger.info("Launched {} on {}", app.name, driver.kind)

    # -- Terminate -------------------------------------------------------------

    async def terminate(self, user: str, token: str, workspace_id: str | None = None) -> BackendKind:
        """Delete the user's workspace(s) and start confirming the teardown.

        Returns the backend kind so callers can word their reply.
        """
        if not user:
            raise MissingUserError
        pay_model = await self._resolver.get_current_pay_model(user)
        driver = self._driver(pay_model)
        await driver.terminate(user, token, pay_model, workspace_id)
        try:
            self.confirm_termination(user, token)
        except ShuttingDownError:
            logger.warning("Shutting down; current pay model of user {} is left for the next termination", user)
        return driver.kind

    def confirm_termination(self, user: str, token: str) -> BackgroundTask:
        return self._tasks.spawn(f"confirm-terminate:{user}", self._confirm_termination(user, token))

    async def _confirm_termination(self, user: str, token: str) -> None:
        """Poll until the workspace is gone, then clear the current pay model."""
        with logger.contextualize(user=user):
            await self._await_teardown(user, token)

    async def _await_teardown(self, user: str, token: str) -> None:
        while True:
            try:
                status = await self.status(user, token)
            except Exception as exc:
                # Only cancellation ends the loop.
                logger.warning("Status check for user {} failed while confirming termination: {!r}", user, exc)
            else:
                if status.status is WorkspaceState.NOT_FOUND:
                    break
            await asyncio.sleep(self._poll_interval)
        try:
            await self._resolver.reset_current_pay_model(user)
        except Exception:
            logger.exception("Failed resetting pay model for user {} after termination", user)
        else:
            logger.info("Workspace of user {} is gone; current pay model reset", user)

    # -- Query -----------------------------------------------------------------

    async def status(self, user: str, token: str) -> WorkspaceStatus:
        pay_model = await self._current_pay_model(user)
        return await self._driver(pay_model).status(user, token, pay_model)

    async def list_workspaces(self, user: str, token: str) -> list[WorkspaceStatus]:
        pay_model = await self._current_pay_model(user)
        return await self._driver(pay_model).list_workspaces(user, token, pay_model)

    async def options(self, user: str, token: str) -> list[ContainerOption]:
        """Catalog entries the user is allowed to launch."""
        allowed = []
        for app in self._catalog:
            if await self._authorizer.is_authorized(user, token, app):
                allowed.append(ContainerOption.from_definition(app))
        return allowed
