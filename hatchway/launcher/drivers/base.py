"""Backend driver interface.

One driver per :class:`BackendKind`.  The dispatcher selects the driver
from the user's current pay model and never inspects backend details.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from hatchway.launcher.errors import HatchwayError
from hatchway.launcher.models.container import ContainerDefinition
from hatchway.launcher.models.enums import BackendKind
from hatchway.launcher.models.paymodel import PayModel
from hatchway.launcher.models.status import WorkspaceStatus


class WorkspaceNotFoundError(HatchwayError, LookupError):
    """Raised when terminate finds nothing to delete."""


@runtime_checkable
class WorkspaceDriver(Protocol):
    kind: BackendKind

    async def create(self, user: str, app: ContainerDefinition, token: str, pay_model: PayModel | None) -> None:
        """Provision the workspace running *app* for *user*."""
        ...

    async def terminate(
        self,
        user: str,
        token: str,
        pay_model: PayModel | None,
        workspace_id: str | None = None,
    ) -> None:
        """Delete one workspace, or every workspace of *user* when *workspace_id* is ``None``."""
        ...

    async def status(self, user: str, token: str, pay_model: PayModel | None) -> WorkspaceStatus:
        """Return the single status that best describes the user's workspaces."""
        ...

    async def list_workspaces(self, user: str, token: str, pay_model: PayModel | None) -> list[WorkspaceStatus]:
        ...
