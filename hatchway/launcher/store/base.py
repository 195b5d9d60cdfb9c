"""Pay-model store interface.

The store holds the per-user pay-model records that the resolver reads
and whose ``current_pay_model`` flag it flips.  Only records whose
``request_status`` is ``active`` or ``above limit`` are ever returned.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from hatchway.launcher.errors import HatchwayError
from hatchway.launcher.models.paymodel import PayModel


class PayModelStoreError(HatchwayError, RuntimeError):
    """Raised when the backing table cannot be read or written."""


@runtime_checkable
class PayModelStore(Protocol):
    """Async protocol for pay-model persistence.

    Records are keyed by ``(user_id, bmh_workspace_id)``.
    """

    async def list_active(self, user: str, *, current_only: bool = False) -> list[PayModel]:
        """Return the user's active records, optionally only the current ones."""
        ...

    async def set_current(self, user: str, pay_model_id: str) -> None:
        """Mark *pay_model_id* current and every other record of *user* not current.

        Implementations apply both changes in one atomic write so that no
        reader observes zero or two current records in between.
        """
        ...

    async def reset_current(self, user: str) -> None:
        """Clear the current flag on every record of *user*."""
        ...
