"""Pay-model resolution.

Turns a user name into the one current pay model (or the configured
default) and owns the set/reset operations on the current selection.
"""

from __future__ import annotations

from loguru import logger

from hatchway.launcher.config import LauncherConfig
from hatchway.launcher.errors import HatchwayError
from hatchway.launcher.models.paymodel import AllPayModels, PayModel
from hatchway.launcher.store.base import PayModelStore


class MissingUserError(HatchwayError, ValueError):
    """Raised when an operation needs a user name and none was sent."""

    def __init__(self) -> None:
        super().__init__("no username sent in header")


class MultipleCurrentPayModelsError(HatchwayError, RuntimeError):
    """Raised when more than one stored record is flagged current."""

    def __init__(self) -> None:
        super().__init__("multiple current pay models set")


class PayModelNotFoundError(HatchwayError, LookupError):
    def __init__(self, pay_model_id: str, user: str) -> None:
        super().__init__(f"no paymodel with id {pay_model_id} found for user {user}")


class PayModelResolver:
    """Reads and switches a user's current pay model.

    *store* is ``None`` when no pay-model table is configured; the resolver
    then answers from the launcher config alone.
    """

    def __init__(self, config: LauncherConfig, store: PayModelStore | None = None) -> None:
        self._config = config
        self._store = store

    @property
    def has_store(self) -> bool:
        return self._store is not None

    def default_pay_model(self) -> PayModel | None:
        return self._config.default_pay_model

    # -- Read ------------------------------------------------------------------

    async def get_current_pay_model(self, user: str) -> PayModel | None:
        """Return the current pay model, the default, or ``None``.

        ``None`` is returned both when nothing is configured at all and when
        the user has active records but none of them is current.
        """
        if self._store is None:
            return self.default_pay_model()

        current = await self._store.list_active(user, current_only=True)
        if not current:
            active = await self._store.list_active(user)
            if active:
                logger.debug("User {} has {} active pay models but none is current", user, len(active))
                return None
            return self.default_pay_model()

        if len(current) > 1:
            logger.error("User {} has {} current pay models", user, len(current))
            raise MultipleCurrentPayModelsError

        return current[0]

    async def get_pay_models_for_user(self, user: str) -> AllPayModels | None:
        if not user:
            raise MissingUserError

        pay_models: list[PayModel] | None = None
        if self._store is not None:
            pay_models = await self._store.list_active(user)

        current = await self.get_current_pay_model(user)

        if current is not None and not pay_models:
            pay_models = [current]
        if current is None and pay_models is None:
            return None

        return AllPayModels(current_pay_model=current, all_pay_models=pay_models or [])

    # -- Write -----------------------------------------------------------------

    async def set_current_pay_model(self, user: str, pay_model_id: str) -> PayModel:
        """Make *pay_model_id* the user's current pay model and return it."""
        if not user:
            raise MissingUserError

        for config_pay_model in (self._config.config_pay_model(user), self.default_pay_model()):
            if config_pay_model is not None and config_pay_model.id == pay_model_id:
                # Config pay models have no row; clearing the table selects it.
                await self.reset_current_pay_model(user)
                return config_pay_model

        stored = await self._store.list_active(user) if self._store is not None else []
        for pay_model in stored:
            if pay_model.id == pay_model_id:
                await self._store.set_current(user, pay_model_id)  # type: ignore[union-attr]
                return pay_model.model_copy(update={"current_pay_model": True})

        raise PayModelNotFoundError(pay_model_id, user)

    async def reset_current_pay_model(self, user: str) -> None:
        if self._store is None:
            return
        await self._store.reset_current(user)
