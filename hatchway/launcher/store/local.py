"""Local filesystem pay-model store.

Keeps one JSON document per user under the data root::

    {data_root}/paymodels/{escaped_user}.json

Meant for development clusters without a pay-model table.  Mutations are
serialized with an in-process lock and written atomically (temp file +
rename), so set-current never leaves two current records on disk.

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from functools import partial
from pathlib import Path

import anyio
from anyio import to_thread

from hatchway.launcher.models.paymodel import ACTIVE_REQUEST_STATUSES, PayModel
from hatchway.launcher.naming import escapism
from hatchway.launcher.store.base import PayModelStoreError


class LocalPayModelStore:
    """Local filesystem implementation of the PayModelStore protocol."""

    def __init__(self, data_root: str | Path) -> None:
        self._base = Path(data_root) / "paymodels"
        self._lock = anyio.Lock()

    def _user_file(self, user: str) -> Path:
        return self._base / f"{escapism(user)}.json"

    # -- Read ------------------------------------------------------------------

    async def list_active(self, user: str, *, current_only: bool = False) -> list[PayModel]:
        records = await self._load(user)
        return [
            pm
            for pm in records
            if pm.status in ACTIVE_REQUEST_STATUSES and (pm.current_pay_model or not current_only)
        ]

    async def _load(self, user: str) -> list[PayModel]:
        raw = await to_thread.run_sync(partial(_read_file, self._user_file(user)))
        if raw is None:
            return []
        try:
            return [PayModel.model_validate(item) for item in json.loads(raw)]
        except ValueError as exc:
            msg = f"Corrupt pay-model file for user {user}: {exc}"
            raise PayModelStoreError(msg) from exc

    # -- Write -----------------------------------------------------------------

    async def put(self, pay_model: PayModel) -> None:
        """Insert or replace a record (used by tests and seeding)."""
        async with self._lock:
            records = [pm for pm in await self._load(pay_model.user) if pm.id != pay_model.id]
            records.append(pay_model)
            await self._save(pay_model.user, records)

    async def set_current(self, user: str, pay_model_id: str) -> None:
        async with self._lock:
            records = await self._load(user)
            if not any(pm.id == pay_model_id for pm in records):
                msg = f"no record {pay_model_id} for user {user}"
                raise PayModelStoreError(msg)
            for pm in records:
                if pm.status in ACTIVE_REQUEST_STATUSES:
                    pm.current_pay_model = pm.id == pay_model_id
            await self._save(user, records)

    async def reset_current(self, user: str) -> None:
        async with self._lock:
            records = await self._load(user)
            for pm in records:
                if pm.status in ACTIVE_REQUEST_STATUSES:
                    pm.current_pay_model = False
            await self._save(user, records)

    async def _save(self, user: str, records: list[PayModel]) -> None:
        data = json.dumps([pm.model_dump(by_alias=True) for pm in records], indent=2)
        await to_thread.run_sync(partial(_atomic_write, self._user_file(user), data))


# -- Sync helpers (run in thread pool) -----------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_file(path: Path) -> str | None:
    """Read file contents, or ``None`` if the user has no file yet."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
