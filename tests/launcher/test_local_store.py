"""Tests for LocalPayModelStore."""

from __future__ import annotations

from pathlib import Path

import pytest

from hatchway.launcher.store.base import PayModelStoreError
from hatchway.launcher.store.local import LocalPayModelStore
from tests.launcher.fakes import make_pay_model

USER = "alice@example.org"


@pytest.fixture
def local_store(tmp_path: Path) -> LocalPayModelStore:
    return LocalPayModelStore(tmp_path)


async def test_empty_user_has_no_records(local_store: LocalPayModelStore) -> None:
    assert await local_store.list_active(USER) == []


async def test_list_filters_status_and_current(local_store: LocalPayModelStore) -> None:
    await local_store.put(make_pay_model("a", current=True))
    await local_store.put(make_pay_model("b", status="above limit"))
    await local_store.put(make_pay_model("c", status="pending"))

    assert [pm.id for pm in await local_store.list_active(USER)] == ["a", "b"]
    assert [pm.id for pm in await local_store.list_active(USER, current_only=True)] == ["a"]


async def test_set_current_leaves_exactly_one(local_store: LocalPayModelStore) -> None:
    await local_store.put(make_pay_model("a", current=True))
    await local_store.put(make_pay_model("b"))

    await local_store.set_current(USER, "b")

    current = await local_store.list_active(USER, current_only=True)
    assert [pm.id for pm in current] == ["b"]


async def test_set_current_unknown_id(local_store: LocalPayModelStore) -> None:
    await local_store.put(make_pay_model("a"))
    with pytest.raises(PayModelStoreError):
        await local_store.set_current(USER, "zzz")


async def test_reset_clears_all(local_store: LocalPayModelStore) -> None:
    await local_store.put(make_pay_model("a", current=True))
    await local_store.reset_current(USER)
    assert await local_store.list_active(USER, current_only=True) == []


async def test_file_uses_escaped_user_name(local_store: LocalPayModelStore, tmp_path: Path) -> None:
    await local_store.put(make_pay_model("a"))
    assert (tmp_path / "paymodels" / "alice-40example-2eorg.json").is_file()


async def test_corrupt_file_raises(local_store: LocalPayModelStore, tmp_path: Path) -> None:
    path = tmp_path / "paymodels" / "alice-40example-2eorg.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(PayModelStoreError):
        await local_store.list_active(USER)
