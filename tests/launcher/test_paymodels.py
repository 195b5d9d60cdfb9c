"""Tests for PayModelResolver."""

from __future__ import annotations

import pytest

from hatchway.launcher.config import LauncherConfig
from hatchway.launcher.managers.paymodels import (
    MissingUserError,
    MultipleCurrentPayModelsError,
    PayModelNotFoundError,
    PayModelResolver,
)
from tests.launcher.fakes import FakePayModelStore, make_pay_model

USER = "alice@example.org"


# ---------------------------------------------------------------------------
# get_current_pay_model
# ---------------------------------------------------------------------------


async def test_current_without_store_returns_default() -> None:
    default = make_pay_model("default", user="", local=True)
    resolver = PayModelResolver(LauncherConfig(default_pay_model=default))
    assert await resolver.get_current_pay_model(USER) == default


async def test_current_without_store_or_default_is_none() -> None:
    resolver = PayModelResolver(LauncherConfig())
    assert await resolver.get_current_pay_model(USER) is None


async def test_current_returns_single_current_record() -> None:
    store = FakePayModelStore([make_pay_model("a"), make_pay_model("b", current=True)])
    resolver = PayModelResolver(LauncherConfig(), store)
    current = await resolver.get_current_pay_model(USER)
    assert current is not None
    assert current.id == "b"


async def test_current_is_none_when_active_records_but_none_current() -> None:
    default = make_pay_model("default", user="")
    store = FakePayModelStore([make_pay_model("a")])
    resolver = PayModelResolver(LauncherConfig(default_pay_model=default), store)
    assert await resolver.get_current_pay_model(USER) is None


async def test_current_falls_back_to_default_without_records() -> None:
    default = make_pay_model("default", user="")
    resolver = PayModelResolver(LauncherConfig(default_pay_model=default), FakePayModelStore())
    assert await resolver.get_current_pay_model(USER) == default


async def test_current_ignores_inactive_records() -> None:
    store = FakePayModelStore([make_pay_model("a", current=True, status="terminated")])
    resolver = PayModelResolver(LauncherConfig(), store)
    assert await resolver.get_current_pay_model(USER) is None


async def test_multiple_current_records_raise() -> None:
    store = FakePayModelStore([make_pay_model("a", current=True), make_pay_model("b", current=True)])
    resolver = PayModelResolver(LauncherConfig(), store)
    with pytest.raises(MultipleCurrentPayModelsError, match="multiple current pay models set"):
        await resolver.get_current_pay_model(USER)


# ---------------------------------------------------------------------------
# get_pay_models_for_user
# ---------------------------------------------------------------------------


async def test_pay_models_requires_user(resolver: PayModelResolver) -> None:
    with pytest.raises(MissingUserError, match="no username sent in header"):
        await resolver.get_pay_models_for_user("")


async def test_pay_models_none_when_nothing_configured() -> None:
    assert await PayModelResolver(LauncherConfig()).get_pay_models_for_user(USER) is None


async def test_pay_models_empty_table_without_default(resolver: PayModelResolver) -> None:
    result = await resolver.get_pay_models_for_user(USER)
    assert result is not None
    assert result.current_pay_model is None
    assert result.all_pay_models == []


async def test_pay_models_lists_default_as_only_entry() -> None:
    default = make_pay_model("default", user="")
    resolver = PayModelResolver(LauncherConfig(default_pay_model=default), FakePayModelStore())
    result = await resolver.get_pay_models_for_user(USER)
    assert result is not None
    assert result.current_pay_model == default
    assert result.all_pay_models == [default]


async def test_pay_models_with_records_but_none_current() -> None:
    store = FakePayModelStore([make_pay_model("a"), make_pay_model("b")])
    resolver = PayModelResolver(LauncherConfig(), store)
    result = await resolver.get_pay_models_for_user(USER)
    assert result is not None
    assert result.current_pay_model is None
    assert [pm.id for pm in result.all_pay_models] == ["a", "b"]


# ---------------------------------------------------------------------------
# set / reset
# ---------------------------------------------------------------------------


async def test_set_current_stored_record(store: FakePayModelStore) -> None:
    store.records[USER] = [make_pay_model("a", current=True), make_pay_model("b")]
    resolver = PayModelResolver(LauncherConfig(), store)

    result = await resolver.set_current_pay_model(USER, "b")

    assert result.id == "b"
    assert result.current_pay_model is True
    assert [pm.current_pay_model for pm in store.records[USER]] == [False, True]


async def test_set_current_config_pay_model_resets_table(store: FakePayModelStore) -> None:
    config_pm = make_pay_model("cfg", local=True)
    store.records[USER] = [make_pay_model("a", current=True)]
    resolver = PayModelResolver(LauncherConfig(pay_models=[config_pm]), store)

    result = await resolver.set_current_pay_model(USER, "cfg")

    assert result == config_pm
    assert store.calls == [("reset_current", USER)]
    assert store.records[USER][0].current_pay_model is False


async def test_set_current_default_pay_model_resets_table(store: FakePayModelStore) -> None:
    default = make_pay_model("default", user="", local=True)
    store.records[USER] = [make_pay_model("a", current=True)]
    resolver = PayModelResolver(LauncherConfig(default_pay_model=default), store)

    assert await resolver.set_current_pay_model(USER, "default") == default
    assert store.calls == [("reset_current", USER)]


async def test_set_current_unknown_id(resolver: PayModelResolver) -> None:
    with pytest.raises(PayModelNotFoundError, match=f"no paymodel with id nope found for user {USER}"):
        await resolver.set_current_pay_model(USER, "nope")


async def test_reset_without_store_is_noop() -> None:
    await PayModelResolver(LauncherConfig()).reset_current_pay_model(USER)
