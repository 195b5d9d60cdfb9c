"""Tests for application wiring and the lifespan."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest

from hatchway.launcher.app import _create_pay_model_store, _create_service_mapper, app, build_dispatcher, lifespan
from hatchway.launcher.config import LauncherConfig, parse_launcher_config
from hatchway.launcher.errors import ConfigError
from hatchway.launcher.mapping import AnnotationServiceMapper, MappingResourceServiceMapper
from hatchway.launcher.models.enums import BackendKind
from hatchway.launcher.settings import HatchwaySettings, _get_settings_cached
from hatchway.launcher.store import DynamoDBPayModelStore, LocalPayModelStore
from hatchway.launcher.tasks import TaskRegistry
from tests.launcher.fakes import FakeConnector


@pytest.fixture
def settings_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[Path]:
    path = tmp_path / "hatchway.json"
    monkeypatch.setenv("HATCHWAY_CONFIG_PATH", str(path))
    monkeypatch.setenv("HATCHWAY_COMMONS_ENDPOINT", "data.example.org")
    _get_settings_cached.cache_clear()
    yield path
    _get_settings_cached.cache_clear()


def test_store_selection(tmp_path: Path) -> None:
    assert _create_pay_model_store(LauncherConfig()) is None
    local = LauncherConfig(**{"pay-model-store": "local", "pay-model-store-path": str(tmp_path)})
    assert isinstance(_create_pay_model_store(local), LocalPayModelStore)
    dynamo = LauncherConfig(**{"pay-model-store": "dynamodb", "pay-models-dynamodb-table": "pay-models"})
    assert isinstance(_create_pay_model_store(dynamo), DynamoDBPayModelStore)


def test_dynamodb_store_needs_table() -> None:
    with pytest.raises(ConfigError, match="pay-models-dynamodb-table is empty"):
        _create_pay_model_store(LauncherConfig(**{"pay-model-store": "dynamodb"}))


def test_mapper_selection() -> None:
    connector = FakeConnector()
    assert isinstance(_create_service_mapper(LauncherConfig(), connector), AnnotationServiceMapper)
    resource = parse_launcher_config('{"service-mapper": {"kind": "mapping-resource"}}')
    assert isinstance(_create_service_mapper(resource, connector), MappingResourceServiceMapper)


def test_build_dispatcher_registers_every_backend() -> None:
    dispatcher = build_dispatcher(HatchwaySettings(), LauncherConfig(), FakeConnector(), TaskRegistry())

    assert sorted(dispatcher._drivers) == sorted(BackendKind)  # noqa: SLF001
    assert all(driver.kind is kind for kind, driver in dispatcher._drivers.items())  # noqa: SLF001
    assert dispatcher.resolver.has_store is False


async def test_lifespan_sets_and_clears_state(settings_env: Path) -> None:
    settings_env.write_text(
        json.dumps({"containers": [{"name": "Jupyter", "image": "img", "cpu-limit": "1", "memory-limit": "1Gi"}]}),
        encoding="utf-8",
    )

    async with lifespan(app):
        assert app.state.dispatcher is not None
        assert len(app.state.dispatcher.catalog) == 1
        assert app.state.resolver is app.state.dispatcher.resolver


async def test_lifespan_rejects_missing_config(settings_env: Path) -> None:
    with pytest.raises(ConfigError, match="Cannot read launcher config"):
        async with lifespan(app):
            pass
