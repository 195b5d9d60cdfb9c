"""Launcher config file and the container catalog built from it.

The file is JSON with hyphenated keys::

    {
      "user-namespace": "jupyter-pods",
      "user-volume-size": "10Gi",
      "sidecar": {"image": "...", "cpu-limit": "0.1", "memory-limit": "256Mi"},
      "containers": [{"name": "Jupyter", "image": "...", "cpu-limit": "1", ...}],
      "pay-model-store": "dynamodb",
      "pay-models-dynamodb-table": "pay-models",
      "default-pay-model": {...},
      "service-mapper": {"kind": "annotation"}
    }

Loaded once at startup; the resulting objects are passed to the components
that need them.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hatchway.launcher.errors import ConfigError
from hatchway.launcher.models.container import ContainerDefinition, SidecarDefinition
from hatchway.launcher.models.enums import PayModelStoreKind, ServiceMapperKind
from hatchway.launcher.models.paymodel import PayModel


class ServiceMapperConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: ServiceMapperKind = ServiceMapperKind.ANNOTATION
    host_domain: str = Field(default="svc.cluster.local:80", alias="host-domain")
    mapping_template: dict[str, Any] | None = Field(default=None, alias="mapping-template")
    """Custom Ambassador v1 mapping document (annotation mapper only)."""


class LauncherConfig(BaseModel):
    """Contents of the launcher config file."""

    model_config = ConfigDict(populate_by_name=True)

    user_namespace: str = Field(default="jupyter-pods", alias="user-namespace")
    sub_dir: str = Field(default="", alias="sub-dir")
    user_volume_size: str = Field(default="10Gi", alias="user-volume-size")
    containers: list[ContainerDefinition] = Field(default_factory=list)
    sidecar: SidecarDefinition = Field(default_factory=SidecarDefinition)

    # -- Pay models ------------------------------------------------------------
    pay_model_store: PayModelStoreKind = Field(default=PayModelStoreKind.NONE, alias="pay-model-store")
    pay_model_store_path: str = Field(default="./data", alias="pay-model-store-path")
    """Data root for the local (file) pay-model store."""

    pay_models_dynamodb_table: str = Field(default="", alias="pay-models-dynamodb-table")
    pay_models_dynamodb_arn: str = Field(default="", alias="pay-models-dynamodb-arn")
    """Role assumed to reach the pay-model table, when it lives in another account."""

    pay_models_dynamodb_region: str = Field(default="us-east-1", alias="pay-models-dynamodb-region")
    pay_models: list[PayModel] = Field(default_factory=list, alias="pay-models")
    """Per-user pay models defined in config rather than in the table."""

    default_pay_model: PayModel | None = Field(default=None, alias="default-pay-model")

    # -- Routing ---------------------------------------------------------------
    service_mapper: ServiceMapperConfig = Field(default_factory=ServiceMapperConfig, alias="service-mapper")

    def config_pay_model(self, user: str) -> PayModel | None:
        """Return the last config-defined pay model for *user*, if any."""
        found = None
        for pay_model in self.pay_models:
            if pay_model.user == user:
                found = pay_model
        return found


class ContainerCatalog:
    """Read-only map from app id (content hash) to container definition."""

    def __init__(self, containers: list[ContainerDefinition]) -> None:
        self._containers = {c.app_id: c for c in containers}

    def get(self, app_id: str) -> ContainerDefinition | None:
        return self._containers.get(app_id)

    def __contains__(self, app_id: object) -> bool:
        return app_id in self._containers

    def __iter__(self) -> Iterator[ContainerDefinition]:
        return iter(self._containers.values())

    def __len__(self) -> int:
        return len(self._containers)

    def ids(self) -> list[str]:
        return list(self._containers)


def parse_launcher_config(raw: str) -> LauncherConfig:
    """Parse and validate config JSON.  Raises ``ConfigError``."""
    try:
        return LauncherConfig.model_validate_json(raw)
    except ValidationError as exc:
        msg = f"Invalid launcher config: {exc}"
        raise ConfigError(msg) from exc


def load_launcher_config(path: str | Path) -> LauncherConfig:
    """Read the config file at *path*.  Raises ``ConfigError``."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read launcher config {path}: {exc}"
        raise ConfigError(msg) from exc
    return parse_launcher_config(raw)
