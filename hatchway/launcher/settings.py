"""Service configuration loaded from HATCHWAY_* environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class HatchwaySettings(BaseSettings):
    """Hatchway launcher process settings.

    All fields are read from environment variables with the ``HATCHWAY_``
    prefix.  For example, ``HATCHWAY_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    The container catalog and pay-model wiring live in the JSON launcher
    config pointed to by ``config_path`` (see :mod:`hatchway.launcher.config`).
    """

    model_config = SettingsConfigDict(
        env_prefix="HATCHWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False

    # -- Launcher config -------------------------------------------------------
    config_path: str = "/var/hatchway/hatchway.json"
    """JSON file holding containers, sidecar, pay models and mapper choice."""

    version: str = "dev"
    """Reported by ``/_version``; set by the image build."""

    # -- Platform endpoints ----------------------------------------------------
    commons_endpoint: str = ""
    """Public hostname of the data commons (e.g. ``data.example.org``).

    Also names the ECS cluster (``data-example-org-cluster``).
    """

    fence_url: str = "http://fence-service"
    arborist_url: str = "http://arborist-service"
    ambassador_url: str = "http://ambassador-service"
    """Gateway in front of workspaces; running ones report kernel activity at ``/api/status``."""

    http_timeout: float = 10.0

    # -- Clouds ----------------------------------------------------------------
    aws_region: str = "us-east-1"
    kube_config_path: str | None = None
    """Kubeconfig for the local cluster.  In-cluster config is used when unset."""

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    terminate_poll_interval: float = 10.0
    """Seconds between status polls while confirming a termination."""

    graceful_shutdown_timeout: int = 60
    """Seconds to wait for background tasks (ECS launches, termination
    confirmers) during shutdown before they are cancelled.
    """


def get_settings() -> HatchwaySettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> HatchwaySettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return HatchwaySettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
