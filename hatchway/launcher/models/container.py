"""Container catalog models.

Definitions are loaded once from the launcher config file.  Aliases follow
the hyphenated keys of that file.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

_IDLE_TIMEOUT_ARG = re.compile(r"shutdown_no_activity_timeout=(\d+)")


def idle_time_limit_ms(args: list[str]) -> int:
    """Parse the ``shutdown_no_activity_timeout=<seconds>`` arg; -1 when absent."""
    for arg in args:
        match = _IDLE_TIMEOUT_ARG.search(arg)
        if match:
            return int(match.group(1)) * 1000
    return -1


class AuthzRule(BaseModel):
    """Authorization block (version 0.1).

    Exactly one of ``and`` / ``or`` / ``resource_paths`` / ``pay_models`` may
    be set on a level; ``and`` / ``or`` hold leaf rules only.
    """

    model_config = ConfigDict(populate_by_name=True)

    and_: list[AuthzRule] = Field(default_factory=list, alias="and")
    or_: list[AuthzRule] = Field(default_factory=list, alias="or")
    resource_paths: list[str] = Field(default_factory=list)
    pay_models: list[str] = Field(default_factory=list)

    def set_keys(self) -> list[str]:
        keys = []
        if self.and_:
            keys.append("and")
        if self.or_:
            keys.append("or")
        if self.resource_paths:
            keys.append("resource_paths")
        if self.pay_models:
            keys.append("pay_models")
        return keys


class AuthzConfig(AuthzRule):
    version: float

    @model_validator(mode="after")
    def _check_shape(self) -> AuthzConfig:
        if self.version != 0.1:
            msg = f"Container authz config version '{self.version}' is not valid"
            raise ValueError(msg)
        found = len(self.set_keys())
        if found != 1:
            msg = f"there should be exactly 1 key with non-null value on the 1st level of authz config, found {found}"
            raise ValueError(msg)
        for rule in self.and_ + self.or_:
            if rule.and_ or rule.or_:
                msg = "nesting 'and' and 'or' authorization rules is not supported"
                raise ValueError(msg)
        return self


class SidecarDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cpu_limit: str = Field(default="0.1", alias="cpu-limit")
    memory_limit: str = Field(default="128Mi", alias="memory-limit")
    image: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    args: list[str] = Field(default_factory=list)
    command: list[str] = Field(default_factory=list)
    lifecycle_pre_stop: list[str] = Field(default_factory=list, alias="lifecycle-pre-stop")


class ContainerDefinition(BaseModel):
    """A launchable app template.

    Addressed by :attr:`app_id`, a digest of image, CPU and memory, so no
    separate id allocator is needed.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    cpu_limit: str = Field(alias="cpu-limit")
    memory_limit: str = Field(alias="memory-limit")
    image: str = ""
    pull_policy: str = "IfNotPresent"
    env: dict[str, str] = Field(default_factory=dict)
    target_port: int = Field(default=8888, alias="target-port")
    args: list[str] = Field(default_factory=list)
    command: list[str] = Field(default_factory=list)
    path_rewrite: str = Field(default="/", alias="path-rewrite")
    use_tls: str = Field(default="false", alias="use-tls")
    ready_probe: str = Field(default="/", alias="ready-probe")
    lifecycle_pre_stop: list[str] = Field(default_factory=list, alias="lifecycle-pre-stop")
    lifecycle_post_start: list[str] = Field(default_factory=list, alias="lifecycle-post-start")
    user_uid: int = Field(default=0, alias="user-uid")
    group_uid: int = Field(default=0, alias="group-uid")
    fs_gid: int = Field(default=0, alias="fs-gid")
    user_volume_location: str = Field(default="", alias="user-volume-location")
    use_shared_memory: str = Field(default="false", alias="use-shared-memory")
    friends: list[dict[str, Any]] = Field(default_factory=list, description="Extra raw Kubernetes containers")
    authz: AuthzConfig | None = None

    @property
    def app_id(self) -> str:
        digest = hashlib.md5(f"{self.image}-{self.cpu_limit}-{self.memory_limit}".encode(), usedforsecurity=False)
        return digest.hexdigest()

    @property
    def idle_time_limit(self) -> int:
        """Idle shutdown limit in milliseconds, or -1 when the app has none."""
        return idle_time_limit_ms(self.args)


class ContainerOption(BaseModel):
    """One entry of the ``/options`` listing."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    cpu_limit: str = Field(alias="cpu-limit")
    memory_limit: str = Field(alias="memory-limit")
    id: str
    idle_time_limit: int = Field(alias="idle-time-limit")

    @classmethod
    def from_definition(cls, container: ContainerDefinition) -> ContainerOption:
        return cls(
            name=container.name,
            cpu_limit=container.cpu_limit,
            memory_limit=container.memory_limit,
            id=container.app_id,
            idle_time_limit=container.idle_time_limit,
        )
