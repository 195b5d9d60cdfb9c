"""Workspace status view.

Derived from the live backend object on every read; never persisted.
Field names are camelCase on the wire to match what portal clients expect.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from hatchway.launcher.models.enums import WorkspaceState


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PodCondition(_WireModel):
    type: str
    status: str


class RunningState(_WireModel):
    started_at: str = Field(default="", alias="startedAt")


class TerminatedState(_WireModel):
    exit_code: int = Field(default=0, alias="exitCode")
    signal: int = 0
    reason: str = ""
    message: str = ""
    started_at: str = Field(default="", alias="startedAt")
    finished_at: str = Field(default="", alias="finishedAt")
    container_id: str = Field(default="", alias="containerID")


class WaitingState(_WireModel):
    reason: str = ""
    message: str = ""


class ContainerStateDetail(_WireModel):
    """At most one member is set."""

    running: RunningState | None = None
    terminated: TerminatedState | None = None
    waiting: WaitingState | None = None


class ContainerState(_WireModel):
    name: str
    ready: bool = False
    state: ContainerStateDetail = Field(default_factory=ContainerStateDetail)


class WorkspaceStatus(_WireModel):
    status: WorkspaceState | None = None
    conditions: list[PodCondition] = Field(default_factory=list)
    container_states: list[ContainerState] = Field(default_factory=list, alias="containerStates")
    idle_time_limit: int = Field(default=0, alias="idleTimeLimit")
    """Idle shutdown limit in milliseconds; 0 when the app sets none."""

    last_activity_time: int = Field(default=0, alias="lastActivityTime")
    """Epoch milliseconds of the last kernel activity; -1 when it could not be read."""

    workspace_type: str = Field(default="", alias="workspaceType")
    url: str = ""
    workspace_id: str = Field(default="", alias="workspaceID")
    app_id: str = Field(default="", alias="appID")

    @classmethod
    def of(cls, state: WorkspaceState) -> WorkspaceStatus:
        return cls(status=state)
