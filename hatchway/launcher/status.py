"""Status normalization.

Maps backend-native object state (Kubernetes pods, ECS services) onto the
canonical :class:`WorkspaceState` vocabulary.

Pod rules, in order:

- no pod                          -> Not Found
- deletion timestamp set          -> Terminating
- phase Failed/Succeeded/Unknown  -> Stopped
- phase Pending/Running, ready    -> Running (+ idle limit from container args)
- phase Pending/Running, unready  -> Launching (+ conditions, container states)
- any other phase                 -> logged, status left unset
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from loguru import logger

from hatchway.launcher.models.container import idle_time_limit_ms
from hatchway.launcher.models.enums import EcsServiceStatus, WorkspaceState
from hatchway.launcher.models.status import (
    ContainerState,
    ContainerStateDetail,
    PodCondition,
    RunningState,
    TerminatedState,
    WaitingState,
    WorkspaceStatus,
)
from hatchway.launcher.naming import LABEL_APPID, LABEL_POD

_READINESS_CONDITIONS = ("Ready", "PodScheduled")

KUBERNETES_WORKSPACE = "Kubernetes"

ECS_STATUS_MAP: dict[str, WorkspaceState] = {
    EcsServiceStatus.ACTIVE: WorkspaceState.RUNNING,
    EcsServiceStatus.DRAINING: WorkspaceState.TERMINATING,
    EcsServiceStatus.STOPPED: WorkspaceState.NOT_FOUND,
    EcsServiceStatus.INACTIVE: WorkspaceState.NOT_FOUND,
}

# Used to pick one status when a user has several workspaces.
_LIVENESS_ORDER = {
    WorkspaceState.RUNNING: 4,
    WorkspaceState.LAUNCHING: 3,
    WorkspaceState.TERMINATING: 2,
    WorkspaceState.STOPPED: 1,
    WorkspaceState.NOT_FOUND: 0,
}


def _ts(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""


def is_pod_ready(pod: Any) -> bool:
    if pod.status.phase == "Pending":
        return False
    for cond in pod.status.conditions or []:
        if cond.type in _READINESS_CONDITIONS and cond.status != "True":
            return False
    return True


def pod_idle_time_limit(pod: Any) -> int:
    """Idle limit (ms) of the first container with one in its args, else 0."""
    if pod.spec is None:
        return 0
    for container in pod.spec.containers or []:
        limit = idle_time_limit_ms(container.args or [])
        if limit > 0:
            return limit
    return 0


def container_state_detail(state: Any) -> ContainerStateDetail:
    """Convert a ``V1ContainerState`` into the wire union."""
    if state is None:
        return ContainerStateDetail()
    if state.running is not None:
        return ContainerStateDetail(running=RunningState(started_at=_ts(state.running.started_at)))
    if state.terminated is not None:
        t = state.terminated
        return ContainerStateDetail(
            terminated=TerminatedState(
                exit_code=t.exit_code or 0,
                signal=t.signal or 0,
                reason=t.reason or "",
                message=t.message or "",
                started_at=_ts(t.started_at),
                finished_at=_ts(t.finished_at),
                container_id=t.container_id or "",
            )
        )
    if state.waiting is not None:
        return ContainerStateDetail(waiting=WaitingState(reason=state.waiting.reason or "", message=state.waiting.message or ""))
    return ContainerStateDetail()


def pod_status(pod: Any | None) -> WorkspaceStatus:
    """Normalize one ``V1Pod`` (or its absence)."""
    if pod is None:
        return WorkspaceStatus(status=WorkspaceState.NOT_FOUND, workspace_type=KUBERNETES_WORKSPACE)

    labels = pod.metadata.labels or {}
    result = WorkspaceStatus(
        workspace_id=labels.get(LABEL_POD, ""),
        app_id=labels.get(LABEL_APPID, ""),
        workspace_type=KUBERNETES_WORKSPACE,
    )

    if pod.metadata.deletion_timestamp is not None:
        result.status = WorkspaceState.TERMINATING
        return result

    phase = pod.status.phase
    if phase in ("Failed", "Succeeded", "Unknown"):
        result.status = WorkspaceState.STOPPED
    elif phase in ("Pending", "Running"):
        if is_pod_ready(pod):
            result.status = WorkspaceState.RUNNING
            result.idle_time_limit = pod_idle_time_limit(pod)
        else:
            result.status = WorkspaceState.LAUNCHING
            result.conditions = [PodCondition(type=c.type, status=c.status) for c in pod.status.conditions or []]
            result.container_states = [
                ContainerState(name=cs.name, ready=bool(cs.ready), state=container_state_detail(cs.state))
                for cs in pod.status.container_statuses or []
            ]
    else:
        logger.warning("Unknown pod status for {}: {}", pod.metadata.name, phase)
    return result


def ecs_status(service_status: str | None) -> WorkspaceStatus:
    """Map an ECS service status; a missing service counts as INACTIVE."""
    key = service_status or EcsServiceStatus.INACTIVE
    state = ECS_STATUS_MAP.get(key)
    if state is None:
        logger.warning("Unknown ECS service status: {}", key)
        return WorkspaceStatus()
    return WorkspaceStatus.of(state)


def most_alive(statuses: list[WorkspaceStatus]) -> WorkspaceStatus:
    """Collapse several workspace statuses into the one that matters most.

    A running workspace outranks a launching one, and so on down to
    Not Found.  Entries with an unset status rank below Not Found.
    """
    if not statuses:
        return WorkspaceStatus.of(WorkspaceState.NOT_FOUND)
    return max(statuses, key=lambda s: _LIVENESS_ORDER.get(s.status, -1) if s.status else -1)
