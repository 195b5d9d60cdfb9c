"""Data models for the launcher."""

from hatchway.launcher.models.container import (
    AuthzConfig,
    AuthzRule,
    ContainerDefinition,
    ContainerOption,
    SidecarDefinition,
)
from hatchway.launcher.models.enums import (
    BackendKind,
    EcsServiceStatus,
    LaunchOutcome,
    PayModelStoreKind,
    ServiceMapperKind,
    WorkspaceState,
)
from hatchway.launcher.models.paymodel import ACTIVE_REQUEST_STATUSES, AllPayModels, PayModel
from hatchway.launcher.models.status import (
    ContainerState,
    ContainerStateDetail,
    PodCondition,
    RunningState,
    TerminatedState,
    WaitingState,
    WorkspaceStatus,
)

__all__ = [
    "ACTIVE_REQUEST_STATUSES",
    # Pay models
    "AllPayModels",
    # Catalog
    "AuthzConfig",
    "AuthzRule",
    # Enums
    "BackendKind",
    "ContainerDefinition",
    "ContainerOption",
    # Status
    "ContainerState",
    "ContainerStateDetail",
    "EcsServiceStatus",
    "LaunchOutcome",
    "PayModel",
    "PayModelStoreKind",
    "PodCondition",
    "RunningState",
    "ServiceMapperKind",
    "SidecarDefinition",
    "TerminatedState",
    "WaitingState",
    "WorkspaceState",
    "WorkspaceStatus",
]
