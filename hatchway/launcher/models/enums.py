"""Shared enumerations used across the launcher."""

from __future__ import annotations

from enum import StrEnum

# -- Workspace ---------------------------------------------------------------


class WorkspaceState(StrEnum):
    """Canonical workspace lifecycle, shared by every backend."""

    NOT_FOUND = "Not Found"
    LAUNCHING = "Launching"
    RUNNING = "Running"
    TERMINATING = "Terminating"
    STOPPED = "Stopped"


class LaunchOutcome(StrEnum):
    STARTED = "started"
    ACCEPTED = "accepted"


# -- Backend -----------------------------------------------------------------


class BackendKind(StrEnum):
    """Execution substrate selected by a pay model."""

    LOCAL = "local"
    EXTERNAL = "external"
    MANAGED_CONTAINER = "managed_container"


class EcsServiceStatus(StrEnum):
    ACTIVE = "ACTIVE"
    DRAINING = "DRAINING"
    STOPPED = "STOPPED"
    INACTIVE = "INACTIVE"


# -- Configuration -----------------------------------------------------------


class ServiceMapperKind(StrEnum):
    ANNOTATION = "annotation"
    MAPPING_RESOURCE = "mapping-resource"


class PayModelStoreKind(StrEnum):
    NONE = "none"
    DYNAMODB = "dynamodb"
    LOCAL = "local"
