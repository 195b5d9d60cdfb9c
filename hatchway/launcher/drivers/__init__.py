"""Workspace backend drivers."""

from hatchway.launcher.drivers.base import WorkspaceDriver, WorkspaceNotFoundError
from hatchway.launcher.drivers.ecs import Boto3EcsAccountResources, EcsAccountResources, EcsDriver
from hatchway.launcher.drivers.external import EksConnector, ExternalKubeDriver
from hatchway.launcher.drivers.kube import KubeClients, KubeConnector, LocalKubeConnector
from hatchway.launcher.drivers.local import LocalKubeDriver

__all__ = [
    "Boto3EcsAccountResources",
    "EcsAccountResources",
    "EcsDriver",
    "EksConnector",
    "ExternalKubeDriver",
    "KubeClients",
    "KubeConnector",
    "LocalKubeConnector",
    "LocalKubeDriver",
    "WorkspaceDriver",
    "WorkspaceNotFoundError",
]
