"""Kubernetes connectivity and object builders shared by the pod drivers.

Connections are handed out as :class:`KubeClients` by a connector; the
local connector reuses one API client for the process, the EKS connector
(:mod:`hatchway.launcher.drivers.external`) opens one per call.
"""

from __future__ import annotations

import ipaddress
import os
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import aiohttp
from kubernetes_asyncio import client, config
from kubernetes_asyncio.client.exceptions import ApiException
from loguru import logger

from hatchway.launcher.config import LauncherConfig
from hatchway.launcher.credentials import ApiKey
from hatchway.launcher.errors import BackendError
from hatchway.launcher.models.container import ContainerDefinition
from hatchway.launcher.models.paymodel import PayModel
from hatchway.launcher.naming import LABEL_APPID, LABEL_POD, LABEL_USER, escapism, workspace_id

MAIN_CONTAINER = "hatchery-container"
SIDECAR_CONTAINER = "fuse-container"
API_KEY_ID_ENV = "API_KEY_ID"

HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409


@dataclass
class KubeClients:
    """API handles for one cluster (``CoreV1Api`` / ``CustomObjectsApi``)."""

    core: Any
    custom: Any


@runtime_checkable
class KubeConnector(Protocol):
    def connect(self, pay_model: PayModel | None = None) -> AbstractAsyncContextManager[KubeClients]:
        """Open clients for the cluster hosting *pay_model*'s workspaces."""
        ...


class LocalKubeConnector:
    """Connector for the cluster this service runs in.

    Uses in-cluster service-account config unless *kube_config_path* is
    given.  The API client is created on first use and kept until
    :meth:`close`.
    """

    def __init__(self, kube_config_path: str | None = None) -> None:
        self._kube_config_path = kube_config_path
        self._api: client.ApiClient | None = None

    async def _api_client(self) -> client.ApiClient:
        if self._api is None:
            configuration = client.Configuration()
            if self._kube_config_path:
                await config.load_kube_config(config_file=self._kube_config_path, client_configuration=configuration)
            else:
                config.load_incluster_config(client_configuration=configuration)
            self._api = client.ApiClient(configuration)
            logger.info("Kubernetes: local client ready ({})", self._kube_config_path or "in-cluster")
        return self._api

    @asynccontextmanager
    async def connect(self, pay_model: PayModel | None = None) -> AsyncIterator[KubeClients]:
        async with transport_errors("local cluster"):
            api = await self._api_client()
            yield KubeClients(core=client.CoreV1Api(api), custom=client.CustomObjectsApi(api))

    async def close(self) -> None:
        if self._api is not None:
            await self._api.close()
            self._api = None


@asynccontextmanager
async def transport_errors(cluster: str) -> AsyncIterator[None]:
    """Report an unreachable API server as ``BackendError``."""
    try:
        yield
    except (aiohttp.ClientError, TimeoutError) as exc:
        logger.error("Kubernetes: {} unreachable: {}", cluster, exc)
        msg = f"Kubernetes API of {cluster} unreachable: {exc}"
        raise BackendError(msg) from exc


# -- Lookups -------------------------------------------------------------------


async def read_or_none(call: Any, *args: Any, **kwargs: Any) -> Any | None:
    """Await a ``read_*`` call, mapping 404 to ``None``."""
    try:
        return await call(*args, **kwargs)
    except ApiException as exc:
        if exc.status == HTTP_NOT_FOUND:
            return None
        raise BackendError(f"Kubernetes API error: {exc.reason}") from exc


def wrap_api_error(exc: ApiException, action: str) -> BackendError:
    logger.error("Kubernetes: failed to {}: {} {}", action, exc.status, exc.reason)
    return BackendError(f"Failed to {action}: {exc.reason}")


def env_value(pod: Any, container_name: str, env_name: str) -> str | None:
    """Return the value of *env_name* in the named container of *pod*."""
    for container in pod.spec.containers or []:
        if container.name != container_name:
            continue
        for env in container.env or []:
            if env.name == env_name:
                return env.value
        return None
    return None


# -- Builders ------------------------------------------------------------------


def workspace_labels(user: str, app_id: str) -> dict[str, str]:
    return {
        LABEL_POD: workspace_id(user, app_id),
        LABEL_USER: escapism(user),
        LABEL_APPID: app_id,
    }


def api_key_env(api_key: ApiKey, token: str) -> list[client.V1EnvVar]:
    return [
        client.V1EnvVar(name="API_KEY", value=api_key.api_key),
        client.V1EnvVar(name=API_KEY_ID_ENV, value=api_key.key_id),
        client.V1EnvVar(name="ACCESS_TOKEN", value=token),
    ]


def _with_hostname(env: list[client.V1EnvVar]) -> list[client.V1EnvVar]:
    if any(var.name == "HOSTNAME" for var in env):
        return env
    return [*env, client.V1EnvVar(name="HOSTNAME", value=os.environ.get("HOSTNAME", ""))]


def _resources(cpu: str, memory: str) -> client.V1ResourceRequirements:
    limits = {"cpu": cpu, "memory": memory}
    return client.V1ResourceRequirements(limits=limits, requests=dict(limits))


def build_pod(
    launcher: LauncherConfig,
    app: ContainerDefinition,
    user: str,
    extra_env: list[client.V1EnvVar] | None = None,
) -> client.V1Pod:
    """Build the workspace pod for *user* running *app*.

    The pod always carries the privileged ``fuse-container`` sidecar; the
    app container is added only when the definition has an image (some
    apps consist of friend containers alone).
    """
    extra_env = extra_env or []
    name = workspace_id(user, app.app_id)
    labels = workspace_labels(user, app.app_id)
    sidecar = launcher.sidecar

    app_env = _with_hostname([client.V1EnvVar(name=k, value=v) for k, v in app.env.items()] + extra_env)
    sidecar_env = _with_hostname([client.V1EnvVar(name=k, value=v) for k, v in sidecar.env.items()] + extra_env)

    volumes = [client.V1Volume(name="shared-data", empty_dir=client.V1EmptyDirVolumeSource())]
    sidecar_mounts = [client.V1VolumeMount(mount_path="/data", name="shared-data", mount_propagation="Bidirectional")]
    app_mounts = [client.V1VolumeMount(mount_path="/data", name="shared-data", mount_propagation="HostToContainer")]

    if app.use_shared_memory == "true":
        volumes.append(client.V1Volume(name="dshm", empty_dir=client.V1EmptyDirVolumeSource(medium="Memory")))
        sidecar_mounts.append(client.V1VolumeMount(mount_path="/dev/shm", name="dshm"))

    if app.user_volume_location:
        volumes.append(
            client.V1Volume(
                name="user-data",
                persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(claim_name=name),
            )
        )
        app_mounts.append(client.V1VolumeMount(mount_path=app.user_volume_location, name="user-data"))

    containers: list[Any] = [
        client.V1Container(
            name=SIDECAR_CONTAINER,
            image=sidecar.image,
            security_context=client.V1SecurityContext(privileged=True, run_as_user=0, run_as_group=0),
            image_pull_policy="Always",
            env=sidecar_env,
            command=sidecar.command or None,
            args=sidecar.args or None,
            volume_mounts=sidecar_mounts,
            resources=_resources(sidecar.cpu_limit, sidecar.memory_limit),
            lifecycle=client.V1Lifecycle(
                pre_stop=client.V1LifecycleHandler(_exec=client.V1ExecAction(command=sidecar.lifecycle_pre_stop))
            )
            if sidecar.lifecycle_pre_stop
            else None,
        )
    ]

    if app.image:
        lifecycle = client.V1Lifecycle()
        if app.lifecycle_pre_stop:
            lifecycle.pre_stop = client.V1LifecycleHandler(_exec=client.V1ExecAction(command=app.lifecycle_pre_stop))
        if app.lifecycle_post_start:
            lifecycle.post_start = client.V1LifecycleHandler(
                _exec=client.V1ExecAction(command=app.lifecycle_post_start)
            )
        containers.append(
            client.V1Container(
                name=MAIN_CONTAINER,
                image=app.image,
                security_context=client.V1SecurityContext(privileged=False),
                image_pull_policy=app.pull_policy if app.pull_policy in ("Always", "Never") else "IfNotPresent",
                env=app_env,
                command=app.command or None,
                args=app.args or None,
                volume_mounts=app_mounts,
                resources=_resources(app.cpu_limit, app.memory_limit),
                lifecycle=lifecycle,
                readiness_probe=client.V1Probe(
                    http_get=client.V1HTTPGetAction(path=app.ready_probe, port=app.target_port)
                ),
            )
        )

    containers.extend(app.friends)

    security_context = client.V1PodSecurityContext(
        run_as_user=app.user_uid or None,
        run_as_group=app.group_uid or None,
        fs_group=app.fs_gid or None,
    )

    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=launcher.user_namespace,
            labels=labels,
            annotations={"gen3username": user},
        ),
        spec=client.V1PodSpec(
            security_context=security_context,
            containers=containers,
            restart_policy="Never",
            tolerations=[client.V1Toleration(key="role", operator="Equal", value="jupyter", effect="NoSchedule")],
            volumes=volumes,
        ),
    )


def build_claim(launcher: LauncherConfig, pod: client.V1Pod) -> client.V1PersistentVolumeClaim:
    return client.V1PersistentVolumeClaim(
        metadata=client.V1ObjectMeta(
            name=pod.metadata.name,
            labels=dict(pod.metadata.labels),
            annotations=dict(pod.metadata.annotations),
        ),
        spec=client.V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            resources=client.V1VolumeResourceRequirements(requests={"storage": launcher.user_volume_size}),
        ),
    )


def build_service(
    name: str,
    namespace: str,
    labels: dict[str, str],
    target_port: int,
    *,
    service_type: str = "ClusterIP",
    annotations: dict[str, str] | None = None,
) -> client.V1Service:
    """Service exposing port 80 of the workspace pod selected by ``LABEL_POD``."""
    return client.V1Service(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=dict(labels), annotations=annotations or {}),
        spec=client.V1ServiceSpec(
            type=service_type,
            selector={LABEL_POD: labels[LABEL_POD]},
            ports=[client.V1ServicePort(name=name, protocol="TCP", port=80, target_port=target_port)],
        ),
    )


def build_proxy_service(
    name: str,
    namespace: str,
    labels: dict[str, str],
    address: str,
    port: int,
) -> tuple[client.V1Service, client.V1Endpoints | None]:
    """Local stand-in for a workspace hosted outside this cluster.

    The service mapper routes to it like any local workspace.  An IP
    upstream (an EKS node) gets a selector-less service plus a matching
    Endpoints object; a DNS upstream (a load balancer) gets an
    ``ExternalName`` service.
    """
    metadata = client.V1ObjectMeta(name=name, namespace=namespace, labels=dict(labels))
    try:
        ipaddress.ip_address(address)
    except ValueError:
        service = client.V1Service(
            metadata=metadata,
            spec=client.V1ServiceSpec(
                type="ExternalName",
                external_name=address,
                ports=[client.V1ServicePort(name=name, protocol="TCP", port=80, target_port=port)],
            ),
        )
        return service, None

    service = client.V1Service(
        metadata=metadata,
        spec=client.V1ServiceSpec(
            type="ClusterIP",
            ports=[client.V1ServicePort(name=name, protocol="TCP", port=80, target_port=port)],
        ),
    )
    endpoints = client.V1Endpoints(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=dict(labels)),
        subsets=[
            client.V1EndpointSubset(
                addresses=[client.V1EndpointAddress(ip=address)],
                ports=[client.CoreV1EndpointPort(name=name, port=port, protocol="TCP")],
            )
        ],
    )
    return service, endpoints
