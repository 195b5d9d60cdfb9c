"""External EKS driver.

The workspace pod runs in an EKS cluster owned by the pay model's AWS
account.  The launcher reaches it through an internal-LB ``NodePort``
service on that cluster and a proxy service in its own cluster that
points at the first node's address.  The service mapper routes to the
proxy service like any local workspace.
"""

from __future__ import annotations

import base64
import os
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any

import boto3
from anyio import to_thread
from botocore.exceptions import BotoCoreError, ClientError
from botocore.signers import RequestSigner
from kubernetes_asyncio import client
from kubernetes_asyncio.client.exceptions import ApiException
from loguru import logger

from hatchway.launcher.activity import KernelActivity
from hatchway.launcher.aws import pay_model_session
from hatchway.launcher.config import LauncherConfig
from hatchway.launcher.credentials import CredentialIssuer
from hatchway.launcher.drivers.kube import (
    KubeClients,
    KubeConnector,
    build_pod,
    build_proxy_service,
    build_service,
    read_or_none,
    transport_errors,
    workspace_labels,
    wrap_api_error,
)
from hatchway.launcher.drivers.local import LocalKubeDriver
from hatchway.launcher.errors import BackendError
from hatchway.launcher.mapping.base import ServiceMapper
from hatchway.launcher.models.container import ContainerDefinition
from hatchway.launcher.models.enums import BackendKind, WorkspaceState
from hatchway.launcher.models.paymodel import PayModel
from hatchway.launcher.models.status import WorkspaceStatus
from hatchway.launcher.naming import LABEL_USER, escapism
from hatchway.launcher.status import KUBERNETES_WORKSPACE, pod_status

INTERNAL_LB_ANNOTATION = "service.beta.kubernetes.io/aws-load-balancer-internal"
TOKEN_PREFIX = "k8s-aws-v1."
TOKEN_EXPIRES_IN = 60


# -- EKS connectivity ----------------------------------------------------------


@dataclass
class EksCluster:
    name: str
    endpoint: str
    ca_data: bytes
    token: str


def eks_token(session: boto3.Session, cluster_name: str, region: str) -> str:
    """Bearer token accepted by the EKS API server (a presigned GetCallerIdentity URL)."""
    sts = session.client("sts", region_name=region)
    signer = RequestSigner(
        sts.meta.service_model.service_id,
        region,
        "sts",
        "v4",
        session.get_credentials(),
        session.events,
    )
    params = {
        "method": "GET",
        "url": f"https://sts.{region}.amazonaws.com/?Action=GetCallerIdentity&Version=2011-06-15",
        "body": {},
        "headers": {"x-k8s-aws-id": cluster_name},
        "context": {},
    }
    url = signer.generate_presigned_url(
        params, region_name=region, expires_in=TOKEN_EXPIRES_IN, operation_name=""
    )
    return TOKEN_PREFIX + base64.urlsafe_b64encode(url.encode("utf-8")).decode("utf-8").rstrip("=")


def describe_eks_cluster(pay_model: PayModel) -> EksCluster:
    """Assume the pay model account's admin role and look up its cluster."""
    session = pay_model_session(pay_model)
    eks = session.client("eks", region_name=pay_model.region)
    cluster = eks.describe_cluster(name=pay_model.name)["cluster"]
    return EksCluster(
        name=cluster["name"],
        endpoint=cluster["endpoint"],
        ca_data=base64.b64decode(cluster["certificateAuthority"]["data"]),
        token=eks_token(session, cluster["name"], pay_model.region),
    )


class EksConnector:
    """Connector that opens a short-lived client per pay-model cluster."""

    async def _describe(self, pay_model: PayModel) -> EksCluster:
        try:
            return await to_thread.run_sync(partial(describe_eks_cluster, pay_model))
        except (ClientError, BotoCoreError) as exc:
            logger.error("Error calling DescribeCluster for {}: {}", pay_model.name, exc)
            raise BackendError(f"Failed to reach cluster {pay_model.name}: {exc}") from exc

    @asynccontextmanager
    async def connect(self, pay_model: PayModel | None = None) -> AsyncIterator[KubeClients]:
        if pay_model is None:
            msg = "External cluster requires a pay model"
            raise BackendError(msg)
        cluster = await self._describe(pay_model)

        # Configuration only takes a CA file path.
        with tempfile.NamedTemporaryFile("wb", suffix=".crt", delete=False) as ca_file:
            ca_file.write(cluster.ca_data)
        try:
            configuration = client.Configuration(
                host=cluster.endpoint,
                api_key={"BearerToken": cluster.token},
                api_key_prefix={"BearerToken": "Bearer"},
            )
            configuration.ssl_ca_cert = ca_file.name
            async with transport_errors(pay_model.name), client.ApiClient(configuration) as api:
                yield KubeClients(core=client.CoreV1Api(api), custom=client.CustomObjectsApi(api))
        finally:
            os.unlink(ca_file.name)


# -- Driver --------------------------------------------------------------------


class ExternalKubeDriver(LocalKubeDriver):
    """Driver for workspaces in a pay model's own EKS cluster."""

    kind = BackendKind.EXTERNAL

    def __init__(
        self,
        launcher: LauncherConfig,
        connector: KubeConnector,
        mapper: ServiceMapper,
        credentials: CredentialIssuer,
        *,
        eks: KubeConnector | None = None,
        activity: KernelActivity | None = None,
    ) -> None:
        super().__init__(launcher, connector, mapper, credentials, activity=activity)
        self._eks = eks or EksConnector()

    def _workload_cluster(self, pay_model: PayModel | None) -> Any:
        return self._eks.connect(pay_model)

    async def _create(
        self,
        user: str,
        app: ContainerDefinition,
        token: str,
        pay_model: PayModel | None,
        extra_env: list[Any],
    ) -> None:
        logger.info("Creating an external Kubernetes pod for user {}", user)
        pod = build_pod(self._launcher, app, user, extra_env)
        name = pod.metadata.name
        labels = workspace_labels(user, app.app_id)

        async with self._workload_cluster(pay_model) as remote:
            await self._ensure_namespace(remote)
            await self._create_pod(remote, app, pod)

            await self._delete_stale_service(remote, name)
            node_service = build_service(
                name,
                self.namespace,
                labels,
                app.target_port,
                service_type="NodePort",
                annotations={INTERNAL_LB_ANNOTATION: "true"},
            )
            try:
                created = await remote.core.create_namespaced_service(self.namespace, node_service)
            except ApiException as exc:
                raise wrap_api_error(exc, f"create service {name}") from exc
            logger.info("Launched service {} for user {} forwarding port {}", name, user, app.target_port)

            node_port = created.spec.ports[0].node_port
            node_ip = await self._node_address(remote)

        await self._create_proxy_service(user, app, name, labels, node_ip, node_port)

    async def _ensure_namespace(self, kube: KubeClients) -> None:
        existing = await read_or_none(kube.core.read_namespace, self.namespace)
        if existing is not None:
            return
        try:
            await kube.core.create_namespace(client.V1Namespace(metadata=client.V1ObjectMeta(name=self.namespace)))
        except ApiException as exc:
            logger.error("Error occurred when creating namespace {}: {}", self.namespace, exc.reason)
        else:
            logger.info("Namespace created: {}", self.namespace)

    async def _node_address(self, kube: KubeClients) -> str:
        try:
            nodes = await kube.core.list_node()
        except ApiException as exc:
            raise wrap_api_error(exc, "list nodes") from exc
        if not nodes.items or not nodes.items[0].status.addresses:
            msg = "External cluster has no addressable nodes"
            raise BackendError(msg)
        return nodes.items[0].status.addresses[0].address

    async def _create_proxy_service(
        self,
        user: str,
        app: ContainerDefinition,
        name: str,
        labels: dict[str, str],
        address: str,
        port: int,
    ) -> None:
        """Create the local service that routes to the remote node port."""
        service, endpoints = build_proxy_service(name, self.namespace, labels, address, port)
        async with self._connector.connect() as local:
            await self._delete_stale_service(local, name)
            await self._mapper.start(self.namespace, name, user, app.path_rewrite, app.use_tls, service)
            try:
                await local.core.create_namespaced_service(self.namespace, service)
                if endpoints is not None:
                    await local.core.create_namespaced_endpoints(self.namespace, endpoints)
            except ApiException as exc:
                raise wrap_api_error(exc, f"create proxy service {name}") from exc
        logger.info("Created proxy service {} -> {}:{}", name, address, port)

    async def _after_pod_deleted(self, name: str) -> None:
        async with self._connector.connect() as local:
            await self._delete_service(local, name)

    async def _status_without_pods(self, kube: KubeClients, user: str) -> WorkspaceStatus:
        try:
            services = await kube.core.list_namespaced_service(
                self.namespace, label_selector=f"{LABEL_USER}={escapism(user)}"
            )
        except ApiException as exc:
            raise wrap_api_error(exc, f"list services of {user}") from exc
        if not services.items:
            return pod_status(None)

        for service in services.items:
            await self._delete_service(kube, service.metadata.name)
        logger.info("Pod has been terminated, but service is still being terminated for user {}", user)
        return WorkspaceStatus(status=WorkspaceState.TERMINATING, workspace_type=KUBERNETES_WORKSPACE)
