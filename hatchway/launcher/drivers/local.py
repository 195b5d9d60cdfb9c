"""In-cluster Kubernetes driver.

Workspaces run as pods in the user namespace of the cluster hosting the
launcher.  Each workspace gets a PVC (when the app mounts a user volume),
the pod itself, and a ClusterIP service registered with the service
mapper.  Status is recomputed from the live pods on every call.
"""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio.client.exceptions import ApiException
from loguru import logger

from hatchway.launcher.activity import KernelActivity, attach_activity
from hatchway.launcher.config import LauncherConfig
from hatchway.launcher.credentials import CredentialIssuer
from hatchway.launcher.drivers.base import WorkspaceNotFoundError
from hatchway.launcher.drivers.kube import (
    API_KEY_ID_ENV,
    HTTP_NOT_FOUND,
    MAIN_CONTAINER,
    KubeClients,
    KubeConnector,
    api_key_env,
    build_claim,
    build_pod,
    build_service,
    env_value,
    read_or_none,
    workspace_labels,
    wrap_api_error,
)
from hatchway.launcher.errors import BackendError
from hatchway.launcher.mapping.base import ServiceMapper
from hatchway.launcher.models.container import ContainerDefinition
from hatchway.launcher.models.enums import BackendKind
from hatchway.launcher.models.paymodel import PayModel
from hatchway.launcher.models.status import WorkspaceStatus
from hatchway.launcher.naming import LABEL_POD, LABEL_USER, escapism
from hatchway.launcher.status import most_alive, pod_status

DELETE_GRACE_SECONDS = 20


class LocalKubeDriver:
    """Driver for workspaces in the launcher's own cluster."""

    kind = BackendKind.LOCAL

    def __init__(
        self,
        launcher: LauncherConfig,
        connector: KubeConnector,
        mapper: ServiceMapper,
        credentials: CredentialIssuer,
        *,
        activity: KernelActivity | None = None,
    ) -> None:
        self._launcher = launcher
        self._connector = connector
        self._mapper = mapper
        self._credentials = credentials
        self._activity = activity

    @property
    def namespace(self) -> str:
        return self._launcher.user_namespace

    def _workload_cluster(self, pay_model: PayModel | None) -> Any:
        """Connection to the cluster where the pods run."""
        return self._connector.connect(pay_model)

    # -- Create ----------------------------------------------------------------

    async def create(self, user: str, app: ContainerDefinition, token: str, pay_model: PayModel | None) -> None:
        api_key = await self._credentials.create_api_key(token)
        logger.info("Created API key for user {}, key ID: {}", user, api_key.key_id)
        try:
            await self._create(user, app, token, pay_model, api_key_env(api_key, token))
        except Exception:
            await self._delete_api_key(user, token, api_key.key_id)
            raise

    async def _create(
        self,
        user: str,
        app: ContainerDefinition,
        token: str,
        pay_model: PayModel | None,
        extra_env: list[Any],
    ) -> None:
        pod = build_pod(self._launcher, app, user, extra_env)
        name = pod.metadata.name
        async with self._workload_cluster(pay_model) as kube:
            await self._create_pod(kube, app, pod)

            labels = workspace_labels(user, app.app_id)
            await self._delete_stale_service(kube, name)
            service = build_service(name, self.namespace, labels, app.target_port)
            await self._mapper.start(self.namespace, name, user, app.path_rewrite, app.use_tls, service)
            try:
                await kube.core.create_namespaced_service(self.namespace, service)
            except ApiException as exc:
                raise wrap_api_error(exc, f"create service {name}") from exc
        logger.info("Launched service {} for user {} forwarding port {}", name, user, app.target_port)

    async def _create_pod(self, kube: KubeClients, app: ContainerDefinition, pod: Any) -> None:
        """Create the user-volume claim (if needed) and the pod."""
        name = pod.metadata.name
        user = pod.metadata.annotations["gen3username"]
        if app.user_volume_location:
            claim = await read_or_none(kube.core.read_namespaced_persistent_volume_claim, name, self.namespace)
            if claim is None:
                logger.info("Creating PersistentVolumeClaim {}", name)
                try:
                    await kube.core.create_namespaced_persistent_volume_claim(
                        self.namespace, build_claim(self._launcher, pod)
                    )
                except ApiException as exc:
                    raise wrap_api_error(exc, f"create PVC {name}") from exc

        try:
            await kube.core.create_namespaced_pod(self.namespace, pod)
        except ApiException as exc:
            logger.error(
                "Failed to launch pod {} for user {}. Image: {}, CPU {}, Memory {}",
                app.name,
                user,
                app.image,
                app.cpu_limit,
                app.memory_limit,
            )
            raise wrap_api_error(exc, f"create pod {name}") from exc
        logger.info(
            "Launched pod {} for user {}. Image: {}, CPU {}, Memory {}",
            app.name,
            user,
            app.image,
            app.cpu_limit,
            app.memory_limit,
        )

    async def _delete_stale_service(self, kube: KubeClients, name: str) -> None:
        """Remove a service left behind by an earlier failed launch or teardown."""
        existing = await read_or_none(kube.core.read_namespaced_service, name, self.namespace)
        if existing is None:
            return
        logger.info("Deleting stale service {}", name)
        await self._delete_service(kube, name)

    # -- Terminate -------------------------------------------------------------

    async def terminate(
        self,
        user: str,
        token: str,
        pay_model: PayModel | None,
        workspace_id: str | None = None,
    ) -> None:
        async with self._workload_cluster(pay_model) as kube:
            pods = await self._user_pods(kube, user, workspace_id)
            if not pods:
                msg = f"A workspace pod was not found for user {user}"
                raise WorkspaceNotFoundError(msg)

            for pod in pods:
                name = pod.metadata.name
                key_id = env_value(pod, MAIN_CONTAINER, API_KEY_ID_ENV)
                if key_id:
                    logger.info("Found mounted API key. Attempting to delete API key {} for user {}", key_id, user)
                    await self._delete_api_key(user, token, key_id)

                try:
                    await self._mapper.stop(self.namespace, name)
                except BackendError as exc:
                    logger.warning("Failed stopping service mapper for {}: {}", name, exc)

                logger.info("Attempting to delete pod {} for user {}", name, user)
                try:
                    await kube.core.delete_namespaced_pod(
                        name,
                        self.namespace,
                        grace_period_seconds=DELETE_GRACE_SECONDS,
                        propagation_policy="Background",
                    )
                except ApiException as exc:
                    raise wrap_api_error(exc, f"delete pod {name}") from exc

                await self._delete_service(kube, name)
                await self._after_pod_deleted(name)

    async def _after_pod_deleted(self, name: str) -> None:
        """Hook for drivers that keep extra local objects per workspace."""
        return None

    async def _delete_service(self, kube: KubeClients, name: str) -> None:
        try:
            await kube.core.delete_namespaced_service(name, self.namespace, propagation_policy="Background")
        except ApiException as exc:
            if exc.status == HTTP_NOT_FOUND:
                logger.debug("Service {} already gone", name)
                return
            raise wrap_api_error(exc, f"delete service {name}") from exc

    async def _delete_api_key(self, user: str, token: str, key_id: str) -> None:
        try:
            await self._credentials.delete_api_key(token, key_id)
        except BackendError as exc:
            logger.warning("Error deleting API key {} for user {}: {}", key_id, user, exc)
        else:
            logger.info("API key {} for user {} has been deleted", key_id, user)

    # -- Status ----------------------------------------------------------------

    async def _user_pods(self, kube: KubeClients, user: str, workspace_id: str | None = None) -> list[Any]:
        if workspace_id:
            pod = await read_or_none(kube.core.read_namespaced_pod, workspace_id, self.namespace)
            if pod is None or (pod.metadata.labels or {}).get(LABEL_USER) != escapism(user):
                return []
            return [pod]
        try:
            pods = await kube.core.list_namespaced_pod(self.namespace, label_selector=f"{LABEL_USER}={escapism(user)}")
        except ApiException as exc:
            raise wrap_api_error(exc, f"list pods of {user}") from exc
        return list(pods.items or [])

    async def list_workspaces(self, user: str, token: str, pay_model: PayModel | None) -> list[WorkspaceStatus]:
        async with self._workload_cluster(pay_model) as kube:
            pods = await self._user_pods(kube, user)
        out = []
        for pod in pods:
            status = await attach_activity(pod_status(pod), self._activity, token)
            status.workspace_id = (pod.metadata.labels or {}).get(LABEL_POD, pod.metadata.name)
            status.url = await self._mapper.get_url(self.namespace, status.workspace_id)
            out.append(status)
        return out

    async def status(self, user: str, token: str, pay_model: PayModel | None) -> WorkspaceStatus:
        async with self._workload_cluster(pay_model) as kube:
            pods = await self._user_pods(kube, user)
            if not pods:
                return await self._status_without_pods(kube, user)
        status = most_alive([pod_status(pod) for pod in pods])
        return await attach_activity(status, self._activity, token)

    async def _status_without_pods(self, kube: KubeClients, user: str) -> WorkspaceStatus:
        return pod_status(None)
