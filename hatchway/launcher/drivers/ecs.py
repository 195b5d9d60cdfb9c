"""Managed-container (ECS/Fargate) driver.

One ECS service per user runs in the ``{commons}-cluster`` cluster of the
pay model's account, behind a pre-provisioned internal load balancer.
The launcher's own cluster gets an ``ExternalName`` service pointing at
the balancer's DNS name, which the service mapper routes to.

Account resources (network, load balancer, EFS access point, task role)
are looked up by name through :class:`EcsAccountResources`; the driver
never creates them.  All boto3 calls run in the thread pool.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Any, Protocol, runtime_checkable

from anyio import to_thread
from botocore.exceptions import BotoCoreError, ClientError
from kubernetes_asyncio.client.exceptions import ApiException
from loguru import logger

from hatchway.launcher.activity import KernelActivity, attach_activity
from hatchway.launcher.aws import pay_model_session
from hatchway.launcher.config import LauncherConfig
from hatchway.launcher.credentials import ApiKey, CredentialIssuer
from hatchway.launcher.drivers.base import WorkspaceNotFoundError
from hatchway.launcher.drivers.kube import (
    API_KEY_ID_ENV,
    HTTP_NOT_FOUND,
    KubeConnector,
    build_proxy_service,
    workspace_labels,
    wrap_api_error,
)
from hatchway.launcher.errors import BackendError, ConfigError
from hatchway.launcher.mapping.base import ServiceMapper
from hatchway.launcher.models.container import ContainerDefinition, idle_time_limit_ms
from hatchway.launcher.models.enums import BackendKind, WorkspaceState
from hatchway.launcher.models.paymodel import PayModel
from hatchway.launcher.models.status import WorkspaceStatus
from hatchway.launcher.naming import LABEL_APPID, ecs_cluster_name, user_resource_name, workspace_id
from hatchway.launcher.status import ecs_status

SIDECAR_NAME = "sidecar-container"
SECURITY_GROUP_NAME = "ws-security-group"
AWS_NAME_LIMIT = 32

_MEMORY_RE = re.compile(r"(\d+)([MG])i?b?")


# -- Unit conversion -----------------------------------------------------------


def ecs_memory(value: str) -> str:
    """Convert a Kubernetes memory limit (``512Mi``, ``2Gi``) to ECS MiB."""
    match = _MEMORY_RE.search(value)
    if match is None:
        msg = f"Unsupported memory limit {value!r}"
        raise ConfigError(msg)
    number = int(match.group(1))
    if match.group(2) == "G":
        number *= 1024
    return str(number)


def ecs_cpu(value: str) -> str:
    """Convert a CPU limit (``1.0``) to ECS CPU units; fractions are dropped."""
    whole = value.split(".", 1)[0]
    if not whole.isdigit():
        msg = f"Unsupported CPU limit {value!r}"
        raise ConfigError(msg)
    return str(int(whole) * 1024)


# -- Account resources ---------------------------------------------------------


@dataclass(frozen=True)
class EcsNetwork:
    subnets: list[str]
    security_groups: list[str]

    def awsvpc(self) -> dict[str, Any]:
        return {
            "awsvpcConfiguration": {
                "subnets": self.subnets[:1],
                "securityGroups": self.security_groups[:1],
                "assignPublicIp": "ENABLED",
            }
        }


@dataclass(frozen=True)
class EcsLoadBalancer:
    target_group_arn: str
    dns_name: str


@dataclass(frozen=True)
class EcsVolume:
    file_system_id: str
    access_point_id: str


@runtime_checkable
class EcsAccountResources(Protocol):
    """Pre-provisioned per-user resources in the workspace account.

    Methods are blocking; the driver calls them from a worker thread.
    """

    def network(self, user: str) -> EcsNetwork: ...

    def load_balancer(self, user: str) -> EcsLoadBalancer: ...

    def volume(self, user: str) -> EcsVolume: ...

    def task_role_arn(self, user: str) -> str: ...


def _dashed(endpoint: str) -> str:
    return endpoint.replace(".", "-")


class Boto3EcsAccountResources:
    """Looks resources up by the names the provisioning tooling gives them."""

    def __init__(self, session: Any, commons_endpoint: str, region: str) -> None:
        self._session = session
        self._endpoint = commons_endpoint
        self._region = region

    def _client(self, name: str) -> Any:
        return self._session.client(name, region_name=self._region)

    def network(self, user: str) -> EcsNetwork:
        ec2 = self._client("ec2")
        vpc_name = f"{user_resource_name(user, 'service')}-{_dashed(self._endpoint)}-vpc"
        vpcs = ec2.describe_vpcs(
            Filters=[
                {"Name": "tag:Name", "Values": [vpc_name]},
                {"Name": "tag:Environment", "Values": [self._endpoint]},
            ]
        )["Vpcs"]
        if not vpcs:
            msg = f"No existing VPC {vpc_name} found"
            raise BackendError(msg)
        vpc_id = vpcs[0]["VpcId"]

        subnets = ec2.describe_subnets(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])["Subnets"]
        groups = ec2.describe_security_groups(
            Filters=[
                {"Name": "vpc-id", "Values": [vpc_id]},
                {"Name": "group-name", "Values": [SECURITY_GROUP_NAME]},
            ]
        )["SecurityGroups"]
        if not subnets or not groups:
            msg = f"VPC {vpc_name} is missing subnets or the {SECURITY_GROUP_NAME} security group"
            raise BackendError(msg)
        return EcsNetwork(
            subnets=[subnet["SubnetId"] for subnet in subnets],
            security_groups=[group["GroupId"] for group in groups],
        )

    def load_balancer(self, user: str) -> EcsLoadBalancer:
        elb = self._client("elbv2")
        service = user_resource_name(user, "service")
        lb_name = _dashed(service + self._endpoint)[: AWS_NAME_LIMIT - 3] + "alb"
        tg_name = (_dashed(self._endpoint) + service)[: AWS_NAME_LIMIT - 2] + "tg"
        try:
            balancers = elb.describe_load_balancers(Names=[lb_name])["LoadBalancers"]
            groups = elb.describe_target_groups(Names=[tg_name])["TargetGroups"]
        except ClientError as exc:
            msg = f"Load balancer {lb_name} or target group {tg_name} not found: {exc}"
            raise BackendError(msg) from exc
        return EcsLoadBalancer(target_group_arn=groups[0]["TargetGroupArn"], dns_name=balancers[0]["DNSName"])

    def volume(self, user: str) -> EcsVolume:
        efs = self._client("efs")
        token = _dashed(self._endpoint) + user_resource_name(user, "pod") + "fs"
        systems = efs.describe_file_systems(CreationToken=token)["FileSystems"]
        if not systems:
            msg = f"No EFS file system {token} found"
            raise BackendError(msg)
        fs_id = systems[0]["FileSystemId"]
        points = efs.describe_access_points(FileSystemId=fs_id)["AccessPoints"]
        if not points:
            msg = f"No access point on EFS file system {fs_id}"
            raise BackendError(msg)
        return EcsVolume(file_system_id=fs_id, access_point_id=points[0]["AccessPointId"])

    def task_role_arn(self, user: str) -> str:
        iam = self._client("iam")
        try:
            return iam.get_role(RoleName=user_resource_name(user, "pod"))["Role"]["Arn"]
        except ClientError as exc:
            msg = f"Task role for {user} not found: {exc}"
            raise BackendError(msg) from exc


# -- Driver --------------------------------------------------------------------


SessionFactory = Callable[[PayModel], Any]
ResourcesFactory = Callable[[Any], EcsAccountResources]


class EcsDriver:
    """Driver for workspaces running as ECS services on Fargate."""

    kind = BackendKind.MANAGED_CONTAINER

    def __init__(
        self,
        launcher: LauncherConfig,
        connector: KubeConnector,
        mapper: ServiceMapper,
        credentials: CredentialIssuer,
        *,
        commons_endpoint: str,
        region: str = "us-east-1",
        session_factory: SessionFactory | None = None,
        resources_factory: ResourcesFactory | None = None,
        activity: KernelActivity | None = None,
    ) -> None:
        self._launcher = launcher
        self._connector = connector
        self._mapper = mapper
        self._credentials = credentials
        self._endpoint = commons_endpoint
        self._region = region
        self._session_factory = session_factory or partial(pay_model_session, default_region=region)
        self._resources_factory = resources_factory or (
            lambda session: Boto3EcsAccountResources(session, commons_endpoint, region)
        )
        self._activity = activity

    @property
    def cluster_name(self) -> str:
        return ecs_cluster_name(self._endpoint)

    @property
    def namespace(self) -> str:
        return self._launcher.user_namespace

    async def _in_thread(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await to_thread.run_sync(partial(fn, *args))
        except (ClientError, BotoCoreError) as exc:
            logger.error("ECS: {} failed: {}", getattr(fn, "__name__", fn), exc)
            raise BackendError(str(exc)) from exc

    async def _session(self, pay_model: PayModel | None) -> Any:
        """Session in the pay model's account; assuming the role calls STS."""
        if pay_model is None:
            msg = "ECS workspaces require a pay model"
            raise BackendError(msg)
        return await self._in_thread(self._session_factory, pay_model)

    def _ecs(self, session: Any) -> Any:
        return session.client("ecs", region_name=self._region)

    def _find_cluster(self, ecs: Any, *, create: bool) -> str | None:
        """Return the cluster ARN, creating the cluster when *create* is set."""
        resp = ecs.describe_clusters(clusters=[self.cluster_name])
        if resp.get("clusters"):
            return resp["clusters"][0]["clusterArn"]
        if any(failure.get("reason") != "MISSING" for failure in resp.get("failures", [])):
            msg = f"ECS cluster named {self.cluster_name} cannot be described"
            raise BackendError(msg)
        if not create:
            return None
        logger.info("ECS cluster named {} not found, creating it", self.cluster_name)
        return ecs.create_cluster(clusterName=self.cluster_name)["cluster"]["clusterArn"]

    # -- Create ----------------------------------------------------------------

    async def create(self, user: str, app: ContainerDefinition, token: str, pay_model: PayModel | None) -> None:
        session = await self._session(pay_model)
        api_key = await self._credentials.create_api_key(token)
        logger.info("Created API key for user {}, key ID: {}", user, api_key.key_id)
        try:
            dns_name = await self._in_thread(self._launch_sync, session, user, app, token, api_key, pay_model)
            await self._create_proxy_service(user, app, dns_name)
        except Exception:
            try:
                await self._credentials.delete_api_key(token, api_key.key_id)
            except BackendError as exc:
                logger.warning("Error deleting API key {} for user {}: {}", api_key.key_id, user, exc)
            raise

    def _launch_sync(
        self,
        session: Any,
        user: str,
        app: ContainerDefinition,
        token: str,
        api_key: ApiKey,
        pay_model: PayModel,
    ) -> str:
        ecs = self._ecs(session)
        resources = self._resources_factory(session)

        cluster_arn = self._find_cluster(ecs, create=True)
        task_definition = self._register_task_definition(session, ecs, resources, user, app, token, api_key, pay_model)
        network = resources.network(user)
        balancer = resources.load_balancer(user)

        name = user_resource_name(user, "pod")
        resp = ecs.create_service(
            cluster=cluster_arn,
            serviceName=name,
            taskDefinition=task_definition,
            desiredCount=1,
            launchType="FARGATE",
            networkConfiguration=network.awsvpc(),
            deploymentConfiguration={"minimumHealthyPercent": 0},
            enableECSManagedTags=True,
            loadBalancers=[
                {"targetGroupArn": balancer.target_group_arn, "containerName": name, "containerPort": app.target_port}
            ],
            tags=[{"key": LABEL_APPID, "value": app.app_id}],
        )
        logger.info("Service launched: {}", resp["service"]["clusterArn"])
        return balancer.dns_name

    def _register_task_definition(
        self,
        session: Any,
        ecs: Any,
        resources: EcsAccountResources,
        user: str,
        app: ContainerDefinition,
        token: str,
        api_key: ApiKey,
        pay_model: PayModel,
    ) -> str:
        account = pay_model.aws_account_id
        log_group = self._ensure_log_group(session, f"/hatchery/{account}/")
        volume = resources.volume(user)
        name = user_resource_name(user, "pod")

        environment = [{"name": key, "value": value} for key, value in app.env.items()]
        environment += [
            {"name": "API_KEY", "value": api_key.api_key},
            {"name": API_KEY_ID_ENV, "value": api_key.key_id},
            {"name": "ACCESS_TOKEN", "value": token},
            {"name": "GEN3_ENDPOINT", "value": self._endpoint},
        ]
        log_configuration = {
            "logDriver": "awslogs",
            "options": {
                "awslogs-region": self._region,
                "awslogs-group": log_group,
                "awslogs-stream-prefix": user,
            },
        }
        main = {
            "name": name,
            "image": app.image,
            "essential": True,
            "stopTimeout": 2,
            "environment": environment,
            "entryPoint": app.command,
            "command": app.args,
            "logConfiguration": log_configuration,
            "mountPoints": [
                {"containerPath": "/home/jovyan/data", "sourceVolume": "data-volume"},
                {"containerPath": "/home/jovyan/pd", "sourceVolume": "pd"},
                {"containerPath": "/home/jovyan/.gen3", "sourceVolume": "gen3"},
            ],
        }
        if app.target_port:
            main["portMappings"] = [{"containerPort": app.target_port}]
        sidecar = {
            "name": SIDECAR_NAME,
            "image": self._launcher.sidecar.image,
            "essential": False,
            # 2 seconds is the smallest value ECS allows.
            "stopTimeout": 2,
            "environment": environment,
            "logConfiguration": log_configuration,
            "mountPoints": [
                {"containerPath": "/data", "sourceVolume": "data-volume"},
                {"containerPath": "/.gen3", "sourceVolume": "gen3"},
            ],
        }

        logger.info("Creating ECS task definition for user {}", user)
        resp = ecs.register_task_definition(
            family=f"ws_{name}",
            containerDefinitions=[main, sidecar],
            cpu=ecs_cpu(app.cpu_limit),
            memory=ecs_memory(app.memory_limit),
            networkMode="awsvpc",
            requiresCompatibilities=["FARGATE"],
            executionRoleArn=f"arn:aws:iam::{account}:role/ecsTaskExecutionRole",
            taskRoleArn=resources.task_role_arn(user),
            volumes=[
                {
                    "name": "pd",
                    "efsVolumeConfiguration": {
                        "fileSystemId": volume.file_system_id,
                        "rootDirectory": "/",
                        "transitEncryption": "ENABLED",
                        "authorizationConfig": {"accessPointId": volume.access_point_id, "iam": "ENABLED"},
                    },
                },
                {"name": "data-volume"},
                {"name": "gen3"},
            ],
        )
        definition = resp["taskDefinition"]
        logger.info("Created ECS task definition [{}:{}]", definition["family"], definition["revision"])
        return definition["taskDefinitionArn"]

    def _ensure_log_group(self, session: Any, name: str) -> str:
        logs = session.client("logs", region_name=self._region)
        try:
            logs.create_log_group(logGroupName=name)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") != "ResourceAlreadyExistsException":
                raise
        return name

    async def _create_proxy_service(self, user: str, app: ContainerDefinition, dns_name: str) -> None:
        name = workspace_id(user, app.app_id)
        service, _ = build_proxy_service(name, self.namespace, workspace_labels(user, app.app_id), dns_name, 80)
        async with self._connector.connect() as local:
            await self._mapper.start(self.namespace, name, user, app.path_rewrite, app.use_tls, service)
            try:
                await local.core.create_namespaced_service(self.namespace, service)
            except ApiException as exc:
                raise wrap_api_error(exc, f"create routing service {name}") from exc
        logger.info("Created routing service {} -> {}", name, dns_name)

    # -- Terminate -------------------------------------------------------------

    async def terminate(
        self,
        user: str,
        token: str,
        pay_model: PayModel | None,
        workspace_id: str | None = None,
    ) -> None:
        session = await self._session(pay_model)
        service = await self._in_thread(self._describe_service, session, user)
        if service is None:
            msg = f"No service found for {user}"
            raise WorkspaceNotFoundError(msg)

        key_id = await self._in_thread(self._api_key_id, session, service.get("taskDefinition", ""))
        if key_id:
            logger.info("Found mounted API key. Attempting to delete API key {} for user {}", key_id, user)
            try:
                await self._credentials.delete_api_key(token, key_id)
            except BackendError as exc:
                logger.warning("Error deleting API key {} for user {}: {}", key_id, user, exc)

        status = await self._in_thread(self._delete_service, session, user)
        logger.info("Service {} is in status: {}", user_resource_name(user, "pod"), status)
        await self._delete_proxy_service(user, service)

    def _describe_service(self, session: Any, user: str) -> dict[str, Any] | None:
        ecs = self._ecs(session)
        cluster_arn = self._find_cluster(ecs, create=False)
        if cluster_arn is None:
            return None
        resp = ecs.describe_services(cluster=cluster_arn, services=[user_resource_name(user, "pod")], include=["TAGS"])
        services = resp.get("services") or []
        return services[0] if services else None

    def _main_container(self, session: Any, task_definition: str) -> dict[str, Any] | None:
        if not task_definition:
            return None
        resp = self._ecs(session).describe_task_definition(taskDefinition=task_definition)
        containers = resp["taskDefinition"].get("containerDefinitions") or []
        return containers[0] if containers else None

    def _api_key_id(self, session: Any, task_definition: str) -> str | None:
        if not task_definition:
            logger.info("No task definition found, skipping API key deletion")
            return None
        container = self._main_container(session, task_definition)
        if container is None:
            return None
        for env in container.get("environment") or []:
            if env["name"] == API_KEY_ID_ENV:
                return env["value"]
        logger.info("Unable to find API key ID in task definition {}", task_definition)
        return None

    def _delete_service(self, session: Any, user: str) -> str:
        resp = self._ecs(session).delete_service(
            cluster=self.cluster_name,
            service=user_resource_name(user, "pod"),
            force=True,
        )
        return resp["service"]["status"]

    async def _delete_proxy_service(self, user: str, service: dict[str, Any]) -> None:
        app_id = _tag(service, LABEL_APPID)
        if not app_id:
            return
        name = workspace_id(user, app_id)
        await self._mapper.stop(self.namespace, name)
        async with self._connector.connect() as local:
            try:
                await local.core.delete_namespaced_service(name, self.namespace, propagation_policy="Background")
            except ApiException as exc:
                if exc.status != HTTP_NOT_FOUND:
                    raise wrap_api_error(exc, f"delete routing service {name}") from exc

    # -- Status ----------------------------------------------------------------

    async def status(self, user: str, token: str, pay_model: PayModel | None) -> WorkspaceStatus:
        session = await self._session(pay_model)
        service = await self._in_thread(self._describe_service, session, user)
        if service is None:
            logger.info("No service found for user {}", user)
            return ecs_status(None)
        status = ecs_status(service["status"])
        app_id = _tag(service, LABEL_APPID)
        if app_id:
            status.app_id = app_id
            status.workspace_id = workspace_id(user, app_id)
        if status.status is WorkspaceState.RUNNING:
            container = await self._in_thread(self._main_container, session, service.get("taskDefinition", ""))
            limit = idle_time_limit_ms((container or {}).get("command") or [])
            if limit > 0:
                status.idle_time_limit = limit
            else:
                logger.info("Unable to find kernel idle shutdown time in args of {}", service.get("taskDefinition"))
        return await attach_activity(status, self._activity, token)

    async def list_workspaces(self, user: str, token: str, pay_model: PayModel | None) -> list[WorkspaceStatus]:
        status = await self.status(user, token, pay_model)
        if not status.workspace_id:
            return []
        status.url = await self._mapper.get_url(self.namespace, status.workspace_id)
        return [status]


def _tag(service: dict[str, Any], key: str) -> str | None:
    for tag in service.get("tags") or []:
        if tag.get("key") == key:
            return tag.get("value")
    return None
