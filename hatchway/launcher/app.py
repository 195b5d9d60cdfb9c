from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from hatchway.launcher.activity import AmbassadorActivity
from hatchway.launcher.authz import ArboristClient, PolicyAuthorizer
from hatchway.launcher.config import ContainerCatalog, LauncherConfig, load_launcher_config
from hatchway.launcher.credentials import FenceCredentials
from hatchway.launcher.drivers.base import WorkspaceDriver
from hatchway.launcher.drivers.ecs import EcsDriver
from hatchway.launcher.drivers.external import ExternalKubeDriver
from hatchway.launcher.drivers.kube import KubeConnector, LocalKubeConnector
from hatchway.launcher.drivers.local import LocalKubeDriver
from hatchway.launcher.errors import ConfigError
from hatchway.launcher.log import setup_logging
from hatchway.launcher.managers.paymodels import PayModelResolver
from hatchway.launcher.managers.workspaces import WorkspaceDispatcher
from hatchway.launcher.mapping import AnnotationServiceMapper, MappingResourceServiceMapper, ServiceMapper
from hatchway.launcher.models.enums import BackendKind, PayModelStoreKind, ServiceMapperKind
from hatchway.launcher.settings import HatchwaySettings, get_settings
from hatchway.launcher.store import DynamoDBPayModelStore, LocalPayModelStore, PayModelStore
from hatchway.launcher.tasks import TaskRegistry

# ---------------------------------------------------------------------------
# Shared singletons initialised during lifespan
# ---------------------------------------------------------------------------
tasks = TaskRegistry()


def _create_pay_model_store(launcher: LauncherConfig) -> PayModelStore | None:
    """Create the pay-model store backend named by the launcher config."""
    if launcher.pay_model_store == PayModelStoreKind.DYNAMODB:
        if not launcher.pay_models_dynamodb_table:
            msg = "pay-model-store is dynamodb but pay-models-dynamodb-table is empty"
            raise ConfigError(msg)
        return DynamoDBPayModelStore(
            launcher.pay_models_dynamodb_table,
            region=launcher.pay_models_dynamodb_region,
            role_arn=launcher.pay_models_dynamodb_arn or None,
        )
    if launcher.pay_model_store == PayModelStoreKind.LOCAL:
        return LocalPayModelStore(launcher.pay_model_store_path)
    return None


def _create_service_mapper(launcher: LauncherConfig, connector: KubeConnector) -> ServiceMapper:
    mapper = launcher.service_mapper
    if mapper.kind == ServiceMapperKind.MAPPING_RESOURCE:
        return MappingResourceServiceMapper(connector, host_domain=mapper.host_domain)
    return AnnotationServiceMapper(host_domain=mapper.host_domain, mapping_template=mapper.mapping_template)


def build_dispatcher(
    settings: HatchwaySettings,
    launcher: LauncherConfig,
    connector: KubeConnector,
    registry: TaskRegistry,
) -> WorkspaceDispatcher:
    """Wire the resolver, collaborators and drivers for *launcher*."""
    resolver = PayModelResolver(launcher, _create_pay_model_store(launcher))
    mapper = _create_service_mapper(launcher, connector)
    credentials = FenceCredentials(settings.fence_url, timeout=settings.http_timeout)
    authorizer = PolicyAuthorizer(ArboristClient(settings.arborist_url, timeout=settings.http_timeout), resolver)
    activity = AmbassadorActivity(settings.ambassador_url, timeout=settings.http_timeout)

    drivers: dict[BackendKind, WorkspaceDriver] = {
        BackendKind.LOCAL: LocalKubeDriver(launcher, connector, mapper, credentials, activity=activity),
        BackendKind.EXTERNAL: ExternalKubeDriver(launcher, connector, mapper, credentials, activity=activity),
        BackendKind.MANAGED_CONTAINER: EcsDriver(
            launcher,
            connector,
            mapper,
            credentials,
            commons_endpoint=settings.commons_endpoint,
            region=settings.aws_region,
            activity=activity,
        ),
    }
    return WorkspaceDispatcher(
        ContainerCatalog(launcher.containers),
        resolver,
        drivers,
        authorizer,
        registry,
        poll_interval=settings.terminate_poll_interval,
    )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level, json_logs=settings.log_json)
    logger.info("Hatchway starting (host={}, port={}, version={})", settings.host, settings.port, settings.version)

    # -- Initialise state fields (always present, possibly None) ----------------
    _app.state.settings = settings
    _app.state.dispatcher = None
    _app.state.resolver = None

    # -- Launcher config -------------------------------------------------------
    launcher = load_launcher_config(settings.config_path)
    logger.info(
        "Launcher config: {} containers, pay-model store={}, mapper={}",
        len(launcher.containers),
        launcher.pay_model_store,
        launcher.service_mapper.kind,
    )
    if not settings.commons_endpoint:
        logger.warning("HATCHWAY_COMMONS_ENDPOINT not set -- ECS workspaces will not launch")

    # -- Services --------------------------------------------------------------
    connector = LocalKubeConnector(settings.kube_config_path)
    dispatcher = build_dispatcher(settings, launcher, connector, tasks)
    _app.state.dispatcher = dispatcher
    _app.state.resolver = dispatcher.resolver
    logger.info("Dispatcher: initialised ({} apps)", len(dispatcher.catalog))

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Hatchway shutting down (background_tasks={})", tasks.active_count)

    # 1. Refuse new background work.
    tasks.begin_shutdown()

    # 2. Let in-flight launches and confirmers finish, then cancel the rest.
    if tasks.active_count > 0:
        timeout = settings.graceful_shutdown_timeout
        logger.info("Waiting for {} background tasks to finish (timeout={}s)...", tasks.active_count, timeout)
        drained = await tasks.wait_until_drained(timeout=timeout)
        if not drained:
            cancelled = tasks.cancel_all()
            logger.warning("Cancelled {} background tasks after timeout", cancelled)
            await tasks.wait_until_drained(timeout=5.0)

    await connector.close()
    logger.info("Kubernetes: client closed")


app = FastAPI(title="Hatchway Workspace Launcher", lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def plain_text_errors(_request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
    """Error bodies are plain text, as the portal displays them verbatim."""
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)


# -- Routers -------------------------------------------------------------------
from hatchway.launcher.routers.paymodels import router as paymodels_router  # noqa: E402
from hatchway.launcher.routers.system import router as system_router  # noqa: E402
from hatchway.launcher.routers.workspaces import router as workspaces_router  # noqa: E402

app.include_router(system_router)
app.include_router(workspaces_router)
app.include_router(paymodels_router)
