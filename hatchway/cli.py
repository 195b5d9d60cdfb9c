import click


@click.group()
def main() -> None:
    """Hatchway - workspace launcher for data commons users."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from HATCHWAY_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from HATCHWAY_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the launcher API server."""
    import uvicorn

    from hatchway.launcher.settings import HatchwaySettings

    settings = HatchwaySettings()

    uvicorn.run(
        "hatchway.launcher.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
        # Drain timeout plus a buffer for closing the Kubernetes client.
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout + 10,
    )


@main.command("check-config")
@click.argument("path", required=False, type=click.Path(dir_okay=False))
def check_config(path: str | None) -> None:
    """Validate the launcher config and list the app ids it defines.

    PATH defaults to HATCHWAY_CONFIG_PATH.
    """
    from hatchway.launcher.config import ContainerCatalog, load_launcher_config
    from hatchway.launcher.errors import ConfigError
    from hatchway.launcher.settings import HatchwaySettings

    config_path = path or HatchwaySettings().config_path
    try:
        launcher = load_launcher_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    catalog = ContainerCatalog(launcher.containers)
    click.echo(f"{config_path}: {len(catalog)} containers, pay-model store {launcher.pay_model_store}")
    for app in catalog:
        click.echo(f"{app.app_id}  {app.name}")
