"""Thin CLI wrapper for iot_cicd.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from iot_cicd import __version__
from iot_cicd.config import Settings, print_settings_json

app = typer.Typer(
    name="iot-cicd",
    help="IoT CI/CD - webhook-triggered firmware build server",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"iot-cicd version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """IoT CI/CD - webhook-triggered firmware build server."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = load_settings()
    if json_output:
        console.print(print_settings_json(settings))
        return

    tmp_dir_display = str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
    tls_display = (
        f"{settings.tls_cert_file}, {settings.tls_key_file}"
        if settings.tls_enabled
        else "disabled"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Listener:[/bold]")
    console.print(f"  Address:             {settings.host}:{settings.port}")
    console.print(f"  TLS:                 {tls_display}")
    console.print(f"  Build endpoint:      {settings.build_path}")
    console.print(f"  Metrics endpoint:    {settings.metrics_path or 'disabled'}")
    console.print()
    console.print("[bold]Build:[/bold]")
    console.print(f"  Repository URL:      {settings.repo_url}")
    console.print(f"  Build script:        {settings.build_script}")
    console.print(f"  Build args:          {','.join(settings.build_args)}")
    console.print(f"  Master args:         {','.join(settings.master_args)}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Workspace link:      {settings.workspace_link}")
    console.print(f"  Temp directory:      {tmp_dir_display}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Serialize builds:    {settings.serialize_builds}")
    console.print(f"  Log level:           {settings.log_level}")


def load_settings(**overrides: Any) -> Settings:
    """Load settings, letting the CLI flags that were given win.

    Args:
        **overrides: Setting values from CLI flags (None if not given).

    Returns:
        Validated settings.

    Raises:
        typer.Exit: With code 2 if the configuration is invalid.
    """
    given = {key: value for key, value in overrides.items() if value is not None}
    try:
        return Settings(**given)
    except ValidationError as e:
        err_console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(code=2) from None


@app.command()
def serve(
    address: Annotated[
        str | None,
        typer.Option("--address", help="Address (interface) to listen on"),
    ] = None,
    port: Annotated[
        int | None,
        typer.Option("--port", help="Port to listen on for requests"),
    ] = None,
    script: Annotated[
        str | None,
        typer.Option("--script", help="Relative path to the build script"),
    ] = None,
    args: Annotated[
        str | None,
        typer.Option("--args", help="Comma-separated build script arguments"),
    ] = None,
    master_args: Annotated[
        str | None,
        typer.Option(
            "--master-args",
            help="Comma-separated build script arguments when building master",
        ),
    ] = None,
    repo_url: Annotated[
        str | None,
        typer.Option("--repo-url", help="Git URL to clone for the build process"),
    ] = None,
    tls_cert: Annotated[
        Path | None,
        typer.Option("--tls-cert", help="TLS certificate file"),
    ] = None,
    tls_key: Annotated[
        Path | None,
        typer.Option("--tls-key", help="TLS private key file"),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Logging level"),
    ] = None,
) -> None:
    """Serve the build webhook until SIGINT/SIGTERM."""
    from iot_cicd.server import ServiceError, ServiceHost
    from web.app import create_app

    settings = load_settings(
        host=address,
        port=port,
        build_script=script,
        build_args=args,
        master_args=master_args,
        repo_url=repo_url,
        tls_cert_file=tls_cert,
        tls_key_file=tls_key,
        log_level=log_level.upper() if log_level else None,
    )
    configure_logging(settings.log_level)

    host = ServiceHost.from_settings(settings, create_app(settings))
    try:
        host.start()
    except ServiceError as e:
        err_console.print(f"[red]Starting server failed: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None


@app.command()
def build(
    revision: Annotated[
        str,
        typer.Argument(help="Commit to build (default branch if omitted)"),
    ] = "",
) -> None:
    """Run one build locally, printing the transcript to stdout."""
    from iot_cicd.builds.service import BuildPipeline
    from iot_cicd.builds.stream import FileSink
    from iot_cicd.types import BuildRequest

    settings = load_settings()
    configure_logging(settings.log_level)

    pipeline = BuildPipeline.from_settings(settings)
    result = pipeline.execute(
        BuildRequest.from_path_parameter(revision),
        FileSink(sys.stdout.buffer),
    )
    if not result.success:
        err_console.print(f"[red]{escape(result.message)}[/red]")
        raise typer.Exit(code=1)
    err_console.print(f"[green]Build succeeded (branch: {result.branch or 'unknown'})[/green]")


__all__ = ["app"]


if __name__ == "__main__":
    app()
