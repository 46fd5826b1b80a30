"""Thin CLI wrapper for mobile_appgen.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape

from mobile_appgen import __version__
from mobile_appgen.config import configure_logging, get_settings, print_settings_json

app = typer.Typer(
    name="appgen",
    help="Mobile App Generator - build Android/iOS apps from website configurations",
    no_args_is_help=True,
)
console = Console()

SERVER_TIMEOUT = 30.0

STATUS_COLORS = {
    "completed": "green",
    "failed": "red",
    "cancelled": "magenta",
    "building": "blue",
    "queued": "yellow",
}

LEVEL_COLORS = {
    "info": "white",
    "warn": "yellow",
    "error": "red",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"mobile-appgen version {__version__}")
        raise typer.Exit()


def _print_json(data: Any) -> None:
    console.print(
        json.dumps(data, indent=2, default=str),
        soft_wrap=True,
        markup=False,
        highlight=False,
    )


def _services() -> Any:
    from mobile_appgen.jobs.service import BuildServices

    return BuildServices.from_settings(get_settings())


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
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
) -> None:
    """Mobile App Generator - build Android/iOS apps from website configurations."""
    configure_logging(log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True, markup=False)
        return

    ios_display = "auto" if settings.ios_enabled is None else str(settings.ios_enabled)
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Template directory:   {settings.template_dir}")
    console.print(f"  Workspaces directory: {settings.workspaces_dir}")
    console.print(f"  Artifacts directory:  {settings.artifacts_dir}")
    console.print(f"  Artifacts base URL:   {settings.artifacts_base_url or '(file paths)'}")
    console.print(f"  Database URL:         {settings.db_url}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:            {settings.log_level}")
    console.print(f"  Keep workspaces:      {settings.keep_workspaces}")
    console.print(f"  iOS builds:           {ios_display}")
    console.print()
    console.print("[bold]Concurrency:[/bold]")
    console.print(f"  Max builds:           {settings.max_concurrent_builds}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Build timeout:        {settings.build_timeout}")
    console.print(f"  Install timeout:      {settings.install_timeout}")
    console.print(f"  Terminate grace:      {settings.terminate_grace_period}")
    console.print(f"  Heartbeat interval:   {settings.heartbeat_interval}")
    console.print(f"  Orphan timeout:       {settings.orphan_timeout}")


builds_app = typer.Typer(help="Submit and inspect builds")
app.add_typer(builds_app, name="build")


@builds_app.command("submit")
def build_submit(
    config_file: Annotated[
        Path,
        typer.Argument(help="App configuration file (YAML or JSON)"),
    ],
    app_id: Annotated[str, typer.Option("--app-id", help="App identifier")],
    user_id: Annotated[str, typer.Option("--user-id", help="User identifier")],
    platform: Annotated[
        str,
        typer.Option("--platform", "-p", help="Target platform (android/ios/both)"),
    ] = "android",
    build_type: Annotated[
        str,
        typer.Option("--build-type", "-t", help="Build type (debug/release)"),
    ] = "debug",
    wait: Annotated[
        bool,
        typer.Option("--wait", "-w", help="Run the build now and wait for it"),
    ] = False,
    server: Annotated[
        str | None,
        typer.Option(
            "--server",
            "-s",
            help="Submit to a running engine's HTTP API (e.g. http://127.0.0.1:8000)",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Submit a build job.

    With --server the job is posted to a running `appgen serve`, which
    queues and builds it. Without --server or --wait the job is only
    recorded as queued in the database; a running server does not see it
    until its next start, which re-enqueues queued jobs. With --wait the
    build runs in this process and the final status is printed.
    """
    from pydantic import ValidationError

    from mobile_appgen.apps.io import load_config_snapshot
    from mobile_appgen.jobs.schema import BuildRequest
    from mobile_appgen.jobs.service import get_job_status

    if server is not None and wait:
        console.print("[red]--wait cannot be combined with --server[/red]")
        raise typer.Exit(code=1)

    if not config_file.exists():
        console.print(f"[red]Config file not found: {config_file}[/red]")
        raise typer.Exit(code=1)

    try:
        snapshot = load_config_snapshot(config_file)
        request = BuildRequest(
            app_id=app_id,
            user_id=user_id,
            platform=platform,
            build_type=build_type,
            config_snapshot=snapshot,
        )
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Invalid build request: {e}[/red]")
        raise typer.Exit(code=1) from None

    if server is not None:
        job_id = _submit_to_server(server, request)
        if json_output:
            _print_json({"id": job_id, "status": "queued"})
        else:
            console.print(f"[green]Queued build {job_id} on {server}[/green]")
        return

    services = _services()
    if not wait:
        job_id = services.scheduler.submit(request)
        if json_output:
            _print_json({"id": job_id, "status": "queued"})
        else:
            console.print(f"[green]Queued build {job_id}[/green]")
        return

    scheduler = services.scheduler
    scheduler.start(recover=False)
    try:
        job_id = scheduler.submit(request)
        if not json_output:
            console.print(f"Building {job_id}...")
        scheduler.wait(job_id)
    finally:
        scheduler.shutdown(wait=True)

    status = get_job_status(services.store, job_id)
    if json_output:
        _print_json(status.model_dump(mode="json"))
    else:
        _print_status(status)
    if status.status.value != "completed":
        raise typer.Exit(code=1)


def _submit_to_server(server: str, request: Any) -> str:
    """POST a build request to a running engine and return the job id."""
    import httpx

    url = f"{server.rstrip('/')}/builds"
    try:
        response = httpx.post(
            url, json=request.model_dump(mode="json"), timeout=SERVER_TIMEOUT
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        console.print(
            f"[red]Server rejected build ({e.response.status_code}): "
            f"{escape(e.response.text)}[/red]"
        )
        raise typer.Exit(code=1) from None
    except httpx.HTTPError as e:
        console.print(f"[red]Could not reach {url}: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None
    return response.json()["id"]


def _print_status(status: Any) -> None:
    color = STATUS_COLORS.get(status.status.value, "white")
    console.print(f"[bold]Build {status.id}[/bold]")
    console.print(f"  Status:     [{color}]{status.status.value}[/{color}]")
    console.print(f"  App:        {status.app_id}")
    console.print(f"  User:       {status.user_id}")
    console.print(f"  Platform:   {status.platform.value} ({status.build_type.value})")
    console.print(f"  Created:    {status.created_at.isoformat()}")
    if status.started_at:
        console.print(f"  Started:    {status.started_at.isoformat()}")
    if status.completed_at:
        console.print(f"  Completed:  {status.completed_at.isoformat()}")
    for platform, reference in status.artifacts.items():
        console.print(f"  Artifact:   {platform} -> {reference}")
    if status.error:
        console.print(f"  [red]Error ({status.error_type}): {escape(status.error)}[/red]")


@builds_app.command("status")
def build_status(
    job_id: Annotated[str, typer.Argument(help="Build job ID")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the status of a build job."""
    from mobile_appgen.jobs.service import get_job_status
    from mobile_appgen.jobs.store import JobNotFoundError

    services = _services()
    try:
        status = get_job_status(services.store, job_id)
    except JobNotFoundError:
        console.print(f"[red]Build not found: {job_id}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json(status.model_dump(mode="json"))
    else:
        _print_status(status)


@builds_app.command("list")
def build_list(
    app_id: Annotated[
        str | None,
        typer.Option("--app-id", "-a", help="Filter by app ID"),
    ] = None,
    user_id: Annotated[
        str | None,
        typer.Option("--user-id", "-u", help="Filter by user ID"),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option(
            "--status",
            "-s",
            help="Filter by status (queued/building/completed/failed/cancelled)",
        ),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List build jobs, newest first."""
    from mobile_appgen.jobs.service import list_job_summaries
    from mobile_appgen.types import JobStatus

    status_filter: JobStatus | None = None
    if status:
        try:
            status_filter = JobStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print(f"Valid values: {', '.join(s.value for s in JobStatus)}")
            raise typer.Exit(code=1) from None

    services = _services()
    jobs = list_job_summaries(
        services.store,
        app_id=app_id,
        user_id=user_id,
        status=status_filter,
        limit=limit,
    )

    if json_output:
        _print_json([job.model_dump(mode="json") for job in jobs])
        return
    if not jobs:
        console.print("[yellow]No builds found[/yellow]")
        return

    console.print(f"[bold]Found {len(jobs)} build(s):[/bold]")
    console.print()
    for job in jobs:
        color = STATUS_COLORS.get(job.status.value, "white")
        console.print(f"  [{color}]{job.id}[/{color}]  {job.status.value}")
        console.print(f"    App: {job.app_id}  User: {job.user_id}")
        console.print(f"    Platform: {job.platform.value} ({job.build_type.value})")
        console.print(f"    Created: {job.created_at.isoformat()}")
        if job.error:
            console.print(f"    Error: {escape(job.error)}")
        console.print()


@builds_app.command("logs")
def build_logs(
    job_id: Annotated[str, typer.Argument(help="Build job ID")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the log entries of a build job."""
    from mobile_appgen.jobs.service import get_job_logs
    from mobile_appgen.jobs.store import JobNotFoundError

    services = _services()
    try:
        entries = get_job_logs(services.store, job_id)
    except JobNotFoundError:
        console.print(f"[red]Build not found: {job_id}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json([entry.model_dump(mode="json") for entry in entries])
        return
    for entry in entries:
        color = LEVEL_COLORS.get(entry.level.value, "white")
        console.print(
            f"{entry.timestamp.isoformat()} [{color}]{entry.level.value:<5}[/{color}] ",
            end="",
        )
        console.print(entry.message, markup=False, highlight=False)


@builds_app.command("cancel")
def build_cancel(
    job_id: Annotated[str, typer.Argument(help="Build job ID")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Cancel a queued build job.

    Running builds can only be cancelled by the engine that runs them
    (through the HTTP API or MCP server).
    """
    services = _services()
    cancelled = services.scheduler.cancel(job_id)
    if json_output:
        _print_json({"id": job_id, "cancelled": cancelled})
    elif cancelled:
        console.print(f"[green]Cancelled build {job_id}[/green]")
    else:
        console.print(f"[yellow]Build {job_id} was not cancelled[/yellow]")
    if not cancelled:
        raise typer.Exit(code=1)


artifacts_app = typer.Typer(help="Look up build artifacts")
app.add_typer(artifacts_app, name="artifacts")


@artifacts_app.command("resolve")
def artifacts_resolve(
    job_id: Annotated[str, typer.Argument(help="Build job ID")],
    platform: Annotated[str, typer.Argument(help="Platform (android/ios)")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Print the stored artifact reference for a job and platform."""
    from mobile_appgen.types import Platform

    try:
        platform_value = Platform(platform)
    except ValueError:
        console.print(f"[red]Invalid platform: {platform}[/red]")
        raise typer.Exit(code=1) from None

    services = _services()
    reference = services.artifacts.resolve(job_id, platform_value)
    path = services.artifacts.path_for(job_id, platform_value)

    if json_output:
        _print_json(
            {
                "id": job_id,
                "platform": platform_value.value,
                "reference": reference,
                "path": str(path) if path else None,
            }
        )
    elif reference is None:
        console.print(f"[yellow]No {platform_value.value} artifact for {job_id}[/yellow]")
    else:
        console.print(reference, markup=False, highlight=False)
    if reference is None:
        raise typer.Exit(code=1)


workspaces_app = typer.Typer(help="Manage job workspaces")
app.add_typer(workspaces_app, name="workspaces")


@workspaces_app.command("prune")
def workspaces_prune(
    max_age_hours: Annotated[
        float | None,
        typer.Option(
            "--max-age-hours", help="Age threshold (default: configured retention)"
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Delete workspaces older than the retention window."""
    services = _services()
    settings = get_settings()
    hours = max_age_hours if max_age_hours is not None else settings.workspace_retention_hours
    removed = services.pipeline.workspaces.prune_stale(hours)

    if json_output:
        _print_json({"removed": [str(p) for p in removed]})
    elif removed:
        console.print(f"[green]Removed {len(removed)} workspace(s)[/green]")
        for path in removed:
            console.print(f"  {path}")
    else:
        console.print("[yellow]No stale workspaces found[/yellow]")


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Bind port")] = 8000,
) -> None:
    """Run the HTTP API with the build engine."""
    import uvicorn

    uvicorn.run("web.app:app", host=host, port=port)


if __name__ == "__main__":
    app()
