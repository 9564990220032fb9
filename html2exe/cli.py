"""html2exe CLI: serve the API, convert locally, submit remotely, maintain storage."""

from __future__ import annotations

import asyncio
import json
import mimetypes
import shutil
import time
from pathlib import Path

import httpx
import typer
from pydantic import ValidationError
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from html2exe.assets.icon import IconRejected, check_icon
from html2exe.config import Settings, get_settings
from html2exe.core import BuildCoordinator, Submission
from html2exe.logging import configure
from html2exe.sweeper import RetentionSweeper
from html2exe.types import AppConfig, IconUpload, Phase

app = typer.Typer(add_completion=False, help="Convert zipped web apps into desktop executables")
cache_app = typer.Typer(add_completion=False, help="Inspect or clear the dependency cache")
app.add_typer(cache_app, name="cache")
console = Console()

DEFAULT_SERVER = "http://127.0.0.1:3000"


def _settings(**overrides: object) -> Settings:
    settings = get_settings()
    updates = {k: v for k, v in overrides.items() if v is not None}
    if updates:
        settings = Settings.model_validate({**settings.model_dump(), **updates}).resolved()
    configure(settings.log_level)
    return settings


def _app_config(
    name: str | None,
    description: str | None,
    app_version: str | None,
    width: int | None,
    height: int | None,
    company: str | None,
) -> AppConfig:
    fields = {
        "appName": name,
        "description": description,
        "version": app_version,
        "width": width,
        "height": height,
        "company": company,
    }
    try:
        return AppConfig.model_validate({k: v for k, v in fields.items() if v is not None})
    except ValidationError as exc:
        rprint(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(code=2) from exc


def _load_icon(path: Path | None, max_bytes: int) -> IconUpload | None:
    if path is None:
        return None
    icon = IconUpload(
        filename=path.name,
        content=path.read_bytes(),
        content_type=mimetypes.guess_type(path.name)[0],
    )
    try:
        check_icon(icon, max_bytes)
    except IconRejected as exc:
        rprint(f"[red]Icon rejected:[/red] {exc}")
        raise typer.Exit(code=2) from exc
    return icon


def _record_table(record: dict) -> Table:
    table = Table(title=f"Build {record.get('buildId', '?')}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in record.items():
        if isinstance(value, list):
            value = "\n".join(value) or "-"
        table.add_row(key, str(value))
    return table


@app.command()
def serve(
    host: str | None = typer.Option(None, help="Bind address (default from settings)"),
    port: int | None = typer.Option(None, help="Port (default from settings)"),
    toolchain: str | None = typer.Option(None, help='"electron" | "wails"'),
) -> None:
    import uvicorn

    from html2exe.server import create_app

    settings = _settings(host=host, port=port, toolchain=toolchain)
    rprint(f"[green]Serving on[/green] http://{settings.host}:{settings.port}")
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


@app.command()
def convert(
    archive: Path = typer.Argument(..., exists=True, dir_okay=False, help="Zip of the web app"),
    name: str | None = typer.Option(None, "--name", help="Application name"),
    description: str | None = typer.Option(None, "--description"),
    app_version: str | None = typer.Option(None, "--app-version", help="Application version"),
    width: int | None = typer.Option(None, "--width"),
    height: int | None = typer.Option(None, "--height"),
    company: str | None = typer.Option(None, "--company"),
    icon: Path | None = typer.Option(None, "--icon", exists=True, dir_okay=False),
    out: Path | None = typer.Option(None, "--out", help="Copy the executable into this directory"),
    toolchain: str | None = typer.Option(None, help='"electron" | "wails"'),
    no_cache: bool = typer.Option(False, "--no-cache", help="Install dependencies directly"),
) -> None:
    """Run the whole pipeline locally and wait for the result."""
    settings = _settings(toolchain=toolchain)
    config = _app_config(name, description, app_version, width, height, company)
    upload = _load_icon(icon, settings.max_icon_bytes)

    coordinator = BuildCoordinator(settings, use_cache=not no_cache)
    submission = Submission.new(archive.read_bytes(), config, upload)
    with console.status(f"Building {config.app_name}…"):
        record = asyncio.run(coordinator.run(submission))

    console.print(_record_table(record.to_wire()))
    if record.phase is not Phase.COMPLETED:
        rprint(f"[red]Build failed:[/red] {record.error}")
        raise typer.Exit(code=1)

    artifact = coordinator.artifact(record.build_id)
    if artifact is None:
        rprint("[red]Build completed but the executable is missing[/red]")
        raise typer.Exit(code=1)
    if out is not None:
        out.mkdir(parents=True, exist_ok=True)
        target = out / coordinator.download_name(record.build_id)
        shutil.copy2(artifact, target)
        rprint(f"[green]Executable:[/green] {target}")
    else:
        rprint(f"[green]Executable:[/green] {artifact}")


@app.command()
def submit(
    archive: Path = typer.Argument(..., exists=True, dir_okay=False, help="Zip of the web app"),
    server: str = typer.Option(DEFAULT_SERVER, "--server", help="html2exe server base URL"),
    name: str | None = typer.Option(None, "--name", help="Application name"),
    description: str | None = typer.Option(None, "--description"),
    app_version: str | None = typer.Option(None, "--app-version"),
    width: int | None = typer.Option(None, "--width"),
    height: int | None = typer.Option(None, "--height"),
    company: str | None = typer.Option(None, "--company"),
    icon: Path | None = typer.Option(None, "--icon", exists=True, dir_okay=False),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Poll until the build finishes"),
    interval: float = typer.Option(2.0, "--interval", help="Seconds between status polls"),
    timeout: float = typer.Option(900.0, "--timeout", help="Give up polling after N seconds"),
    out: Path | None = typer.Option(None, "--out", help="Download the executable here"),
) -> None:
    """Upload to a running server and optionally wait for the executable."""
    data = {
        "appName": name,
        "description": description,
        "version": app_version,
        "width": width,
        "height": height,
        "company": company,
    }
    files = {"zipFile": (archive.name, archive.read_bytes(), "application/zip")}
    if icon is not None:
        files["iconFile"] = (
            icon.name,
            icon.read_bytes(),
            mimetypes.guess_type(icon.name)[0] or "application/octet-stream",
        )

    with httpx.Client(base_url=server, timeout=60.0) as client:
        response = client.post(
            "/api/convert",
            data={k: str(v) for k, v in data.items() if v is not None},
            files=files,
        )
        payload = response.json()
        if response.status_code != 200:
            rprint(f"[red]Rejected ({response.status_code}):[/red] {payload.get('error')}")
            raise typer.Exit(code=1)
        build_id = payload["buildId"]
        rprint(f"[green]Accepted:[/green] {build_id}")
        if not wait:
            return

        deadline = time.monotonic() + timeout
        record: dict = {}
        with console.status("Waiting for build…") as spinner:
            while time.monotonic() < deadline:
                record = client.get(payload["statusUrl"]).json()
                spinner.update(f"{record.get('phase')}: {record.get('description', '')}")
                if record.get("phase") in {Phase.COMPLETED.value, Phase.FAILED.value}:
                    break
                time.sleep(interval)
            else:
                rprint(f"[yellow]Gave up after {timeout:g}s[/yellow]")
                raise typer.Exit(code=1)

        console.print(_record_table(record))
        if record["phase"] != Phase.COMPLETED.value:
            raise typer.Exit(code=1)
        if out is not None:
            with client.stream("GET", payload["downloadUrl"]) as download:
                download.raise_for_status()
                filename = download.headers.get("content-disposition", "").rpartition("filename=")[2]
                out.mkdir(parents=True, exist_ok=True)
                target = out / (filename.strip('"') or f"{build_id}.exe")
                with target.open("wb") as fh:
                    for chunk in download.iter_bytes():
                        fh.write(chunk)
            rprint(f"[green]Downloaded:[/green] {target}")


@app.command()
def status(
    build_id: str = typer.Argument(..., help="Build identifier"),
    server: str = typer.Option(DEFAULT_SERVER, "--server", help="html2exe server base URL"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    response = httpx.get(f"{server.rstrip('/')}/api/status/{build_id}", timeout=30.0)
    record = response.json()
    if as_json:
        print(json.dumps(record, indent=2))
    else:
        console.print(_record_table(record))
    if response.status_code == 404:
        raise typer.Exit(code=1)


@app.command()
def sweep(
    retention: float | None = typer.Option(
        None, "--retention", help="Override the retention window (seconds)"
    ),
    purge: bool = typer.Option(False, "--all", help="Remove every workspace and output"),
) -> None:
    settings = _settings(retention_seconds=retention)
    sweeper = RetentionSweeper.from_settings(settings)
    if purge:
        sweeper.purge_all()
        rprint("[green]Removed all workspaces and outputs.[/green]")
        return
    removed = sweeper.sweep_once()
    table = Table(title=f"Swept {len(removed)} director(ies)")
    table.add_column("Path", style="cyan")
    for path in removed:
        table.add_row(str(path))
    console.print(table)


@cache_app.command("info")
def cache_info() -> None:
    settings = _settings()
    info = BuildCoordinator(settings).cache.info()
    table = Table(title="Dependency cache")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("root", str(settings.cache_root))
    table.add_row("exists", str(info.exists))
    table.add_row("digest", info.digest or "-")
    table.add_row("size", f"{info.size / (1024 * 1024):.1f} MB")
    table.add_row("last modified", info.last_modified.isoformat() if info.last_modified else "-")
    console.print(table)


@cache_app.command("clear")
def cache_clear() -> None:
    settings = _settings()
    if BuildCoordinator(settings).cache.clear():
        rprint("[green]Dependency cache cleared.[/green]")
    else:
        rprint("[yellow]Dependency cache is already empty.[/yellow]")


if __name__ == "__main__":
    app()
