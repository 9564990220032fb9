"""HTTP surface: submit uploads, poll status, download executables."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator

import anyio
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.datastructures import UploadFile
from starlette.requests import Request
from starlette.responses import FileResponse, JSONResponse
from starlette.routing import Route

from html2exe.assets.icon import IconRejected, check_icon
from html2exe.config import MiB, Settings, get_settings
from html2exe.core import BuildCoordinator, download_url, status_url
from html2exe.logging import configure, get_logger
from html2exe.signing.checks import verify_sha256
from html2exe.sweeper import RetentionSweeper
from html2exe.types import AppConfig, IconUpload, Phase, utcnow

log = get_logger(__name__)

CONFIG_FIELDS = ("appName", "description", "version", "width", "height", "company")
ZIP_CONTENT_TYPES = frozenset(
    {"application/zip", "application/x-zip-compressed", "application/x-zip", "multipart/x-zip"}
)
_READ_CHUNK = 1024 * 1024


class UploadTooLarge(ValueError):
    pass


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status)


async def _read_limited(upload: UploadFile, limit: int) -> bytes:
    chunks: list[bytes] = []
    total = 0
    while chunk := await upload.read(_READ_CHUNK):
        total += len(chunk)
        if total > limit:
            raise UploadTooLarge(f"{upload.filename} exceeds {limit // MiB}MB limit")
        chunks.append(chunk)
    return b"".join(chunks)


def _is_zip_upload(upload: UploadFile) -> bool:
    name_ok = (upload.filename or "").lower().endswith(".zip")
    return name_ok or (upload.content_type or "").lower() in ZIP_CONTENT_TYPES


def _config_errors(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "OK", "timestamp": utcnow().isoformat()})


async def convert(request: Request) -> JSONResponse:
    settings: Settings = request.app.state.settings
    coordinator: BuildCoordinator = request.app.state.coordinator

    async with request.form(max_files=2) as form:
        upload = form.get("zipFile")
        if not isinstance(upload, UploadFile) or not upload.filename:
            return _error(400, "No zip file uploaded")
        if not _is_zip_upload(upload):
            return _error(400, "Only ZIP files are allowed")
        try:
            archive = await _read_limited(upload, settings.max_archive_bytes)
        except UploadTooLarge as exc:
            return _error(413, f"Upload rejected: {exc}")

        icon: IconUpload | None = None
        icon_upload = form.get("iconFile")
        if isinstance(icon_upload, UploadFile) and icon_upload.filename:
            try:
                content = await _read_limited(icon_upload, settings.max_icon_bytes)
                icon = IconUpload(
                    filename=icon_upload.filename,
                    content=content,
                    content_type=icon_upload.content_type,
                )
                check_icon(icon, settings.max_icon_bytes)
            except (UploadTooLarge, IconRejected) as exc:
                return _error(400, f"Icon rejected: {exc}")

        fields = {
            name: value.strip()
            for name in CONFIG_FIELDS
            if isinstance(value := form.get(name), str) and value.strip()
        }

    try:
        config = AppConfig.model_validate(fields)
    except ValidationError as exc:
        return _error(400, f"Invalid configuration: {_config_errors(exc)}")

    build_id = coordinator.submit(archive, config, icon)
    log.info(
        "accepted %s (%d bytes) as %s",
        upload.filename,
        len(archive),
        config.app_name,
        extra={"build_id": build_id},
    )
    return JSONResponse(
        {
            "success": True,
            "buildId": build_id,
            "statusUrl": status_url(build_id),
            "downloadUrl": download_url(build_id),
            "message": "Conversion started. Check status for progress.",
        }
    )


async def status(request: Request) -> JSONResponse:
    coordinator: BuildCoordinator = request.app.state.coordinator
    build_id = request.path_params["build_id"]
    record = coordinator.tracker.get(build_id)
    if record.phase is Phase.NOT_FOUND:
        return JSONResponse({"buildId": build_id, "phase": record.phase.value}, status_code=404)
    return JSONResponse(record.to_wire())


async def download(request: Request) -> FileResponse | JSONResponse:
    coordinator: BuildCoordinator = request.app.state.coordinator
    build_id = request.path_params["build_id"]
    artifact = await anyio.to_thread.run_sync(coordinator.artifact, build_id)
    if artifact is None:
        return _error(404, "Build not found or not completed")

    sidecar = artifact.with_name(artifact.name + ".sha256")
    if sidecar.is_file():
        expected = sidecar.read_text(encoding="utf-8")
        try:
            await anyio.to_thread.run_sync(verify_sha256, artifact, expected)
        except ValueError as exc:
            log.error("artifact integrity check failed: %s", exc, extra={"build_id": build_id})
            return _error(500, "Build artifact is corrupted")

    return FileResponse(
        artifact,
        media_type="application/octet-stream",
        filename=coordinator.download_name(build_id),
    )


@contextlib.asynccontextmanager
async def lifespan(app: Starlette) -> AsyncIterator[None]:
    coordinator: BuildCoordinator = app.state.coordinator
    sweeper: RetentionSweeper = app.state.sweeper
    settings: Settings = app.state.settings

    for root in (settings.temp_root, settings.dist_root):
        root.mkdir(parents=True, exist_ok=True)
    background = [
        asyncio.create_task(coordinator.serve(), name="dispatcher"),
        asyncio.create_task(sweeper.run_forever(), name="sweeper"),
    ]
    log.info("html2exe server ready (toolchain=%s)", settings.toolchain)
    try:
        yield
    finally:
        for task in background:
            task.cancel()
        for task in background:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await coordinator.shutdown()
        if settings.cleanup_on_shutdown:
            await anyio.to_thread.run_sync(sweeper.purge_all)
        log.info("html2exe server stopped")


def create_app(
    settings: Settings | None = None,
    *,
    coordinator: BuildCoordinator | None = None,
    sweeper: RetentionSweeper | None = None,
) -> Starlette:
    settings = settings or get_settings()
    configure(settings.log_level)
    app = Starlette(
        routes=[
            Route("/api/health", health, methods=["GET"]),
            Route("/api/convert", convert, methods=["POST"]),
            Route("/api/status/{build_id}", status, methods=["GET"]),
            Route("/api/download/{build_id}", download, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.coordinator = coordinator or BuildCoordinator(settings)
    app.state.sweeper = sweeper or RetentionSweeper.from_settings(settings)
    return app
