"""Build orchestration: intake -> scaffold -> dependencies -> toolchain -> artifacts.

Each accepted upload becomes one asyncio task that walks the phases in order
and records every step in the :class:`StatusTracker`. Builds run side by side;
nothing serializes them except the dependency cache's promotion lock.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

import anyio

from html2exe import intake, naming
from html2exe.buildpacks.base import Buildpack
from html2exe.buildpacks.electron import ElectronBuildpack
from html2exe.buildpacks.wails import WailsBuildpack
from html2exe.config import Settings
from html2exe.errors import Html2ExeError
from html2exe.installer.cache import DependencyCache
from html2exe.installer.deps import install_dependencies
from html2exe.logging import get_logger
from html2exe.runner.build import BuildRunner, find_artifacts
from html2exe.runner.process import ProcessRunner
from html2exe.tracker import StatusTracker
from html2exe.types import AppConfig, BuildRecord, IconUpload, Phase
from html2exe.workspace import BuildWorkspace

log = get_logger(__name__)

DOWNLOAD_PATH = "/api/download/{build_id}"
STATUS_PATH = "/api/status/{build_id}"
BUILDING_NOTE = "This may take several minutes on the first build"


def new_build_id() -> str:
    return str(uuid.uuid4())


def download_url(build_id: str) -> str:
    return DOWNLOAD_PATH.format(build_id=build_id)


def status_url(build_id: str) -> str:
    return STATUS_PATH.format(build_id=build_id)


@dataclass
class Submission:
    build_id: str
    archive: bytes
    config: AppConfig = field(default_factory=AppConfig)
    icon: IconUpload | None = None

    @classmethod
    def new(
        cls, archive: bytes, config: AppConfig | None = None, icon: IconUpload | None = None
    ) -> Submission:
        return cls(build_id=new_build_id(), archive=archive, config=config or AppConfig(), icon=icon)


def build_buildpack(settings: Settings, runner: ProcessRunner) -> Buildpack:
    """Select the toolchain adapter named by ``settings.toolchain``."""
    if settings.toolchain == "wails":
        return WailsBuildpack(
            runner=runner,
            wails=settings.wails_command,
            platform=settings.wails_platform,
            init_timeout=settings.init_timeout,
        )
    return ElectronBuildpack(npm=settings.npm_command)


class BuildCoordinator:
    def __init__(
        self,
        settings: Settings,
        *,
        tracker: StatusTracker | None = None,
        runner: ProcessRunner | None = None,
        buildpack: Buildpack | None = None,
        cache: DependencyCache | None = None,
        use_cache: bool = True,
    ) -> None:
        self.settings = settings
        self.tracker = tracker or StatusTracker()
        self.runner = runner or ProcessRunner(max_output=settings.max_output_bytes)
        self.buildpack = buildpack or build_buildpack(settings, self.runner)
        if cache is None and use_cache:
            cache = DependencyCache(
                settings.cache_root,
                self.runner,
                install_argv=self.buildpack.install_command(),
                installed_dir=self.buildpack.installed_dir,
                timeout=settings.install_timeout,
            )
        self.cache = cache
        self.builder = BuildRunner(
            self.buildpack,
            self.runner,
            extension=settings.artifact_extension,
            timeout=settings.build_timeout,
            max_output=settings.max_output_bytes,
        )
        self._queue: asyncio.Queue[Submission] = asyncio.Queue()
        self._tasks: dict[str, asyncio.Task[BuildRecord]] = {}
        self._app_names: dict[str, str] = {}

    def workspace(self, build_id: str) -> BuildWorkspace:
        return BuildWorkspace.for_build(build_id, self.settings.temp_root, self.settings.dist_root)

    # --- submission --------------------------------------------------------

    def submit(
        self,
        archive: bytes,
        config: AppConfig | None = None,
        icon: IconUpload | None = None,
    ) -> str:
        """Record a new build and queue it. Returns before any phase runs."""
        submission = Submission.new(archive, config, icon)
        self.tracker.create(submission.build_id)
        self._app_names[submission.build_id] = submission.config.app_name
        self._queue.put_nowait(submission)
        return submission.build_id

    @property
    def active(self) -> list[str]:
        return list(self._tasks)

    async def serve(self) -> None:
        """Dispatch queued submissions, one task per build, until cancelled."""
        while True:
            submission = await self._queue.get()
            task = asyncio.create_task(self.run(submission), name=f"build-{submission.build_id}")
            self._tasks[submission.build_id] = task
            task.add_done_callback(partial(self._forget, submission.build_id))
            self._queue.task_done()

    def _forget(self, build_id: str, _task: asyncio.Task) -> None:
        self._tasks.pop(build_id, None)

    async def shutdown(self) -> None:
        """Fail queued builds and cancel the running ones."""
        while True:
            try:
                pending = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            self.tracker.fail(pending.build_id, "Build cancelled: server shutting down")

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            log.info("cancelling %d in-flight build(s)", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- pipeline ----------------------------------------------------------

    async def run(self, submission: Submission) -> BuildRecord:
        """Execute one submission inline and return its final record."""
        build_id = submission.build_id
        if build_id not in self.tracker:
            self.tracker.create(build_id)
        self._app_names[build_id] = submission.config.app_name
        workspace = self.workspace(build_id)
        try:
            await self._pipeline(submission, workspace)
        except asyncio.CancelledError:
            self._fail(workspace, "Build cancelled")
            raise
        except Html2ExeError as exc:
            self._fail(workspace, str(exc))
        except Exception as exc:
            log.exception("unexpected pipeline error", extra={"build_id": build_id})
            self._fail(workspace, f"Unexpected error: {exc}")
        return self.tracker.get(build_id)

    async def _pipeline(self, submission: Submission, workspace: BuildWorkspace) -> None:
        build_id = submission.build_id
        settings = self.settings
        buildpack = self.buildpack

        self.tracker.transition(build_id, Phase.EXTRACTING)
        flattened = await anyio.to_thread.run_sync(
            intake.unpack, submission.archive, workspace, intake.limits_from_settings(settings)
        )

        self.tracker.transition(build_id, Phase.VALIDATING)
        extracted = await anyio.to_thread.run_sync(
            partial(intake.validate, workspace, flattened=flattened)
        )

        self.tracker.transition(build_id, Phase.GENERATING, warnings=extracted.warnings)
        project = await buildpack.materialize(workspace, submission.config, submission.icon)

        self.tracker.transition(build_id, Phase.INSTALLING)
        await install_dependencies(
            project,
            manifest=buildpack.dependency_manifest(project),
            cache=self.cache,
            runner=self.runner,
            fallback_argv=buildpack.install_command(),
            installed_dir=buildpack.installed_dir,
            timeout=settings.install_timeout,
            build_id=build_id,
        )

        self.tracker.transition(
            build_id, Phase.BUILDING, estimated_time=settings.build_estimate, note=BUILDING_NOTE
        )
        artifacts = await self.builder.build(project, build_id=build_id)

        self.tracker.transition(build_id, Phase.DISTRIBUTING)
        await self.builder.distribute(artifacts, workspace.output, build_id=build_id)

        self.tracker.complete(build_id, download_url(build_id))

    def _fail(self, workspace: BuildWorkspace, message: str) -> None:
        build_id = workspace.build_id
        if self.tracker.get(build_id).phase.terminal:
            return
        self.tracker.fail(build_id, message)
        log.error("build failed: %s", message, extra={"build_id": build_id, "phase": Phase.FAILED.value})
        workspace.destroy()

    # --- results -----------------------------------------------------------

    def artifact(self, build_id: str) -> Path | None:
        """The first executable of a completed build, if it is still on disk."""
        if self.tracker.get(build_id).phase is not Phase.COMPLETED:
            return None
        found = find_artifacts(self.workspace(build_id).output, self.settings.artifact_extension)
        return found[0] if found else None

    def download_name(self, build_id: str) -> str:
        app_name = self._app_names.get(build_id, naming.DEFAULT_APP_NAME)
        return naming.download_filename(app_name, self.settings.artifact_extension)
