"""Toolchain invocation and artifact collection."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import anyio

from html2exe.buildpacks.base import Buildpack
from html2exe.errors import BuildCommandFailed, NoArtifactsProduced
from html2exe.logging import get_logger
from html2exe.runner.process import ProcessRunner
from html2exe.signing.checks import write_sidecar

log = get_logger(__name__)


def find_artifacts(directory: Path, extension: str) -> list[Path]:
    """Files under *directory* (recursively) whose suffix is *extension*, sorted."""
    if not directory.is_dir():
        return []
    ext = extension.lower()
    return sorted(p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() == ext)


class BuildRunner:
    def __init__(
        self,
        buildpack: Buildpack,
        runner: ProcessRunner,
        *,
        extension: str = ".exe",
        timeout: float = 600.0,
        max_output: int | None = None,
    ) -> None:
        self._buildpack = buildpack
        self._runner = runner
        self._extension = extension
        self._timeout = timeout
        self._max_output = max_output

    async def build(self, project_dir: Path, *, build_id: str | None = None) -> list[Path]:
        """Run the toolchain in *project_dir* and return the executables it produced.

        Raises :class:`BuildCommandFailed` (or :class:`BuildTimeout`) when the
        command fails, :class:`NoArtifactsProduced` when it succeeds without
        leaving an executable in any known output location.
        """
        ctx = {"build_id": build_id}
        result = await self._runner.run(
            self._buildpack.build_command(),
            cwd=project_dir,
            timeout=self._timeout,
            max_output=self._max_output,
        )
        if not result.ok:
            log.error(
                "build command failed (exit %s)\nstdout:\n%s\nstderr:\n%s",
                result.returncode,
                result.stdout,
                result.stderr,
                extra=ctx,
            )
            raise BuildCommandFailed(
                f"Build command failed with exit code {result.returncode}",
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        log.debug("build output:\n%s", result.stdout, extra=ctx)

        locations = self._buildpack.output_locations(project_dir)
        for location in locations:
            found = await anyio.to_thread.run_sync(find_artifacts, location, self._extension)
            if found:
                log.info("found %d artifact(s) in %s", len(found), location, extra=ctx)
                return found
            log.info("no %s files in %s", self._extension, location, extra=ctx)
        raise NoArtifactsProduced(
            f"No {self._extension} files found after build "
            f"(searched {', '.join(str(p) for p in locations)})"
        )

    async def distribute(
        self, artifacts: list[Path], output_dir: Path, *, build_id: str | None = None
    ) -> list[Path]:
        """Copy *artifacts* into *output_dir* with a ``.sha256`` sidecar each."""
        return await anyio.to_thread.run_sync(self._distribute, artifacts, output_dir, build_id)

    def _distribute(self, artifacts: list[Path], output_dir: Path, build_id: str | None) -> list[Path]:
        output_dir.mkdir(parents=True, exist_ok=True)
        if not artifacts:
            return []
        # Keep the layout below the common parent so equal basenames never collide
        base = Path(os.path.commonpath([a.parent for a in artifacts]))
        copied: list[Path] = []
        for artifact in artifacts:
            rel = artifact.relative_to(base)
            target = output_dir / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(artifact, target)
            write_sidecar(target)
            copied.append(target)
            log.info("copied executable %s", rel.as_posix(), extra={"build_id": build_id})
        return copied

    async def run(self, project_dir: Path, output_dir: Path, *, build_id: str | None = None) -> list[Path]:
        artifacts = await self.build(project_dir, build_id=build_id)
        return await self.distribute(artifacts, output_dir, build_id=build_id)
