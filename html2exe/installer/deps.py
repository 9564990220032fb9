"""Dependency preparation for a generated project.

Prefers a private copy of the shared cache; falls back to a direct install in
the project directory when the cache cannot be built or copied. Only the
fallback failing is terminal.
"""

from __future__ import annotations

import shutil
from enum import Enum
from pathlib import Path

from html2exe.errors import BuildCommandFailed, InstallFailed
from html2exe.installer.cache import DependencyCache
from html2exe.logging import get_logger
from html2exe.runner.process import ProcessRunner

log = get_logger(__name__)


class InstallMode(str, Enum):
    skipped = "skipped"
    cached = "cached"
    direct = "direct"


async def install_dependencies(
    project_dir: Path,
    *,
    manifest: str | None,
    cache: DependencyCache | None,
    runner: ProcessRunner,
    fallback_argv: list[str],
    installed_dir: str,
    timeout: float,
    build_id: str | None = None,
) -> InstallMode:
    ctx = {"build_id": build_id}
    if manifest is None:
        log.info("no dependency manifest, skipping install", extra=ctx)
        return InstallMode.skipped

    if cache is not None:
        try:
            handle = await cache.ensure(manifest)
            await cache.copy_into(handle, project_dir)
            log.info("dependencies copied from cache", extra=ctx)
            return InstallMode.cached
        except (InstallFailed, OSError) as exc:
            log.warning("cache install failed, falling back to direct install: %s", exc, extra=ctx)
            shutil.rmtree(project_dir / installed_dir, ignore_errors=True)

    try:
        result = await runner.run(fallback_argv, cwd=project_dir, timeout=timeout)
    except BuildCommandFailed as exc:
        raise InstallFailed(f"Failed to install dependencies: {exc}") from exc
    if not result.ok:
        log.error("direct install failed: %s", result.stderr[-2000:], extra=ctx)
        raise InstallFailed(
            f"Failed to install dependencies: install exited with code {result.returncode}"
        )
    log.info("dependencies installed directly", extra=ctx)
    return InstallMode.direct
