"""Age-based reclamation of build workspaces and outputs."""

from __future__ import annotations

import shutil
import time
from collections.abc import Iterable
from pathlib import Path

import anyio

from html2exe.config import Settings
from html2exe.logging import get_logger

log = get_logger(__name__)


class RetentionSweeper:
    """Deletes per-build directories older than the retention window.

    Only direct children of each root are considered; age is taken from the
    directory's mtime. Directories that disappear or cannot be inspected
    mid-sweep are skipped.
    """

    def __init__(
        self,
        roots: Iterable[Path],
        *,
        retention_seconds: float = 2 * 60 * 60,
        interval: float = 15 * 60,
    ) -> None:
        self.roots = tuple(roots)
        self.retention_seconds = retention_seconds
        self.interval = interval

    @classmethod
    def from_settings(cls, settings: Settings) -> RetentionSweeper:
        return cls(
            (settings.temp_root, settings.dist_root),
            retention_seconds=settings.retention_seconds,
            interval=settings.sweep_interval_seconds,
        )

    def sweep_once(self, now: float | None = None) -> list[Path]:
        cutoff = (time.time() if now is None else now) - self.retention_seconds
        removed: list[Path] = []
        for root in self.roots:
            try:
                children = list(root.iterdir())
            except FileNotFoundError:
                continue
            except OSError as exc:
                log.warning("cannot list %s: %s", root, exc)
                continue
            for child in children:
                try:
                    if not child.is_dir() or child.is_symlink():
                        continue
                    if child.stat().st_mtime >= cutoff:
                        continue
                    shutil.rmtree(child)
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    log.warning("failed to remove %s: %s", child, exc)
                    continue
                removed.append(child)
                log.info("cleaned up expired directory %s", child.name)
        return removed

    async def run_forever(self) -> None:
        """Sweep every ``interval`` seconds in a worker thread until cancelled."""
        while True:
            await anyio.sleep(self.interval)
            removed = await anyio.to_thread.run_sync(self.sweep_once)
            if removed:
                log.info("sweep removed %d director(ies)", len(removed))

    def purge_all(self) -> None:
        for root in self.roots:
            shutil.rmtree(root, ignore_errors=True)
            log.info("removed %s", root)
