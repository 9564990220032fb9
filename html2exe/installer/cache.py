"""Shared, content-hash keyed cache of installed build dependencies.

Layout under the cache root::

    entry/                 the single valid snapshot (absent until first install)
        manifest.sha256    digest of the manifest it was installed from
        package.json       the manifest itself
        node_modules/      installed tree (name given by the buildpack)
    staging-<uuid>/        in-progress installs, never visible as ``entry``

A miss installs into a fresh staging directory, then promotes it by removing
the old entry and renaming staging into place. Promotion is serialized by a
lock; concurrent ``ensure`` calls for one digest are coalesced so they cause a
single install.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import anyio

from html2exe.errors import BuildCommandFailed, InstallFailed
from html2exe.logging import get_logger
from html2exe.runner.process import ProcessRunner
from html2exe.signing.checks import sha256_text

log = get_logger(__name__)

DIGEST_FILE = "manifest.sha256"


@dataclass(frozen=True)
class CacheHandle:
    digest: str
    path: Path  # installed tree inside the entry


@dataclass(frozen=True)
class CacheInfo:
    exists: bool
    digest: str | None = None
    size: int = 0
    last_modified: datetime | None = None


def _tree_size(root: Path) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except FileNotFoundError:
                continue
    return total


class DependencyCache:
    def __init__(
        self,
        root: Path,
        runner: ProcessRunner,
        *,
        install_argv: list[str],
        manifest_name: str = "package.json",
        installed_dir: str = "node_modules",
        timeout: float = 300.0,
    ) -> None:
        self.root = root
        self._runner = runner
        self._install_argv = list(install_argv)
        self._manifest_name = manifest_name
        self._installed_dir = installed_dir
        self._timeout = timeout
        self._promote_lock = asyncio.Lock()
        self._digest_locks: dict[str, asyncio.Lock] = {}
        self.installs = 0
        self.promotions = 0
        self.hits = 0

    @property
    def entry(self) -> Path:
        return self.root / "entry"

    def current_digest(self) -> str | None:
        try:
            digest = (self.entry / DIGEST_FILE).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        if not (self.entry / self._installed_dir).is_dir():
            return None
        return digest or None

    def _handle(self, digest: str) -> CacheHandle:
        return CacheHandle(digest=digest, path=self.entry / self._installed_dir)

    async def ensure(self, manifest: str) -> CacheHandle:
        """Return a handle to an entry installed from *manifest*, installing on a miss."""
        digest = sha256_text(manifest)
        lock = self._digest_locks.setdefault(digest, asyncio.Lock())
        async with lock:
            if self.current_digest() == digest:
                self.hits += 1
                log.info("dependency cache hit (%s)", digest[:12])
                return self._handle(digest)

            log.info("dependency cache miss (%s), installing", digest[:12])
            staging = await self._install(manifest, digest)
            async with self._promote_lock:
                await anyio.to_thread.run_sync(self._promote, staging)
            return self._handle(digest)

    async def _install(self, manifest: str, digest: str) -> Path:
        staging = self.root / f"staging-{uuid.uuid4().hex}"
        try:
            staging.mkdir(parents=True)
            (staging / self._manifest_name).write_text(manifest, encoding="utf-8")
            self.installs += 1
            result = await self._runner.run(self._install_argv, cwd=staging, timeout=self._timeout)
            if not result.ok:
                log.error("cache install failed: %s", result.stderr[-2000:])
                raise InstallFailed(
                    f"Dependency install exited with code {result.returncode}"
                )
            (staging / self._installed_dir).mkdir(parents=True, exist_ok=True)
            (staging / DIGEST_FILE).write_text(digest, encoding="utf-8")
        except BuildCommandFailed as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise InstallFailed(f"Dependency install failed: {exc}") from exc
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        return staging

    def _promote(self, staging: Path) -> None:
        try:
            if self.entry.exists():
                shutil.rmtree(self.entry)
            os.replace(staging, self.entry)
        except OSError as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise InstallFailed(f"Could not promote dependency cache: {exc}") from exc
        self.promotions += 1
        log.info("dependency cache promoted")

    async def copy_into(self, handle: CacheHandle, project_dir: Path) -> Path:
        """Give *project_dir* a private copy of the cached tree."""
        target = project_dir / self._installed_dir
        await anyio.to_thread.run_sync(self._copy, handle, target)
        return target

    def _copy(self, handle: CacheHandle, target: Path) -> None:
        if self.current_digest() != handle.digest:
            raise InstallFailed("Dependency cache entry was replaced before it could be copied")
        if target.exists():
            shutil.rmtree(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(handle.path, target, symlinks=True)

    def info(self) -> CacheInfo:
        digest = self.current_digest()
        if digest is None:
            return CacheInfo(exists=False)
        mtime = datetime.fromtimestamp((self.entry / DIGEST_FILE).stat().st_mtime, UTC)
        return CacheInfo(exists=True, digest=digest, size=_tree_size(self.entry), last_modified=mtime)

    def clear(self) -> bool:
        if not self.root.exists():
            return False
        shutil.rmtree(self.root)
        log.info("dependency cache cleared")
        return True
