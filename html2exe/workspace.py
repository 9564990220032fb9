"""Per-build directory layout."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

from html2exe.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class BuildWorkspace:
    """Directories exclusively owned by one build identifier.

    ``root`` lives under the workspace root and holds ``content`` (validated
    intake) and ``project`` (generated scaffold). ``output`` lives under the
    separate output root.
    """

    build_id: str
    root: Path
    output: Path

    @classmethod
    def for_build(cls, build_id: str, temp_root: Path, dist_root: Path) -> BuildWorkspace:
        return cls(build_id=build_id, root=temp_root / build_id, output=dist_root / build_id)

    @property
    def content(self) -> Path:
        return self.root / "content"

    @property
    def project(self) -> Path:
        return self.root / "project"

    def destroy(self) -> bool:
        """Best-effort removal of both trees. Returns False if anything remained."""
        clean = True
        for path in (self.root, self.output):
            try:
                shutil.rmtree(path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                clean = False
                log.error(
                    "cleanup failed for %s: %s", path, exc, extra={"build_id": self.build_id}
                )
        return clean
