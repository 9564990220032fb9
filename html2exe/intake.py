"""Archive intake: unpack an upload into a build workspace and validate it."""

from __future__ import annotations

from html2exe.config import Settings
from html2exe.detect.html import (
    ENTRY_DOCUMENT,
    ensure_entry_document,
    flatten_single_directory,
    inspect_markup,
    list_files,
)
from html2exe.errors import IntakeError, InvalidArchive
from html2exe.logging import get_logger
from html2exe.security.archive import ExtractionLimits, safe_extract_zip
from html2exe.types import ExtractedFiles
from html2exe.workspace import BuildWorkspace

log = get_logger(__name__)


def limits_from_settings(settings: Settings) -> ExtractionLimits:
    return ExtractionLimits(
        max_archive_bytes=settings.max_archive_bytes,
        max_member_bytes=settings.max_entry_bytes,
        max_entries=settings.max_entries,
    )


def unpack(archive: bytes, workspace: BuildWorkspace, limits: ExtractionLimits) -> bool:
    """Extract into ``workspace.content``; returns True when a nesting level was flattened."""
    safe_extract_zip(archive, workspace.content, limits)
    return flatten_single_directory(workspace.content)


def validate(workspace: BuildWorkspace, *, flattened: bool = False) -> ExtractedFiles:
    """Require an HTML document, guarantee ``index.html`` and collect advisories."""
    root = workspace.content
    copied_from = ensure_entry_document(root)
    warnings = inspect_markup(root)
    files = list_files(root)
    log.info(
        "validated %d files (entry %s)",
        len(files),
        copied_from or ENTRY_DOCUMENT,
        extra={"build_id": workspace.build_id},
    )
    return ExtractedFiles(
        files=files,
        entry_document=ENTRY_DOCUMENT,
        entry_copied_from=copied_from,
        flattened=flattened,
        warnings=warnings,
    )


def extract(
    archive: bytes, workspace: BuildWorkspace, limits: ExtractionLimits | None = None
) -> ExtractedFiles:
    """Unpack and validate in one step. No workspace is left behind on failure."""
    existed = workspace.root.exists()
    try:
        flattened = unpack(archive, workspace, limits or ExtractionLimits())
        return validate(workspace, flattened=flattened)
    except IntakeError:
        if not existed:
            workspace.destroy()
        raise
    except OSError as exc:
        if not existed:
            workspace.destroy()
        raise InvalidArchive(f"Could not lay out archive contents: {exc}") from exc
