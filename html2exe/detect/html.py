"""Web content detection: entry document, nesting and advisory markup checks."""

from __future__ import annotations

import re
import shutil
import uuid
from pathlib import Path

from html2exe.errors import InvalidArchive, NoEntryDocument
from html2exe.logging import get_logger

log = get_logger(__name__)

MARKER_EXTENSION = ".html"
ENTRY_DOCUMENT = f"index{MARKER_EXTENSION}"

_ROOT_MARKERS = ("<html", "<!doctype")
RISKY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"eval\s*\(", re.IGNORECASE), "eval() call"),
    (re.compile(r"new\s+Function\s*\(", re.IGNORECASE), "Function constructor"),
    (re.compile(r"<script[^>]*src=[\"']data:", re.IGNORECASE), "script loaded from a data: URL"),
)


def list_files(root: Path) -> list[str]:
    """Relative POSIX paths of every file under *root*, sorted."""
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def marker_files(root: Path) -> list[str]:
    return [f for f in list_files(root) if f.lower().endswith(MARKER_EXTENSION)]


def flatten_single_directory(root: Path) -> bool:
    """Lift the contents of a lone top-level directory up one level.

    Only applies when *root* holds exactly one entry, that entry is a
    directory and it contains (at any depth) an HTML document. This is the
    layout produced by "download repository as zip".
    """
    entries = list(root.iterdir())
    if len(entries) != 1 or not entries[0].is_dir():
        return False
    nested = entries[0]
    if not marker_files(nested):
        return False

    log.info("flattening nested directory %s", nested.name)
    # Park under a unique name so a child called like its parent cannot collide
    parked = root / f".flatten-{uuid.uuid4().hex}"
    nested.rename(parked)
    for child in parked.iterdir():
        shutil.move(str(child), str(root / child.name))
    parked.rmdir()
    return True


def ensure_entry_document(root: Path) -> str | None:
    """Make sure ``index.html`` exists at *root*.

    Returns the relative path it was copied from, or None when it already
    existed. Raises :class:`NoEntryDocument` when there is no HTML at all.
    """
    if (root / ENTRY_DOCUMENT).is_file():
        return None
    if (root / ENTRY_DOCUMENT).exists():
        raise InvalidArchive(f"{ENTRY_DOCUMENT} must be a file, not a directory")

    candidates = marker_files(root)
    if not candidates:
        found = sorted({Path(f).suffix.lower() or "(none)" for f in list_files(root)})
        raise NoEntryDocument(
            f"No HTML files found in ZIP archive. Found file types: {', '.join(found)}"
        )
    source = candidates[0]
    log.info("using %s as %s", source, ENTRY_DOCUMENT)
    shutil.copyfile(root / source, root / ENTRY_DOCUMENT)
    return source


def inspect_document(path: Path, rel: str) -> list[str]:
    """Advisory findings for one HTML document. Never raises on content."""
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        return [f"{rel}: could not be read ({exc})"]

    findings: list[str] = []
    lowered = content.lower()
    if not any(marker in lowered for marker in _ROOT_MARKERS):
        findings.append(f"{rel}: may not be a valid HTML document (no <html> or <!DOCTYPE>)")
    for pattern, label in RISKY_PATTERNS:
        if pattern.search(content):
            findings.append(f"{rel}: contains {label}; it may not work in a desktop app")
    return findings


def inspect_markup(root: Path) -> list[str]:
    findings: list[str] = []
    for rel in marker_files(root):
        findings.extend(inspect_document(root / rel, rel))
    for finding in findings:
        log.warning(finding)
    return findings
