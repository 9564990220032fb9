"""Safe archive extraction for untrusted uploads.

Guards against common archive attacks:
- Zip Slip (../ traversal) and absolute or drive-qualified paths
- Symlink entries
- Oversized archives, members and entry counts (declared sizes are checked
  before anything is written, actual sizes again while streaming)
- Executable/script payloads (extension blacklist)

Extraction is all-or-nothing: members land in a staging directory that is
renamed into place only after every member passed.
"""

from __future__ import annotations

import io
import os
import posixpath
import re
import shutil
import stat
import uuid
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path

from html2exe.config import MiB
from html2exe.errors import (
    DisallowedType,
    EmptyArchive,
    InvalidArchive,
    TooLarge,
    UnsafePath,
)
from html2exe.logging import get_logger

log = get_logger(__name__)

BLOCKED_EXTENSIONS = frozenset(
    {".exe", ".bat", ".sh", ".cmd", ".scr", ".vbs", ".ps1", ".com", ".pif"}
)
ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")
_JUNK_DIRS = {"__MACOSX"}
_JUNK_FILES = {".DS_Store", "Thumbs.db"}
_CHUNK = 64 * 1024


@dataclass(frozen=True)
class ExtractionLimits:
    max_archive_bytes: int = 50 * MiB
    max_member_bytes: int = 10 * MiB
    max_entries: int = 10_000
    blocked_extensions: frozenset[str] = field(default=BLOCKED_EXTENSIONS)


def _is_within(base: Path, target: Path) -> bool:
    try:
        target.relative_to(base)
        return True
    except ValueError:
        return False


def normalize_member_path(name: str) -> str:
    """Return the normalized relative path for a member name.

    Strips drive letters and leading separators and resolves ``.``/``..``.
    Returns ``""`` for names that collapse to the archive root. Raises
    :class:`UnsafePath` when the name still climbs above the root.
    """
    raw = name.replace("\\", "/")
    raw = re.sub(r"^[A-Za-z]:", "", raw).lstrip("/")
    if not raw:
        return ""
    normalized = posixpath.normpath(raw)
    if normalized == ".":
        return ""
    if normalized == ".." or normalized.startswith("../"):
        raise UnsafePath(f"Unsafe member path: {name}")
    return normalized


def _is_junk(rel: str) -> bool:
    parts = rel.split("/")
    return bool(_JUNK_DIRS.intersection(parts[:-1])) or parts[-1] in _JUNK_FILES


def _is_symlink(member: zipfile.ZipInfo) -> bool:
    return stat.S_ISLNK(member.external_attr >> 16)


def check_archive_bytes(data: bytes, limits: ExtractionLimits) -> None:
    """Cheap checks on the raw payload, before anything touches the disk."""
    if not data:
        raise EmptyArchive("Empty ZIP file provided")
    if len(data) > limits.max_archive_bytes:
        raise TooLarge(
            f"ZIP file too large. Maximum size is {limits.max_archive_bytes // MiB}MB"
        )
    if not data.startswith(ZIP_SIGNATURES):
        raise InvalidArchive("Invalid ZIP file format")


def _open_zip(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as exc:
        raise InvalidArchive(f"Invalid ZIP file format: {exc}") from exc


def _check_declared(members: list[zipfile.ZipInfo], limits: ExtractionLimits) -> None:
    if len(members) > limits.max_entries:
        raise TooLarge(f"Too many entries in archive ({len(members)} > {limits.max_entries})")
    total = sum(m.file_size for m in members)
    if total > limits.max_archive_bytes:
        raise TooLarge(
            f"Archive expands to {total} bytes; maximum is {limits.max_archive_bytes // MiB}MB"
        )


def _copy_member(z: zipfile.ZipFile, member: zipfile.ZipInfo, target: Path, cap: int) -> None:
    written = 0
    with z.open(member) as src, open(target, "wb") as out:
        while chunk := src.read(_CHUNK):
            written += len(chunk)
            if written > cap:
                raise TooLarge(f"File too large: {member.filename} (more than {cap} bytes)")
            out.write(chunk)


def _normalize_mode(member: zipfile.ZipInfo, target: Path) -> None:
    # Strip setuid/setgid; keep the owner able to read and write
    mode = stat.S_IMODE(member.external_attr >> 16)
    if not mode:
        return
    try:
        os.chmod(target, (mode & ~stat.S_ISUID & ~stat.S_ISGID) | stat.S_IRUSR | stat.S_IWUSR)
    except OSError as exc:
        log.debug("could not normalize mode of %s: %s", target, exc)


def safe_extract_zip(
    data: bytes, dest: Path, limits: ExtractionLimits | None = None
) -> list[str]:
    """Extract the zip payload *data* into *dest* and return sorted relative paths.

    *dest* must not hold anything worth keeping: it is replaced wholesale on
    success and left untouched on failure.
    """
    limits = limits or ExtractionLimits()
    check_archive_bytes(data, limits)

    with _open_zip(data) as z:
        members = z.infolist()
        _check_declared(members, limits)

        staging = dest.parent / f".{dest.name}.staging-{uuid.uuid4().hex}"
        extracted: list[str] = []
        try:
            staging.mkdir(parents=True)
            base = staging.resolve()
            for m in members:
                if m.is_dir():
                    continue
                rel = normalize_member_path(m.filename)
                if not rel or _is_junk(rel):
                    continue
                if _is_symlink(m):
                    raise UnsafePath(f"Symlink entries are not allowed: {m.filename}")
                if posixpath.splitext(rel)[1].lower() in limits.blocked_extensions:
                    raise DisallowedType(f"File type not allowed: {rel}")
                if m.file_size > limits.max_member_bytes:
                    raise TooLarge(f"File too large: {rel} ({m.file_size} bytes)")
                target = (staging / rel).resolve()
                if not _is_within(base, target):
                    raise UnsafePath(f"Member escapes destination: {m.filename}")
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    _copy_member(z, m, target, limits.max_member_bytes)
                except TooLarge:
                    raise
                except (zipfile.BadZipFile, zlib.error, RuntimeError, NotImplementedError) as exc:
                    # RuntimeError: encrypted member
                    raise InvalidArchive(f"Corrupt archive member {m.filename}: {exc}") from exc
                except (FileExistsError, NotADirectoryError, IsADirectoryError) as exc:
                    raise InvalidArchive(f"Conflicting archive member {m.filename}") from exc
                _normalize_mode(m, target)
                extracted.append(rel)

            if not extracted:
                raise EmptyArchive("No files found in ZIP archive")

            if dest.exists():
                shutil.rmtree(dest)
            os.replace(staging, dest)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

    log.info("extracted %d files into %s", len(extracted), dest)
    return sorted(set(extracted))
