"""Custom icon intake and placement.

Format conversion is delegated to an :class:`IconConverter`; the default
stores the upload unchanged. Placement failures never fail a build.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from html2exe.config import MiB
from html2exe.logging import get_logger
from html2exe.types import IconUpload

log = get_logger(__name__)

MAX_ICON_BYTES = 5 * MiB
ALLOWED_ICON_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".ico"})
ALLOWED_ICON_TYPES = frozenset(
    {"image/png", "image/jpeg", "image/jpg", "image/x-icon", "image/vnd.microsoft.icon"}
)


class IconRejected(ValueError):
    """The uploaded icon is not acceptable (type or size)."""


class IconConverter(Protocol):
    def __call__(self, icon: IconUpload, target_format: str) -> bytes: ...


def passthrough(icon: IconUpload, target_format: str) -> bytes:
    _ = target_format
    return icon.content


def icon_extension(icon: IconUpload) -> str:
    return Path(icon.filename).suffix.lower()


def check_icon(icon: IconUpload, max_bytes: int = MAX_ICON_BYTES) -> None:
    ext_ok = icon_extension(icon) in ALLOWED_ICON_EXTENSIONS
    type_ok = (icon.content_type or "").lower() in ALLOWED_ICON_TYPES
    if not (ext_ok or type_ok):
        raise IconRejected("Icon file must be PNG, JPG, or ICO format")
    if not icon.content:
        raise IconRejected("Icon file is empty")
    if len(icon.content) > max_bytes:
        raise IconRejected(f"Icon file size exceeds {max_bytes // MiB}MB limit")


def install_icon(
    icon: IconUpload,
    target: Path,
    *,
    converter: IconConverter = passthrough,
    build_id: str | None = None,
) -> bool:
    """Write *icon* to *target* in the format implied by its suffix.

    Returns False (after logging) when anything goes wrong.
    """
    try:
        data = converter(icon, target.suffix.lstrip(".").lower())
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    except (OSError, ValueError) as exc:
        log.warning(
            "failed to process custom icon %s, continuing without it: %s",
            icon.filename,
            exc,
            extra={"build_id": build_id},
        )
        return False
    log.info("custom icon saved: %s -> %s", icon.filename, target.name, extra={"build_id": build_id})
    return True
