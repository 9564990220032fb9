"""Name derivation for generated projects and downloads."""

from __future__ import annotations

import re
from datetime import UTC, datetime

DEFAULT_APP_NAME = "My App"
FALLBACK_NAME = "my-app"
_NPM_NAME_MAX = 214
_APP_ID_MAX = 50


def sanitize_app_name(name: str) -> str:
    """Return an npm-compliant technical name for *name*.

    Lower-cases, turns whitespace/underscores into hyphens, drops anything that
    is not ``[a-z0-9.-]``, collapses repeats and trims leading/trailing
    punctuation. A leading digit gets an ``app-`` prefix. Falls back to
    ``my-app`` when nothing usable is left.
    """
    value = name.strip().lower()
    value = re.sub(r"[\s_]+", "-", value)
    value = re.sub(r"[^a-z0-9.-]", "", value)
    value = re.sub(r"-{2,}", "-", value)
    value = re.sub(r"\.{2,}", ".", value)
    value = re.sub(r"^[.-]+|[.-]+$", "", value)
    value = re.sub(r"^(\d)", r"app-\1", value)
    return value[:_NPM_NAME_MAX] or FALLBACK_NAME


def is_usable_app_name(name: str) -> bool:
    """False when *name* sanitizes to the fallback although the user asked for something else."""
    return not (sanitize_app_name(name) == FALLBACK_NAME and name.strip() != DEFAULT_APP_NAME)


def app_id(technical_name: str) -> str:
    clean = re.sub(r"[.-]", "", technical_name)
    if not re.match(r"^[a-z]", clean):
        clean = f"app{clean}"
    return clean[:_APP_ID_MAX]


def copyright_line(holder: str, year: int | None = None) -> str:
    year = year or datetime.now(UTC).year
    return f"Copyright © {year} {holder}"


def download_filename(app_name: str, extension: str) -> str:
    return f"{sanitize_app_name(app_name)}{extension}"
