"""Buildpack contract and shared scaffold helpers.

A buildpack turns validated web content into a toolchain project: it writes
the scaffold, names the dependency manifest to cache, and describes how the
toolchain is invoked and where it leaves executables.
"""

from __future__ import annotations

import json
import re
import shutil
from importlib import resources
from pathlib import Path
from typing import Protocol

from html2exe.errors import MaterializeError
from html2exe.naming import is_usable_app_name
from html2exe.types import AppConfig, IconUpload
from html2exe.workspace import BuildWorkspace

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


class Buildpack(Protocol):
    name: str
    installed_dir: str

    async def materialize(
        self, workspace: BuildWorkspace, config: AppConfig, icon: IconUpload | None
    ) -> Path: ...

    def dependency_manifest(self, project_dir: Path) -> str | None: ...

    def install_command(self) -> list[str]: ...

    def build_command(self) -> list[str]: ...

    def output_locations(self, project_dir: Path) -> tuple[Path, ...]: ...


def check_app_name(config: AppConfig) -> None:
    if not is_usable_app_name(config.app_name):
        raise MaterializeError(
            f'Invalid app name: "{config.app_name}". '
            "App names must contain at least one alphanumeric character."
        )


def load_template(relative: str) -> str:
    try:
        ref = resources.files("html2exe.templates").joinpath(relative)
        return ref.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError) as exc:
        raise MaterializeError(f"Missing project template: {relative}") from exc


def render(template: str, values: dict[str, str | int]) -> str:
    """Replace ``{{key}}`` placeholders. Strings are emitted as JS/JSON literals."""

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            raise MaterializeError(f"Template variable without a value: {key}")
        value = values[key]
        return json.dumps(value, ensure_ascii=False) if isinstance(value, str) else str(value)

    return _PLACEHOLDER.sub(_sub, template)


def copy_content(source: Path, target: Path) -> None:
    if target.exists():
        shutil.rmtree(target)
    shutil.copytree(source, target)


def write_json(path: Path, data: dict) -> None:
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
