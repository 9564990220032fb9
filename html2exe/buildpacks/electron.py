"""Electron buildpack (default).

Produces an electron-builder project:
- ``app/``: the validated web content (plus ``icon.ico`` when provided)
- ``main.js`` / ``preload.js`` rendered from bundled templates
- ``package.json`` with the electron-builder configuration

Dependencies are declared in a manifest that carries nothing build-specific,
so every build with the same toolchain versions shares one cache entry.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import anyio

from html2exe.assets.icon import install_icon
from html2exe.buildpacks.base import (
    check_app_name,
    copy_content,
    load_template,
    render,
    write_json,
)
from html2exe.errors import MaterializeError
from html2exe.logging import get_logger
from html2exe.types import AppConfig, IconUpload
from html2exe.validator import validate_electron_package
from html2exe.workspace import BuildWorkspace

log = get_logger(__name__)

DEV_DEPENDENCIES = {
    "electron": "^28.2.0",
    "electron-builder": "^24.9.1",
}
OUTPUT_DIR = "dist"
ICON_PATH = "app/icon.ico"


def dependency_manifest_text() -> str:
    manifest = {
        "name": "html2exe-toolchain",
        "version": "0.0.0",
        "private": True,
        "devDependencies": DEV_DEPENDENCIES,
    }
    return json.dumps(manifest, indent=2, sort_keys=True) + "\n"


def package_json(config: AppConfig, *, with_icon: bool) -> dict:
    win: dict = {"target": "portable"}
    if with_icon:
        win["icon"] = ICON_PATH
    return {
        "name": config.technical_name,
        "productName": config.app_name,
        "version": config.version,
        "description": config.description,
        "author": config.company,
        "private": True,
        "main": "main.js",
        "scripts": {
            "start": "electron .",
            "build": "electron-builder --win portable",
        },
        "build": {
            "appId": f"com.html2exe.{config.app_id}",
            "productName": config.app_name,
            "copyright": config.copyright,
            "directories": {"output": OUTPUT_DIR},
            "files": ["main.js", "preload.js", "app/**/*"],
            "win": win,
        },
        "devDependencies": dict(DEV_DEPENDENCIES),
    }


@dataclass
class ElectronBuildpack:
    npm: str = "npm"
    name: str = "electron"
    installed_dir: str = "node_modules"

    async def materialize(
        self, workspace: BuildWorkspace, config: AppConfig, icon: IconUpload | None
    ) -> Path:
        return await anyio.to_thread.run_sync(self._materialize, workspace, config, icon)

    def _materialize(
        self, workspace: BuildWorkspace, config: AppConfig, icon: IconUpload | None
    ) -> Path:
        check_app_name(config)
        project = workspace.project
        try:
            project.mkdir(parents=True, exist_ok=True)
            copy_content(workspace.content, project / "app")

            (project / "main.js").write_text(
                render(
                    load_template("electron/main.js.template"),
                    {"width": config.width, "height": config.height, "title": config.app_name},
                ),
                encoding="utf-8",
            )
            (project / "preload.js").write_text(
                render(
                    load_template("electron/preload.js.template"),
                    {"appName": config.technical_name, "version": config.version},
                ),
                encoding="utf-8",
            )
        except OSError as exc:
            raise MaterializeError(f"Failed to create Electron app: {exc}") from exc

        with_icon = icon is not None and install_icon(
            icon, project / ICON_PATH, build_id=workspace.build_id
        )
        manifest = package_json(config, with_icon=with_icon)
        validate_electron_package(manifest)
        try:
            write_json(project / "package.json", manifest)
        except OSError as exc:
            raise MaterializeError(f"Failed to write package.json: {exc}") from exc

        log.info(
            "electron project generated for %s (%s)",
            config.app_name,
            config.technical_name,
            extra={"build_id": workspace.build_id},
        )
        return project

    def dependency_manifest(self, project_dir: Path) -> str | None:
        _ = project_dir  # same toolchain for every project
        return dependency_manifest_text()

    def install_command(self) -> list[str]:
        return [self.npm, "install", "--no-audit", "--no-fund"]

    def build_command(self) -> list[str]:
        return [self.npm, "run", "build", "--", "--publish=never"]

    def output_locations(self, project_dir: Path) -> tuple[Path, ...]:
        # electron-builder sometimes resolves the output relative to the parent
        return (project_dir / OUTPUT_DIR, project_dir.parent / OUTPUT_DIR)
