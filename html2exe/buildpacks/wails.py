"""Wails buildpack.

Scaffolds with ``wails init -t vanilla`` and rewrites ``wails.json`` and the
window options in ``main.go``. Static content (no ``package.json``) goes
straight to ``frontend/dist`` with the frontend install/build steps disabled;
Node projects replace ``frontend/`` and keep the npm steps, which Wails runs
itself, so there is no dependency manifest to cache.
"""

from __future__ import annotations

import json
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

import anyio

from html2exe.assets.icon import install_icon
from html2exe.buildpacks.base import check_app_name, copy_content, write_json
from html2exe.errors import BuildCommandFailed, MaterializeError
from html2exe.logging import get_logger
from html2exe.runner.process import ProcessRunner
from html2exe.types import AppConfig, IconUpload
from html2exe.validator import validate_wails_config
from html2exe.workspace import BuildWorkspace

log = get_logger(__name__)


def wails_config(config: AppConfig, *, static: bool, base_version: str = "1") -> dict:
    frontend = (
        {
            "frontend:dir": "frontend/dist",
            "frontend:install": "",
            "frontend:build": "",
            "frontend:dev:watcher": "",
        }
        if static
        else {
            "frontend:dir": "frontend",
            "frontend:install": "npm install",
            "frontend:build": "npm run build",
            "frontend:dev:watcher": "npm run dev",
        }
    )
    return {
        "version": base_version,
        "name": config.technical_name,
        "outputfilename": config.app_name,
        **frontend,
        "frontend:dev:serverUrl": "auto",
        "info": {
            "companyName": config.company,
            "productVersion": config.version,
            "copyright": config.copyright,
            "comments": config.description,
        },
    }


def patch_main_go(source: str, config: AppConfig) -> str:
    title = json.dumps(config.app_name, ensure_ascii=False)
    source = re.sub(r'Title:\s*"[^"]*"', lambda _: f"Title:  {title}", source, count=1)
    source = re.sub(r"Width:\s*\d+", f"Width:  {config.width}", source, count=1)
    source = re.sub(r"Height:\s*\d+", f"Height: {config.height}", source, count=1)
    return source


@dataclass
class WailsBuildpack:
    runner: ProcessRunner
    wails: str = "wails"
    platform: str = "windows/amd64"
    init_timeout: float = 60.0
    name: str = "wails"
    installed_dir: str = "frontend/node_modules"

    async def materialize(
        self, workspace: BuildWorkspace, config: AppConfig, icon: IconUpload | None
    ) -> Path:
        check_app_name(config)
        await self._init_project(workspace, config)
        return await anyio.to_thread.run_sync(self._customize, workspace, config, icon)

    async def _init_project(self, workspace: BuildWorkspace, config: AppConfig) -> None:
        init_dir = workspace.root / ".wails-init"
        init_dir.mkdir(parents=True, exist_ok=True)
        try:
            try:
                result = await self.runner.run(
                    [self.wails, "init", "-n", config.technical_name, "-t", "vanilla"],
                    cwd=init_dir,
                    timeout=self.init_timeout,
                )
            except BuildCommandFailed as exc:
                raise MaterializeError(f"Failed to initialize Wails project: {exc}") from exc
            if not result.ok:
                raise MaterializeError(
                    f"Failed to initialize Wails project: wails init exited {result.returncode}"
                )
            generated = init_dir / config.technical_name
            if not generated.is_dir():
                raise MaterializeError(f"Wails init did not create expected directory: {generated}")
            if workspace.project.exists():
                shutil.rmtree(workspace.project)
            shutil.move(str(generated), str(workspace.project))
        finally:
            shutil.rmtree(init_dir, ignore_errors=True)

    def _customize(
        self, workspace: BuildWorkspace, config: AppConfig, icon: IconUpload | None
    ) -> Path:
        project = workspace.project
        static = not (workspace.content / "package.json").is_file()
        try:
            frontend = project / "frontend"
            copy_content(workspace.content, frontend / "dist" if static else frontend)

            config_path = project / "wails.json"
            existing = json.loads(config_path.read_text(encoding="utf-8"))
            generated = wails_config(
                config, static=static, base_version=str(existing.get("version") or "1")
            )
            validate_wails_config(generated)
            write_json(config_path, generated)

            main_go = project / "main.go"
            main_go.write_text(patch_main_go(main_go.read_text(encoding="utf-8"), config), encoding="utf-8")
        except (OSError, json.JSONDecodeError) as exc:
            raise MaterializeError(f"Failed to create Wails app: {exc}") from exc

        if icon is not None:
            install_icon(icon, project / "build" / "windows" / "icon.ico", build_id=workspace.build_id)
            if icon.filename.lower().endswith(".png"):
                install_icon(icon, project / "build" / "appicon.png", build_id=workspace.build_id)

        log.info(
            "wails project generated (%s content)",
            "static" if static else "node",
            extra={"build_id": workspace.build_id},
        )
        return project

    def dependency_manifest(self, project_dir: Path) -> str | None:
        _ = project_dir
        return None

    def install_command(self) -> list[str]:
        return []

    def build_command(self) -> list[str]:
        return [self.wails, "build", "-platform", self.platform]

    def output_locations(self, project_dir: Path) -> tuple[Path, ...]:
        return (project_dir / "build" / "bin", project_dir / "build")
