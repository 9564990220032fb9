from __future__ import annotations

import io
import stat
import zipfile
from collections.abc import Callable
from pathlib import Path

import pytest

from html2exe.config import Settings
from html2exe.runner.process import FakeProcessRunner

INDEX_HTML = "<!DOCTYPE html><html><head><title>Demo</title></head><body>hi</body></html>"


def _zip_bytes(files: dict[str, str | bytes], symlinks: dict[str, str] | None = None) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as z:
        for name, content in files.items():
            z.writestr(name, content)
        for name, target in (symlinks or {}).items():
            info = zipfile.ZipInfo(name)
            info.external_attr = (stat.S_IFLNK | 0o777) << 16
            z.writestr(info, target)
    return buf.getvalue()


@pytest.fixture
def make_zip() -> Callable[..., bytes]:
    """Build an in-memory zip from ``{name: content}``."""
    return _zip_bytes


@pytest.fixture
def demo_zip() -> bytes:
    return _zip_bytes({"index.html": INDEX_HTML, "style.css": "body { color: red; }"})


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        temp_root=tmp_path / "temp",
        dist_root=tmp_path / "dist",
        cache_root=tmp_path / "cache",
        cleanup_on_shutdown=False,
        sweep_interval_seconds=3600,
    )


def fake_electron_toolchain(args: tuple[str, ...], cwd: Path) -> None:
    """Pretend to be npm: install drops node_modules, build drops an exe in dist/."""
    if "install" in args:
        (cwd / "node_modules" / "electron").mkdir(parents=True, exist_ok=True)
        (cwd / "node_modules" / "electron" / "index.js").write_text("// stub", encoding="utf-8")
    elif "build" in args:
        out = cwd / "dist"
        out.mkdir(parents=True, exist_ok=True)
        (out / "Demo 1.0.0.exe").write_bytes(b"MZ fake executable")


@pytest.fixture
def electron_toolchain() -> Callable[[tuple[str, ...], Path], None]:
    return fake_electron_toolchain


@pytest.fixture
def fake_runner() -> FakeProcessRunner:
    return FakeProcessRunner(side_effect=fake_electron_toolchain)
