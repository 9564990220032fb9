from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from html2exe.buildpacks.electron import ElectronBuildpack
from html2exe.errors import BuildCommandFailed, BuildTimeout, NoArtifactsProduced
from html2exe.runner.build import BuildRunner, find_artifacts
from html2exe.runner.process import FakeProcessRunner, ProcessResult
from html2exe.signing.checks import sha256


def _project(tmp_path: Path) -> Path:
    project = tmp_path / "ws" / "project"
    project.mkdir(parents=True)
    return project


def test_find_artifacts_filters_by_extension(tmp_path: Path) -> None:
    (tmp_path / "win-unpacked").mkdir()
    (tmp_path / "Demo.EXE").write_bytes(b"MZ")
    (tmp_path / "win-unpacked" / "demo.exe").write_bytes(b"MZ")
    (tmp_path / "latest.yml").write_text("x")

    found = find_artifacts(tmp_path, ".exe")

    assert [p.relative_to(tmp_path).as_posix() for p in found] == ["Demo.EXE", "win-unpacked/demo.exe"]
    assert find_artifacts(tmp_path / "missing", ".exe") == []


@pytest.mark.timeout(10)
def test_build_and_distribute_copies_with_sidecar(tmp_path: Path) -> None:
    project = _project(tmp_path)

    def fake_build(args, cwd):
        (cwd / "dist").mkdir()
        (cwd / "dist" / "Demo 1.0.0.exe").write_bytes(b"MZ payload")

    runner = BuildRunner(ElectronBuildpack(), FakeProcessRunner(side_effect=fake_build))
    out = tmp_path / "out"

    copied = asyncio.run(runner.run(project, out, build_id="b1"))

    assert copied == [out / "Demo 1.0.0.exe"]
    # Copied, not moved
    assert (project / "dist" / "Demo 1.0.0.exe").exists()
    sidecar = out / "Demo 1.0.0.exe.sha256"
    assert sidecar.read_text() == sha256(copied[0])


@pytest.mark.timeout(10)
def test_equal_basenames_do_not_overwrite_each_other(tmp_path: Path) -> None:
    source = tmp_path / "dist"
    for arch in ("x64", "arm64"):
        (source / arch).mkdir(parents=True)
        (source / arch / "Demo.exe").write_bytes(f"MZ {arch}".encode())
    runner = BuildRunner(ElectronBuildpack(), FakeProcessRunner())
    out = tmp_path / "out"

    copied = asyncio.run(runner.distribute(find_artifacts(source, ".exe"), out))

    assert copied == [out / "arm64" / "Demo.exe", out / "x64" / "Demo.exe"]
    assert [p.read_bytes() for p in copied] == [b"MZ arm64", b"MZ x64"]
    assert all(p.with_name(p.name + ".sha256").is_file() for p in copied)


@pytest.mark.timeout(10)
def test_fallback_output_location(tmp_path: Path) -> None:
    project = _project(tmp_path)

    def fake_build(args, cwd):
        (cwd.parent / "dist").mkdir()
        (cwd.parent / "dist" / "app.exe").write_bytes(b"MZ")

    runner = BuildRunner(ElectronBuildpack(), FakeProcessRunner(side_effect=fake_build))

    found = asyncio.run(runner.build(project))

    assert found == [project.parent / "dist" / "app.exe"]


@pytest.mark.timeout(10)
def test_clean_exit_without_executable(tmp_path: Path) -> None:
    project = _project(tmp_path)
    (project / "dist").mkdir()
    (project / "dist" / "builder-debug.yml").write_text("x")
    runner = BuildRunner(ElectronBuildpack(), FakeProcessRunner())

    with pytest.raises(NoArtifactsProduced) as excinfo:
        asyncio.run(runner.build(project))

    assert not isinstance(excinfo.value, BuildCommandFailed)


@pytest.mark.timeout(10)
def test_non_zero_exit_keeps_output(tmp_path: Path) -> None:
    project = _project(tmp_path)
    fake = FakeProcessRunner(
        responses=[ProcessResult(args=("npm",), returncode=2, stdout="building", stderr="boom")]
    )
    runner = BuildRunner(ElectronBuildpack(), fake)

    with pytest.raises(BuildCommandFailed) as excinfo:
        asyncio.run(runner.build(project))

    assert excinfo.value.returncode == 2
    assert excinfo.value.stderr == "boom"
    assert "exit code 2" in str(excinfo.value)


@pytest.mark.timeout(10)
def test_timeout_propagates(tmp_path: Path) -> None:
    project = _project(tmp_path)
    fake = FakeProcessRunner(responses=[BuildTimeout("Command timed out after 600 seconds")])

    with pytest.raises(BuildTimeout):
        asyncio.run(BuildRunner(ElectronBuildpack(), fake).build(project))
