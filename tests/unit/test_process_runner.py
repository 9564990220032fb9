from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path

import pytest

from html2exe.errors import BuildCommandFailed, BuildTimeout
from html2exe.runner.process import FakeProcessRunner, ProcessResult, ProcessRunner, sanitize_environment

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX-only")


@pytest.mark.timeout(20)
def test_captures_output_and_exit_code(tmp_path: Path) -> None:
    runner = ProcessRunner()
    script = "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"

    result = asyncio.run(runner.run([sys.executable, "-c", script], cwd=tmp_path, timeout=10))

    assert result.returncode == 3
    assert not result.ok
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"
    assert result.truncated is False


@pytest.mark.timeout(20)
def test_timeout_kills_the_whole_process_group(tmp_path: Path) -> None:
    runner = ProcessRunner()
    marker = tmp_path / "grandchild-alive"
    # The child spawns a grandchild that would write the marker after 3s
    grandchild = f"import time, pathlib; time.sleep(3); pathlib.Path({str(marker)!r}).write_text('x')"
    script = (
        "import subprocess, sys, time\n"
        f"subprocess.Popen([sys.executable, '-c', {grandchild!r}])\n"
        "print('started', flush=True)\n"
        "time.sleep(60)\n"
    )

    started = time.monotonic()
    with pytest.raises(BuildTimeout) as excinfo:
        asyncio.run(runner.run([sys.executable, "-c", script], cwd=tmp_path, timeout=1))
    elapsed = time.monotonic() - started

    assert elapsed < 10
    assert isinstance(excinfo.value, BuildCommandFailed)
    assert "started" in excinfo.value.stdout
    time.sleep(3.5)
    assert not marker.exists()


def _grandchild_script(marker: Path, *, detach_output: bool) -> str:
    """A leader that starts a grandchild writing *marker* after 3s, then exits at once."""
    grandchild = f"import time, pathlib; time.sleep(3); pathlib.Path({str(marker)!r}).write_text('x')"
    redirect = ", stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL" if detach_output else ""
    return (
        "import subprocess, sys\n"
        f"subprocess.Popen([sys.executable, '-c', {grandchild!r}]{redirect})\n"
        "print('leader done', flush=True)\n"
    )


@pytest.mark.timeout(20)
def test_timeout_kills_group_after_leader_exited(tmp_path: Path) -> None:
    runner = ProcessRunner()
    marker = tmp_path / "grandchild-alive"
    # The grandchild keeps stdout open, so the run only ends on the timeout
    script = _grandchild_script(marker, detach_output=False)

    with pytest.raises(BuildTimeout) as excinfo:
        asyncio.run(runner.run([sys.executable, "-c", script], cwd=tmp_path, timeout=1))

    assert excinfo.value.returncode == 0
    assert "leader done" in excinfo.value.stdout
    time.sleep(3.5)
    assert not marker.exists()


@pytest.mark.timeout(20)
def test_finished_run_leaves_no_group_members(tmp_path: Path) -> None:
    runner = ProcessRunner()
    marker = tmp_path / "grandchild-alive"
    script = _grandchild_script(marker, detach_output=True)

    result = asyncio.run(runner.run([sys.executable, "-c", script], cwd=tmp_path, timeout=10))

    assert result.ok
    assert result.stdout.strip() == "leader done"
    time.sleep(3.5)
    assert not marker.exists()


@pytest.mark.timeout(20)
def test_output_is_bounded_and_keeps_the_tail(tmp_path: Path) -> None:
    runner = ProcessRunner(max_output=1024)
    script = "import sys; sys.stdout.write('a' * 100000 + 'THE-END')"

    result = asyncio.run(runner.run([sys.executable, "-c", script], cwd=tmp_path, timeout=10))

    assert result.ok
    assert result.truncated is True
    assert result.stdout.endswith("THE-END")
    assert len(result.stdout) < 2048


@pytest.mark.timeout(10)
def test_missing_binary_is_a_command_failure(tmp_path: Path) -> None:
    runner = ProcessRunner()

    with pytest.raises(BuildCommandFailed):
        asyncio.run(runner.run(["definitely-not-a-real-tool-xyz"], cwd=tmp_path, timeout=5))


def test_sanitize_environment(monkeypatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "/somewhere")
    monkeypatch.setenv("KEEP_ME", "1")

    env = sanitize_environment({"EXTRA": "yes"})

    assert "PYTHONPATH" not in env
    assert env["KEEP_ME"] == "1"
    assert env["EXTRA"] == "yes"


def test_fake_runner_replays_responses(tmp_path: Path) -> None:
    seen: list[Path] = []
    fake = FakeProcessRunner(
        responses=[
            ProcessResult(args=("npm",), returncode=1, stdout="", stderr="nope"),
            BuildTimeout("too slow"),
        ],
        side_effect=lambda args, cwd: seen.append(cwd),
    )

    first = asyncio.run(fake.run(["npm", "install"], cwd=tmp_path, timeout=1))
    with pytest.raises(BuildTimeout):
        asyncio.run(fake.run(["npm", "run", "build"], cwd=tmp_path, timeout=1))
    third = asyncio.run(fake.run(["npm", "--version"], cwd=tmp_path, timeout=1))

    assert first.returncode == 1
    assert third.ok
    assert list(fake.commands()) == [
        ("npm", "install"),
        ("npm", "run", "build"),
        ("npm", "--version"),
    ]
    assert seen == [tmp_path] * 3
