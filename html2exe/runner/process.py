"""Async, bounded execution of external toolchain commands."""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from html2exe.config import MiB
from html2exe.errors import BuildCommandFailed, BuildTimeout
from html2exe.logging import get_logger

log = get_logger(__name__)

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}
_READ_CHUNK = 64 * 1024
_KILL_GRACE = 2.0


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


@dataclass(slots=True)
class ProcessResult:
    """Holds the outcome of one toolchain invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    duration: float = 0.0
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class _TailBuffer:
    """Keeps at most *limit* trailing bytes of a stream."""

    def __init__(self, limit: int) -> None:
        self._limit = max(limit, 0)
        self._data = bytearray()
        self.dropped = 0

    def feed(self, chunk: bytes) -> None:
        self._data.extend(chunk)
        excess = len(self._data) - self._limit
        if excess > 0:
            del self._data[:excess]
            self.dropped += excess

    def text(self) -> str:
        body = self._data.decode("utf-8", errors="replace")
        if self.dropped:
            return f"[... {self.dropped} bytes truncated ...]\n{body}"
        return body


async def _drain(stream: asyncio.StreamReader | None, sink: _TailBuffer) -> None:
    if stream is None:
        return
    while chunk := await stream.read(_READ_CHUNK):
        sink.feed(chunk)


class ProcessRunner:
    """Execute toolchain commands asynchronously with a hard wall-clock limit.

    The child starts in its own session so the whole process group can be
    killed on timeout or cancellation. Captured output is bounded per stream.
    """

    def __init__(
        self,
        *,
        max_output: int = 10 * MiB,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._max_output = max_output
        self._env = dict(env or {})

    async def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        timeout: float,
        max_output: int | None = None,
    ) -> ProcessResult:
        args = tuple(str(a) for a in argv)
        limit = self._max_output if max_output is None else max_output
        stdout, stderr = _TailBuffer(limit), _TailBuffer(limit)
        started = time.monotonic()
        log.info("exec %s (cwd=%s, timeout=%ss)", " ".join(args), cwd, timeout)

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(self._env),
                start_new_session=True,
            )
        except OSError as exc:
            raise BuildCommandFailed(f"Could not start {args[0]}: {exc}") from exc

        try:
            async with asyncio.timeout(timeout):
                await asyncio.gather(
                    _drain(process.stdout, stdout),
                    _drain(process.stderr, stderr),
                    process.wait(),
                )
        except TimeoutError:
            await self._kill(process, stdout, stderr)
            raise BuildTimeout(
                f"Command timed out after {timeout:g} seconds: {' '.join(args)}",
                returncode=process.returncode,
                stdout=stdout.text(),
                stderr=stderr.text(),
            ) from None
        except asyncio.CancelledError:
            await self._kill(process, stdout, stderr)
            raise

        if self._kill_group(process):
            log.info("killed leftover members of process group %s", process.pid)

        return ProcessResult(
            args=args,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.text(),
            stderr=stderr.text(),
            duration=time.monotonic() - started,
            truncated=bool(stdout.dropped or stderr.dropped),
        )

    @staticmethod
    def _kill_group(process: asyncio.subprocess.Process) -> bool:
        """SIGKILL every member of the child's session, leader exited or not."""
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, signal.SIGKILL)
            elif process.returncode is None:
                process.kill()
            else:
                return False
        except (ProcessLookupError, PermissionError):
            return False
        return True

    async def _kill(
        self, process: asyncio.subprocess.Process, stdout: _TailBuffer, stderr: _TailBuffer
    ) -> None:
        leader_exited = process.returncode is not None
        if self._kill_group(process):
            log.warning(
                "killed process group %s (leader %s)",
                process.pid,
                "had already exited" if leader_exited else "running",
            )
        # Reap even when the cancelling task is being torn down
        await asyncio.shield(process.wait())
        # Pipes reach EOF once the group is gone
        with contextlib.suppress(TimeoutError):
            async with asyncio.timeout(_KILL_GRACE):
                await asyncio.gather(_drain(process.stdout, stdout), _drain(process.stderr, stderr))


SideEffect = Callable[[tuple[str, ...], Path], Awaitable[None] | None]


@dataclass
class FakeProcessRunner(ProcessRunner):
    """Test double that records invocations and replays scripted results.

    *side_effect* runs before a result is returned (e.g. to drop an artifact
    into the project directory). A scripted exception is raised instead of
    returning a result.
    """

    responses: list[ProcessResult | BaseException] = field(default_factory=list)
    side_effect: SideEffect | None = None
    invocations: list[tuple[tuple[str, ...], Path]] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__()

    async def run(  # type: ignore[override]
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        timeout: float,
        max_output: int | None = None,
    ) -> ProcessResult:
        args = tuple(str(a) for a in argv)
        self.invocations.append((args, Path(cwd)))
        if self.side_effect is not None:
            outcome = self.side_effect(args, Path(cwd))
            if outcome is not None:
                await outcome
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, BaseException):
                raise response
            return response
        return ProcessResult(args=args, returncode=0, stdout="", stderr="")

    def commands(self) -> Iterable[tuple[str, ...]]:
        return [args for args, _ in self.invocations]
