"""Execution harness: workspace management and toolchain subprocesses.

Provides functions for creating a per-run workspace, writing the generated
artifacts into it, removing it again on a best-effort basis, building the
subprocess environment, and running toolchain commands as async
subprocesses with line-by-line output capture and timeout enforcement.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
import contextlib
import logging
import os
from pathlib import Path
import shutil
import signal
import tempfile
import time

from pydantic import BaseModel, ConfigDict

from benchmark_tool.synthesis import (
    DRIVER_FILENAME,
    HARNESS_FILENAME,
    REQUIREMENTS_FILENAME,
    GeneratedSources,
)

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "benchmark_tool_"
PACKAGES_DIRNAME = "packages"

# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


def create_workspace(root: str | None, run_id: str) -> Path:
    """Create the uniquely named workspace directory for *run_id*.

    Args:
        root: Parent directory, or ``None`` for the system temp directory.
        run_id: Run identifier; makes the directory name unique.

    Returns:
        The absolute path of the new directory.

    Raises:
        FileExistsError: If a workspace for *run_id* already exists.
    """
    parent = Path(root) if root is not None else Path(tempfile.gettempdir())
    parent.mkdir(parents=True, exist_ok=True)
    workspace = parent / f"{WORKSPACE_PREFIX}{run_id}"
    workspace.mkdir()
    return workspace.resolve()


def write_workspace(workspace: Path, sources: GeneratedSources, requirements: str) -> None:
    """Write harness, driver, and project descriptor into *workspace*."""
    (workspace / HARNESS_FILENAME).write_text(sources.harness, encoding="utf-8")
    (workspace / DRIVER_FILENAME).write_text(sources.driver, encoding="utf-8")
    (workspace / REQUIREMENTS_FILENAME).write_text(requirements, encoding="utf-8")


def cleanup_workspace(workspace: str | Path) -> None:
    """Remove a workspace directory and everything inside it.

    Best effort: failures are logged and otherwise ignored, leaving an
    orphaned directory behind. Never raises.
    """
    path = Path(workspace)
    if not path.is_dir():
        return

    def _log_failure(func: Callable[..., object], target: str, exc: BaseException) -> None:
        logger.warning("Workspace cleanup could not remove %s: %s", target, exc)

    shutil.rmtree(path, onexc=_log_failure)
    logger.debug("Workspace cleaned up: %s", path)


def build_execution_env(workspace: Path) -> dict[str, str]:
    """Build environment variables for toolchain subprocesses.

    Returns a copy of the current environment with ``PYTHONUNBUFFERED=1``
    so output arrives line by line, ``PYTHONDONTWRITEBYTECODE`` dropped so
    the build stage can write bytecode, and the workspace's restored
    packages directory prepended to ``PYTHONPATH``.
    """
    env = dict(os.environ)
    env["PYTHONUNBUFFERED"] = "1"
    env.pop("PYTHONDONTWRITEBYTECODE", None)
    packages = str(workspace / PACKAGES_DIRNAME)
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = os.pathsep.join([packages, existing]) if existing else packages
    return env


# ---------------------------------------------------------------------------
# Async subprocess execution
# ---------------------------------------------------------------------------

_STREAM_LIMIT = 1024 * 1024


class ProcessResult(BaseModel):
    """Output captured from one toolchain subprocess.

    Attributes:
        output: Merged stdout and stderr lines in arrival order.
        exit_code: Process exit code (-1 on timeout or spawn failure).
        duration_seconds: Wall-clock execution time in seconds.
        timed_out: Whether the process was killed due to timeout.
        spawn_error: Why the process could not be started, if it was not.
    """

    model_config = ConfigDict(frozen=True)

    output: str
    exit_code: int
    duration_seconds: float
    timed_out: bool = False
    spawn_error: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the process started, finished in time, and exited with 0."""
        return self.spawn_error is None and not self.timed_out and self.exit_code == 0


class OutputBuffer:
    """Shared sink for the lines of both output streams.

    Each reader appends a whole line and hands it to ``on_line`` in one
    synchronous step, so lines from the two streams never interleave and
    observers see them in buffer order.
    """

    def __init__(self, on_line: Callable[[str], None] | None = None) -> None:
        self._lines: list[str] = []
        self._on_line = on_line

    def append(self, line: str) -> None:
        """Record *line* and forward it to the observer."""
        self._lines.append(line)
        if self._on_line is not None:
            self._on_line(line)

    @property
    def lines(self) -> list[str]:
        """Copy of the lines captured so far."""
        return list(self._lines)

    def text(self) -> str:
        """Captured output joined with newlines."""
        return "".join(f"{line}\n" for line in self._lines)


async def _pump(stream: asyncio.StreamReader | None, buffer: OutputBuffer) -> None:
    """Read *stream* line by line into *buffer* until EOF."""
    if stream is None:
        return
    while True:
        try:
            raw = await stream.readline()
        except ValueError:
            buffer.append(f"[line longer than {_STREAM_LIMIT} bytes dropped]")
            continue
        if not raw:
            return
        buffer.append(raw.decode("utf-8", errors="replace").rstrip("\r\n"))


async def _drain(proc: asyncio.subprocess.Process, buffer: OutputBuffer) -> None:
    """Read both streams to EOF, then wait for the process to exit."""
    await asyncio.gather(_pump(proc.stdout, buffer), _pump(proc.stderr, buffer))
    await proc.wait()


async def _kill_process_group(
    proc: asyncio.subprocess.Process,
    grace_seconds: float,
) -> None:
    """Send SIGTERM to the process group, escalating to SIGKILL after the grace period.

    Uses ``os.killpg`` so child processes started by the toolchain are
    terminated as well.

    Args:
        proc: The asyncio subprocess to kill.
        grace_seconds: Time allowed between SIGTERM and SIGKILL.
    """
    if proc.returncode is not None:
        return

    try:
        pgid = os.getpgid(proc.pid)
    except (OSError, ProcessLookupError):
        return

    try:
        os.killpg(pgid, signal.SIGTERM)
    except (OSError, ProcessLookupError):
        return

    try:
        await asyncio.wait_for(proc.wait(), timeout=grace_seconds)
    except TimeoutError:
        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, signal.SIGKILL)
        with contextlib.suppress(ProcessLookupError):
            await proc.wait()


async def run_process(
    args: Sequence[str],
    working_dir: Path,
    *,
    timeout_seconds: float,
    env: dict[str, str] | None = None,
    on_line: Callable[[str], None] | None = None,
    kill_grace_seconds: float = 5.0,
) -> ProcessResult:
    """Run a toolchain command as an async subprocess.

    Starts *args* in *working_dir* in its own process group, reads stdout
    and stderr line by line into one buffer (each line is also passed to
    *on_line*), and enforces *timeout_seconds* by terminating the process
    group. Output captured before a timeout is kept.

    Args:
        args: Executable followed by its arguments.
        working_dir: Working directory for the subprocess.
        timeout_seconds: Maximum seconds before the process is killed.
        env: Environment for the subprocess, or ``None`` to inherit.
        on_line: Observer called for every output line as it arrives.
        kill_grace_seconds: Delay between SIGTERM and SIGKILL.

    Returns:
        A ``ProcessResult``. Spawn failures are reported in
        ``spawn_error`` rather than raised.
    """
    start = time.monotonic()
    buffer = OutputBuffer(on_line)

    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(working_dir),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            start_new_session=True,
            limit=_STREAM_LIMIT,
        )
    except OSError as exc:
        logger.error("Could not start %s: %s", args[0] if args else "<empty>", exc)
        return ProcessResult(
            output="",
            exit_code=-1,
            duration_seconds=time.monotonic() - start,
            spawn_error=f"{type(exc).__name__}: {exc}",
        )

    timed_out = False
    # Shield the drain so it survives the timeout; after the kill it
    # collects whatever is still buffered in the pipes.
    drain_task = asyncio.ensure_future(_drain(proc, buffer))
    try:
        await asyncio.wait_for(asyncio.shield(drain_task), timeout=timeout_seconds)
    except TimeoutError:
        timed_out = True
        logger.warning("Process %s exceeded %.0fs; terminating", proc.pid, timeout_seconds)
        await _kill_process_group(proc, kill_grace_seconds)
        try:
            await asyncio.wait_for(drain_task, timeout=max(kill_grace_seconds, 1.0))
        except TimeoutError:
            logger.warning("Output pipes of process %s stayed open after kill", proc.pid)
    except asyncio.CancelledError:
        await _kill_process_group(proc, kill_grace_seconds)
        drain_task.cancel()
        raise

    duration = time.monotonic() - start
    if timed_out:
        exit_code = -1
    else:
        exit_code = proc.returncode if proc.returncode is not None else -1

    logger.debug(
        "Process finished: args=%s exit_code=%d duration=%.2fs timed_out=%s",
        list(args),
        exit_code,
        duration,
        timed_out,
    )
    return ProcessResult(
        output=buffer.text(),
        exit_code=exit_code,
        duration_seconds=duration,
        timed_out=timed_out,
    )
