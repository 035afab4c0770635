"""Benchmark service: admission, execution, and deferred cleanup.

Provides ``BenchmarkService``, which puts every request through one shared
``RunSlotGate`` before handing it to the ``BenchmarkRunner``, plus the
configuration and logging helpers used by the entry points.

Flow for one request::

    gate.acquire -> runner.run -> slot.release -> (delay) -> runner.cleanup
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
from pathlib import Path
from typing import Any

from benchmark_tool.gate import RunSlot, RunSlotGate
from benchmark_tool.models import BenchmarkOutcome, BenchmarkRequest, RunnerConfig
from benchmark_tool.pipeline import BenchmarkRunner
from benchmark_tool.progress import ProgressSink

logger = logging.getLogger(__name__)


class BenchmarkService:
    """Serializes benchmark runs and cleans up after them.

    A caller cancelled while queued leaves the queue and sees
    ``CancelledError``. Once admitted, the run is not cancellable: a
    cancelled caller stops waiting for it, but the pipeline finishes
    (bounded by its stage timeouts) before the gate is released.

    Args:
        config: Runner configuration; defaults when ``None``.
        gate: Shared admission gate. Pass the same gate to every service
            that must not run concurrently with this one.
        runner: Pipeline runner; built from *config* when ``None``.
    """

    def __init__(
        self,
        config: RunnerConfig | None = None,
        *,
        gate: RunSlotGate | None = None,
        runner: BenchmarkRunner | None = None,
    ) -> None:
        self.config = config if config is not None else RunnerConfig()
        self.gate = gate if gate is not None else RunSlotGate()
        self.runner = runner if runner is not None else BenchmarkRunner(self.config)
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def is_running(self) -> bool:
        """Whether a benchmark currently holds the gate."""
        return self.gate.is_running

    @property
    def waiting_count(self) -> int:
        """Number of requests queued behind the active one."""
        return self.gate.waiting_count

    async def submit(
        self,
        request: BenchmarkRequest,
        progress: ProgressSink | None = None,
    ) -> BenchmarkOutcome:
        """Wait for the gate, run *request*, and schedule workspace cleanup.

        Args:
            request: The benchmark to run.
            progress: Optional sink for queue and stage updates.

        Returns:
            The run's ``BenchmarkOutcome``.

        Raises:
            asyncio.CancelledError: If the caller is cancelled, either while
                queued or while waiting for an admitted run.
        """
        slot = await self.gate.acquire(progress)
        run_task = asyncio.ensure_future(self.runner.run(request, progress))
        run_task.add_done_callback(functools.partial(self._on_run_finished, slot))
        return await asyncio.shield(run_task)

    def _on_run_finished(self, slot: RunSlot, task: asyncio.Future[BenchmarkOutcome]) -> None:
        slot.release()
        if task.cancelled() or task.exception() is not None:
            return
        outcome = task.result()
        if outcome.workspace_path is None or self.config.keep_workspaces:
            return
        logger.debug(
            "Cleanup of %s scheduled in %.0fs",
            outcome.workspace_path,
            self.config.cleanup_delay_seconds,
        )
        self._spawn(self._deferred_cleanup(outcome.workspace_path))

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deferred_cleanup(self, workspace_path: str) -> None:
        await asyncio.sleep(self.config.cleanup_delay_seconds)
        await self.runner.cleanup(workspace_path)

    async def drain(self) -> None:
        """Wait for every scheduled cleanup to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


# ---------------------------------------------------------------------------
# Environment variable support
# ---------------------------------------------------------------------------

_ENV_FIELD_MAP: dict[str, str] = {
    "BENCHMARK_TOOL_RUN_TIMEOUT": "run_timeout_seconds",
    "BENCHMARK_TOOL_WORKSPACE_ROOT": "workspace_root",
    "BENCHMARK_TOOL_PYTHON": "python_executable",
    "BENCHMARK_TOOL_LOG_LEVEL": "log_level",
}
"""Maps environment variable names to RunnerConfig field names."""


def apply_env_overrides(config: RunnerConfig) -> RunnerConfig:
    """Apply ``BENCHMARK_TOOL_*`` env var overrides to a config.

    Environment variables override **default** field values but do **not**
    override values explicitly set in the ``RunnerConfig`` constructor.
    A field counts as explicitly set when its value differs from the
    default. Unparseable values are ignored.

    Args:
        config: The runner configuration to apply overrides to.

    Returns:
        A new ``RunnerConfig`` with env var overrides applied.
    """
    defaults = RunnerConfig()
    overrides: dict[str, Any] = {}

    for env_var, field_name in _ENV_FIELD_MAP.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue
        if getattr(config, field_name) != getattr(defaults, field_name):
            continue
        parsed = _parse_env_value(field_name, env_value)
        if parsed is not None:
            overrides[field_name] = parsed

    if not overrides:
        return config

    return config.model_copy(update=overrides)


def _parse_env_value(field_name: str, raw: str) -> Any:
    """Parse a raw env var string for *field_name*; ``None`` when invalid."""
    if field_name == "run_timeout_seconds":
        try:
            value = float(raw)
        except ValueError:
            return None
        return value if value > 0 else None

    value_str = raw.strip()
    return value_str or None


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


def configure_logging(config: RunnerConfig) -> None:
    """Configure Python logging for the benchmark tool.

    Sets up the ``"benchmark_tool"`` logger with a console handler and an
    optional file handler. Idempotent: repeated calls do not duplicate
    handlers.

    Args:
        config: Runner configuration providing ``log_level`` and
            optional ``log_file``.
    """
    tool_logger = logging.getLogger("benchmark_tool")
    tool_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    if not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in tool_logger.handlers
    ):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_LOG_FORMAT))
        tool_logger.addHandler(console)

    if config.log_file is not None:
        has_file = any(
            isinstance(h, logging.FileHandler)
            and getattr(h, "baseFilename", None) == str(Path(config.log_file).resolve())
            for h in tool_logger.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(config.log_file)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            tool_logger.addHandler(file_handler)


# ---------------------------------------------------------------------------
# Synchronous entry point
# ---------------------------------------------------------------------------


async def _run_once(
    request: BenchmarkRequest,
    config: RunnerConfig,
    progress: ProgressSink | None,
) -> BenchmarkOutcome:
    service = BenchmarkService(config.model_copy(update={"cleanup_delay_seconds": 0.0}))
    outcome = await service.submit(request, progress)
    await service.drain()
    return outcome


def run_benchmark_sync(
    request: BenchmarkRequest,
    config: RunnerConfig | None = None,
    progress: ProgressSink | None = None,
) -> BenchmarkOutcome:
    """Run one benchmark to completion from synchronous code.

    Applies env var overrides, runs the request through a fresh service
    via ``asyncio.run()``, and removes the workspace before returning
    unless ``keep_workspaces`` is set.

    Args:
        request: The benchmark to run.
        config: Runner configuration; defaults when ``None``.
        progress: Optional sink for progress updates.

    Returns:
        The run's ``BenchmarkOutcome``.
    """
    resolved = apply_env_overrides(config if config is not None else RunnerConfig())
    return asyncio.run(_run_once(request, resolved, progress))
