"""Execution pipeline: drives one benchmark request from source to report.

``BenchmarkRunner.run`` walks the stages

    generating -> validating -> preparing -> restoring -> building
    -> running -> parsing -> done | failed

strictly forward. Each stage either returns its product or a
``StageFailure``; the first failure ends the run. Progress is reported on
entry to every stage, and while the benchmark runs the warm-up and
measurement markers in its output advance the percentage up to
``RunnerConfig.running_progress_cap``.

``run`` never raises: any exception escaping a stage is turned into an
``unexpected`` failure outcome at the boundary.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
from pathlib import Path
import time
import uuid

from benchmark_tool.execution import (
    ProcessResult,
    build_execution_env,
    cleanup_workspace,
    create_workspace,
    run_process,
    write_workspace,
)
from benchmark_tool.models import (
    BenchmarkOutcome,
    BenchmarkRequest,
    FailureKind,
    ParsedReports,
    PipelineStage,
    RunnerConfig,
    RunState,
    StageFailure,
)
from benchmark_tool.progress import ProgressSink, ProgressTracker
from benchmark_tool.results import parse_results
from benchmark_tool.synthesis import (
    DriverOptions,
    GeneratedSources,
    render_requirements,
    synthesize,
)
from benchmark_tool.validation import validate_syntax

logger = logging.getLogger(__name__)

VALIDATION_FAILED_MESSAGE = "Code validation failed. Please check your code for errors."
RESTORE_FAILED_MESSAGE = "Failed to restore benchmark dependencies."
BUILD_FAILED_MESSAGE = "Failed to build the benchmark project."
RUN_FAILED_MESSAGE = "Benchmark execution failed."

_STAGE_PROGRESS: dict[PipelineStage, tuple[str, int]] = {
    PipelineStage.GENERATING: ("Generating benchmark code...", 10),
    PipelineStage.VALIDATING: ("Validating code...", 20),
    PipelineStage.PREPARING: ("Creating temporary project...", 30),
    PipelineStage.RESTORING: ("Restoring packages...", 40),
    PipelineStage.BUILDING: ("Building project...", 50),
    PipelineStage.RUNNING: ("Running benchmarks (this may take a while)...", 60),
    PipelineStage.PARSING: ("Parsing results...", 90),
    PipelineStage.DONE: ("Benchmark complete!", 100),
}


class RunningProgress:
    """Turns benchmark output lines into progress updates.

    Every line containing the warm-up or measurement marker advances the
    percentage by one, never past *cap*.
    """

    def __init__(
        self,
        tracker: ProgressTracker,
        *,
        start: int,
        cap: int,
        warmup_marker: str,
        measure_marker: str,
    ) -> None:
        self._tracker = tracker
        self._cap = cap
        self._warmup_marker = warmup_marker
        self._measure_marker = measure_marker
        self.percentage = start

    def observe(self, line: str) -> None:
        """Inspect one output line and report progress on a marker match."""
        if self._warmup_marker in line:
            message = "Warming up..."
        elif self._measure_marker in line:
            message = "Running measurements..."
        else:
            return
        self.percentage = min(self.percentage + 1, self._cap)
        self._tracker.report(message, self.percentage)


class BenchmarkRunner:
    """Runs benchmark requests through the staged pipeline.

    Holds no per-run state; one instance can serve every run in the
    process. Serializing runs is the caller's job (see ``RunSlotGate``).
    """

    def __init__(self, config: RunnerConfig | None = None) -> None:
        self.config = config if config is not None else RunnerConfig()

    async def run(
        self,
        request: BenchmarkRequest,
        progress: ProgressSink | None = None,
    ) -> BenchmarkOutcome:
        """Execute *request* and summarize the result.

        Args:
            request: The two methods to compare, plus shared code.
            progress: Optional sink for stage progress updates.

        Returns:
            A ``BenchmarkOutcome``; failures are values, never exceptions.
        """
        start = time.monotonic()
        tracker = ProgressTracker(progress)
        state = RunState(run_id=uuid.uuid4().hex)
        logger.info("Benchmark run %s started", state.run_id)

        try:
            result = await self._run_stages(request, state, tracker)
        except Exception as exc:
            logger.exception("Benchmark run %s failed unexpectedly in %s", state.run_id, state.stage)
            result = StageFailure(
                kind=FailureKind.UNEXPECTED,
                stage=state.stage,
                message=f"Unexpected error: {exc}",
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if isinstance(result, StageFailure):
            return self._fail(state, result, tracker, elapsed_ms)

        reports, raw_output = result
        self._enter(state, tracker, PipelineStage.DONE)
        logger.info("Benchmark run %s completed in %dms", state.run_id, elapsed_ms)
        return BenchmarkOutcome(
            run_id=state.run_id,
            success=True,
            results_markdown=reports.results_markdown,
            results_json=reports.results_json,
            raw_output=raw_output,
            execution_time_ms=elapsed_ms,
            workspace_path=state.workspace_path,
        )

    async def cleanup(self, workspace_path: str) -> None:
        """Delete a run's workspace in a worker thread; never raises."""
        try:
            await asyncio.to_thread(cleanup_workspace, workspace_path)
        except Exception:
            logger.warning("Cleanup of %s failed", workspace_path, exc_info=True)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run_stages(
        self,
        request: BenchmarkRequest,
        state: RunState,
        tracker: ProgressTracker,
    ) -> tuple[ParsedReports, str] | StageFailure:
        self._enter(state, tracker, PipelineStage.GENERATING)
        options = DriverOptions.from_config(self.config)
        sources = synthesize(request, options)

        self._enter(state, tracker, PipelineStage.VALIDATING)
        failure = self._validate(sources)
        if failure is not None:
            return failure

        self._enter(state, tracker, PipelineStage.PREPARING)
        workspace = create_workspace(self.config.workspace_root, state.run_id)
        state.workspace_path = str(workspace)
        write_workspace(workspace, sources, render_requirements(options))
        env = build_execution_env(workspace)

        self._enter(state, tracker, PipelineStage.RESTORING)
        failure = await self._restore(workspace, env)
        if failure is not None:
            return failure

        self._enter(state, tracker, PipelineStage.BUILDING)
        failure = await self._build(workspace, env)
        if failure is not None:
            return failure

        self._enter(state, tracker, PipelineStage.RUNNING)
        run_result = await self._execute(workspace, env, tracker)
        if isinstance(run_result, StageFailure):
            return run_result

        self._enter(state, tracker, PipelineStage.PARSING)
        reports = parse_results(workspace)
        return reports, run_result.output

    def _validate(self, sources: GeneratedSources) -> StageFailure | None:
        is_valid, diagnostics = validate_syntax(sources.harness)
        if is_valid:
            return None
        return StageFailure(
            kind=FailureKind.VALIDATION,
            stage=PipelineStage.VALIDATING,
            message=VALIDATION_FAILED_MESSAGE,
            diagnostics=diagnostics,
        )

    async def _restore(self, workspace: Path, env: dict[str, str]) -> StageFailure | None:
        result = await self._toolchain(
            self.config.restore_args,
            workspace,
            env,
            timeout=self.config.restore_timeout_seconds,
        )
        if result.succeeded:
            return None
        logger.warning(
            "Restore failed: exit_code=%d timed_out=%s spawn_error=%s",
            result.exit_code,
            result.timed_out,
            result.spawn_error,
        )
        return StageFailure(
            kind=FailureKind.RESTORE,
            stage=PipelineStage.RESTORING,
            message=RESTORE_FAILED_MESSAGE,
        )

    async def _build(self, workspace: Path, env: dict[str, str]) -> StageFailure | None:
        result = await self._toolchain(
            self.config.build_args,
            workspace,
            env,
            timeout=self.config.build_timeout_seconds,
        )
        if result.succeeded:
            return None
        return StageFailure(
            kind=FailureKind.BUILD,
            stage=PipelineStage.BUILDING,
            message=BUILD_FAILED_MESSAGE,
            raw_output=_output_or_error(result, "Build error"),
        )

    async def _execute(
        self,
        workspace: Path,
        env: dict[str, str],
        tracker: ProgressTracker,
    ) -> ProcessResult | StageFailure:
        monitor = RunningProgress(
            tracker,
            start=tracker.percentage,
            cap=self.config.running_progress_cap,
            warmup_marker=self.config.warmup_marker,
            measure_marker=self.config.measure_marker,
        )
        timeout = self.config.run_timeout_seconds
        result = await self._toolchain(
            self.config.run_args,
            workspace,
            env,
            timeout=timeout,
            on_line=monitor.observe,
        )
        if result.timed_out:
            return StageFailure(
                kind=FailureKind.RUN_TIMEOUT,
                stage=PipelineStage.RUNNING,
                message=f"Benchmark execution timed out after {timeout:g} seconds.",
                raw_output=result.output,
            )
        if not result.succeeded:
            return StageFailure(
                kind=FailureKind.RUN_FAILURE,
                stage=PipelineStage.RUNNING,
                message=RUN_FAILED_MESSAGE,
                raw_output=_output_or_error(result, "Benchmark execution error"),
            )
        return result

    async def _toolchain(
        self,
        args: list[str],
        workspace: Path,
        env: dict[str, str],
        *,
        timeout: float,
        on_line: Callable[[str], None] | None = None,
    ) -> ProcessResult:
        return await run_process(
            [self.config.python_executable, *args],
            workspace,
            timeout_seconds=timeout,
            env=env,
            on_line=on_line,
            kill_grace_seconds=self.config.kill_grace_seconds,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _enter(self, state: RunState, tracker: ProgressTracker, stage: PipelineStage) -> None:
        state.stage = stage
        message, percentage = _STAGE_PROGRESS[stage]
        logger.debug("Run %s entering %s", state.run_id, stage)
        tracker.report(message, percentage)

    def _fail(
        self,
        state: RunState,
        failure: StageFailure,
        tracker: ProgressTracker,
        elapsed_ms: int,
    ) -> BenchmarkOutcome:
        state.stage = PipelineStage.FAILED
        logger.warning(
            "Benchmark run %s failed in %s (%s): %s",
            state.run_id,
            failure.stage,
            failure.kind,
            failure.message,
        )
        tracker.report(f"Benchmark failed: {failure.message}", tracker.percentage)
        return BenchmarkOutcome(
            run_id=state.run_id,
            success=False,
            failure_kind=failure.kind,
            failed_stage=failure.stage,
            error_message=failure.message,
            diagnostics=failure.diagnostics,
            raw_output=failure.raw_output,
            execution_time_ms=elapsed_ms,
            workspace_path=state.workspace_path,
        )


def _output_or_error(result: ProcessResult, label: str) -> str:
    """Return captured output, or a description of why the process never started."""
    if result.spawn_error is not None:
        return f"{label}: {result.spawn_error}"
    return result.output
