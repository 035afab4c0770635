"""Core data models for the benchmark tool.

Defines the request, diagnostic, outcome, and configuration types shared
by the synthesizer, validator, admission gate, and execution pipeline.
All models are Pydantic v2 and frozen unless they describe mutable
runtime state.
"""

from __future__ import annotations

from enum import StrEnum
import sys

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

RUNNING_PROGRESS_CAP = 85
"""Highest percentage the Running stage may report; the rest is reserved for parsing."""

WARMUP_MARKER = "WorkloadWarmup"
MEASURE_MARKER = "WorkloadActual"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


class MethodSpec(BaseModel):
    """One of the two competing code fragments.

    Attributes:
        name: Requested method name; sanitized before use.
        code: Python statements forming the method body.
    """

    model_config = ConfigDict(frozen=True)

    name: str = "method"
    code: str = ""


class BenchmarkRequest(BaseModel):
    """Immutable input describing a two-way benchmark.

    Declarations are placed at class level, so setup and method code see
    them as instance attributes: ``data = [1, 2]`` is read as ``self.data``.
    A bare ``data`` in a method body is a ``NameError`` at run time.

    Attributes:
        declarations: Class-level statements shared by both methods and setup.
        setup: Statements run once before any measurement, with ``self``
            bound to the benchmark instance.
        method_a: The baseline method.
        method_b: The method compared against the baseline.
    """

    model_config = ConfigDict(frozen=True)

    declarations: str = ""
    setup: str = ""
    method_a: MethodSpec = MethodSpec(name="method_a")
    method_b: MethodSpec = MethodSpec(name="method_b")


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class DiagnosticSeverity(StrEnum):
    """Severity of a parser diagnostic, ordered from least to most severe."""

    HIDDEN = "hidden"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Diagnostic(BaseModel):
    """A positioned syntax complaint about the generated harness.

    Attributes:
        line: 1-based line number in the harness text.
        column: 1-based column number.
        message: Human-readable description.
        severity: Always ``ERROR`` for diagnostics the validator reports.
        code: Parser error class, e.g. ``"IndentationError"``.
        file_path: Name of the file the harness is written to.
    """

    model_config = ConfigDict(frozen=True)

    line: int = Field(ge=1)
    column: int = Field(ge=1)
    message: str
    severity: DiagnosticSeverity = DiagnosticSeverity.ERROR
    code: str | None = None
    file_path: str | None = None


# ---------------------------------------------------------------------------
# Pipeline state and outcome
# ---------------------------------------------------------------------------


class PipelineStage(StrEnum):
    """Stages of the forward-only execution pipeline."""

    GENERATING = "generating"
    VALIDATING = "validating"
    PREPARING = "preparing"
    RESTORING = "restoring"
    BUILDING = "building"
    RUNNING = "running"
    PARSING = "parsing"
    DONE = "done"
    FAILED = "failed"


class FailureKind(StrEnum):
    """Why a run did not succeed."""

    VALIDATION = "validation"
    RESTORE = "restore"
    BUILD = "build"
    RUN_TIMEOUT = "run_timeout"
    RUN_FAILURE = "run_failure"
    UNEXPECTED = "unexpected"


class StageFailure(BaseModel):
    """Tagged failure value returned by a pipeline stage instead of raising.

    Attributes:
        kind: Failure category.
        stage: Stage that produced the failure.
        message: User-facing error message.
        raw_output: Captured process output, when the stage retains it.
        diagnostics: Syntax diagnostics (validation failures only).
    """

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    stage: PipelineStage
    message: str
    raw_output: str | None = None
    diagnostics: list[Diagnostic] = []


class BenchmarkOutcome(BaseModel):
    """Terminal, fault-free result of one pipeline run.

    Exactly one of validation failure, build failure, run failure/timeout,
    restore failure, unexpected failure, or success holds: ``success`` is
    true iff ``failure_kind`` is ``None``.

    Attributes:
        run_id: Identifier of the run; also names the workspace.
        success: Whether the benchmark completed.
        failure_kind: Failure category, ``None`` on success.
        failed_stage: Stage in which the run failed, ``None`` on success.
        error_message: User-facing error message.
        diagnostics: Syntax diagnostics from validation.
        results_markdown: GitHub-flavoured markdown report, if found.
        results_json: Full JSON report, if found.
        raw_output: Combined process output of the last stage that kept it.
        execution_time_ms: Wall-clock time from pipeline entry to completion.
        workspace_path: Workspace directory, for deferred cleanup.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    success: bool
    failure_kind: FailureKind | None = None
    failed_stage: PipelineStage | None = None
    error_message: str | None = None
    diagnostics: list[Diagnostic] = []
    results_markdown: str | None = None
    results_json: str | None = None
    raw_output: str | None = None
    execution_time_ms: int = Field(default=0, ge=0)
    workspace_path: str | None = None

    @model_validator(mode="after")
    def _check_success_matches_failure(self) -> BenchmarkOutcome:
        """Validate that success and failure_kind are mutually exclusive."""
        if self.success == (self.failure_kind is not None):
            msg = "success must be True exactly when failure_kind is None"
            raise ValueError(msg)
        return self


class ProgressEvent(BaseModel):
    """A human-readable stage description with a percentage hint."""

    model_config = ConfigDict(frozen=True)

    message: str
    percentage: int = Field(ge=0, le=100)


class RunState(BaseModel):
    """Mutable bookkeeping for a single pipeline run.

    Unlike the other models this is **not** frozen: the pipeline updates
    it as it advances so the boundary handler can report where it stopped.
    """

    run_id: str
    stage: PipelineStage = PipelineStage.GENERATING
    workspace_path: str | None = None


class ParsedReports(BaseModel):
    """Report texts read back out of a workspace; absent files are ``None``."""

    model_config = ConfigDict(frozen=True)

    results_markdown: str | None = None
    results_json: str | None = None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


_DEFAULT_RESTORE_ARGS: list[str] = [
    "-m",
    "pip",
    "install",
    "--quiet",
    "--disable-pip-version-check",
    "--no-input",
    "--target",
    "packages",
    "--requirement",
    "requirements.txt",
]
_DEFAULT_BUILD_ARGS: list[str] = ["-O", "-m", "compileall", "-q", "-l", "."]
_DEFAULT_RUN_ARGS: list[str] = ["-O", "program.py"]


class RunnerConfig(BaseModel):
    """Tunables for the execution pipeline and the service around it.

    Attributes:
        workspace_root: Parent directory for run workspaces; the system
            temp directory when ``None``.
        python_executable: Interpreter used as the toolchain.
        benchmark_requirement: The one dependency written to the project
            descriptor.
        restore_args: Interpreter arguments for the Restoring stage.
        build_args: Interpreter arguments for the Building stage.
        run_args: Interpreter arguments for the Running stage.
        restore_timeout_seconds: Hard limit for the Restoring stage.
        build_timeout_seconds: Hard limit for the Building stage.
        run_timeout_seconds: Hard limit for the Running stage.
        kill_grace_seconds: Delay between SIGTERM and SIGKILL on timeout.
        cleanup_delay_seconds: Delay before a finished workspace is deleted.
        keep_workspaces: Skip deferred cleanup entirely.
        running_progress_cap: Highest percentage reported while running.
        warmup_marker: Output text announcing a warm-up round.
        measure_marker: Output text announcing a measurement round.
        warmup_rounds: Warm-up rounds per method in the generated driver.
        measure_rounds: Measured rounds per method in the generated driver.
        min_round_seconds: Calibration target for one round.
        log_level: Logging level name.
        log_file: Optional log file path.
    """

    model_config = ConfigDict(frozen=True)

    workspace_root: str | None = None
    python_executable: str = sys.executable
    benchmark_requirement: str = "pyperf>=2.6"
    restore_args: list[str] = _DEFAULT_RESTORE_ARGS
    build_args: list[str] = _DEFAULT_BUILD_ARGS
    run_args: list[str] = _DEFAULT_RUN_ARGS

    restore_timeout_seconds: float = 600.0
    build_timeout_seconds: float = 300.0
    run_timeout_seconds: float = 300.0
    kill_grace_seconds: float = 5.0
    cleanup_delay_seconds: float = 30.0
    keep_workspaces: bool = False

    running_progress_cap: int = RUNNING_PROGRESS_CAP
    warmup_marker: str = WARMUP_MARKER
    measure_marker: str = MEASURE_MARKER

    warmup_rounds: int = 3
    measure_rounds: int = 15
    min_round_seconds: float = 0.05

    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator(
        "restore_timeout_seconds",
        "build_timeout_seconds",
        "run_timeout_seconds",
        "min_round_seconds",
    )
    @classmethod
    def _must_be_positive(cls, v: float) -> float:
        """Validate that timeouts and round targets are > 0."""
        if v <= 0:
            msg = "Value must be > 0"
            raise ValueError(msg)
        return v

    @field_validator("kill_grace_seconds", "cleanup_delay_seconds")
    @classmethod
    def _must_be_non_negative(cls, v: float) -> float:
        """Validate that delays are >= 0."""
        if v < 0:
            msg = "Value must be >= 0"
            raise ValueError(msg)
        return v

    @field_validator("running_progress_cap")
    @classmethod
    def _cap_in_running_band(cls, v: int) -> int:
        """Validate that the cap lies between Running (60) and Parsing (90)."""
        if not 60 <= v < 90:
            msg = "running_progress_cap must be in [60, 90)"
            raise ValueError(msg)
        return v

    @field_validator("warmup_rounds")
    @classmethod
    def _warmups_non_negative(cls, v: int) -> int:
        """Validate that warm-up rounds are >= 0."""
        if v < 0:
            msg = "warmup_rounds must be >= 0"
            raise ValueError(msg)
        return v

    @field_validator("measure_rounds")
    @classmethod
    def _enough_measurements(cls, v: int) -> int:
        """Validate that at least two rounds are measured (stdev needs two)."""
        if v < 2:
            msg = "measure_rounds must be >= 2"
            raise ValueError(msg)
        return v

    @field_validator("warmup_marker", "measure_marker")
    @classmethod
    def _marker_not_blank(cls, v: str) -> str:
        """Validate that output markers are non-empty."""
        if not v.strip():
            msg = "markers must not be blank"
            raise ValueError(msg)
        return v
