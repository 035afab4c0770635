"""Tests for the core data models.

Covers request defaults, diagnostic positions, the success/failure
invariant of ``BenchmarkOutcome``, and ``RunnerConfig`` validation.
"""

from __future__ import annotations

from benchmark_tool.models import (
    MEASURE_MARKER,
    RUNNING_PROGRESS_CAP,
    WARMUP_MARKER,
    BenchmarkOutcome,
    BenchmarkRequest,
    Diagnostic,
    DiagnosticSeverity,
    FailureKind,
    MethodSpec,
    PipelineStage,
    ProgressEvent,
    RunnerConfig,
    RunState,
)
from hypothesis import given, strategies as st
from pydantic import ValidationError
import pytest


@pytest.mark.unit
class TestBenchmarkRequest:
    """BenchmarkRequest is an immutable bundle of four code slots."""

    def test_defaults_name_both_methods(self) -> None:
        """Default method names are distinct."""
        request = BenchmarkRequest()
        assert request.method_a.name == "method_a"
        assert request.method_b.name == "method_b"
        assert request.declarations == ""
        assert request.setup == ""

    def test_is_frozen(self) -> None:
        """Assigning to a field raises."""
        request = BenchmarkRequest()
        with pytest.raises(ValidationError):
            request.setup = "x = 1"  # type: ignore[misc]

    def test_accepts_nested_dicts(self) -> None:
        """Methods can be given as plain mappings, as loaded from YAML."""
        request = BenchmarkRequest(method_a={"name": "Fast", "code": "pass"})
        assert request.method_a == MethodSpec(name="Fast", code="pass")


@pytest.mark.unit
class TestDiagnostic:
    """Diagnostic positions are 1-based."""

    def test_severity_defaults_to_error(self) -> None:
        """A diagnostic without explicit severity is an error."""
        diag = Diagnostic(line=3, column=5, message="invalid syntax")
        assert diag.severity == DiagnosticSeverity.ERROR

    @pytest.mark.parametrize(("line", "column"), [(0, 1), (1, 0), (-1, 4)])
    def test_rejects_non_positive_positions(self, line: int, column: int) -> None:
        """Zero or negative line/column values are rejected."""
        with pytest.raises(ValidationError):
            Diagnostic(line=line, column=column, message="m")


@pytest.mark.unit
class TestBenchmarkOutcome:
    """success is true exactly when failure_kind is None."""

    def test_success_without_failure_kind(self) -> None:
        """A successful outcome carries no failure kind."""
        outcome = BenchmarkOutcome(run_id="r", success=True)
        assert outcome.failure_kind is None

    def test_failure_with_kind(self) -> None:
        """A failed outcome names its kind and stage."""
        outcome = BenchmarkOutcome(
            run_id="r",
            success=False,
            failure_kind=FailureKind.BUILD,
            failed_stage=PipelineStage.BUILDING,
            error_message="Failed to build the benchmark project.",
        )
        assert outcome.failure_kind == FailureKind.BUILD

    def test_success_with_failure_kind_rejected(self) -> None:
        """success=True together with a failure kind is invalid."""
        with pytest.raises(ValidationError, match="failure_kind"):
            BenchmarkOutcome(run_id="r", success=True, failure_kind=FailureKind.BUILD)

    def test_failure_without_kind_rejected(self) -> None:
        """success=False without a failure kind is invalid."""
        with pytest.raises(ValidationError, match="failure_kind"):
            BenchmarkOutcome(run_id="r", success=False)

    def test_negative_execution_time_rejected(self) -> None:
        """Elapsed time cannot be negative."""
        with pytest.raises(ValidationError):
            BenchmarkOutcome(run_id="r", success=True, execution_time_ms=-1)

    def test_json_round_trip_keeps_enums(self) -> None:
        """Dumping to JSON serializes enums by value."""
        outcome = BenchmarkOutcome(
            run_id="r",
            success=False,
            failure_kind=FailureKind.RUN_TIMEOUT,
            failed_stage=PipelineStage.RUNNING,
        )
        dumped = outcome.model_dump(mode="json")
        assert dumped["failure_kind"] == "run_timeout"
        assert dumped["failed_stage"] == "running"


@pytest.mark.unit
class TestProgressEvent:
    """Percentages stay within 0..100."""

    @given(st.integers(min_value=0, max_value=100))
    def test_accepts_valid_range(self, pct: int) -> None:
        """Every value in 0..100 is accepted."""
        assert ProgressEvent(message="m", percentage=pct).percentage == pct

    @pytest.mark.parametrize("pct", [-1, 101])
    def test_rejects_out_of_range(self, pct: int) -> None:
        """Values outside 0..100 are rejected."""
        with pytest.raises(ValidationError):
            ProgressEvent(message="m", percentage=pct)


@pytest.mark.unit
class TestRunState:
    """RunState is mutable bookkeeping."""

    def test_starts_generating_without_workspace(self) -> None:
        """A fresh state is at the first stage with no workspace."""
        state = RunState(run_id="abc")
        assert state.stage == PipelineStage.GENERATING
        assert state.workspace_path is None

    def test_stage_is_assignable(self) -> None:
        """The pipeline advances the stage in place."""
        state = RunState(run_id="abc")
        state.stage = PipelineStage.RUNNING
        assert state.stage == PipelineStage.RUNNING


@pytest.mark.unit
class TestRunnerConfig:
    """RunnerConfig defaults and validators."""

    def test_defaults(self) -> None:
        """Defaults match the documented values."""
        config = RunnerConfig()
        assert config.run_timeout_seconds == 300.0
        assert config.restore_timeout_seconds == 600.0
        assert config.build_timeout_seconds == 300.0
        assert config.cleanup_delay_seconds == 30.0
        assert config.running_progress_cap == RUNNING_PROGRESS_CAP == 85
        assert config.warmup_marker == WARMUP_MARKER
        assert config.measure_marker == MEASURE_MARKER
        assert config.keep_workspaces is False

    @pytest.mark.parametrize(
        "field",
        [
            "restore_timeout_seconds",
            "build_timeout_seconds",
            "run_timeout_seconds",
            "min_round_seconds",
        ],
    )
    @pytest.mark.parametrize("value", [0, -1.5])
    def test_rejects_non_positive(self, field: str, value: float) -> None:
        """Timeouts and round targets must be positive."""
        with pytest.raises(ValidationError, match="> 0"):
            RunnerConfig(**{field: value})

    def test_allows_zero_cleanup_delay(self) -> None:
        """Immediate cleanup is allowed."""
        assert RunnerConfig(cleanup_delay_seconds=0).cleanup_delay_seconds == 0

    def test_rejects_negative_grace(self) -> None:
        """The kill grace period cannot be negative."""
        with pytest.raises(ValidationError, match=">= 0"):
            RunnerConfig(kill_grace_seconds=-1)

    @pytest.mark.parametrize("cap", [59, 90, 100])
    def test_rejects_cap_outside_running_band(self, cap: int) -> None:
        """The running cap must stay below the parsing percentage."""
        with pytest.raises(ValidationError, match="running_progress_cap"):
            RunnerConfig(running_progress_cap=cap)

    def test_rejects_single_measurement(self) -> None:
        """At least two measured rounds are required."""
        with pytest.raises(ValidationError, match="measure_rounds"):
            RunnerConfig(measure_rounds=1)

    def test_rejects_blank_marker(self) -> None:
        """Markers cannot be blank."""
        with pytest.raises(ValidationError, match="markers"):
            RunnerConfig(warmup_marker="  ")

    def test_is_frozen(self) -> None:
        """Config values cannot be reassigned."""
        config = RunnerConfig()
        with pytest.raises(ValidationError):
            config.run_timeout_seconds = 1.0  # type: ignore[misc]
