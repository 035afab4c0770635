"""Shared fixtures for the benchmark_tool test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from benchmark_tool.execution import ProcessResult
from benchmark_tool.models import BenchmarkRequest, MethodSpec, RunnerConfig
import pytest

# ---------------------------------------------------------------------------
# Factory functions (plain functions, importable from conftest)
# ---------------------------------------------------------------------------


def make_request(**overrides: Any) -> BenchmarkRequest:
    """Build a valid BenchmarkRequest with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed BenchmarkRequest instance.
    """
    defaults: dict[str, Any] = {
        "declarations": "x = 0",
        "setup": "",
        "method_a": MethodSpec(name="MethodA", code="x = 1;"),
        "method_b": MethodSpec(name="MethodB", code="x = 2;"),
    }
    defaults.update(overrides)
    return BenchmarkRequest(**defaults)


def make_config(**overrides: Any) -> RunnerConfig:
    """Build a RunnerConfig with fast defaults suitable for tests.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed RunnerConfig instance.
    """
    defaults: dict[str, Any] = {
        "kill_grace_seconds": 1.0,
        "cleanup_delay_seconds": 0.0,
        "warmup_rounds": 2,
        "measure_rounds": 3,
        "min_round_seconds": 0.001,
    }
    defaults.update(overrides)
    return RunnerConfig(**defaults)


def make_process_result(**overrides: Any) -> ProcessResult:
    """Build a successful ProcessResult with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed ProcessResult instance.
    """
    defaults: dict[str, Any] = {
        "output": "",
        "exit_code": 0,
        "duration_seconds": 0.1,
    }
    defaults.update(overrides)
    return ProcessResult(**defaults)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def workspace_root(tmp_path: Path) -> Path:
    """Return an empty directory to hold run workspaces."""
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture()
def local_config(workspace_root: Path) -> RunnerConfig:
    """Config whose restore stage is a no-op, for runs against the current interpreter.

    Requires the benchmark framework to be importable from the test
    interpreter, since nothing is installed into the workspace.
    """
    return make_config(
        workspace_root=str(workspace_root),
        restore_args=["-c", "pass"],
    )
