"""CLI entry point for the benchmark tool.

Provides ``main()`` as the console-script entry point registered in
``pyproject.toml`` as ``benchmark-tool = "benchmark_tool.cli:main"``.
Parses command-line arguments, loads the request and config YAML files,
and delegates to ``run_benchmark_sync()`` from ``benchmark_tool.service``.
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Any

import yaml

from benchmark_tool.models import BenchmarkOutcome, BenchmarkRequest, RunnerConfig
from benchmark_tool.service import apply_env_overrides, configure_logging, run_benchmark_sync


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ``ArgumentParser`` with ``--request``, ``--config``,
        ``--keep-workspace`` and ``--json`` flags.
    """
    parser = argparse.ArgumentParser(
        prog="benchmark-tool",
        description="Compare the running time of two Python code fragments.",
        epilog=(
            "Declarations become class attributes of the benchmark class, so "
            "setup and method code must reach them through self (self.data, "
            "not data)."
        ),
    )
    parser.add_argument(
        "--request",
        required=True,
        help="Path to the benchmark request YAML file.",
    )
    parser.add_argument(
        "--config",
        required=False,
        default=None,
        help="Path to an optional RunnerConfig YAML file.",
    )
    parser.add_argument(
        "--keep-workspace",
        action="store_true",
        help="Leave the run's workspace directory on disk.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full outcome as JSON instead of the report.",
    )
    return parser


def _load_yaml(path: str, label: str) -> dict[str, Any]:
    """Load and validate a YAML file as a dict.

    Args:
        path: File path to the YAML file.
        label: Human-readable label for error messages (e.g., "request", "config").

    Returns:
        The parsed YAML content as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file does not parse to a dict.
    """
    file_path = Path(path)
    if not file_path.exists():
        msg = f"{label} file not found: {path}"
        raise FileNotFoundError(msg)

    with open(file_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        msg = f"{label} file must contain a YAML mapping, got {type(data).__name__}"
        raise ValueError(msg)

    return data


class _StderrProgress:
    """Progress sink printing one line per update to stderr."""

    def report(self, message: str, percentage: int) -> None:
        print(f"[{percentage:3d}%] {message}", file=sys.stderr)


def _print_startup_summary(request: BenchmarkRequest, config: RunnerConfig) -> None:
    """Print a startup summary banner to stderr.

    Args:
        request: The benchmark request about to run.
        config: Effective runner configuration.
    """
    sep = "=" * 60
    print(sep, file=sys.stderr)
    print("Benchmark Tool", file=sys.stderr)
    print(sep, file=sys.stderr)
    print(f"  Method A:     {request.method_a.name}", file=sys.stderr)
    print(f"  Method B:     {request.method_b.name}", file=sys.stderr)
    print(f"  Interpreter:  {config.python_executable}", file=sys.stderr)
    print(f"  Run timeout:  {config.run_timeout_seconds:g}s", file=sys.stderr)
    print(
        f"  Rounds:       warmup={config.warmup_rounds}, measure={config.measure_rounds}",
        file=sys.stderr,
    )
    print(sep, file=sys.stderr)


def _print_outcome(outcome: BenchmarkOutcome) -> None:
    """Print the report on success, or the error and its details on failure."""
    if outcome.success:
        print(outcome.results_markdown or outcome.raw_output or "")
        print(f"Total duration: {outcome.execution_time_ms}ms", file=sys.stderr)
        return

    print(f"Benchmark error: {outcome.error_message}", file=sys.stderr)
    for diag in outcome.diagnostics:
        print(f"  line {diag.line}, column {diag.column}: {diag.message}", file=sys.stderr)
    if outcome.raw_output:
        print(outcome.raw_output, file=sys.stderr)


def main() -> int:
    """Entry point for the benchmark-tool CLI application.

    Parses ``--request`` (required) and ``--config`` (optional) arguments,
    loads and validates the YAML files, and runs the benchmark via
    ``run_benchmark_sync()``.

    Returns:
        Exit code: 0 on success, 1 on error.
    """
    parser = _build_parser()
    args = parser.parse_args()

    try:
        request = BenchmarkRequest(**_load_yaml(args.request, "request"))

        config = RunnerConfig()
        if args.config is not None:
            config = RunnerConfig(**_load_yaml(args.config, "config"))
        if args.keep_workspace:
            config = config.model_copy(update={"keep_workspaces": True})
        config = apply_env_overrides(config)

        configure_logging(config)
        _print_startup_summary(request, config)

        outcome = run_benchmark_sync(request, config, _StderrProgress())
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(outcome.model_dump_json(indent=2))
    else:
        _print_outcome(outcome)
    return 0 if outcome.success else 1


if __name__ == "__main__":
    sys.exit(main())
