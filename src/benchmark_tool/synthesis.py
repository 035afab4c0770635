"""Code synthesis: turns a benchmark request into harness and driver sources.

The harness (``dynamic_benchmark.py``) is built from four named slots:
declarations, setup, method A, and method B. Method names are sanitized
into valid Python identifiers and every code slot is re-indented into its
place in the ``DynamicBenchmark`` class. The driver (``program.py``)
times each case and hands the samples to pyperf, which supplies the
statistics and the full JSON export.

Nothing here executes user-supplied text; it only assembles it.
"""

from __future__ import annotations

import keyword
import re
from string import Template
import uuid

from pydantic import BaseModel, ConfigDict

from benchmark_tool.models import BenchmarkRequest, RunnerConfig

HARNESS_FILENAME = "dynamic_benchmark.py"
DRIVER_FILENAME = "program.py"
REQUIREMENTS_FILENAME = "requirements.txt"
ARTIFACTS_DIRNAME = "benchmark_artifacts"
HARNESS_CLASS = "DynamicBenchmark"
REPORT_PREFIX = f"{HARNESS_FILENAME.removesuffix('.py')}.{HARNESS_CLASS}"

DEFAULT_METHOD_NAME = "method"
METHOD_INDENT = 8
CLASS_INDENT = 4

# Names the harness defines itself; a method using one would shadow it.
_RESERVED_NAMES = frozenset({"global_setup", "bench_case", "bench_setup"})
_INVALID_IDENTIFIER_CHARS = re.compile(r"[^A-Za-z0-9_]")
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class DriverOptions(BaseModel):
    """Measurement settings baked into the generated driver."""

    model_config = ConfigDict(frozen=True)

    warmup_rounds: int = 3
    measure_rounds: int = 15
    min_round_seconds: float = 0.05
    warmup_marker: str = "WorkloadWarmup"
    measure_marker: str = "WorkloadActual"
    benchmark_requirement: str = "pyperf>=2.6"

    @classmethod
    def from_config(cls, config: RunnerConfig) -> DriverOptions:
        """Extract the driver-relevant fields from a runner configuration."""
        return cls(
            warmup_rounds=config.warmup_rounds,
            measure_rounds=config.measure_rounds,
            min_round_seconds=config.min_round_seconds,
            warmup_marker=config.warmup_marker,
            measure_marker=config.measure_marker,
            benchmark_requirement=config.benchmark_requirement,
        )


class GeneratedSources(BaseModel):
    """Source artifacts produced for one run.

    Attributes:
        artifact_id: Fresh identifier embedded in both sources.
        harness: Text of ``dynamic_benchmark.py``.
        driver: Text of ``program.py``.
        method_a_name: Sanitized baseline method name.
        method_b_name: Sanitized comparison method name.
    """

    model_config = ConfigDict(frozen=True)

    artifact_id: str
    harness: str
    driver: str
    method_a_name: str
    method_b_name: str


# ---------------------------------------------------------------------------
# Slot helpers
# ---------------------------------------------------------------------------


def sanitize_method_name(name: str, default: str = DEFAULT_METHOD_NAME) -> str:
    """Turn an arbitrary string into a safe Python method identifier.

    Strips every character outside ``[A-Za-z0-9_]``. An empty result
    becomes *default*; a leading digit gets an ``_`` prefix. Keywords and
    names reserved by the harness get an ``_`` suffix.

    Args:
        name: Requested method name.
        default: Identifier used when nothing usable remains.

    Returns:
        An identifier matching ``_?[A-Za-z_][A-Za-z0-9_]*``.
    """
    sanitized = _INVALID_IDENTIFIER_CHARS.sub("", name)
    if not sanitized:
        return default
    if sanitized[0].isdigit():
        sanitized = "_" + sanitized
    if keyword.iskeyword(sanitized) or sanitized in _RESERVED_NAMES:
        sanitized += "_"
    return sanitized


def indent_code(code: str, width: int) -> str:
    """Prefix every non-blank line of *code* with *width* spaces.

    Whitespace-only lines are kept verbatim. Blank input yields an empty
    string. Line breaks of any style are normalized to ``\\n``.
    """
    if not code.strip():
        return ""
    prefix = " " * width
    lines = _LINE_BREAK.split(code)
    return "\n".join(line if not line.strip() else prefix + line for line in lines)


def _has_statement(code: str) -> bool:
    return any(
        line.strip() and not line.lstrip().startswith("#") for line in _LINE_BREAK.split(code)
    )


def _method_body(code: str) -> str:
    body = indent_code(code, METHOD_INDENT)
    if _has_statement(code):
        return body
    # Blank or comment-only code still needs a statement under the def.
    pad = " " * METHOD_INDENT + "pass"
    return f"{body}\n{pad}" if body else pad


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------

_HARNESS_PREAMBLE = '''\
"""Benchmark harness for artifact {artifact_id}. Generated; do not edit."""

ARTIFACT_ID = "{artifact_id}"


def bench_case(baseline=False):
    def mark(func):
        func.__bench_case__ = {{"baseline": baseline}}
        return func
    return mark


def bench_setup(func):
    func.__bench_setup__ = True
    return func


class {class_name}:'''


def build_harness(
    request: BenchmarkRequest,
    artifact_id: str,
    method_a_name: str,
    method_b_name: str,
) -> str:
    """Assemble the harness module from the request's named slots.

    Args:
        request: The benchmark request.
        artifact_id: Identifier embedded as ``ARTIFACT_ID``.
        method_a_name: Sanitized baseline method name.
        method_b_name: Sanitized comparison method name.

    Returns:
        The complete text of ``dynamic_benchmark.py``.
    """
    lines = [
        _HARNESS_PREAMBLE.format(artifact_id=artifact_id, class_name=HARNESS_CLASS),
    ]

    declarations = indent_code(request.declarations, CLASS_INDENT)
    if declarations:
        lines.append(declarations)
        lines.append("")

    if request.setup.strip():
        lines.extend(
            [
                "    @bench_setup",
                "    def global_setup(self):",
                _method_body(request.setup),
                "",
            ]
        )

    lines.extend(
        [
            "    @bench_case(baseline=True)",
            f"    def {method_a_name}(self):",
            _method_body(request.method_a.code),
            "",
            "    @bench_case()",
            f"    def {method_b_name}(self):",
            _method_body(request.method_b.code),
        ]
    )
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

_DRIVER_TEMPLATE = Template('''\
"""Benchmark driver for artifact $artifact_id. Generated; do not edit."""

import csv
import json
import os
import platform
import sys
import time

import pyperf

from dynamic_benchmark import ARTIFACT_ID, $class_name

RESULTS_DIR = os.path.join("$artifacts_dir", "results")
REPORT_PREFIX = "$report_prefix"
WARMUP_ROUNDS = $warmup_rounds
MEASURE_ROUNDS = $measure_rounds
MIN_ROUND_SECONDS = $min_round_seconds
WARMUP_MARKER = $warmup_marker
MEASURE_MARKER = $measure_marker
MAX_LOOPS = 1 << 24


def discover(instance):
    cases, setups = [], []
    for name, member in vars(type(instance)).items():
        if getattr(member, "__bench_setup__", False):
            setups.append(getattr(instance, name))
        marker = getattr(member, "__bench_case__", None)
        if marker is not None:
            cases.append((name, getattr(instance, name), marker["baseline"]))
    return cases, setups


def time_round(func, loops):
    start = time.perf_counter()
    for _ in range(loops):
        func()
    return time.perf_counter() - start


def calibrate(func):
    loops = 1
    while loops < MAX_LOOPS and time_round(func, loops) < MIN_ROUND_SECONDS:
        loops *= 2
    return loops


def format_time(seconds):
    for unit, scale in (("ns", 1e9), ("us", 1e6), ("ms", 1e3)):
        if seconds * scale < 1000:
            return "%.3f %s" % (seconds * scale, unit)
    return "%.3f s" % seconds


def measure(name, func, baseline):
    print("// Benchmark: %s.%s" % ($class_name.__name__, name), flush=True)
    loops = calibrate(func)
    warmups = []
    for index in range(1, WARMUP_ROUNDS + 1):
        per_op = time_round(func, loops) / loops
        warmups.append((loops, per_op))
        print("%s %3d: %d op, %s/op" % (WARMUP_MARKER, index, loops, format_time(per_op)), flush=True)
    values = []
    for index in range(1, MEASURE_ROUNDS + 1):
        per_op = time_round(func, loops) / loops
        values.append(per_op)
        print("%s %3d: %d op, %s/op" % (MEASURE_MARKER, index, loops, format_time(per_op)), flush=True)
    run = pyperf.Run(
        [max(value, 1e-15) for value in values],
        warmups=warmups,
        metadata={"name": name, "loops": loops},
        collect_metadata=False,
    )
    return {
        "name": name,
        "baseline": baseline,
        "loops": loops,
        "benchmark": pyperf.Benchmark([run]),
    }


def summarize(records):
    for record in records:
        benchmark = record["benchmark"]
        record["mean"] = benchmark.mean()
        record["stdev"] = benchmark.stdev()
        record["median"] = benchmark.median()
    baseline_mean = next(r["mean"] for r in records if r["baseline"])
    ranked = sorted(records, key=lambda r: r["mean"])
    for record in records:
        record["ratio"] = record["mean"] / baseline_mean if baseline_mean else 0.0
        record["rank"] = ranked.index(record) + 1


def environment_line():
    return "%s %s, %s" % (
        platform.python_implementation(),
        platform.python_version(),
        platform.platform(),
    )


def write_markdown(path, records):
    lines = [
        "```",
        environment_line(),
        "Artifact %s" % ARTIFACT_ID,
        "```",
        "| Method | Mean | StdDev | Median | Ratio | Rank |",
        "|------- |-----:|-------:|-------:|------:|-----:|",
    ]
    for r in records:
        lines.append("| %s | %s | %s | %s | %.2f | %d |" % (
            r["name"],
            format_time(r["mean"]),
            format_time(r["stdev"]),
            format_time(r["median"]),
            r["ratio"],
            r["rank"],
        ))
    with open(path, "w", encoding="utf-8") as f:
        f.write("\\n".join(lines) + "\\n")


def write_full_json(path, records):
    suite = pyperf.BenchmarkSuite([r["benchmark"] for r in records])
    suite.dump(path, compact=False, replace=True)


def write_csv(path, records):
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["Method", "Baseline", "Loops", "Mean_s", "StdDev_s", "Median_s", "Ratio", "Rank"])
        for r in records:
            writer.writerow([r["name"], r["baseline"], r["loops"], r["mean"], r["stdev"], r["median"], r["ratio"], r["rank"]])


EXPORTERS = (
    ("-report-github.md", write_markdown),
    ("-report-full.json", write_full_json),
    ("-report.csv", write_csv),
)


def main():
    instance = $class_name()
    cases, setups = discover(instance)
    for setup in setups:
        setup()
    records = [measure(name, func, baseline) for name, func, baseline in cases]
    summarize(records)
    os.makedirs(RESULTS_DIR, exist_ok=True)
    for suffix, exporter in EXPORTERS:
        exporter(os.path.join(RESULTS_DIR, REPORT_PREFIX + suffix), records)
    print(json.dumps({"artifact": ARTIFACT_ID, "methods": [r["name"] for r in records]}))
    return 0


if __name__ == "__main__":
    sys.exit(main())
''')


def build_driver(artifact_id: str, options: DriverOptions) -> str:
    """Render ``program.py`` for the given artifact and measurement options."""
    return _DRIVER_TEMPLATE.substitute(
        artifact_id=artifact_id,
        class_name=HARNESS_CLASS,
        artifacts_dir=ARTIFACTS_DIRNAME,
        report_prefix=REPORT_PREFIX,
        warmup_rounds=options.warmup_rounds,
        measure_rounds=options.measure_rounds,
        min_round_seconds=repr(options.min_round_seconds),
        warmup_marker=repr(options.warmup_marker),
        measure_marker=repr(options.measure_marker),
    )


def render_requirements(options: DriverOptions) -> str:
    """Render the workspace project descriptor naming the benchmark framework."""
    return f"# Benchmark workspace dependencies\n{options.benchmark_requirement}\n"


def synthesize(
    request: BenchmarkRequest,
    options: DriverOptions | None = None,
) -> GeneratedSources:
    """Generate harness and driver sources for *request*.

    Deterministic apart from the freshly generated ``artifact_id``.

    Args:
        request: The benchmark request.
        options: Driver measurement options; defaults when ``None``.

    Returns:
        The generated sources and the sanitized method names.
    """
    options = options if options is not None else DriverOptions()
    artifact_id = uuid.uuid4().hex

    method_a_name = sanitize_method_name(request.method_a.name)
    method_b_name = sanitize_method_name(request.method_b.name)
    if method_b_name == method_a_name:
        method_b_name += "_2"

    return GeneratedSources(
        artifact_id=artifact_id,
        harness=build_harness(request, artifact_id, method_a_name, method_b_name),
        driver=build_driver(artifact_id, options),
        method_a_name=method_a_name,
        method_b_name=method_b_name,
    )
