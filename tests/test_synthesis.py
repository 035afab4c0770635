"""Tests for harness and driver generation.

Validates method name sanitization, slot indentation, the structure of
the generated ``dynamic_benchmark.py`` harness, and the rendered driver
and requirements file.
"""

from __future__ import annotations

import ast
import keyword
import re
from typing import Any

from benchmark_tool.models import MethodSpec
from benchmark_tool.synthesis import (
    HARNESS_CLASS,
    DriverOptions,
    build_driver,
    indent_code,
    render_requirements,
    sanitize_method_name,
    synthesize,
)
from hypothesis import assume, given, strategies as st
import pytest

from tests.conftest import make_config, make_request

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_harness(text: str) -> dict[str, Any]:
    """Execute harness text in a fresh namespace and return it."""
    namespace: dict[str, Any] = {"__name__": "dynamic_benchmark"}
    exec(compile(text, "dynamic_benchmark.py", "exec"), namespace)  # noqa: S102
    return namespace


# ===========================================================================
# Method name sanitization
# ===========================================================================


@pytest.mark.unit
class TestSanitizeMethodName:
    """sanitize_method_name always yields a usable identifier."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("MethodA", "MethodA"),
            ("1 two-three!", "_1twothree"),
            ("with space", "withspace"),
            ("snake_case_9", "snake_case_9"),
            ("", "method"),
            ("!!!", "method"),
            ("42", "_42"),
            ("class", "class_"),
            ("None", "None_"),
            ("global_setup", "global_setup_"),
            ("bench_case", "bench_case_"),
            ("naïve", "nave"),
        ],
    )
    def test_examples(self, raw: str, expected: str) -> None:
        """Known inputs map to their documented identifiers."""
        assert sanitize_method_name(raw) == expected

    def test_custom_default(self) -> None:
        """An empty result falls back to the supplied default."""
        assert sanitize_method_name("---", default="method_b") == "method_b"

    @given(st.text())
    def test_result_is_always_a_safe_identifier(self, raw: str) -> None:
        """Any input yields a non-keyword ASCII identifier."""
        result = sanitize_method_name(raw)
        assert _IDENTIFIER.match(result)
        assert result.isidentifier()
        assert not keyword.iskeyword(result)

    @given(st.from_regex(r"[A-Za-z_][A-Za-z0-9_]{0,20}", fullmatch=True))
    def test_valid_non_keywords_unchanged(self, raw: str) -> None:
        """Identifiers that are neither keywords nor reserved pass through."""
        assume(not keyword.iskeyword(raw))
        assume(raw not in {"global_setup", "bench_case", "bench_setup"})
        assert sanitize_method_name(raw) == raw


# ===========================================================================
# Indentation
# ===========================================================================


@pytest.mark.unit
class TestIndentCode:
    """indent_code prefixes non-blank lines only."""

    def test_prefixes_each_line(self) -> None:
        """Every line gets the requested indentation."""
        assert indent_code("a = 1\nb = 2", 4) == "    a = 1\n    b = 2"

    def test_normalizes_line_breaks(self) -> None:
        """CRLF and bare CR are treated as line breaks."""
        assert indent_code("a\r\nb\rc", 2) == "  a\n  b\n  c"

    def test_keeps_blank_lines_verbatim(self) -> None:
        """Empty and whitespace-only lines are not indented."""
        assert indent_code("a\n\n  \nb", 2) == "  a\n\n  \n  b"

    @pytest.mark.parametrize("code", ["", "   ", "\n\n", "\t\n "])
    def test_blank_input_yields_empty(self, code: str) -> None:
        """Whitespace-only input produces nothing."""
        assert indent_code(code, 8) == ""

    def test_preserves_relative_indentation(self) -> None:
        """Nested blocks keep their structure."""
        code = "for i in range(3):\n    total = i"
        assert indent_code(code, 8) == "        for i in range(3):\n            total = i"


# ===========================================================================
# Harness
# ===========================================================================


@pytest.mark.unit
class TestSynthesizeHarness:
    """synthesize() assembles a parseable harness from the request slots."""

    def test_harness_parses(self) -> None:
        """The default request produces syntactically valid Python."""
        sources = synthesize(make_request())
        ast.parse(sources.harness)

    def test_methods_are_marked(self) -> None:
        """Method A is the baseline; method B is a plain case."""
        sources = synthesize(make_request())
        namespace = _load_harness(sources.harness)
        cls = namespace[HARNESS_CLASS]
        assert cls.MethodA.__bench_case__ == {"baseline": True}
        assert cls.MethodB.__bench_case__ == {"baseline": False}

    def test_declarations_become_class_members(self) -> None:
        """Declarations are placed at class level."""
        request = make_request(declarations="items = list(range(10))\nlimit = 5")
        namespace = _load_harness(synthesize(request).harness)
        instance = namespace[HARNESS_CLASS]()
        assert instance.items == list(range(10))
        assert instance.limit == 5

    def test_setup_emitted_when_present(self) -> None:
        """A non-blank setup becomes the marked global_setup method."""
        request = make_request(setup="self.data = [3, 1, 2]")
        namespace = _load_harness(synthesize(request).harness)
        instance = namespace[HARNESS_CLASS]()
        assert instance.global_setup.__bench_setup__ is True
        instance.global_setup()
        assert instance.data == [3, 1, 2]

    def test_setup_omitted_when_blank(self) -> None:
        """A blank setup produces no global_setup method."""
        sources = synthesize(make_request(setup="   \n"))
        assert "global_setup" not in sources.harness

    def test_empty_method_body_becomes_pass(self) -> None:
        """A method with no code still parses and runs."""
        request = make_request(method_b=MethodSpec(name="Empty", code=""))
        namespace = _load_harness(synthesize(request).harness)
        assert namespace[HARNESS_CLASS]().Empty() is None

    @pytest.mark.parametrize("code", ["# TODO", "# first\n\n    # indented\n", "#"])
    def test_comment_only_method_body_runs(self, code: str) -> None:
        """A method holding only comments gets a pass and still runs."""
        request = make_request(method_b=MethodSpec(name="Noop", code=code))
        sources = synthesize(request)
        ast.parse(sources.harness)
        assert code.splitlines()[0] in sources.harness
        namespace = _load_harness(sources.harness)
        assert namespace[HARNESS_CLASS]().Noop() is None

    def test_comment_only_setup_runs(self) -> None:
        """A setup holding only comments still yields a callable global_setup."""
        sources = synthesize(make_request(setup="# none"))
        ast.parse(sources.harness)
        namespace = _load_harness(sources.harness)
        assert namespace[HARNESS_CLASS]().global_setup() is None

    def test_code_after_comment_gets_no_extra_pass(self) -> None:
        """Bodies with a real statement are emitted unchanged."""
        request = make_request(method_a=MethodSpec(name="Inc", code="# bump\nself.x = 5"))
        sources = synthesize(request)
        body = sources.harness.split("def Inc(self):\n", 1)[1].split("\n\n", 1)[0]
        assert body == "        # bump\n        self.x = 5"

    def test_declarations_are_reached_through_self(self) -> None:
        """Class-level declarations are attributes, not bare names."""
        request = make_request(
            declarations="data = [1, 2, 3]",
            method_a=MethodSpec(name="Total", code="self.total = sum(self.data)"),
            method_b=MethodSpec(name="Bare", code="sum(data)"),
        )
        instance = _load_harness(synthesize(request).harness)[HARNESS_CLASS]()
        instance.Total()
        assert instance.total == 6
        with pytest.raises(NameError):
            instance.Bare()

    def test_method_bodies_run(self) -> None:
        """Method code executes against the instance."""
        request = make_request(
            declarations="counter = 0",
            method_a=MethodSpec(name="Inc", code="self.counter += 1"),
        )
        namespace = _load_harness(synthesize(request).harness)
        instance = namespace[HARNESS_CLASS]()
        instance.Inc()
        instance.Inc()
        assert instance.counter == 2

    def test_colliding_names_are_disambiguated(self) -> None:
        """Equal sanitized names get a suffix on method B."""
        request = make_request(
            method_a=MethodSpec(name="Run!", code="pass"),
            method_b=MethodSpec(name="Run", code="pass"),
        )
        sources = synthesize(request)
        assert sources.method_a_name == "Run"
        assert sources.method_b_name == "Run_2"
        ast.parse(sources.harness)

    def test_sanitized_names_used_in_harness(self) -> None:
        """Unsafe names are replaced by their sanitized form."""
        request = make_request(method_a=MethodSpec(name="1 two-three!", code="pass"))
        sources = synthesize(request)
        assert "def _1twothree(self):" in sources.harness

    def test_invalid_method_code_yields_invalid_harness(self) -> None:
        """Broken user code is assembled as-is, not repaired."""
        request = make_request(method_a=MethodSpec(name="Bad", code="x = = 1"))
        with pytest.raises(SyntaxError):
            ast.parse(synthesize(request).harness)

    def test_artifact_id_is_fresh_and_embedded(self) -> None:
        """Each synthesis gets its own artifact id, shared by harness and driver."""
        first = synthesize(make_request())
        second = synthesize(make_request())
        assert first.artifact_id != second.artifact_id
        assert f'ARTIFACT_ID = "{first.artifact_id}"' in first.harness
        assert first.artifact_id in first.driver


# ===========================================================================
# Driver and requirements
# ===========================================================================


@pytest.mark.unit
class TestDriver:
    """build_driver() renders a parseable driver with the configured settings."""

    def test_driver_parses(self) -> None:
        """The rendered driver is valid Python."""
        ast.parse(build_driver("abc123", DriverOptions()))

    def test_driver_embeds_round_counts_and_markers(self) -> None:
        """Round counts and output markers come from the options."""
        options = DriverOptions(
            warmup_rounds=4,
            measure_rounds=7,
            warmup_marker="WarmTag",
            measure_marker="MeasureTag",
        )
        driver = build_driver("abc123", options)
        assert "WARMUP_ROUNDS = 4" in driver
        assert "MEASURE_ROUNDS = 7" in driver
        assert "WARMUP_MARKER = 'WarmTag'" in driver
        assert "MEASURE_MARKER = 'MeasureTag'" in driver

    @pytest.mark.parametrize("marker", ['Warm "quoted"', "100% done", "it's", "$cost"])
    def test_markers_are_embedded_as_literals(self, marker: str) -> None:
        """Quotes and format characters in markers keep the driver valid."""
        options = DriverOptions(warmup_marker=marker, measure_marker=marker)
        tree = ast.parse(build_driver("abc123", options))
        constants = {
            node.targets[0].id: node.value.value
            for node in tree.body
            if isinstance(node, ast.Assign)
            and isinstance(node.targets[0], ast.Name)
            and isinstance(node.value, ast.Constant)
        }
        assert constants["WARMUP_MARKER"] == marker
        assert constants["MEASURE_MARKER"] == marker

    def test_statistics_come_from_pyperf(self) -> None:
        """The driver imports pyperf and no hand-rolled statistics."""
        driver = build_driver("abc123", DriverOptions())
        imported = {
            alias.name
            for node in ast.parse(driver).body
            if isinstance(node, ast.Import)
            for alias in node.names
        }
        assert "pyperf" in imported
        assert "statistics" not in imported
        assert "pyperf.Benchmark([run])" in driver
        assert "benchmark.stdev()" in driver

    def test_driver_exports_expected_report_names(self) -> None:
        """The driver writes reports under the results directory."""
        driver = build_driver("abc123", DriverOptions())
        assert 'REPORT_PREFIX = "dynamic_benchmark.DynamicBenchmark"' in driver
        assert "-report-github.md" in driver
        assert "-report-full.json" in driver
        assert "-report.csv" in driver

    def test_options_from_config(self) -> None:
        """DriverOptions mirrors the relevant runner settings."""
        config = make_config(benchmark_requirement="pyperf==2.7.0", warmup_rounds=5)
        options = DriverOptions.from_config(config)
        assert options.benchmark_requirement == "pyperf==2.7.0"
        assert options.warmup_rounds == 5
        assert options.measure_rounds == config.measure_rounds

    def test_requirements_name_framework(self) -> None:
        """The project descriptor lists the benchmark framework."""
        lines = render_requirements(DriverOptions()).splitlines()
        assert lines[0].startswith("#")
        assert lines[1] == "pyperf>=2.6"
