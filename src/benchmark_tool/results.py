"""Result parsing: reads the exported reports back out of a workspace.

Only reads files. Missing directories, missing files, and I/O errors all
yield ``None`` for the affected report.
"""

from __future__ import annotations

import logging
from pathlib import Path

from benchmark_tool.models import ParsedReports
from benchmark_tool.synthesis import ARTIFACTS_DIRNAME

logger = logging.getLogger(__name__)

RESULTS_SUBPATH = Path(ARTIFACTS_DIRNAME) / "results"
MARKDOWN_REPORT_PATTERN = "*-report-github.md"
JSON_REPORT_PATTERN = "*-report-full.json"


def results_dir(workspace: str | Path) -> Path:
    """Return the directory the driver exports its reports into."""
    return Path(workspace) / RESULTS_SUBPATH


def read_report(directory: Path, pattern: str) -> str | None:
    """Read the report in *directory* matching the glob *pattern*.

    Args:
        directory: Results directory to search (not recursive).
        pattern: Glob such as ``"*-report-github.md"``.

    Returns:
        The file's full text, or ``None`` when the directory or file is
        missing or cannot be read.
    """
    try:
        if not directory.is_dir():
            return None
        matches = sorted(p for p in directory.glob(pattern) if p.is_file())
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "%d reports match %s in %s; using %s",
                len(matches),
                pattern,
                directory,
                matches[0].name,
            )
        return matches[0].read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read %s report from %s: %s", pattern, directory, exc)
        return None


def parse_results(workspace: str | Path) -> ParsedReports:
    """Read the markdown and full JSON reports of a finished run."""
    directory = results_dir(workspace)
    return ParsedReports(
        results_markdown=read_report(directory, MARKDOWN_REPORT_PATTERN),
        results_json=read_report(directory, JSON_REPORT_PATTERN),
    )
