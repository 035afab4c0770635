"""Syntax-only validation of the generated harness.

Runs the interpreter's parser over the harness text and reports
error-level diagnostics with 1-based positions. Name resolution and other
semantic checks are not attempted: the harness only becomes importable
once the workspace has been restored, so those errors surface when the
benchmark runs.
"""

from __future__ import annotations

import ast
import logging
import warnings

from benchmark_tool.models import Diagnostic, DiagnosticSeverity
from benchmark_tool.synthesis import HARNESS_FILENAME

logger = logging.getLogger(__name__)


def _diagnostic_from_syntax_error(exc: SyntaxError, filename: str) -> Diagnostic:
    """Convert a parser ``SyntaxError`` into a ``Diagnostic``."""
    return Diagnostic(
        line=max(exc.lineno or 1, 1),
        column=max(exc.offset or 1, 1),
        message=exc.msg or str(exc),
        severity=DiagnosticSeverity.ERROR,
        code=type(exc).__name__,
        file_path=exc.filename or filename,
    )


def collect_diagnostics(text: str, filename: str = HARNESS_FILENAME) -> list[Diagnostic]:
    """Parse *text* and return its error-level syntax diagnostics.

    The parser stops at the first error, so the list holds at most one
    entry. Warnings raised while parsing are not reported.

    Raises:
        ValueError: When the source contains null bytes (older interpreters).
        RecursionError: When the source nests too deeply for the parser.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            ast.parse(text, filename=filename)
        except SyntaxError as exc:
            return [_diagnostic_from_syntax_error(exc, filename)]
    return []


def validate_syntax(
    text: str,
    filename: str = HARNESS_FILENAME,
) -> tuple[bool, list[Diagnostic]]:
    """Validate the harness text for syntax errors only.

    Never raises: a failure of the parser itself is reported as a single
    synthetic diagnostic at line 1, column 1.

    Args:
        text: Harness source text.
        filename: File name attached to the diagnostics.

    Returns:
        ``(is_valid, diagnostics)`` where ``is_valid`` is true iff the
        diagnostic list is empty.
    """
    try:
        diagnostics = collect_diagnostics(text, filename)
    except Exception as exc:
        logger.warning("Parser failed on %s: %s", filename, exc)
        diagnostics = [
            Diagnostic(
                line=1,
                column=1,
                message=f"Validation error: {exc}",
                severity=DiagnosticSeverity.ERROR,
                code=type(exc).__name__,
                file_path=filename,
            )
        ]

    return not diagnostics, diagnostics
