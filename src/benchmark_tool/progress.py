"""Progress reporting: the sink protocol and per-run tracking."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from benchmark_tool.models import ProgressEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressSink(Protocol):
    """Receiver of ``(message, percentage)`` progress updates.

    Delivery is fire-and-forget; implementations must not block.
    """

    def report(self, message: str, percentage: int) -> None: ...  # noqa: D102


def report_progress(sink: ProgressSink | None, message: str, percentage: int) -> None:
    """Forward one update to *sink*, logging and ignoring sink failures."""
    logger.debug("Progress %d%%: %s", percentage, message)
    if sink is None:
        return
    try:
        sink.report(message, percentage)
    except Exception:
        logger.warning("Progress sink raised; update dropped", exc_info=True)


class ProgressTracker:
    """Per-run wrapper that keeps reported percentages in 0..100 and non-decreasing."""

    def __init__(self, sink: ProgressSink | None) -> None:
        self._sink = sink
        self.percentage = 0

    def report(self, message: str, percentage: int) -> None:
        """Report *message*; a lower *percentage* than the last one is raised to it."""
        self.percentage = max(self.percentage, min(max(percentage, 0), 100))
        report_progress(self._sink, message, self.percentage)


class ProgressLog:
    """Sink that records every event, in order."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def report(self, message: str, percentage: int) -> None:
        """Append the update as a ``ProgressEvent``."""
        self.events.append(ProgressEvent(message=message, percentage=percentage))

    @property
    def percentages(self) -> list[int]:
        """Reported percentages in arrival order."""
        return [event.percentage for event in self.events]

    @property
    def messages(self) -> list[str]:
        """Reported messages in arrival order."""
        return [event.message for event in self.events]
