"""Fan-out of executor events to observation and learning sinks."""

from __future__ import annotations

import logging
from typing import Protocol

from command_orchestrator.orchestrator.models import ExecutionEvent

logger = logging.getLogger(__name__)


class ExecutionObserver(Protocol):
    def record_execution(self, event: ExecutionEvent) -> object:
        """Consume one execution event."""


class FanOutObserver:
    """Deliver each event to every sink; one failing sink never starves the rest."""

    def __init__(self, *sinks: ExecutionObserver) -> None:
        self.sinks = sinks

    def record_execution(self, event: ExecutionEvent) -> None:
        for sink in self.sinks:
            try:
                sink.record_execution(event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Execution sink %s failed for %s",
                    type(sink).__name__,
                    event.command,
                )
