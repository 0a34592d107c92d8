"""
Logging event sink.
"""
from __future__ import annotations

import logging
from typing import Any

from fulfillment_stepper.core.events.sinks.file_recorder import event_record


class LoggingEventSink:
    """Logs domain events using the standard logging module."""

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self._logger = logger if logger is not None else logging.getLogger("stepper.bus")
        self._level = level

    def on_event(self, event: Any) -> None:
        record = event_record(event)
        self._logger.log(
            self._level,
            "domain_event %s",
            record["event_type"],
            extra={"event": record},
        )
