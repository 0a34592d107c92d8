"""
Synchronous event bus shared by one stepper session.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from fulfillment_stepper.core.events.event_sink import EventSink

LOGGER = logging.getLogger(__name__)


class EventBus:
    """Fans each event out to every registered sink, in registration order."""

    def __init__(self, sinks: Iterable[EventSink] | None = None) -> None:
        self._sinks: list[EventSink] = list(sinks) if sinks is not None else []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def register(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def emit(self, event: Any) -> None:
        if self._closed:
            LOGGER.warning(
                "Event emitted after bus close; dropped",
                extra={"event_type": type(event).__name__},
            )
            return
        for sink in self._sinks:
            sink.on_event(event)

    def emit_all(self, events: Iterable[Any]) -> None:
        for event in events:
            self.emit(event)

    def close(self) -> None:
        """
        Finalize all sinks that expose a close() method. Idempotent.
        """
        if self._closed:
            return

        for sink in self._sinks:
            close_fn = getattr(sink, "close", None)
            if callable(close_fn):
                close_fn()

        self._closed = True

    def __enter__(self) -> EventBus:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
