from __future__ import annotations

from typing import Any

from fulfillment_stepper.core.events.event_bus import EventBus


class _NullSink:
    """Event sink that discards all events."""

    def on_event(self, event: Any) -> None:
        return


class NullEventBus(EventBus):
    """EventBus that discards all events (used for tests and headless sessions)."""

    def __init__(self) -> None:
        super().__init__(sinks=[_NullSink()])


class CollectingSink:
    """Keeps every event in memory, in emission order."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    def on_event(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]


class CollectingEventBus(EventBus):
    """EventBus with a single in-memory sink, for assertions in tests."""

    def __init__(self) -> None:
        self.collector = CollectingSink()
        super().__init__(sinks=[self.collector])

    @property
    def events(self) -> list[Any]:
        return self.collector.events
