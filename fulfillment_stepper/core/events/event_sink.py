"""
Event sink interface.

Sinks consume the domain events emitted by recorders and the dispatcher.
"""
from __future__ import annotations

from typing import Any, Protocol


class EventSink(Protocol):
    def on_event(self, event: Any) -> None:
        """Consume a domain event."""
