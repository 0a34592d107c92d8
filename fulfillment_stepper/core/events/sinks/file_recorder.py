"""
Append-only JSONL recorder sink.
"""
from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Any


def event_record(event: Any) -> dict[str, Any]:
    """Flatten an event into a JSON-compatible dict tagged with its type."""
    if dataclasses.is_dataclass(event) and not isinstance(event, type):
        record = dataclasses.asdict(event)
    elif hasattr(event, "model_dump"):
        record = event.model_dump(mode="json")
    else:
        record = {"event": str(event)}
    record["event_type"] = type(event).__name__
    return record


class FileRecorderSink:
    """Writes each event as one JSON line."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self._path.open("a", encoding="utf-8")
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    def on_event(self, event: Any) -> None:
        if self._closed:
            return
        self._fh.write(json.dumps(event_record(event), default=str) + "\n")
        self._fh.flush()

    def close(self) -> None:
        if self._closed:
            return
        self._fh.flush()
        self._fh.close()
        self._closed = True
