"""JSON file status store.

One document per order, written to ``stepper_app_data_<order_key>.json``
under the store directory. Writes go to a temporary sibling file that is
then atomically renamed over the target.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from fulfillment_stepper.core.domain.errors import PersistenceFailure
from fulfillment_stepper.store.document import DocumentStatusStore, OrderStatusDocument

LOGGER = logging.getLogger(__name__)

FILE_PREFIX = "stepper_app_data_"


class JsonFileStatusStore(DocumentStatusStore):
    def __init__(self, directory: str | Path) -> None:
        super().__init__()
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, order_key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in str(order_key))
        return self._dir / f"{FILE_PREFIX}{safe}.json"

    def _read(self, order_key: str) -> OrderStatusDocument:
        path = self.path_for(order_key)
        if not path.exists():
            return OrderStatusDocument(order_key=order_key)

        try:
            with path.open("r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except OSError as exc:
            raise PersistenceFailure(f"cannot read {path}: {exc}", operation="read") from exc
        except json.JSONDecodeError as exc:
            raise PersistenceFailure(
                f"corrupt status document {path}: {exc}",
                operation="read",
                retryable=False,
            ) from exc

        try:
            return OrderStatusDocument.model_validate(raw)
        except ValidationError as exc:
            raise PersistenceFailure(
                f"invalid status document {path}: {exc}",
                operation="read",
                retryable=False,
            ) from exc

    def _write(self, doc: OrderStatusDocument) -> None:
        path = self.path_for(doc.order_key)
        tmp = path.with_suffix(".json.tmp")
        payload = doc.model_dump_json(indent=2, exclude_none=True)

        try:
            with tmp.open("w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except OSError as exc:
            LOGGER.error(
                "Status document write failed",
                extra={"order_key": doc.order_key, "path": str(path)},
            )
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                LOGGER.warning("Could not remove temporary file", extra={"path": str(tmp)})
            raise PersistenceFailure(f"cannot write {path}: {exc}", operation="write") from exc
