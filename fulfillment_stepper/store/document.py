"""Per-order status document and the store logic shared by every backend.

Backends only implement ``_read`` and ``_write`` for a whole document; all
port operations are read-modify-write cycles over one document, so a commit
reaches the backend as a single write.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

from fulfillment_stepper.core.domain.stages import (
    PENDING,
    STEP_CONFIRMED,
    STEP_DELIVERED,
    STEP_SHIPPED,
)
from fulfillment_stepper.core.domain.types import (
    CurrentStageMarker,
    ItemStatusRecord,
    LockRecord,
    StageDecision,
    StageDecisionBase,
)
from fulfillment_stepper.core.ports.status_store import StageCommit


class OrderStatusDocument(BaseModel):
    """Everything persisted for one order.

    - items: product_key -> status record
    - steps: stage id -> stage decision
    - locks: stage id -> locking user id -> lock record
    - current_step: cached current stage marker
    - dates: stage id -> first activation time
    """

    order_key: str = Field(..., min_length=1)
    items: dict[str, ItemStatusRecord] = Field(default_factory=dict)
    steps: dict[str, StageDecision] = Field(default_factory=dict)
    locks: dict[str, dict[str, LockRecord]] = Field(default_factory=dict)
    current_step: CurrentStageMarker | None = None
    dates: dict[str, datetime] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


def apply_commit(doc: OrderStatusDocument, change: StageCommit) -> OrderStatusDocument:
    """Return a new document with every write of ``change`` applied."""
    items = dict(doc.items)
    items.update(change.statuses)

    steps = dict(doc.steps)
    if change.decision is not None:
        steps[change.decision.stage_id] = change.decision

    locks = {stage_id: dict(by_user) for stage_id, by_user in doc.locks.items()}
    if change.lock is not None and change.lock_user_id:
        locks.setdefault(change.stage_id, {})[change.lock_user_id] = change.lock

    dates = dict(doc.dates)
    for stage_id, when in change.stage_dates.items():
        dates.setdefault(stage_id, when)

    return doc.model_copy(
        update={
            "items": items,
            "steps": steps,
            "locks": locks,
            "current_step": change.marker if change.marker is not None else doc.current_step,
            "dates": dates,
        }
    )


class DocumentStatusStore(ABC):
    """StatusStore implemented over whole-document reads and writes."""

    def __init__(self) -> None:
        self._guard = threading.RLock()

    @abstractmethod
    def _read(self, order_key: str) -> OrderStatusDocument:
        """Return the stored document (an empty one if the order is unknown)."""

    @abstractmethod
    def _write(self, doc: OrderStatusDocument) -> None:
        """Replace the stored document; raise PersistenceFailure on failure."""

    def _update(self, order_key: str, mutate: Callable[[OrderStatusDocument], OrderStatusDocument]) -> None:
        with self._guard:
            self._write(mutate(self._read(order_key)))

    def load_document(self, order_key: str) -> OrderStatusDocument:
        with self._guard:
            return self._read(order_key)

    # ------------------------------------------------------------------
    # Item statuses
    # ------------------------------------------------------------------

    def load_item_status(self, order_key: str, product_key: str) -> str:
        record = self.load_document(order_key).items.get(product_key)
        return record.status if record is not None else PENDING

    def save_item_status(self, order_key: str, product_key: str, record: ItemStatusRecord) -> None:
        def mutate(doc: OrderStatusDocument) -> OrderStatusDocument:
            return doc.model_copy(update={"items": {**doc.items, product_key: record}})

        self._update(order_key, mutate)

    def load_all_item_statuses(self, order_key: str) -> dict[str, ItemStatusRecord]:
        return dict(self.load_document(order_key).items)

    # ------------------------------------------------------------------
    # Stage decisions
    # ------------------------------------------------------------------

    def load_stage_state(self, order_key: str, stage_id: str) -> StageDecisionBase | None:
        return self.load_document(order_key).steps.get(stage_id)

    def save_stage_state(self, order_key: str, decision: StageDecisionBase) -> None:
        def mutate(doc: OrderStatusDocument) -> OrderStatusDocument:
            return doc.model_copy(update={"steps": {**doc.steps, decision.stage_id: decision}})

        self._update(order_key, mutate)

    def load_all_stage_states(self, order_key: str) -> dict[str, StageDecisionBase]:
        return dict(self.load_document(order_key).steps)

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def load_locks(self, order_key: str, stage_id: str) -> dict[str, LockRecord]:
        return dict(self.load_document(order_key).locks.get(stage_id, {}))

    def get_lock_status(self, order_key: str, stage_id: str, user_id: str) -> bool:
        record = self.load_locks(order_key, stage_id).get(str(user_id))
        return record is not None and record.locked

    def save_lock(self, order_key: str, stage_id: str, locked: bool, user_id: str) -> None:
        user_id = str(user_id)

        def mutate(doc: OrderStatusDocument) -> OrderStatusDocument:
            locks = {sid: dict(by_user) for sid, by_user in doc.locks.items()}
            locks.setdefault(stage_id, {})[user_id] = LockRecord(locked=locked, locked_by=user_id)
            return doc.model_copy(update={"locks": locks})

        self._update(order_key, mutate)

    def get_confirmation_lock_status(self, order_key: str, user_id: str) -> bool:
        return self.get_lock_status(order_key, STEP_CONFIRMED, user_id)

    def get_shipping_lock_status(self, order_key: str, user_id: str) -> bool:
        return self.get_lock_status(order_key, STEP_SHIPPED, user_id)

    def get_delivery_lock_status(self, order_key: str, user_id: str) -> bool:
        return self.get_lock_status(order_key, STEP_DELIVERED, user_id)

    def save_confirmation_lock(self, order_key: str, locked: bool, user_id: str) -> None:
        self.save_lock(order_key, STEP_CONFIRMED, locked, user_id)

    def save_shipping_lock(self, order_key: str, locked: bool, user_id: str) -> None:
        self.save_lock(order_key, STEP_SHIPPED, locked, user_id)

    def save_delivery_lock(self, order_key: str, locked: bool, user_id: str) -> None:
        self.save_lock(order_key, STEP_DELIVERED, locked, user_id)

    # ------------------------------------------------------------------
    # Marker and dates
    # ------------------------------------------------------------------

    def load_marker(self, order_key: str) -> CurrentStageMarker | None:
        return self.load_document(order_key).current_step

    def save_marker(self, order_key: str, marker: CurrentStageMarker) -> None:
        self._update(order_key, lambda doc: doc.model_copy(update={"current_step": marker}))

    def load_stage_date(self, order_key: str, stage_id: str) -> datetime | None:
        return self.load_document(order_key).dates.get(stage_id)

    def save_stage_date(self, order_key: str, stage_id: str, when: datetime) -> None:
        def mutate(doc: OrderStatusDocument) -> OrderStatusDocument:
            if stage_id in doc.dates:
                return doc
            return doc.model_copy(update={"dates": {**doc.dates, stage_id: when}})

        self._update(order_key, mutate)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def commit(self, change: StageCommit) -> None:
        self._update(change.order_key, lambda doc: apply_commit(doc, change))
