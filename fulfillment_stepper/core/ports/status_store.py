"""Status store protocol.

The status store persists everything the stepper derives from user
decisions: per-item statuses, per-stage decisions, per-user stage locks,
the current stage marker and stage activation dates. Order snapshots are
never stored here.

All writes issued by one recorder save are bundled into a ``StageCommit``
and applied by ``commit`` as a single transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from fulfillment_stepper.core.domain.types import (
    CurrentStageMarker,
    ItemStatusRecord,
    LockRecord,
    StageDecisionBase,
)


@dataclass(slots=True)
class StageCommit:
    """Every write produced by one stage save.

    - statuses: item statuses to overwrite, keyed by product_key
    - decision: merged stage decision (replaces the stored one)
    - lock_user_id / lock: lock written for the acting user, if the stage locks
    - marker: new current stage marker, if the activation gate accepted
    - stage_dates: activation timestamps to record, keyed by stage id
    """

    order_key: str
    stage_id: str
    statuses: dict[str, ItemStatusRecord] = field(default_factory=dict)
    decision: StageDecisionBase | None = None
    lock_user_id: str | None = None
    lock: LockRecord | None = None
    marker: CurrentStageMarker | None = None
    stage_dates: dict[str, datetime] = field(default_factory=dict)


class StatusStore(Protocol):
    """Per-order persistence boundary used by recorders and the session."""

    # Item statuses

    def load_item_status(self, order_key: str, product_key: str) -> str:
        """Return the item's status ("pending" when none was saved)."""

    def save_item_status(self, order_key: str, product_key: str, record: ItemStatusRecord) -> None:
        """Overwrite one item's status."""

    def load_all_item_statuses(self, order_key: str) -> dict[str, ItemStatusRecord]:
        """Return every saved item status for the order."""

    # Stage decisions

    def load_stage_state(self, order_key: str, stage_id: str) -> StageDecisionBase | None:
        """Return the stored decision for a stage, or None."""

    def save_stage_state(self, order_key: str, decision: StageDecisionBase) -> None:
        """Replace the stored decision for ``decision.stage_id``."""

    def load_all_stage_states(self, order_key: str) -> dict[str, StageDecisionBase]:
        """Return every stored decision keyed by stage id."""

    # Locks

    def get_lock_status(self, order_key: str, stage_id: str, user_id: str) -> bool:
        """True if ``user_id`` has locked ``stage_id`` on this order."""

    def load_locks(self, order_key: str, stage_id: str) -> dict[str, LockRecord]:
        """Every lock record of a stage keyed by locking user."""

    def save_lock(self, order_key: str, stage_id: str, locked: bool, user_id: str) -> None:
        """Set or clear ``user_id``'s lock on ``stage_id``."""

    # Marker and dates

    def load_marker(self, order_key: str) -> CurrentStageMarker | None:
        """Return the persisted current stage marker, or None."""

    def save_marker(self, order_key: str, marker: CurrentStageMarker) -> None:
        """Persist the current stage marker."""

    def load_stage_date(self, order_key: str, stage_id: str) -> datetime | None:
        """Return when ``stage_id`` was first activated, or None."""

    def save_stage_date(self, order_key: str, stage_id: str, when: datetime) -> None:
        """Record the activation time of ``stage_id`` (first write wins)."""

    # Transactions

    def commit(self, change: StageCommit) -> None:
        """Apply every write in ``change`` atomically or raise PersistenceFailure."""
