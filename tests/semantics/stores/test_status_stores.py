"""
Semantic test: status store backends.

Invariant:
Both backends persist item statuses, stage decisions, per-user locks, the
current marker and first activation dates. A stage commit is applied as a
single write, and a failed write leaves the previous document in place.
"""

# pylint: disable=missing-function-docstring,redefined-outer-name
from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from fulfillment_stepper.core.domain.errors import PersistenceFailure
from fulfillment_stepper.core.domain.sequencer import marker_for
from fulfillment_stepper.core.domain.types import (
    ConfirmationDecision,
    ItemStatusRecord,
    LockRecord,
    ReviewDecision,
)
from fulfillment_stepper.core.ports.status_store import StageCommit
from fulfillment_stepper.store import json_file_store
from fulfillment_stepper.store.json_file_store import JsonFileStatusStore
from fulfillment_stepper.store.memory_store import InMemoryStatusStore

ORDER_KEY = "ord-1"
T0 = datetime(2026, 1, 2, 10, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStatusStore()
    return JsonFileStatusStore(tmp_path / "stepper")


def confirmation_commit() -> StageCommit:
    return StageCommit(
        order_key=ORDER_KEY,
        stage_id="step-confirmed",
        statuses={
            "item1": ItemStatusRecord(status="confirmed", seller_key="seller_key_1", updated_by="seller_key_1"),
            "item3": ItemStatusRecord(status="rejected", seller_key="seller_key_1", updated_by="seller_key_1"),
        },
        decision=ConfirmationDecision(
            decided_by="seller_key_1",
            selected_keys=["item1"],
            deselected_keys=["item3"],
        ),
        lock_user_id="seller_key_1",
        lock=LockRecord(locked=True, locked_by="seller_key_1", locked_at=T0),
        marker=marker_for("step-shipped"),
        stage_dates={"step-confirmed": T0, "step-shipped": T0},
    )


def test_unknown_order_reads_as_empty(any_store) -> None:
    assert any_store.load_item_status(ORDER_KEY, "item1") == "pending"
    assert any_store.load_stage_state(ORDER_KEY, "step-review") is None
    assert any_store.load_marker(ORDER_KEY) is None
    assert any_store.load_locks(ORDER_KEY, "step-confirmed") == {}
    assert not any_store.get_lock_status(ORDER_KEY, "step-confirmed", "seller_key_1")


def test_individual_writes_round_trip(any_store) -> None:
    any_store.save_item_status(ORDER_KEY, "item2", ItemStatusRecord(status="cancelled", updated_by="buyer_1"))
    any_store.save_stage_state(ORDER_KEY, ReviewDecision(decided_by="buyer_1", selected_keys=["item1"], unselected_keys=["item2"]))
    any_store.save_marker(ORDER_KEY, marker_for("step-confirmed"))

    assert any_store.load_item_status(ORDER_KEY, "item2") == "cancelled"
    assert any_store.load_stage_state(ORDER_KEY, "step-review").unselected_keys == ["item2"]
    assert any_store.load_marker(ORDER_KEY).stage_number == 2


def test_locks_are_per_user(any_store) -> None:
    any_store.save_confirmation_lock(ORDER_KEY, True, "seller_key_1")

    assert any_store.get_confirmation_lock_status(ORDER_KEY, "seller_key_1")
    assert not any_store.get_confirmation_lock_status(ORDER_KEY, "seller_key_2")

    any_store.save_confirmation_lock(ORDER_KEY, False, "seller_key_1")
    assert not any_store.get_confirmation_lock_status(ORDER_KEY, "seller_key_1")


def test_stage_date_is_first_write_wins(any_store) -> None:
    any_store.save_stage_date(ORDER_KEY, "step-shipped", T0)
    any_store.save_stage_date(ORDER_KEY, "step-shipped", T0 + timedelta(days=1))

    assert any_store.load_stage_date(ORDER_KEY, "step-shipped") == T0


def test_commit_applies_every_write(any_store) -> None:
    any_store.commit(confirmation_commit())

    assert any_store.load_item_status(ORDER_KEY, "item1") == "confirmed"
    assert any_store.load_item_status(ORDER_KEY, "item3") == "rejected"
    assert any_store.load_stage_state(ORDER_KEY, "step-confirmed").deselected_keys == ["item3"]
    assert any_store.load_locks(ORDER_KEY, "step-confirmed")["seller_key_1"].locked_by == "seller_key_1"
    assert any_store.load_marker(ORDER_KEY).stage_id == "step-shipped"
    assert any_store.load_stage_date(ORDER_KEY, "step-shipped") == T0


def test_commit_without_marker_keeps_the_current_one(any_store) -> None:
    any_store.save_marker(ORDER_KEY, marker_for("step-delivered"))
    change = confirmation_commit()
    change.marker = None

    any_store.commit(change)

    assert any_store.load_marker(ORDER_KEY).stage_id == "step-delivered"


def test_json_store_persists_across_instances(tmp_path) -> None:
    directory = tmp_path / "stepper"
    JsonFileStatusStore(directory).commit(confirmation_commit())

    reopened = JsonFileStatusStore(directory)

    assert reopened.path_for(ORDER_KEY).name == "stepper_app_data_ord-1.json"
    assert reopened.load_item_status(ORDER_KEY, "item1") == "confirmed"
    assert reopened.get_confirmation_lock_status(ORDER_KEY, "seller_key_1")
    assert reopened.load_marker(ORDER_KEY) == marker_for("step-shipped")

    raw = json.loads(reopened.path_for(ORDER_KEY).read_text(encoding="utf-8"))
    assert raw["steps"]["step-confirmed"]["stage_id"] == "step-confirmed"


def test_json_store_sanitizes_file_names(tmp_path) -> None:
    store = JsonFileStatusStore(tmp_path)

    assert store.path_for("../etc/passwd").parent == tmp_path


def test_failed_write_keeps_previous_document(tmp_path, monkeypatch) -> None:
    store = JsonFileStatusStore(tmp_path)
    store.save_marker(ORDER_KEY, marker_for("step-confirmed"))

    def boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(json_file_store.os, "replace", boom)

    with pytest.raises(PersistenceFailure) as exc_info:
        store.commit(confirmation_commit())

    monkeypatch.undo()

    assert exc_info.value.operation == "write"
    assert exc_info.value.retryable
    assert store.load_marker(ORDER_KEY).stage_id == "step-confirmed"
    assert store.load_stage_state(ORDER_KEY, "step-confirmed") is None
    assert not [p for p in os.listdir(tmp_path) if p.endswith(".tmp")]


def test_corrupt_document_is_not_retryable(tmp_path) -> None:
    store = JsonFileStatusStore(tmp_path)
    store.path_for(ORDER_KEY).write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceFailure) as exc_info:
        store.load_marker(ORDER_KEY)

    assert exc_info.value.operation == "read"
    assert not exc_info.value.retryable


def test_invalid_document_is_not_retryable(tmp_path) -> None:
    store = JsonFileStatusStore(tmp_path)
    store.path_for(ORDER_KEY).write_text(json.dumps({"order_key": ORDER_KEY, "unexpected": 1}), encoding="utf-8")

    with pytest.raises(PersistenceFailure) as exc_info:
        store.load_item_status(ORDER_KEY, "item1")

    assert not exc_info.value.retryable


def test_memory_store_lists_orders() -> None:
    store = InMemoryStatusStore()
    store.save_marker("b", marker_for("step-review"))
    store.save_marker("a", marker_for("step-review"))

    assert store.order_keys() == ["a", "b"]
