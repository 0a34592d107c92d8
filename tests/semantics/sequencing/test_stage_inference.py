"""
Semantic test: current stage inference.

Invariant:
Without a ranked marker, the active stage is reconstructed from the deepest
persisted stage decision; a ranked marker always takes precedence. A later
decision counts even when earlier stages were never saved.
"""

# pylint: disable=missing-function-docstring
from __future__ import annotations

import pytest

from fulfillment_stepper.core.domain.sequencer import (
    current_ranked_number,
    exception_flags,
    infer_current_stage,
    is_review_modification_locked,
    marker_for,
    resolve_current_marker,
)
from fulfillment_stepper.core.domain.types import (
    ConfirmationDecision,
    DeliveryDecision,
    ReviewDecision,
    ShippingDecision,
)

REVIEW = ReviewDecision(decided_by="buyer_1", selected_keys=["item1"])
CONFIRMED = ConfirmationDecision(decided_by="seller_key_1", selected_keys=["item1"])
SHIPPED = ShippingDecision(decided_by="seller_key_1", shipped_keys=["item1"])
DELIVERED = DeliveryDecision(decided_by="buyer_1", delivered_keys=["item1"])


@pytest.mark.parametrize(
    ("decisions", "expected"),
    [
        ({}, "step-review"),
        ({"step-review": REVIEW}, "step-confirmed"),
        ({"step-review": REVIEW, "step-confirmed": CONFIRMED}, "step-shipped"),
        ({"step-review": REVIEW, "step-confirmed": CONFIRMED, "step-shipped": SHIPPED}, "step-delivered"),
        ({"step-shipped": SHIPPED, "step-delivered": DELIVERED}, "step-delivered"),
    ],
)
def test_deepest_decision_wins(decisions, expected) -> None:
    assert infer_current_stage(decisions) == expected


def test_skipped_review_still_infers_from_later_decision() -> None:
    assert infer_current_stage({"step-confirmed": CONFIRMED}) == "step-shipped"
    assert infer_current_stage({"step-review": None, "step-confirmed": CONFIRMED}) == "step-shipped"


def test_ranked_marker_beats_inference() -> None:
    decisions = {"step-review": REVIEW, "step-confirmed": CONFIRMED}

    assert current_ranked_number(marker_for("step-confirmed"), decisions) == 2
    assert current_ranked_number(None, decisions) == 3


def test_exception_marker_falls_back_to_inference() -> None:
    decisions = {"step-review": REVIEW}
    marker = marker_for("step-cancelled")

    assert current_ranked_number(marker, decisions) == 2
    assert resolve_current_marker(marker, decisions) == marker
    assert resolve_current_marker(None, decisions).stage_id == "step-confirmed"


def test_exception_flags_follow_item_statuses() -> None:
    flags = exception_flags({"item1": "delivered", "item2": "cancelled", "item3": "pending"})

    assert flags == {"step-cancelled": True, "step-rejected": False, "step-returned": False}


@pytest.mark.parametrize(
    ("current", "role", "locked"),
    [
        (1, "buyer", False),
        (2, "buyer", False),
        (3, "buyer", True),
        (4, "seller", True),
        (4, "admin", False),
    ],
)
def test_review_edits_close_at_shipping(current: int, role: str, locked: bool) -> None:
    assert is_review_modification_locked(current, role) is locked
