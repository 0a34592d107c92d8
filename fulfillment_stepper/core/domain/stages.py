"""Stage and item status vocabulary.

Ranked stages form the primary fulfillment sequence. Exception stages are
orthogonal classifications of item subsets and carry no rank.
"""

from __future__ import annotations

from typing import Literal

StageId = Literal[
    "step-review",
    "step-confirmed",
    "step-shipped",
    "step-delivered",
    "step-cancelled",
    "step-rejected",
    "step-returned",
]

ItemStatus = Literal[
    "pending",
    "confirmed",
    "shipped",
    "delivered",
    "cancelled",
    "rejected",
    "returned",
]

Role = Literal["buyer", "seller", "courier", "admin"]

STEP_REVIEW: StageId = "step-review"
STEP_CONFIRMED: StageId = "step-confirmed"
STEP_SHIPPED: StageId = "step-shipped"
STEP_DELIVERED: StageId = "step-delivered"
STEP_CANCELLED: StageId = "step-cancelled"
STEP_REJECTED: StageId = "step-rejected"
STEP_RETURNED: StageId = "step-returned"

PENDING: ItemStatus = "pending"
CONFIRMED: ItemStatus = "confirmed"
SHIPPED: ItemStatus = "shipped"
DELIVERED: ItemStatus = "delivered"
CANCELLED: ItemStatus = "cancelled"
REJECTED: ItemStatus = "rejected"
RETURNED: ItemStatus = "returned"

ALL_ITEM_STATUSES: frozenset[str] = frozenset(
    {PENDING, CONFIRMED, SHIPPED, DELIVERED, CANCELLED, REJECTED, RETURNED}
)

# Fixed numeric rank of the primary sequence.
STAGE_RANKS: dict[str, int] = {
    STEP_REVIEW: 1,
    STEP_CONFIRMED: 2,
    STEP_SHIPPED: 3,
    STEP_DELIVERED: 4,
}

RANKED_STAGES: tuple[StageId, ...] = (
    STEP_REVIEW,
    STEP_CONFIRMED,
    STEP_SHIPPED,
    STEP_DELIVERED,
)

EXCEPTION_STAGES: tuple[StageId, ...] = (
    STEP_CANCELLED,
    STEP_REJECTED,
    STEP_RETURNED,
)

ALL_STAGES: tuple[StageId, ...] = RANKED_STAGES + EXCEPTION_STAGES

# Display numbers for exception stages; they never take part in rank gating.
STAGE_NUMBERS: dict[str, int] = {
    **STAGE_RANKS,
    STEP_CANCELLED: 5,
    STEP_REJECTED: 6,
    STEP_RETURNED: 7,
}

# Stages that support a one-way commit.
LOCKABLE_STAGES: frozenset[str] = frozenset({STEP_CONFIRMED, STEP_SHIPPED, STEP_DELIVERED})

# Exception stage -> item status it classifies.
EXCEPTION_STATUS: dict[str, ItemStatus] = {
    STEP_CANCELLED: CANCELLED,
    STEP_REJECTED: REJECTED,
    STEP_RETURNED: RETURNED,
}

# Ranked stage whose save may produce the exception status.
SUB_STAGE_AFTER: dict[str, StageId] = {
    STEP_REVIEW: STEP_CANCELLED,
    STEP_CONFIRMED: STEP_REJECTED,
    STEP_DELIVERED: STEP_RETURNED,
}

# Statuses that take an item out of the primary flow.
INACTIVE_STATUSES: frozenset[str] = frozenset({CANCELLED, REJECTED, RETURNED})

DEFAULT_STAGE_NAMES: dict[str, str] = {
    STEP_REVIEW: "Order review",
    STEP_CONFIRMED: "Order confirmed",
    STEP_SHIPPED: "Order shipped",
    STEP_DELIVERED: "Order delivered",
    STEP_CANCELLED: "Items cancelled",
    STEP_REJECTED: "Items rejected",
    STEP_RETURNED: "Items returned",
}


def is_ranked(stage_id: str) -> bool:
    return stage_id in STAGE_RANKS


def stage_rank(stage_id: str) -> int:
    """Return the rank of a ranked stage.

    Raises KeyError for exception stages and unknown ids.
    """
    return STAGE_RANKS[stage_id]


def next_ranked_stage(stage_id: str) -> StageId | None:
    """Return the ranked stage following ``stage_id`` (None after delivered)."""
    rank = STAGE_RANKS[stage_id]
    if rank >= len(RANKED_STAGES):
        return None
    return RANKED_STAGES[rank]


def ranked_stage_for(rank: int) -> StageId:
    return RANKED_STAGES[rank - 1]
