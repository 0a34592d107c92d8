"""
Item lifecycle state machine definitions.

This module defines the allowed per-item status transitions and the stage
that owns each transition. The owning stage decides which lock governs the
edge: once that stage is locked for an actor, the edge is closed to them
unless they are an admin.

The definitions are passive; enforcement happens in the decision recorders
through ``check_transition``.
"""

from __future__ import annotations

from fulfillment_stepper.core.domain.errors import InvalidTransition, StageLocked
from fulfillment_stepper.core.domain.reject_reasons import RejectReason
from fulfillment_stepper.core.domain.stages import (
    CANCELLED,
    CONFIRMED,
    DELIVERED,
    PENDING,
    REJECTED,
    RETURNED,
    SHIPPED,
    STEP_CONFIRMED,
    STEP_DELIVERED,
    STEP_REVIEW,
    STEP_SHIPPED,
    StageId,
)

# Allowed item status transitions.
#
# Key   : current status
# Value : mapping of next status -> owning stage
#
# Notes:
# - Identity transitions are no-ops and are not listed.
# - Flip-backs (rejected -> confirmed, shipped -> confirmed, delivered -> shipped)
#   exist so a participant may revise a decision until their stage is locked.
ITEM_ALLOWED_TRANSITIONS: dict[str, dict[str, StageId]] = {
    PENDING: {
        CONFIRMED: STEP_CONFIRMED,
        REJECTED: STEP_CONFIRMED,
        CANCELLED: STEP_REVIEW,
    },
    CANCELLED: {
        PENDING: STEP_REVIEW,
    },
    CONFIRMED: {
        SHIPPED: STEP_SHIPPED,
        REJECTED: STEP_CONFIRMED,
    },
    REJECTED: {
        CONFIRMED: STEP_CONFIRMED,
    },
    SHIPPED: {
        DELIVERED: STEP_DELIVERED,
        CONFIRMED: STEP_SHIPPED,
        RETURNED: STEP_DELIVERED,
    },
    DELIVERED: {
        SHIPPED: STEP_DELIVERED,
        RETURNED: STEP_DELIVERED,
    },
    RETURNED: {
        DELIVERED: STEP_DELIVERED,
    },
}


def is_valid_transition(prev_status: str, next_status: str) -> bool:
    """Return True if the transition prev_status -> next_status is allowed."""
    if prev_status == next_status:
        return True
    allowed = ITEM_ALLOWED_TRANSITIONS.get(prev_status)
    if allowed is None:
        return False
    return next_status in allowed


def owning_stage(prev_status: str, next_status: str) -> StageId | None:
    """Return the stage whose lock governs the transition (None if not allowed)."""
    allowed = ITEM_ALLOWED_TRANSITIONS.get(prev_status)
    if allowed is None:
        return None
    return allowed.get(next_status)


def check_transition(
    product_key: str,
    prev_status: str,
    next_status: str,
    *,
    locked_stages: frozenset[str] | set[str],
    is_admin: bool,
) -> None:
    """Validate a single item transition.

    Raises:
        InvalidTransition: the edge does not exist in the state machine.
        StageLocked: the owning stage is locked for a non-admin actor.
    """
    if prev_status == next_status:
        return

    stage = owning_stage(prev_status, next_status)
    if stage is None:
        raise InvalidTransition(
            RejectReason.INVALID_TRANSITION,
            product_key=product_key,
            prev_status=prev_status,
            next_status=next_status,
        )

    if stage in locked_stages and not is_admin:
        raise StageLocked(stage_id=stage, product_key=product_key)
