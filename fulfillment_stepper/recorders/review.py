"""Buyer review: keep or cancel each item before sellers confirm."""

from __future__ import annotations

from fulfillment_stepper.core.domain.errors import ConfirmationRequired, PermissionDenied
from fulfillment_stepper.core.domain.reject_reasons import RejectReason
from fulfillment_stepper.core.domain.sequencer import is_review_modification_locked
from fulfillment_stepper.core.domain.stages import CANCELLED, PENDING, STEP_REVIEW
from fulfillment_stepper.core.domain.types import ReviewDecision
from fulfillment_stepper.recorders.base import DecisionRecorder


class ReviewRecorder(DecisionRecorder):
    """Toggles items between pending (kept) and cancelled.

    Review never locks. Non-admin edits close once the order has reached
    the shipping stage.
    """

    stage_id = STEP_REVIEW
    decision_type = ReviewDecision
    editable_statuses = frozenset({PENDING, CANCELLED})
    checked_status = PENDING
    unchecked_status = CANCELLED

    def check_preconditions(self, current_number: int) -> None:
        ctx = self.context
        if is_review_modification_locked(current_number, ctx.role):
            raise PermissionDenied(
                role=ctx.role,
                stage_id=self.stage_id,
                reason=RejectReason.REVIEW_MODIFICATION_LOCKED,
            )

    def guard_changes(self, changes: dict[str, tuple[str, str]], confirm_destructive: bool) -> None:
        dropped = [key for key, (prev, nxt) in changes.items() if prev == PENDING and nxt == CANCELLED]
        if dropped and not confirm_destructive:
            raise ConfirmationRequired(product_keys=dropped)
