"""Seller confirmation: accept or reject the items the buyer kept."""

from __future__ import annotations

from fulfillment_stepper.core.domain.stages import CONFIRMED, PENDING, REJECTED, STEP_CONFIRMED
from fulfillment_stepper.core.domain.types import ConfirmationDecision
from fulfillment_stepper.recorders.base import DecisionRecorder


class ConfirmationRecorder(DecisionRecorder):
    """Checked items become confirmed, unchecked ones rejected.

    Items cancelled in review are outside the editable set. Saving locks
    the stage for the acting seller and requests activation of shipping.
    """

    stage_id = STEP_CONFIRMED
    decision_type = ConfirmationDecision
    editable_statuses = frozenset({PENDING, CONFIRMED, REJECTED})
    checked_status = CONFIRMED
    unchecked_status = REJECTED
