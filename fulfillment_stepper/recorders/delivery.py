"""Delivery: confirm receipt; items left unchecked are returned."""

from __future__ import annotations

from fulfillment_stepper.core.domain.stages import DELIVERED, RETURNED, SHIPPED, STEP_DELIVERED
from fulfillment_stepper.core.domain.types import DeliveryDecision
from fulfillment_stepper.recorders.base import DecisionRecorder


class DeliveryRecorder(DecisionRecorder):
    """Last ranked stage: saving locks it and activates nothing further."""

    stage_id = STEP_DELIVERED
    decision_type = DeliveryDecision
    editable_statuses = frozenset({SHIPPED, DELIVERED, RETURNED})
    checked_status = DELIVERED
    unchecked_status = RETURNED
