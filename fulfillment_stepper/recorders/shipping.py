"""Shipping: mark confirmed items as handed to the courier."""

from __future__ import annotations

from fulfillment_stepper.core.domain.stages import CONFIRMED, SHIPPED, STEP_SHIPPED
from fulfillment_stepper.core.domain.types import ShippingDecision
from fulfillment_stepper.recorders.base import DecisionRecorder


class ShippingRecorder(DecisionRecorder):
    stage_id = STEP_SHIPPED
    decision_type = ShippingDecision
    editable_statuses = frozenset({CONFIRMED, SHIPPED})
    checked_status = SHIPPED
    unchecked_status = CONFIRMED
