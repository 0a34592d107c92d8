"""
Semantic test: strict one-step activation.

Invariant:
A ranked stage becomes active only while the stage directly before it is
the active one. Anything else is refused as either a regression or a skip,
and exception stages never take part in the rank check.
"""

# pylint: disable=missing-function-docstring
from __future__ import annotations

import pytest

from fulfillment_stepper.core.domain.errors import SequenceViolation, StepperError
from fulfillment_stepper.core.domain.reject_reasons import RejectReason
from fulfillment_stepper.core.domain.sequencer import (
    check_activation,
    evaluate_activation,
    marker_for,
)
from fulfillment_stepper.core.domain.stages import RANKED_STAGES, STAGE_RANKS

COMBINATIONS = [(current, target) for current in range(1, 5) for target in RANKED_STAGES]


@pytest.mark.parametrize(("current", "target"), COMBINATIONS)
def test_gate_accepts_exactly_the_next_rank(current: int, target: str) -> None:
    rank = STAGE_RANKS[target]

    if rank == current + 1:
        check_activation(target, current)
        return

    with pytest.raises(SequenceViolation) as exc_info:
        check_activation(target, current)

    expected_kind = RejectReason.ALREADY_PAST if rank <= current else RejectReason.TOO_FAR_AHEAD
    assert exc_info.value.kind == expected_kind
    assert exc_info.value.target_rank == rank
    assert exc_info.value.current_rank == current


def test_refusal_messages_name_the_problem() -> None:
    with pytest.raises(SequenceViolation, match="cannot regress"):
        check_activation("step-review", 2)

    with pytest.raises(SequenceViolation, match="must proceed in order"):
        check_activation("step-delivered", 2)


def test_same_stage_is_a_regression() -> None:
    with pytest.raises(SequenceViolation) as exc_info:
        check_activation("step-shipped", 3)
    assert exc_info.value.kind == RejectReason.ALREADY_PAST


@pytest.mark.parametrize("stage_id", ["step-cancelled", "step-rejected", "step-returned", "step-unknown"])
def test_non_ranked_targets_are_not_gated(stage_id: str) -> None:
    with pytest.raises(StepperError) as exc_info:
        check_activation(stage_id, 1)

    assert not isinstance(exc_info.value, SequenceViolation)
    assert exc_info.value.reason == RejectReason.UNKNOWN_STAGE


def test_evaluate_reports_instead_of_raising() -> None:
    accepted = evaluate_activation("step-shipped", 2)
    assert accepted.accepted
    assert accepted.kind is None

    refused = evaluate_activation("step-shipped", 3)
    assert not refused.accepted
    assert refused.kind == RejectReason.ALREADY_PAST
    assert refused.target_rank == 3
    assert refused.current_rank == 3
    assert "cannot regress" in (refused.message or "")


def test_markers_carry_display_numbers() -> None:
    assert marker_for("step-shipped").stage_number == 3
    assert marker_for("step-returned").stage_number == 7

    with pytest.raises(StepperError):
        marker_for("step-nowhere")
