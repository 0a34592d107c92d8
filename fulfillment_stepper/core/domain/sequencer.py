"""Stage sequencer.

The sequencer owns the single rule of the primary flow: a ranked stage
``n`` may become active only while stage ``n - 1`` is the active one. Every
caller (recorders, the session facade, tests) goes through
``check_activation`` so the rule lives in exactly one place.

The active position is read from the persisted ``CurrentStageMarker``. When
no ranked marker exists, ``infer_current_stage`` reconstructs it from the
deepest persisted stage decision. That inference is a fallback for sessions
resumed without a marker; it is never consulted while a ranked marker is
present.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from fulfillment_stepper.core.domain.errors import SequenceViolation, StepperError
from fulfillment_stepper.core.domain.reject_reasons import RejectReason
from fulfillment_stepper.core.domain.stages import (
    EXCEPTION_STATUS,
    STAGE_NUMBERS,
    STAGE_RANKS,
    STEP_CONFIRMED,
    STEP_DELIVERED,
    STEP_REVIEW,
    STEP_SHIPPED,
    StageId,
    is_ranked,
)
from fulfillment_stepper.core.domain.types import CurrentStageMarker, StageDecisionBase

# Deepest decision first. A shipping decision leaves delivery active.
_INFERENCE_ORDER: tuple[tuple[str, StageId], ...] = (
    (STEP_DELIVERED, STEP_DELIVERED),
    (STEP_SHIPPED, STEP_DELIVERED),
    (STEP_CONFIRMED, STEP_SHIPPED),
    (STEP_REVIEW, STEP_CONFIRMED),
)

# Review edits by non-admins close once the order reaches this rank.
REVIEW_EDIT_CUTOFF_RANK = STAGE_RANKS[STEP_SHIPPED]


@dataclass(slots=True)
class ActivationGate:
    """Result of evaluating the activation rule without raising.

    - accepted: True if the target may become the active stage
    - kind: RejectReason.ALREADY_PAST / TOO_FAR_AHEAD when refused
    - message: user-facing explanation when refused
    """

    target_stage: str
    target_rank: int
    current_rank: int
    accepted: bool
    kind: str | None = None
    message: str | None = None


def marker_for(stage_id: str) -> CurrentStageMarker:
    if stage_id not in STAGE_NUMBERS:
        raise StepperError(RejectReason.UNKNOWN_STAGE, stage_id=stage_id)
    return CurrentStageMarker(stage_id=stage_id, stage_number=STAGE_NUMBERS[stage_id])


def check_activation(target_stage: str, current_number: int) -> None:
    """Raise SequenceViolation unless ``target_stage`` is exactly one rank ahead.

    Raises:
        StepperError: ``target_stage`` is not a ranked stage.
        SequenceViolation: the target regresses or skips a stage.
    """
    if not is_ranked(target_stage):
        raise StepperError(RejectReason.UNKNOWN_STAGE, stage_id=target_stage)

    target_rank = STAGE_RANKS[target_stage]

    if target_rank <= current_number:
        raise SequenceViolation(
            target_stage=target_stage,
            target_rank=target_rank,
            current_rank=current_number,
            kind=RejectReason.ALREADY_PAST,
        )

    if target_rank > current_number + 1:
        raise SequenceViolation(
            target_stage=target_stage,
            target_rank=target_rank,
            current_rank=current_number,
            kind=RejectReason.TOO_FAR_AHEAD,
        )


def evaluate_activation(target_stage: str, current_number: int) -> ActivationGate:
    target_rank = STAGE_RANKS.get(target_stage, 0)
    try:
        check_activation(target_stage, current_number)
    except SequenceViolation as exc:
        return ActivationGate(
            target_stage=target_stage,
            target_rank=target_rank,
            current_rank=current_number,
            accepted=False,
            kind=exc.kind,
            message=str(exc),
        )
    return ActivationGate(
        target_stage=target_stage,
        target_rank=target_rank,
        current_rank=current_number,
        accepted=True,
    )


def infer_current_stage(decisions: Mapping[str, StageDecisionBase | None]) -> StageId:
    """Reconstruct the active ranked stage from persisted decisions.

    The deepest decision present wins, regardless of whether earlier stages
    were ever saved.
    """
    for decided_stage, current in _INFERENCE_ORDER:
        if decisions.get(decided_stage) is not None:
            return current
    return STEP_REVIEW


def current_ranked_number(
    marker: CurrentStageMarker | None,
    decisions: Mapping[str, StageDecisionBase | None],
) -> int:
    """Rank of the active stage: the marker when it is ranked, else inferred."""
    if marker is not None and is_ranked(marker.stage_id):
        return STAGE_RANKS[marker.stage_id]
    return STAGE_RANKS[infer_current_stage(decisions)]


def resolve_current_marker(
    marker: CurrentStageMarker | None,
    decisions: Mapping[str, StageDecisionBase | None],
) -> CurrentStageMarker:
    if marker is not None:
        return marker
    return marker_for(infer_current_stage(decisions))


def exception_flags(statuses: Mapping[str, str]) -> dict[str, bool]:
    """Indicator flag per exception stage: True if any item carries its status."""
    present = set(statuses.values())
    return {stage_id: status in present for stage_id, status in EXCEPTION_STATUS.items()}


def is_review_modification_locked(current_number: int, role: str) -> bool:
    if role == "admin":
        return False
    return current_number >= REVIEW_EDIT_CUTOFF_RANK
