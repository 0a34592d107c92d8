"""Shared stage-save pipeline.

Every recorder save runs the same steps:

1. permission gate (role may open the stage and record it)
2. under the per-order mutex, with no awaits:
   - lock check (a non-admin whose lock is set is refused)
   - read statuses, compute per-item updates, validate every transition
   - build one StageCommit and hand it to the store
3. after the commit: emit domain events, then await the notification waves
   for the items the save changed (none when nothing changed)

The activation of the follow-up stage is gated, not the save itself; the
gate result is reported in the outcome. Business refusals are raised
before anything is written. A store failure raises PersistenceFailure and
leaves the previous commit in place.
Notification problems are reported in the outcome, never raised.
"""

from __future__ import annotations

import logging
from abc import ABC
from dataclasses import dataclass, field
from typing import ClassVar, Iterable

from fulfillment_stepper.core.domain import extraction
from fulfillment_stepper.core.domain.errors import (
    InvalidTransition,
    PermissionDenied,
    StageLocked,
    StepperError,
)
from fulfillment_stepper.core.domain.item_state_machine import check_transition
from fulfillment_stepper.core.domain.permissions import require_can_record
from fulfillment_stepper.core.domain.reject_reasons import RejectReason
from fulfillment_stepper.core.domain.sequencer import (
    ActivationGate,
    current_ranked_number,
    evaluate_activation,
    marker_for,
    resolve_current_marker,
)
from fulfillment_stepper.core.domain.stages import (
    EXCEPTION_STATUS,
    LOCKABLE_STAGES,
    SUB_STAGE_AFTER,
    next_ranked_stage,
)
from fulfillment_stepper.core.domain.types import (
    CurrentStageMarker,
    ItemStatusRecord,
    LockRecord,
    OrderItem,
    StageDecisionBase,
    utc_now,
)
from fulfillment_stepper.core.events.events import (
    DecisionRefusedEvent,
    ItemStatusTransitionEvent,
    StageActivatedEvent,
    StageCommittedEvent,
    now_ns,
)
from fulfillment_stepper.core.ports.status_store import StageCommit
from fulfillment_stepper.notifications.dispatcher import NotificationReport, StepNotification
from fulfillment_stepper.recorders.context import StepperContext

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ItemRow:
    """One editable line of a stage popup."""

    item: OrderItem
    status: str
    checked: bool


@dataclass(slots=True)
class SaveOutcome:
    """Result of a committed stage save.

    - changes: product_key -> (previous status, new status), changed items only
    - gate: evaluation of the follow-up activation (None after delivery)
    - marker: current stage marker after the save
    - notifications: reports of the main wave and, if any, the sub-step wave
    """

    stage_id: str
    changes: dict[str, tuple[str, str]]
    decision: StageDecisionBase
    marker: CurrentStageMarker
    gate: ActivationGate | None
    locked: bool
    notifications: list[NotificationReport] = field(default_factory=list)

    @property
    def changed_keys(self) -> list[str]:
        return list(self.changes)

    @property
    def advanced(self) -> bool:
        return self.gate is not None and self.gate.accepted

    def report(self, wave: str) -> NotificationReport | None:
        for report in self.notifications:
            if report.wave == wave:
                return report
        return None


@dataclass(slots=True)
class _Committed:
    changes: dict[str, tuple[str, str]]
    decision: StageDecisionBase
    gate: ActivationGate | None
    prev_marker: CurrentStageMarker | None
    new_marker: CurrentStageMarker | None
    marker: CurrentStageMarker
    locked: bool


def step_payload(ctx: StepperContext, stage_id: str, product_keys: Iterable[str]) -> StepNotification:
    """Notification payload for ``stage_id`` scoped to the parties of ``product_keys``."""
    meta = extraction.order_metadata(ctx.orders)
    parties = extraction.relevant_parties(ctx.orders, product_keys)
    return StepNotification(
        stage_id=stage_id,
        stage_name=ctx.stage_name(stage_id),
        order_key=meta.order_key,
        order_id=meta.order_id,
        buyer_key=meta.buyer_key,
        seller_keys=parties.seller_keys,
        courier_keys=parties.courier_keys,
        acting_user_id=ctx.user_id,
        user_name=ctx.user_name,
    )


# ---------------------------------------------------------------------------
# Recorder base
# ---------------------------------------------------------------------------


class DecisionRecorder(ABC):
    """Base class of the four ranked-stage recorders.

    Subclasses declare the stage, the decision variant, which item statuses
    they may edit, and the statuses a checked / unchecked item ends up in.
    """

    stage_id: ClassVar[str]
    decision_type: ClassVar[type[StageDecisionBase]]
    editable_statuses: ClassVar[frozenset[str]]
    checked_status: ClassVar[str]
    unchecked_status: ClassVar[str]

    def __init__(self, ctx: StepperContext) -> None:
        self._ctx = ctx

    @property
    def context(self) -> StepperContext:
        return self._ctx

    @property
    def locks_on_save(self) -> bool:
        return self.stage_id in LOCKABLE_STAGES

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def next_status(self, prev_status: str, checked: bool) -> str:
        return self.checked_status if checked else self.unchecked_status

    def check_preconditions(self, current_number: int) -> None:
        """Stage-specific refusals evaluated before any item is read."""

    def guard_changes(self, changes: dict[str, tuple[str, str]], confirm_destructive: bool) -> None:
        """Stage-specific checks on the computed changes."""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def editable_items(self, statuses: dict[str, str] | None = None) -> list[OrderItem]:
        statuses = self._ctx.item_statuses() if statuses is None else statuses
        return [
            item
            for item in self._ctx.visible_items()
            if statuses.get(item.product_key, "pending") in self.editable_statuses
        ]

    def rows(self) -> list[ItemRow]:
        statuses = self._ctx.item_statuses()
        return [
            ItemRow(
                item=item,
                status=statuses[item.product_key],
                checked=statuses[item.product_key] == self.checked_status,
            )
            for item in self.editable_items(statuses)
        ]

    def is_locked_for_actor(self) -> bool:
        if not self.locks_on_save:
            return False
        ctx = self._ctx
        return ctx.store.get_lock_status(ctx.order_key, self.stage_id, ctx.user_id)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def save(self, checked_keys: Iterable[str], *, confirm_destructive: bool = False) -> SaveOutcome:
        """Record the actor's decision for this stage.

        ``checked_keys`` lists the items the actor ticked; every other
        editable item visible to the actor is treated as unticked.
        """
        ctx = self._ctx
        checked = {str(key) for key in checked_keys}

        try:
            require_can_record(self.stage_id, ctx.role)
            with ctx.order_locks.hold(ctx.order_key):
                committed = self._commit_locked(checked, confirm_destructive)
        except StepperError as exc:
            self._refused(exc)
            raise

        self._publish(committed)
        reports = await self._notify(committed)

        return SaveOutcome(
            stage_id=self.stage_id,
            changes=committed.changes,
            decision=committed.decision,
            marker=committed.marker,
            gate=committed.gate,
            locked=committed.locked,
            notifications=reports,
        )

    def _commit_locked(self, checked: set[str], confirm_destructive: bool) -> _Committed:
        # pylint: disable=too-many-locals
        ctx = self._ctx
        store = ctx.store
        order_key = ctx.order_key

        decisions = store.load_all_stage_states(order_key)
        prev_marker = store.load_marker(order_key)
        current = current_ranked_number(prev_marker, decisions)

        self.check_preconditions(current)

        if self.is_locked_for_actor() and not ctx.is_admin:
            raise StageLocked(stage_id=self.stage_id, locked_by=ctx.user_id)

        statuses = ctx.item_statuses()
        self._validate_checked_keys(checked, statuses)

        editable = self.editable_items(statuses)
        scope = [item.product_key for item in editable]

        changes: dict[str, tuple[str, str]] = {}
        positive: list[str] = []
        negative: list[str] = []
        for item in editable:
            key = item.product_key
            is_checked = key in checked
            (positive if is_checked else negative).append(key)
            prev = statuses[key]
            nxt = self.next_status(prev, is_checked)
            if nxt != prev:
                changes[key] = (prev, nxt)

        self.guard_changes(changes, confirm_destructive)

        locked_stages = {s for s in LOCKABLE_STAGES if store.get_lock_status(order_key, s, ctx.user_id)}
        for key, (prev, nxt) in changes.items():
            check_transition(key, prev, nxt, locked_stages=locked_stages, is_admin=ctx.is_admin)

        decision = self.decision_type(
            **{
                self.decision_type.positive_field: positive,
                self.decision_type.negative_field: negative,
            },
            decided_by=ctx.user_id,
        ).merged_over(decisions.get(self.stage_id), set(scope))

        now = utc_now()
        stage_dates = {self.stage_id: now}

        gate: ActivationGate | None = None
        new_marker: CurrentStageMarker | None = None
        follow_up = next_ranked_stage(self.stage_id)
        if follow_up is not None:
            gate = evaluate_activation(follow_up, current)
            if gate.accepted:
                new_marker = marker_for(follow_up)
                stage_dates[follow_up] = now

        items = ctx.items_by_key()
        commit = StageCommit(
            order_key=order_key,
            stage_id=self.stage_id,
            statuses={
                key: ItemStatusRecord(
                    status=nxt,
                    seller_key=items[key].seller_key,
                    updated_by=ctx.user_id,
                    updated_at=now,
                )
                for key, (_, nxt) in changes.items()
            },
            decision=decision,
            lock_user_id=ctx.user_id if self.locks_on_save else None,
            lock=LockRecord(locked=True, locked_by=ctx.user_id, locked_at=now) if self.locks_on_save else None,
            marker=new_marker,
            stage_dates=stage_dates,
        )
        store.commit(commit)

        marker = new_marker or resolve_current_marker(prev_marker, {**decisions, self.stage_id: decision})

        return _Committed(
            changes=changes,
            decision=decision,
            gate=gate,
            prev_marker=prev_marker,
            new_marker=new_marker,
            marker=marker,
            locked=self.locks_on_save,
        )

    def _validate_checked_keys(self, checked: set[str], statuses: dict[str, str]) -> None:
        ctx = self._ctx
        known = ctx.items_by_key()
        visible = {item.product_key for item in ctx.visible_items()}

        for key in sorted(checked):
            if key not in known:
                raise StepperError(RejectReason.UNKNOWN_ITEM, product_key=key, stage_id=self.stage_id)
            if key not in visible:
                raise PermissionDenied(
                    role=ctx.role,
                    stage_id=self.stage_id,
                    reason=RejectReason.ITEM_NOT_VISIBLE,
                    product_key=key,
                )
            if statuses[key] not in self.editable_statuses:
                raise InvalidTransition(
                    RejectReason.INVALID_TRANSITION,
                    product_key=key,
                    prev_status=statuses[key],
                    next_status=self.checked_status,
                )

    # ------------------------------------------------------------------
    # After commit
    # ------------------------------------------------------------------

    def _refused(self, exc: StepperError) -> None:
        ctx = self._ctx
        LOGGER.info(
            "Stage save refused",
            extra={
                "order_key": ctx.order_key,
                "stage_id": self.stage_id,
                "user_id": ctx.user_id,
                "role": ctx.role,
                "reason": exc.reason,
            },
        )
        ctx.event_bus.emit(
            DecisionRefusedEvent(
                ts_ns=now_ns(),
                order_key=ctx.order_key,
                stage_id=self.stage_id,
                actor_id=ctx.user_id,
                role=ctx.role,
                reason=exc.reason,
                message=str(exc),
            )
        )

    def _publish(self, committed: _Committed) -> None:
        ctx = self._ctx
        ts = now_ns()

        LOGGER.info(
            "Stage saved",
            extra={
                "order_key": ctx.order_key,
                "stage_id": self.stage_id,
                "user_id": ctx.user_id,
                "changed": len(committed.changes),
                "marker": committed.marker.stage_id,
            },
        )

        events: list[object] = [
            ItemStatusTransitionEvent(
                ts_ns=ts,
                order_key=ctx.order_key,
                product_key=key,
                stage_id=self.stage_id,
                actor_id=ctx.user_id,
                prev_status=prev,
                next_status=nxt,
            )
            for key, (prev, nxt) in committed.changes.items()
        ]
        events.append(
            StageCommittedEvent(
                ts_ns=ts,
                order_key=ctx.order_key,
                stage_id=self.stage_id,
                actor_id=ctx.user_id,
                role=ctx.role,
                positive_keys=committed.decision.positive_keys,
                negative_keys=committed.decision.negative_keys,
                locked=committed.locked,
            )
        )
        if committed.new_marker is not None:
            events.append(
                StageActivatedEvent(
                    ts_ns=ts,
                    order_key=ctx.order_key,
                    actor_id=ctx.user_id,
                    prev_stage=committed.prev_marker.stage_id if committed.prev_marker else None,
                    next_stage=committed.new_marker.stage_id,
                    stage_number=committed.new_marker.stage_number,
                )
            )
        ctx.event_bus.emit_all(events)

    def _payload(self, stage_id: str, product_keys: Iterable[str]) -> StepNotification:
        return step_payload(self._ctx, stage_id, product_keys)

    async def _notify(self, committed: _Committed) -> list[NotificationReport]:
        dispatcher = self._ctx.dispatcher
        if dispatcher is None:
            return []
        if not committed.changes:
            LOGGER.debug(
                "Nothing changed; no notifications sent",
                extra={"order_key": self._ctx.order_key, "stage_id": self.stage_id},
            )
            return []

        reports: list[NotificationReport] = []
        try:
            changed = list(committed.changes)
            reports.append(await dispatcher.notify_on_step_activation(self._payload(self.stage_id, changed)))

            sub_stage = SUB_STAGE_AFTER.get(self.stage_id)
            if sub_stage is not None:
                produced = [
                    key for key, (_, nxt) in committed.changes.items() if nxt == EXCEPTION_STATUS[sub_stage]
                ]
                if produced:
                    reports.append(await dispatcher.notify_on_sub_step_activation(self._payload(sub_stage, produced)))
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception(
                "Notification dispatch failed after commit",
                extra={"order_key": self._ctx.order_key, "stage_id": self.stage_id},
            )
        return reports
