"""Stepper session facade.

A session binds one acting user to one order snapshot. It resolves the
user's role once at start-up (a resolution failure refuses the whole
session), routes stage clicks through the permission table, and exposes
the save operations and the read-side queries a stepper UI needs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from fulfillment_stepper.core.config.stepper_config import StepperConfig
from fulfillment_stepper.core.domain import extraction, sequencer
from fulfillment_stepper.core.domain.errors import PermissionDenied, RoleResolutionError, StepperError
from fulfillment_stepper.core.domain.permissions import can_record, require_step_allowed
from fulfillment_stepper.core.domain.reject_reasons import RejectReason
from fulfillment_stepper.core.domain.roles import normalize_user_id, resolve_role
from fulfillment_stepper.core.domain.stages import (
    EXCEPTION_STATUS,
    LOCKABLE_STAGES,
    SHIPPED,
    STAGE_NUMBERS,
    STEP_CONFIRMED,
    STEP_DELIVERED,
    STEP_REVIEW,
    STEP_SHIPPED,
    SUB_STAGE_AFTER,
    is_ranked,
)
from fulfillment_stepper.core.domain.types import CurrentStageMarker, Order, OrderItem, utc_now
from fulfillment_stepper.core.events.event_bus import EventBus
from fulfillment_stepper.core.events.events import StageActivatedEvent, now_ns
from fulfillment_stepper.core.events.sinks.file_recorder import FileRecorderSink
from fulfillment_stepper.core.events.sinks.sink_logging import LoggingEventSink
from fulfillment_stepper.core.ports.status_store import StageCommit, StatusStore
from fulfillment_stepper.notifications.dispatcher import NotificationDispatcher, NotificationReport
from fulfillment_stepper.recorders.base import DecisionRecorder, ItemRow, SaveOutcome, step_payload
from fulfillment_stepper.recorders.confirmation import ConfirmationRecorder
from fulfillment_stepper.recorders.context import StepperContext
from fulfillment_stepper.recorders.delivery import DeliveryRecorder
from fulfillment_stepper.recorders.review import ReviewRecorder
from fulfillment_stepper.recorders.shipping import ShippingRecorder
from fulfillment_stepper.store.json_file_store import JsonFileStatusStore
from fulfillment_stepper.store.memory_store import InMemoryStatusStore
from fulfillment_stepper.store.order_locks import OrderLockRegistry

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StageView:
    """What a click on a stage opens for the acting user."""

    stage_id: str
    stage_name: str
    stage_number: int
    role: str
    marker: CurrentStageMarker
    rows: list[ItemRow]
    read_only: bool
    locked: bool
    read_only_reason: str | None = None


@dataclass(slots=True)
class ActivationOutcome:
    marker: CurrentStageMarker
    notifications: list[NotificationReport] = field(default_factory=list)


def build_event_bus(event_log_path: str | Path | None) -> EventBus:
    sinks: list[Any] = [LoggingEventSink(logging.getLogger("stepper.bus"))]
    if event_log_path is not None:
        sinks.append(FileRecorderSink(event_log_path))
    return EventBus(sinks=sinks)


def build_store(config: StepperConfig) -> StatusStore:
    if config.store_dir is not None:
        return JsonFileStatusStore(config.store_dir)
    return InMemoryStatusStore()


def _parse_orders(orders: Iterable[Order | Mapping[str, Any]]) -> tuple[Order, ...]:
    return tuple(o if isinstance(o, Order) else Order.model_validate(o) for o in orders)


class StepperSession:
    """One acting user's view of one order."""

    def __init__(self, ctx: StepperContext) -> None:
        self._ctx = ctx
        self._recorders: dict[str, DecisionRecorder] = {
            STEP_REVIEW: ReviewRecorder(ctx),
            STEP_CONFIRMED: ConfirmationRecorder(ctx),
            STEP_SHIPPED: ShippingRecorder(ctx),
            STEP_DELIVERED: DeliveryRecorder(ctx),
        }

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def initialize(
        cls,
        orders: Sequence[Order | Mapping[str, Any]],
        control: Mapping[str, Any],
        *,
        store: StatusStore | None = None,
        config: StepperConfig | None = None,
        dispatcher: NotificationDispatcher | None = None,
        event_bus: EventBus | None = None,
        order_locks: OrderLockRegistry | None = None,
    ) -> StepperSession:
        """Build a session from the hosting page's snapshot and control object.

        ``control`` is ``{"currentUser": {"idUser": ..., "name": ...}}``.

        Raises:
            ValueError: the snapshot is empty.
            RoleConflict / RoleUnresolved: the user cannot act on these orders.
        """
        parsed = _parse_orders(orders)
        if not parsed:
            raise ValueError("order snapshot is empty")

        config = config if config is not None else StepperConfig.from_env()
        current_user = control.get("currentUser") if isinstance(control, Mapping) else None
        user_id = normalize_user_id(current_user)
        user_name = current_user.get("name") if isinstance(current_user, Mapping) else None

        try:
            role = resolve_role(user_id, parsed, config.admin_ids)
        except RoleResolutionError as exc:
            LOGGER.error(
                "Role resolution failed; session refused",
                extra={"user_id": user_id, "order_key": parsed[0].order_key, "reason": exc.reason},
            )
            raise

        ctx = StepperContext(
            orders=parsed,
            order_key=parsed[0].order_key,
            user_id=user_id,
            role=role,
            store=store if store is not None else build_store(config),
            config=config,
            order_locks=order_locks if order_locks is not None else OrderLockRegistry(),
            event_bus=event_bus if event_bus is not None else build_event_bus(config.event_log_path),
            dispatcher=dispatcher,
            user_name=user_name,
        )

        LOGGER.info(
            "Stepper session started",
            extra={"order_key": ctx.order_key, "user_id": user_id, "role": role},
        )
        return cls(ctx)

    @property
    def context(self) -> StepperContext:
        return self._ctx

    @property
    def role(self) -> str:
        return self._ctx.role

    @property
    def order_key(self) -> str:
        return self._ctx.order_key

    def recorder(self, stage_id: str) -> DecisionRecorder:
        try:
            return self._recorders[stage_id]
        except KeyError:
            raise StepperError(RejectReason.UNKNOWN_STAGE, stage_id=stage_id) from None

    def close(self) -> None:
        self._ctx.event_bus.close()

    # ------------------------------------------------------------------
    # Stage routing
    # ------------------------------------------------------------------

    def handle_step_click(self, stage_id: str) -> StageView:
        """Open a stage for the acting user.

        Raises PermissionDenied when the role may not open the stage. The
        returned view is read-only when the role cannot record the stage,
        the actor's lock is set, or review edits are closed.
        """
        if stage_id not in STAGE_NUMBERS:
            raise StepperError(RejectReason.UNKNOWN_STAGE, stage_id=stage_id)

        ctx = self._ctx
        require_step_allowed(stage_id, ctx.role)
        marker = self.current_marker()

        if not is_ranked(stage_id):
            status = EXCEPTION_STATUS[stage_id]
            statuses = ctx.item_statuses()
            rows = [
                ItemRow(item=item, status=status, checked=False)
                for item in extraction.items_with_status(ctx.visible_items(), statuses, status)
            ]
            return StageView(
                stage_id=stage_id,
                stage_name=ctx.stage_name(stage_id),
                stage_number=STAGE_NUMBERS[stage_id],
                role=ctx.role,
                marker=marker,
                rows=rows,
                read_only=True,
                locked=False,
                read_only_reason="exception_stage",
            )

        recorder = self._recorders[stage_id]
        current = self._current_number()
        locked = recorder.is_locked_for_actor()

        reason: str | None = None
        if not can_record(stage_id, ctx.role):
            reason = RejectReason.ROLE_CANNOT_RECORD
        elif locked and not ctx.is_admin:
            reason = RejectReason.STAGE_LOCKED
        elif stage_id == STEP_REVIEW and sequencer.is_review_modification_locked(current, ctx.role):
            reason = RejectReason.REVIEW_MODIFICATION_LOCKED

        return StageView(
            stage_id=stage_id,
            stage_name=ctx.stage_name(stage_id),
            stage_number=STAGE_NUMBERS[stage_id],
            role=ctx.role,
            marker=marker,
            rows=recorder.rows(),
            read_only=reason is not None,
            locked=locked,
            read_only_reason=reason,
        )

    # ------------------------------------------------------------------
    # Saves
    # ------------------------------------------------------------------

    async def save_review(self, kept_keys: Iterable[str], *, confirm_destructive: bool = False) -> SaveOutcome:
        return await self._recorders[STEP_REVIEW].save(kept_keys, confirm_destructive=confirm_destructive)

    async def save_confirmation(self, confirmed_keys: Iterable[str]) -> SaveOutcome:
        return await self._recorders[STEP_CONFIRMED].save(confirmed_keys)

    async def save_shipping(self, shipped_keys: Iterable[str]) -> SaveOutcome:
        return await self._recorders[STEP_SHIPPED].save(shipped_keys)

    async def save_delivery(self, delivered_keys: Iterable[str]) -> SaveOutcome:
        return await self._recorders[STEP_DELIVERED].save(delivered_keys)

    async def activate_stage(self, stage_id: str) -> ActivationOutcome:
        """Explicitly make ``stage_id`` the active stage.

        Ranked stages move only through recorder saves; an admin may still
        activate one, subject to the activation gate. Exception stages may
        always be shown as the marker by any role allowed to open them.
        Notifies the whole order and, where the stage has a sub-step, the
        stakeholders of the affected items.
        """
        ctx = self._ctx
        if stage_id not in STAGE_NUMBERS:
            raise StepperError(RejectReason.UNKNOWN_STAGE, stage_id=stage_id)
        require_step_allowed(stage_id, ctx.role)
        if is_ranked(stage_id) and not ctx.is_admin:
            raise PermissionDenied(
                role=ctx.role,
                stage_id=stage_id,
                reason=RejectReason.RANKED_ACTIVATION_ADMIN_ONLY,
            )

        with ctx.order_locks.hold(ctx.order_key):
            prev_marker = ctx.store.load_marker(ctx.order_key)
            if is_ranked(stage_id):
                sequencer.check_activation(stage_id, self._current_number())
            marker = sequencer.marker_for(stage_id)
            ctx.store.commit(
                StageCommit(
                    order_key=ctx.order_key,
                    stage_id=stage_id,
                    marker=marker,
                    stage_dates={stage_id: utc_now()},
                )
            )

        ctx.event_bus.emit(
            StageActivatedEvent(
                ts_ns=now_ns(),
                order_key=ctx.order_key,
                actor_id=ctx.user_id,
                prev_stage=prev_marker.stage_id if prev_marker else None,
                next_stage=stage_id,
                stage_number=marker.stage_number,
            )
        )
        LOGGER.info(
            "Stage activated",
            extra={"order_key": ctx.order_key, "stage_id": stage_id, "user_id": ctx.user_id},
        )

        return ActivationOutcome(marker=marker, notifications=await self._notify_activation(stage_id))

    async def _notify_activation(self, stage_id: str) -> list[NotificationReport]:
        ctx = self._ctx
        if ctx.dispatcher is None:
            return []

        all_keys = [item.product_key for item in extraction.all_items(ctx.orders)]
        reports = [await ctx.dispatcher.notify_on_step_activation(step_payload(ctx, stage_id, all_keys))]

        sub_stage = SUB_STAGE_AFTER.get(stage_id)
        if sub_stage is not None:
            affected = [item.product_key for item in self._items_in(EXCEPTION_STATUS[sub_stage], visible_only=False)]
            if affected:
                reports.append(
                    await ctx.dispatcher.notify_on_sub_step_activation(step_payload(ctx, sub_stage, affected))
                )
        return reports

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _current_number(self) -> int:
        store = self._ctx.store
        return sequencer.current_ranked_number(
            store.load_marker(self.order_key),
            store.load_all_stage_states(self.order_key),
        )

    def current_marker(self) -> CurrentStageMarker:
        store = self._ctx.store
        return sequencer.resolve_current_marker(
            store.load_marker(self.order_key),
            store.load_all_stage_states(self.order_key),
        )

    def exception_flags(self) -> dict[str, bool]:
        return sequencer.exception_flags(self._ctx.item_statuses())

    def is_stage_locked(self, stage_id: str, user_id: str | None = None) -> bool:
        """Lock flag of ``stage_id`` for ``user_id`` (the acting user by default)."""
        if stage_id not in LOCKABLE_STAGES:
            return False
        ctx = self._ctx
        return ctx.store.get_lock_status(ctx.order_key, stage_id, user_id or ctx.user_id)

    def is_review_modification_locked(self) -> bool:
        return sequencer.is_review_modification_locked(self._current_number(), self._ctx.role)

    def stage_date(self, stage_id: str) -> datetime | None:
        """Activation time of a stage; review uses the order creation time."""
        if stage_id == STEP_REVIEW:
            created = self._ctx.orders[0].created_at
            if created:
                try:
                    return datetime.fromisoformat(created)
                except ValueError:
                    LOGGER.warning(
                        "Unparseable order created_at",
                        extra={"order_key": self.order_key, "created_at": created},
                    )
        return self._ctx.store.load_stage_date(self.order_key, stage_id)

    def item_statuses(self) -> dict[str, str]:
        return self._ctx.item_statuses()

    def _items_in(self, status: str, *, visible_only: bool = True) -> list[OrderItem]:
        ctx = self._ctx
        items = ctx.visible_items() if visible_only else extraction.all_items(ctx.orders)
        return extraction.items_with_status(items, ctx.item_statuses(), status)

    def cancelled_products(self) -> list[OrderItem]:
        return extraction.cancelled_products(self._ctx.visible_items(), self._ctx.item_statuses())

    def rejected_products(self) -> list[OrderItem]:
        return extraction.rejected_products(self._ctx.visible_items(), self._ctx.item_statuses())

    def returned_products(self) -> list[OrderItem]:
        return extraction.returned_products(self._ctx.visible_items(), self._ctx.item_statuses())

    def confirmed_products(self) -> list[OrderItem]:
        return extraction.confirmed_products(self._ctx.visible_items(), self._ctx.item_statuses())

    def delivery_contacts(self) -> list[extraction.DeliveryContact]:
        """Courier contacts of the actor's shipped or delivered items."""
        ctx = self._ctx
        items = extraction.items_with_status(ctx.visible_items(), ctx.item_statuses(), SHIPPED, "delivered")
        return extraction.delivery_contacts(items)

    def buyer_contacts(self) -> list[extraction.BuyerContact]:
        keys = [item.product_key for item in self._ctx.visible_items()]
        return extraction.buyer_contacts(self._ctx.orders, keys)

    async def announce_purchase(self) -> list[NotificationReport]:
        dispatcher = self._ctx.dispatcher
        if dispatcher is None:
            return []
        return [await dispatcher.handle_purchase_notifications(order) for order in self._ctx.orders]
