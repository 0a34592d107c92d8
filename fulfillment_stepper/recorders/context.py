"""Explicit per-session context threaded through recorders and queries."""

from __future__ import annotations

from dataclasses import dataclass, field

from fulfillment_stepper.core.config.stepper_config import StepperConfig
from fulfillment_stepper.core.domain import extraction
from fulfillment_stepper.core.domain.stages import Role
from fulfillment_stepper.core.domain.types import Order, OrderItem
from fulfillment_stepper.core.events.event_bus import EventBus
from fulfillment_stepper.core.events.sinks.null_event_bus import NullEventBus
from fulfillment_stepper.core.ports.status_store import StatusStore
from fulfillment_stepper.notifications.dispatcher import NotificationDispatcher
from fulfillment_stepper.store.order_locks import OrderLockRegistry


@dataclass(slots=True)
class StepperContext:
    """Everything one acting user's session needs.

    Built once when the session starts and never mutated afterwards; the
    order snapshot is read-only and all mutable state lives in ``store``.
    """

    orders: tuple[Order, ...]
    order_key: str
    user_id: str
    role: Role
    store: StatusStore
    config: StepperConfig = field(default_factory=StepperConfig)
    order_locks: OrderLockRegistry = field(default_factory=OrderLockRegistry)
    event_bus: EventBus = field(default_factory=NullEventBus)
    dispatcher: NotificationDispatcher | None = None
    user_name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def visible_items(self) -> list[OrderItem]:
        return extraction.visible_items(self.orders, self.role, self.user_id)

    def items_by_key(self) -> dict[str, OrderItem]:
        return extraction.items_by_key(self.orders)

    def stage_name(self, stage_id: str) -> str:
        return self.config.stage_name(stage_id)

    def item_statuses(self) -> dict[str, str]:
        """Current status of every snapshot item (pending when never saved)."""
        saved = self.store.load_all_item_statuses(self.order_key)
        return {
            item.product_key: saved[item.product_key].status if item.product_key in saved else "pending"
            for item in extraction.all_items(self.orders)
        }
