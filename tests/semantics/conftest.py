"""Shared fixtures for the semantic test suite.

The canonical snapshot is one order with three items, all sold by
``seller_key_1``. Items 1 and 2 are carried by ``courier_1``, item 3 by
``courier_2``. ``admin_1`` is on the admin allow-list.
"""

# pylint: disable=missing-function-docstring,redefined-outer-name
from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Callable, Sequence

import pytest

from fulfillment_stepper.core.config.stepper_config import StepperConfig
from fulfillment_stepper.core.events.sinks.null_event_bus import CollectingEventBus
from fulfillment_stepper.notifications.dispatcher import NotificationDispatcher
from fulfillment_stepper.session import StepperSession
from fulfillment_stepper.store.memory_store import InMemoryStatusStore
from fulfillment_stepper.store.order_locks import OrderLockRegistry

ORDER_KEY = "ord-1"


# ---------------------------------------------------------------------------
# Fake notification collaborators
# ---------------------------------------------------------------------------


class FakePolicy:
    def __init__(self, switches: dict[tuple[str, str], bool] | None = None, error: Exception | None = None) -> None:
        self.switches = switches or {}
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def should_notify(self, event_key: str, role: str) -> bool:
        self.calls.append((event_key, role))
        if self.error is not None:
            raise self.error
        return self.switches.get((event_key, role), True)


class FakeTokens:
    """Every user owns one token ``tok-<user_id>`` unless listed in ``without``."""

    def __init__(self, admins: Sequence[str] = ("admin_1",), without: Sequence[str] = ()) -> None:
        self.admins = list(admins)
        self.without = set(without)

    async def user_tokens(self, user_ids: Sequence[str]) -> list[str]:
        return [f"tok-{uid}" for uid in user_ids if uid not in self.without]

    async def admin_tokens(self, exclude_user_id: str | None = None) -> list[str]:
        return [f"tok-{uid}" for uid in self.admins if uid != exclude_user_id]


class FakeSender:
    def __init__(self, fail_tokens: Sequence[str] = ()) -> None:
        self.fail_tokens = set(fail_tokens)
        self.sent: list[tuple[tuple[str, ...], str, str]] = []

    async def send(self, tokens: Sequence[str], title: str, body: str) -> None:
        if self.fail_tokens & set(tokens):
            raise ConnectionError(f"push rejected for {sorted(self.fail_tokens & set(tokens))}")
        self.sent.append((tuple(tokens), title, body))

    def titles_for(self, token: str) -> list[str]:
        return [title for tokens, title, _ in self.sent if token in tokens]


class Notifier:
    def __init__(self, policy: FakePolicy | None = None, tokens: FakeTokens | None = None, sender: FakeSender | None = None) -> None:
        self.policy = policy or FakePolicy()
        self.tokens = tokens or FakeTokens()
        self.sender = sender or FakeSender()
        self.event_bus = CollectingEventBus()
        self.dispatcher = NotificationDispatcher(
            policy=self.policy,
            tokens=self.tokens,
            sender=self.sender,
            event_bus=self.event_bus,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_order(**overrides: Any) -> dict[str, Any]:
    order: dict[str, Any] = {
        "order_key": ORDER_KEY,
        "id": "1001",
        "user_key": "buyer_1",
        "user_name": "Bea Buyer",
        "user_phone": "555-0100",
        "user_address": "1 Market Street",
        "created_at": "2026-01-02T10:00:00+00:00",
        "order_items": [
            {
                "product_key": "item1",
                "product_name": "Kettle",
                "quantity": 1,
                "seller_key": "seller_key_1",
                "supplier_delivery": {"delivery_key": "courier_1", "delivery_name": "Cora", "delivery_phone": "555-0101"},
            },
            {
                "product_key": "item2",
                "product_name": "Teapot",
                "quantity": 2,
                "seller_key": "seller_key_1",
                "supplier_delivery": {"delivery_key": "courier_1", "delivery_name": "Cora", "delivery_phone": "555-0101"},
            },
            {
                "product_key": "item3",
                "product_name": "Mugs",
                "quantity": 4,
                "seller_key": "seller_key_1",
                "supplier_delivery": [{"delivery_key": "courier_2", "delivery_name": "Dan", "delivery_phone": "555-0102"}],
            },
        ],
    }
    order.update(overrides)
    return order


@pytest.fixture
def order_payload() -> dict[str, Any]:
    return make_order()


@pytest.fixture
def store() -> InMemoryStatusStore:
    return InMemoryStatusStore()


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def open_session(order_payload: dict[str, Any], store: InMemoryStatusStore) -> Callable[..., StepperSession]:
    """Factory opening sessions that share one store and one per-order mutex registry."""
    order_locks = OrderLockRegistry()
    config = StepperConfig(admin_ids=["admin_1"])

    def _open(
        user_id: str,
        *,
        orders: Sequence[dict[str, Any]] | None = None,
        dispatcher: NotificationDispatcher | None = None,
        status_store: Any = None,
    ) -> StepperSession:
        return StepperSession.initialize(
            orders if orders is not None else [order_payload],
            {"currentUser": {"idUser": user_id, "name": user_id.replace("_", " ").title()}},
            store=status_store if status_store is not None else store,
            config=config,
            dispatcher=dispatcher,
            event_bus=CollectingEventBus(),
            order_locks=order_locks,
        )

    return _open


@pytest.fixture
def fakes() -> SimpleNamespace:
    """Constructors for the fake collaborators, for tests that need custom ones."""
    return SimpleNamespace(Policy=FakePolicy, Tokens=FakeTokens, Sender=FakeSender, Notifier=Notifier)


@pytest.fixture
def order_factory() -> Callable[..., dict[str, Any]]:
    return make_order
