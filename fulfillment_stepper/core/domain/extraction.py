"""Read-only helpers over the order snapshot.

These functions never touch the status store directly; statuses are passed
in as a ``{product_key: status}`` mapping so they stay pure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from fulfillment_stepper.core.domain.stages import (
    CANCELLED,
    CONFIRMED,
    PENDING,
    REJECTED,
    RETURNED,
)
from fulfillment_stepper.core.domain.types import Order, OrderItem


@dataclass(slots=True, frozen=True)
class OrderMetadata:
    """Whole-order recipients used by the notification dispatcher."""

    order_key: str
    order_id: str
    buyer_key: str
    buyer_name: str | None
    seller_keys: tuple[str, ...]
    courier_keys: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class RelevantParties:
    """Sellers and couriers of the items touched by a single save."""

    seller_keys: tuple[str, ...] = ()
    courier_keys: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class DeliveryContact:
    product_key: str
    product_name: str
    courier_key: str | None
    courier_name: str | None
    courier_phone: str | None


@dataclass(slots=True, frozen=True)
class BuyerContact:
    buyer_key: str
    name: str | None
    phone: str | None
    address: str | None
    product_keys: tuple[str, ...] = field(default_factory=tuple)


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


def all_items(orders: Sequence[Order]) -> list[OrderItem]:
    """Flatten items across the snapshot, first occurrence of a product_key wins."""
    seen: set[str] = set()
    out: list[OrderItem] = []
    for order in orders:
        for item in order.order_items:
            if item.product_key in seen:
                continue
            seen.add(item.product_key)
            out.append(item)
    return out


def items_by_key(orders: Sequence[Order]) -> dict[str, OrderItem]:
    return {item.product_key: item for item in all_items(orders)}


def visible_items(orders: Sequence[Order], role: str, user_id: str) -> list[OrderItem]:
    """Items the acting user may see and decide on.

    buyer: every item on orders they placed; seller: their own items;
    courier: items assigned to them; admin: everything.
    """
    if role == "admin":
        return all_items(orders)

    out: list[OrderItem] = []
    seen: set[str] = set()
    for order in orders:
        for item in order.order_items:
            if item.product_key in seen:
                continue
            if role == "buyer":
                visible = order.user_key == user_id
            elif role == "seller":
                visible = item.seller_key == user_id
            elif role == "courier":
                visible = item.is_delivered_by(user_id)
            else:
                visible = False
            if visible:
                seen.add(item.product_key)
                out.append(item)
    return out


def order_metadata(orders: Sequence[Order]) -> OrderMetadata:
    if not orders:
        raise ValueError("order snapshot is empty")

    first = orders[0]
    items = all_items(orders)
    return OrderMetadata(
        order_key=first.order_key,
        order_id=first.display_id,
        buyer_key=first.user_key,
        buyer_name=first.user_name,
        seller_keys=_unique(item.seller_key for item in items),
        courier_keys=_unique(key for item in items for key in item.courier_keys()),
    )


def relevant_parties(orders: Sequence[Order], product_keys: Iterable[str]) -> RelevantParties:
    """Sellers and couriers owning only the given items."""
    wanted = set(product_keys)
    if not wanted:
        return RelevantParties()

    items = [item for item in all_items(orders) if item.product_key in wanted]
    return RelevantParties(
        seller_keys=_unique(item.seller_key for item in items),
        courier_keys=_unique(key for item in items for key in item.courier_keys()),
    )


def items_with_status(
    items: Iterable[OrderItem],
    statuses: Mapping[str, str],
    *wanted: str,
) -> list[OrderItem]:
    """Filter items by current status (absent statuses count as pending)."""
    targets = set(wanted)
    return [item for item in items if statuses.get(item.product_key, PENDING) in targets]


def cancelled_products(items: Iterable[OrderItem], statuses: Mapping[str, str]) -> list[OrderItem]:
    return items_with_status(items, statuses, CANCELLED)


def rejected_products(items: Iterable[OrderItem], statuses: Mapping[str, str]) -> list[OrderItem]:
    return items_with_status(items, statuses, REJECTED)


def returned_products(items: Iterable[OrderItem], statuses: Mapping[str, str]) -> list[OrderItem]:
    return items_with_status(items, statuses, RETURNED)


def confirmed_products(items: Iterable[OrderItem], statuses: Mapping[str, str]) -> list[OrderItem]:
    return items_with_status(items, statuses, CONFIRMED)


def delivery_contacts(items: Iterable[OrderItem]) -> list[DeliveryContact]:
    """One row per (item, courier); items without a courier get an empty row."""
    rows: list[DeliveryContact] = []
    for item in items:
        if not item.supplier_delivery:
            rows.append(
                DeliveryContact(
                    product_key=item.product_key,
                    product_name=item.product_name,
                    courier_key=None,
                    courier_name=None,
                    courier_phone=None,
                )
            )
            continue
        for assignment in item.supplier_delivery:
            rows.append(
                DeliveryContact(
                    product_key=item.product_key,
                    product_name=item.product_name,
                    courier_key=assignment.delivery_key,
                    courier_name=assignment.delivery_name,
                    courier_phone=assignment.delivery_phone,
                )
            )
    return rows


def buyer_contacts(orders: Sequence[Order], product_keys: Iterable[str]) -> list[BuyerContact]:
    """Buyer address cards for the given items (shown to sellers and couriers)."""
    wanted = set(product_keys)
    out: list[BuyerContact] = []
    for order in orders:
        keys = tuple(item.product_key for item in order.order_items if item.product_key in wanted)
        if not keys:
            continue
        out.append(
            BuyerContact(
                buyer_key=order.user_key,
                name=order.user_name,
                phone=order.user_phone,
                address=order.user_address,
                product_keys=keys,
            )
        )
    return out
