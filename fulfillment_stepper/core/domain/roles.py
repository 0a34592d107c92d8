"""Role resolution.

The acting user's role is derived from their relationship to the order
snapshot. Resolution is a pure function of ``(user_id, orders)`` and the
administrative allow-list.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from fulfillment_stepper.core.domain.errors import RoleConflict, RoleUnresolved
from fulfillment_stepper.core.domain.stages import Role
from fulfillment_stepper.core.domain.types import Order


def normalize_user_id(user: Any) -> str:
    """Accept a bare id or a ``{"idUser": ...}`` mapping and return the id as text."""
    if isinstance(user, Mapping):
        user = user.get("idUser")
    if user is None:
        return ""
    return str(user)


def resolve_role(user: Any, orders: Iterable[Order], admin_ids: Iterable[str] = ()) -> Role:
    """Resolve the acting user's role.

    Order of precedence: admin > seller > buyer > courier.

    Raises:
        RoleConflict: the user is a buyer and a seller on the same order set.
        RoleUnresolved: the user has no relationship to the orders.
    """
    user_id = normalize_user_id(user)

    if user_id and user_id in {str(a) for a in admin_ids}:
        return "admin"

    is_buyer = False
    is_seller = False
    is_courier = False

    if user_id:
        for order in orders:
            if order.user_key == user_id:
                is_buyer = True
            for item in order.order_items:
                if item.seller_key == user_id:
                    is_seller = True
                if item.is_delivered_by(user_id):
                    is_courier = True

    if is_buyer and is_seller:
        raise RoleConflict(user_id=user_id)

    if is_seller:
        return "seller"
    if is_buyer:
        return "buyer"
    if is_courier:
        return "courier"

    raise RoleUnresolved(user_id=user_id)
