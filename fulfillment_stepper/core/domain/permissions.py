"""Static role -> stage permission table.

``PERMISSIONS`` decides which stages a role may open. ``RECORDING_ROLES``
is the narrower set of roles that may save decisions for a ranked stage;
every other permitted role gets a read-only view.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from fulfillment_stepper.core.domain.errors import PermissionDenied
from fulfillment_stepper.core.domain.reject_reasons import RejectReason
from fulfillment_stepper.core.domain.stages import (
    ALL_STAGES,
    STEP_CANCELLED,
    STEP_CONFIRMED,
    STEP_DELIVERED,
    STEP_REJECTED,
    STEP_RETURNED,
    STEP_REVIEW,
    STEP_SHIPPED,
)

PERMISSIONS: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        "admin": frozenset(ALL_STAGES),
        "buyer": frozenset(
            {
                STEP_REVIEW,
                STEP_DELIVERED,
                STEP_CANCELLED,
                STEP_REJECTED,
                STEP_RETURNED,
            }
        ),
        "seller": frozenset(
            {
                STEP_REVIEW,
                STEP_CONFIRMED,
                STEP_SHIPPED,
                STEP_CANCELLED,
                STEP_REJECTED,
                STEP_RETURNED,
            }
        ),
        "courier": frozenset(
            {
                STEP_REVIEW,
                STEP_SHIPPED,
                STEP_DELIVERED,
                STEP_CANCELLED,
                STEP_REJECTED,
                STEP_RETURNED,
            }
        ),
    }
)

RECORDING_ROLES: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        STEP_REVIEW: frozenset({"buyer", "admin"}),
        STEP_CONFIRMED: frozenset({"seller", "admin"}),
        STEP_SHIPPED: frozenset({"seller", "courier", "admin"}),
        STEP_DELIVERED: frozenset({"buyer", "courier", "admin"}),
    }
)


def is_step_allowed_for_current_user(stage_id: str, role: str | None) -> bool:
    """Return True if ``role`` may open ``stage_id``."""
    if role is None:
        return False
    allowed = PERMISSIONS.get(role)
    if allowed is None:
        return False
    return stage_id in allowed


def can_record(stage_id: str, role: str | None) -> bool:
    """Return True if ``role`` may save decisions for ``stage_id``."""
    if not is_step_allowed_for_current_user(stage_id, role):
        return False
    return role in RECORDING_ROLES.get(stage_id, frozenset())


def require_step_allowed(stage_id: str, role: str | None) -> None:
    if not is_step_allowed_for_current_user(stage_id, role):
        raise PermissionDenied(role=role, stage_id=stage_id)


def require_can_record(stage_id: str, role: str | None) -> None:
    require_step_allowed(stage_id, role)
    if not can_record(stage_id, role):
        raise PermissionDenied(role=role, stage_id=stage_id, reason=RejectReason.ROLE_CANNOT_RECORD)
