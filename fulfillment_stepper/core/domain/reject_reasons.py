"""Canonical refusal reasons.

Reasons are plain strings so they can be counted, logged and emitted in
domain events without translation.
"""

from __future__ import annotations


class RejectReason:
    # pylint: disable=too-few-public-methods

    # Permission table / recorder role checks
    ROLE_NOT_PERMITTED = "role_not_permitted"
    ROLE_CANNOT_RECORD = "role_cannot_record"
    RANKED_ACTIVATION_ADMIN_ONLY = "ranked_activation_admin_only"

    # Locks
    STAGE_LOCKED = "stage_locked"
    REVIEW_MODIFICATION_LOCKED = "review_modification_locked"

    # Sequencing
    ALREADY_PAST = "already_past"
    TOO_FAR_AHEAD = "too_far_ahead"
    UNKNOWN_STAGE = "unknown_stage"

    # Item transitions
    INVALID_TRANSITION = "invalid_transition"
    UNKNOWN_ITEM = "unknown_item"
    ITEM_NOT_VISIBLE = "item_not_visible"
    CONFIRMATION_REQUIRED = "confirmation_required"

    # Role resolution
    ROLE_CONFLICT = "role_conflict"
    ROLE_UNRESOLVED = "role_unresolved"

    # Infrastructure
    PERSISTENCE_FAILED = "persistence_failed"
    NOTIFICATION_FAILED = "notification_failed"
