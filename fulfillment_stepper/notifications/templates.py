"""Notification message catalog.

Templates are addressed by dotted paths (``steps.step-shipped.buyer``) and
carry a title and a body with ``{placeholder}`` fields. Unknown
placeholders are left in place.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from fulfillment_stepper.notifications.policy import canonical_role

DEFAULT_TITLE = "Notification"

DEFAULT_MESSAGES: dict[str, Any] = {
    "purchase": {
        "admin": {"title": "New order", "body": "Order #{order_id} was placed."},
        "seller": {"title": "New sale", "body": "You have new items to confirm in order #{order_id}."},
        "buyer": {"title": "Order received", "body": "Your order #{order_id} was received."},
        "courier": {"title": "New delivery", "body": "Order #{order_id} has items for you to deliver."},
    },
    "steps": {
        "general_update": {
            "admin": {"title": "Order update", "body": "{stage_name}{order_id_text}{user_info}"},
            "buyer": {"title": "Order update", "body": "Your order{order_id_text} moved to: {stage_name}"},
            "seller": {"title": "Order update", "body": "Order{order_id_text} moved to: {stage_name}"},
            "courier": {"title": "Delivery update", "body": "Order{order_id_text} moved to: {stage_name}"},
        },
        "step-rejected": {
            "buyer": {
                "title": "Items rejected",
                "body": "Some items of your order{order_id_text} were rejected by the seller.",
            },
        },
        "step-returned": {
            "seller": {
                "title": "Items returned",
                "body": "Items of order{order_id_text} were returned by the buyer.",
            },
        },
    },
}


@dataclass(slots=True, frozen=True)
class RenderedMessage:
    title: str
    body: str


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class MessageTemplates:
    def __init__(self, messages: Mapping[str, Any] | None = None) -> None:
        self._messages: Mapping[str, Any] = messages if messages is not None else DEFAULT_MESSAGES

    @classmethod
    def from_file(cls, path: str | Path) -> MessageTemplates:
        with Path(path).open("r", encoding="utf-8") as fh:
            return cls(json.load(fh))

    def _lookup(self, path: str) -> Mapping[str, Any] | None:
        node: Any = self._messages
        for part in path.split("."):
            if not isinstance(node, Mapping):
                return None
            node = node.get(part)
            if node is None:
                return None
        return node if isinstance(node, Mapping) else None

    def has(self, path: str) -> bool:
        return self._lookup(path) is not None

    def render(self, path: str, placeholders: Mapping[str, Any] | None = None) -> RenderedMessage:
        template = self._lookup(path)
        if template is None:
            return RenderedMessage(title=DEFAULT_TITLE, body="")

        values = _KeepMissing({k: "" if v is None else str(v) for k, v in (placeholders or {}).items()})
        title = str(template.get("title", "")).format_map(values)
        body = str(template.get("body", "")).format_map(values)
        return RenderedMessage(title=title, body=body)

    def step_path(self, stage_id: str, role: str) -> str:
        """``steps.<stage>.<role>`` if present, else the general update for the role."""
        role = canonical_role(role)
        path = f"steps.{stage_id}.{role}"
        if self.has(path):
            return path
        return f"steps.general_update.{role}"

    def render_step(self, stage_id: str, role: str, placeholders: Mapping[str, Any]) -> RenderedMessage:
        return self.render(self.step_path(stage_id, role), placeholders)
