"""Notification collaborator protocols.

The dispatcher computes who should hear about a stage change; these ports
answer the policy question, resolve device tokens and perform delivery.
Transport concerns (retries, timeouts, push services) live behind them.
"""

from __future__ import annotations

from typing import Protocol, Sequence


class NotificationPolicy(Protocol):
    async def should_notify(self, event_key: str, role: str) -> bool:
        """Return True if ``role`` should be told about ``event_key``."""


class TokenDirectory(Protocol):
    async def user_tokens(self, user_ids: Sequence[str]) -> list[str]:
        """Return the delivery tokens registered for the given users."""

    async def admin_tokens(self, exclude_user_id: str | None = None) -> list[str]:
        """Return admin delivery tokens, optionally without one admin's tokens."""


class MessageSender(Protocol):
    async def send(self, tokens: Sequence[str], title: str, body: str) -> None:
        """Deliver one message to every token; raise on transport failure."""
