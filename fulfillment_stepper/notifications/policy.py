"""Per-event, per-role notification switches."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator

LOGGER = logging.getLogger(__name__)

ENV_CONFIG_PATH = "STEPPER_NOTIFICATION_CONFIG_PATH"

# Older configuration files call the courier role "delivery".
ROLE_ALIASES: dict[str, str] = {"delivery": "courier"}

KNOWN_ROLES = frozenset({"buyer", "seller", "courier", "admin"})

# Applied when an event/role pair is missing from the configuration.
CRITICAL_DEFAULTS: dict[str, dict[str, bool]] = {
    "purchase": {"admin": True},
}


def canonical_role(role: str) -> str:
    return ROLE_ALIASES.get(role, role)


class NotificationConfig(BaseModel):
    """``{event_key: {role: enabled}}`` switches."""

    events: dict[str, dict[str, StrictBool]] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("events", mode="before")
    @classmethod
    def normalize_roles(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        out: dict[str, dict[str, Any]] = {}
        for event_key, roles in value.items():
            if not isinstance(roles, dict):
                raise ValueError(f"roles for {event_key!r} must be an object")
            normalized: dict[str, Any] = {}
            for role, flag in roles.items():
                role = canonical_role(role)
                if role not in KNOWN_ROLES:
                    raise ValueError(f"unknown role {role!r} for {event_key!r}")
                normalized[role] = flag
            out[event_key] = normalized
        return out

    @classmethod
    def from_json_obj(cls, cfg_obj: dict[str, Any]) -> NotificationConfig:
        """Accept either ``{"events": {...}}`` or the bare event mapping."""
        if "events" in cfg_obj and isinstance(cfg_obj["events"], dict):
            return cls.model_validate(cfg_obj)
        return cls.model_validate({"events": cfg_obj})

    @classmethod
    def from_file(cls, path: str | Path) -> NotificationConfig:
        with Path(path).open("r", encoding="utf-8") as fh:
            return cls.from_json_obj(json.load(fh))

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> NotificationConfig:
        env = os.environ if environ is None else environ
        path = env.get(ENV_CONFIG_PATH)
        if not path:
            return cls()
        return cls.from_file(path)

    def lookup(self, event_key: str, role: str) -> bool | None:
        """Explicit switch for the pair, or None when not configured."""
        roles = self.events.get(event_key)
        if roles is None:
            return None
        return roles.get(canonical_role(role))


class ConfigNotificationPolicy:
    """NotificationPolicy backed by a NotificationConfig.

    Resolution order: explicit switch, then CRITICAL_DEFAULTS, then True with
    a warning so a missing entry never silently drops a notification.
    """

    def __init__(self, config: NotificationConfig | None = None) -> None:
        self._config = config if config is not None else NotificationConfig()

    @property
    def config(self) -> NotificationConfig:
        return self._config

    async def should_notify(self, event_key: str, role: str) -> bool:
        role = canonical_role(role)

        configured = self._config.lookup(event_key, role)
        if configured is not None:
            return configured

        critical = CRITICAL_DEFAULTS.get(event_key, {}).get(role)
        if critical is not None:
            return critical

        LOGGER.warning(
            "Notification switch missing; assuming enabled",
            extra={"event_key": event_key, "role": role},
        )
        return True
