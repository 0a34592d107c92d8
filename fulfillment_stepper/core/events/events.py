"""
Domain event models.

Events are immutable facts about stepper activity: committed stage saves,
item status changes, marker moves, refusals and notification waves. They are
consumed by the logging and file recorder sinks.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field


def now_ns() -> int:
    return time.time_ns()


@dataclass(slots=True)
class ItemStatusTransitionEvent:
    ts_ns: int
    order_key: str
    product_key: str
    stage_id: str
    actor_id: str

    prev_status: str
    next_status: str


@dataclass(slots=True)
class StageCommittedEvent:
    ts_ns: int
    order_key: str
    stage_id: str
    actor_id: str
    role: str

    positive_keys: list[str]
    negative_keys: list[str]

    locked: bool


@dataclass(slots=True)
class StageActivatedEvent:
    ts_ns: int
    order_key: str
    actor_id: str

    prev_stage: str | None
    next_stage: str
    stage_number: int


@dataclass(slots=True)
class DecisionRefusedEvent:
    ts_ns: int
    order_key: str
    stage_id: str
    actor_id: str
    role: str | None

    reason: str
    message: str


@dataclass(slots=True)
class NotificationWaveEvent:
    ts_ns: int
    order_key: str
    stage_id: str
    wave: str

    delivered: int
    failed: int

    failed_roles: list[str] = field(default_factory=list)
