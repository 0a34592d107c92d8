"""Stepper configuration model."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fulfillment_stepper.core.domain.stages import ALL_STAGES, DEFAULT_STAGE_NAMES, STAGE_NUMBERS


class StepDefinition(BaseModel):
    """Display metadata of one stage."""

    id: str = Field(..., min_length=1)
    no: int = Field(..., ge=1)
    name: str = Field(..., min_length=1)
    description: str = ""

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("id")
    @classmethod
    def validate_known_stage(cls, value: str) -> str:
        if value not in STAGE_NUMBERS:
            raise ValueError(f"unknown stage id: {value}")
        return value


def default_steps() -> list[StepDefinition]:
    return [
        StepDefinition(id=stage_id, no=STAGE_NUMBERS[stage_id], name=DEFAULT_STAGE_NAMES[stage_id])
        for stage_id in ALL_STAGES
    ]


class StepperConfig(BaseModel):
    """Structured stepper configuration.

    - admin_ids: user ids that always resolve to the admin role
    - steps: stage display metadata (all seven stages, unique ids)
    - store_dir: directory for JsonFileStatusStore documents (None: in-memory store)
    - event_log_path: JSONL file for domain events (None: no file recorder)
    """

    admin_ids: list[str] = Field(default_factory=list)
    steps: list[StepDefinition] = Field(default_factory=default_steps)
    store_dir: Path | None = None
    event_log_path: Path | None = None

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_json_obj(cls, cfg_obj: dict[str, Any]) -> StepperConfig:
        """Create a StepperConfig instance from a JSON-compatible object."""
        return cls.model_validate(cfg_obj)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> StepperConfig:
        """Build a configuration from STEPPER_* environment variables."""
        env = os.environ if environ is None else environ

        data: dict[str, Any] = {}

        raw_admins = env.get("STEPPER_ADMIN_IDS", "")
        admins = [part.strip() for part in raw_admins.split(",") if part.strip()]
        if admins:
            data["admin_ids"] = admins

        store_dir = env.get("STEPPER_STORE_DIR")
        if store_dir:
            data["store_dir"] = store_dir

        event_log_path = env.get("STEPPER_EVENT_LOG_PATH")
        if event_log_path:
            data["event_log_path"] = event_log_path

        return cls.model_validate(data)

    @field_validator("admin_ids", mode="before")
    @classmethod
    def coerce_admin_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(v) for v in value]
        return value

    @model_validator(mode="after")
    def validate_steps(self) -> StepperConfig:
        """Stage ids must be unique and cover every stage."""
        ids = [step.id for step in self.steps]
        if len(ids) != len(set(ids)):
            raise ValueError("duplicate stage id in steps")
        missing = set(ALL_STAGES) - set(ids)
        if missing:
            raise ValueError(f"steps is missing stages: {sorted(missing)}")
        return self

    def step(self, stage_id: str) -> StepDefinition:
        for step in self.steps:
            if step.id == stage_id:
                return step
        raise KeyError(stage_id)

    def stage_name(self, stage_id: str) -> str:
        try:
            return self.step(stage_id).name
        except KeyError:
            return DEFAULT_STAGE_NAMES.get(stage_id, stage_id)
