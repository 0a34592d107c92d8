"""
Semantic test: stepper configuration.

Invariant:
The configuration always describes all seven stages with unique ids, and
environment variables map onto typed fields.
"""

# pylint: disable=missing-function-docstring
from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from fulfillment_stepper.core.config.stepper_config import StepDefinition, StepperConfig, default_steps


def test_defaults_cover_every_stage() -> None:
    config = StepperConfig()

    assert [step.no for step in config.steps] == [1, 2, 3, 4, 5, 6, 7]
    assert config.stage_name("step-shipped") == "Order shipped"
    assert config.store_dir is None
    assert config.admin_ids == []


def test_from_env() -> None:
    config = StepperConfig.from_env(
        {
            "STEPPER_ADMIN_IDS": " admin_1, 42 ,,",
            "STEPPER_STORE_DIR": "/var/lib/stepper",
            "STEPPER_EVENT_LOG_PATH": "/var/log/stepper/events.jsonl",
        }
    )

    assert config.admin_ids == ["admin_1", "42"]
    assert config.store_dir == Path("/var/lib/stepper")
    assert config.event_log_path == Path("/var/log/stepper/events.jsonl")


def test_from_empty_env() -> None:
    assert StepperConfig.from_env({}) == StepperConfig()


def test_numeric_admin_ids_are_text() -> None:
    assert StepperConfig.from_json_obj({"admin_ids": [7, "8"]}).admin_ids == ["7", "8"]


def test_custom_stage_names() -> None:
    steps = [s.model_dump() for s in default_steps()]
    steps[0]["name"] = "Check your basket"

    config = StepperConfig.from_json_obj({"steps": steps})

    assert config.stage_name("step-review") == "Check your basket"
    assert config.step("step-review").no == 1


def test_missing_stage_is_rejected() -> None:
    steps = [s.model_dump() for s in default_steps()][:-1]

    with pytest.raises(ValidationError, match="missing stages"):
        StepperConfig.from_json_obj({"steps": steps})


def test_duplicate_stage_is_rejected() -> None:
    steps = [s.model_dump() for s in default_steps()]
    steps.append(dict(steps[0]))

    with pytest.raises(ValidationError, match="duplicate stage id"):
        StepperConfig.from_json_obj({"steps": steps})


def test_unknown_stage_and_fields_are_rejected() -> None:
    with pytest.raises(ValidationError):
        StepDefinition(id="step-lost", no=8, name="Lost")

    with pytest.raises(ValidationError):
        StepperConfig.from_json_obj({"admins": ["a"]})
