"""Core shared data models.

This module defines the canonical Pydantic models for the inbound order
snapshot, the per-stage decision records, lock records and the current
stage marker. The order snapshot mirrors the marketplace order API and is
parsed leniently; internal records are strict.
"""

# pylint: disable=line-too-long,missing-class-docstring,missing-function-docstring
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fulfillment_stepper.core.domain.stages import StageId

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_key(value: Any) -> Any:
    """Normalize numeric identifiers to strings (the API mixes both)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    return value


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Order snapshot models
# ---------------------------------------------------------------------------


class CourierAssignment(BaseModel):
    delivery_key: str | None = None
    delivery_name: str | None = None
    delivery_phone: str | None = None

    model_config = ConfigDict(extra="ignore", frozen=True)

    @field_validator("delivery_key", "delivery_phone", mode="before")
    @classmethod
    def coerce_keys(cls, value: Any) -> Any:
        return _as_key(value)


def _normalize_supplier_delivery(raw: Any) -> list[dict[str, Any]]:
    """Normalize every delivery assignment shape the order API has produced.

    Accepted shapes:
    - scalar courier key
    - single object {delivery_key, delivery_name, delivery_phone}
    - list of objects or scalar keys
    - legacy object whose fields are parallel arrays
    """
    if raw is None or raw == "" or raw == []:
        return []

    if isinstance(raw, (str, int)):
        return [{"delivery_key": raw}]

    if isinstance(raw, list):
        out: list[dict[str, Any]] = []
        for entry in raw:
            if isinstance(entry, dict):
                out.extend(_normalize_supplier_delivery(entry))
            elif entry is not None and entry != "":
                out.append({"delivery_key": entry})
        return out

    if isinstance(raw, dict):
        keys = raw.get("delivery_key")
        names = raw.get("delivery_name")
        phones = raw.get("delivery_phone")

        if isinstance(keys, list) or isinstance(names, list):
            key_list = keys if isinstance(keys, list) else [keys] if keys else []
            name_list = names if isinstance(names, list) else [names] if names else []
            size = max(len(key_list), len(name_list))
            out = []
            for idx in range(size):
                if isinstance(phones, list):
                    phone = phones[idx] if idx < len(phones) else None
                else:
                    phone = phones
                out.append(
                    {
                        "delivery_key": key_list[idx] if idx < len(key_list) else None,
                        "delivery_name": name_list[idx] if idx < len(name_list) else None,
                        "delivery_phone": phone,
                    }
                )
            return out

        return [
            {
                "delivery_key": keys,
                "delivery_name": names,
                "delivery_phone": phones,
            }
        ]

    raise ValueError(f"unsupported supplier_delivery shape: {type(raw).__name__}")


class OrderItem(BaseModel):
    product_key: str = Field(..., min_length=1)
    product_name: str = ""
    quantity: float = Field(default=1, ge=0)
    seller_key: str = Field(..., min_length=1)
    supplier_delivery: list[CourierAssignment] = Field(default_factory=list)
    note: str | None = None

    model_config = ConfigDict(extra="ignore", frozen=True)

    @field_validator("product_key", "seller_key", mode="before")
    @classmethod
    def coerce_keys(cls, value: Any) -> Any:
        return _as_key(value)

    @field_validator("supplier_delivery", mode="before")
    @classmethod
    def normalize_delivery(cls, value: Any) -> list[dict[str, Any]]:
        return _normalize_supplier_delivery(value)

    def courier_keys(self) -> tuple[str, ...]:
        """Distinct courier keys assigned to this item, in assignment order."""
        seen: dict[str, None] = {}
        for assignment in self.supplier_delivery:
            if assignment.delivery_key:
                seen.setdefault(assignment.delivery_key, None)
        return tuple(seen)

    def is_delivered_by(self, user_id: str) -> bool:
        return user_id in self.courier_keys()


class Order(BaseModel):
    order_key: str = Field(..., min_length=1)
    order_id: str | None = None

    user_key: str = Field(..., min_length=1)
    user_name: str | None = None
    user_phone: str | None = None
    user_address: str | None = None

    created_at: str | None = None

    order_items: list[OrderItem] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore", frozen=True)

    @field_validator("order_key", "order_id", "user_key", "user_phone", mode="before")
    @classmethod
    def coerce_keys(cls, value: Any) -> Any:
        return _as_key(value)

    @model_validator(mode="before")
    @classmethod
    def accept_id_aliases(cls, data: Any) -> Any:
        """The order API exposes the display id as either ``id`` or ``order_id``."""
        if isinstance(data, dict) and data.get("order_id") is None and data.get("id") is not None:
            data = dict(data)
            data["order_id"] = data["id"]
        return data

    @model_validator(mode="after")
    def validate_unique_product_keys(self) -> Order:
        keys = [item.product_key for item in self.order_items]
        if len(keys) != len(set(keys)):
            raise ValueError(f"duplicate product_key in order {self.order_key}")
        return self

    @property
    def display_id(self) -> str:
        return self.order_id or self.order_key


# ---------------------------------------------------------------------------
# Stage decisions (discriminated union)
# ---------------------------------------------------------------------------


class StageDecisionBase(BaseModel):
    """
    Base fields shared by all stage decisions.

    Every decision partitions the items it covers into a positive set (kept,
    confirmed, shipped, delivered) and a negative set. ``positive_field`` and
    ``negative_field`` name those sets for the concrete variant.
    """

    positive_field: ClassVar[str]
    negative_field: ClassVar[str]

    decided_by: str = Field(..., min_length=1)
    decided_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def validate_disjoint(self) -> StageDecisionBase:
        positive = set(getattr(self, self.positive_field))
        negative = set(getattr(self, self.negative_field))
        overlap = positive & negative
        if overlap:
            raise ValueError(
                f"{self.positive_field} and {self.negative_field} overlap: {sorted(overlap)}"
            )
        return self

    @property
    def positive_keys(self) -> list[str]:
        return list(getattr(self, self.positive_field))

    @property
    def negative_keys(self) -> list[str]:
        return list(getattr(self, self.negative_field))

    @property
    def covered_keys(self) -> set[str]:
        return set(self.positive_keys) | set(self.negative_keys)

    def merged_over(self, previous: StageDecisionBase | None, scope: set[str]) -> StageDecisionBase:
        """Return this decision with ``previous`` keys outside ``scope`` carried over.

        Several participants (e.g. two sellers) decide disjoint item subsets of
        the same stage; a save only replaces the keys the actor could see.
        """
        if previous is None or type(previous) is not type(self):
            return self

        positive = [k for k in previous.positive_keys if k not in scope]
        negative = [k for k in previous.negative_keys if k not in scope]
        positive.extend(k for k in self.positive_keys if k not in positive)
        negative.extend(k for k in self.negative_keys if k not in negative)

        return self.model_copy(
            update={
                self.positive_field: positive,
                self.negative_field: negative,
            }
        )


class ReviewDecision(StageDecisionBase):
    positive_field: ClassVar[str] = "selected_keys"
    negative_field: ClassVar[str] = "unselected_keys"

    stage_id: Literal["step-review"] = "step-review"
    selected_keys: list[str] = Field(default_factory=list)
    unselected_keys: list[str] = Field(default_factory=list)


class ConfirmationDecision(StageDecisionBase):
    positive_field: ClassVar[str] = "selected_keys"
    negative_field: ClassVar[str] = "deselected_keys"

    stage_id: Literal["step-confirmed"] = "step-confirmed"
    selected_keys: list[str] = Field(default_factory=list)
    deselected_keys: list[str] = Field(default_factory=list)


class ShippingDecision(StageDecisionBase):
    positive_field: ClassVar[str] = "shipped_keys"
    negative_field: ClassVar[str] = "unshipped_keys"

    stage_id: Literal["step-shipped"] = "step-shipped"
    shipped_keys: list[str] = Field(default_factory=list)
    unshipped_keys: list[str] = Field(default_factory=list)


class DeliveryDecision(StageDecisionBase):
    positive_field: ClassVar[str] = "delivered_keys"
    negative_field: ClassVar[str] = "returned_keys"

    stage_id: Literal["step-delivered"] = "step-delivered"
    delivered_keys: list[str] = Field(default_factory=list)
    returned_keys: list[str] = Field(default_factory=list)


# Discriminated union: Pydantic selects the variant based on stage_id.
StageDecision = Annotated[
    ReviewDecision | ConfirmationDecision | ShippingDecision | DeliveryDecision,
    Field(discriminator="stage_id"),
]


# ---------------------------------------------------------------------------
# Lock and marker records
# ---------------------------------------------------------------------------


class LockRecord(BaseModel):
    locked: bool
    locked_by: str = Field(..., min_length=1)
    locked_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(extra="forbid", frozen=True)


class CurrentStageMarker(BaseModel):
    stage_id: StageId
    stage_number: int = Field(..., ge=1)

    model_config = ConfigDict(extra="forbid", frozen=True)


class ItemStatusRecord(BaseModel):
    """Persisted status of a single line item."""

    status: Literal[
        "pending",
        "confirmed",
        "shipped",
        "delivered",
        "cancelled",
        "rejected",
        "returned",
    ]
    seller_key: str | None = None
    updated_by: str | None = None
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(extra="forbid", frozen=True)
