"""Core data model for the cookbook engine.

LocatorDescriptor, ManualStep and Manual are persisted as JSON and must stay
loadable across process restarts and store implementations, so the field
names on the wire are fixed (camelCase for steps and locators, snake_case
for manuals). Python code uses snake_case attributes throughout.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from formpilot.engine.errors import InvalidManualError

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

ActionKind = Literal["click", "fill", "select", "check", "uncheck", "hover", "press", "navigate", "wait", "scroll"]
ManualSource = Literal["recorded", "imported", "template"]

INITIAL_HEALTH: dict[str, float] = {
    "recorded": 1.0,
    "imported": 0.8,
    "template": 1.0,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# LocatorDescriptor
# ---------------------------------------------------------------------------


class LocatorDescriptor(BaseModel):
    """Multi-strategy element description.

    Each field is an independent way of finding the same element. The
    resolver tries them in a fixed priority order; at least one must be set.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    test_id: Optional[str] = Field(None, alias="testId")
    role: Optional[str] = None
    name: Optional[str] = None
    aria_label: Optional[str] = Field(None, alias="ariaLabel")
    id: Optional[str] = None
    text: Optional[str] = None
    css: Optional[str] = None
    xpath: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _at_least_one_strategy(self) -> "LocatorDescriptor":
        if not any(getattr(self, f) for f in type(self).model_fields):
            raise ValueError("LocatorDescriptor must have at least one strategy defined")
        return self

    def strategies(self) -> list[str]:
        """Names (wire form) of the strategies that are set."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        return list(data)


ROOT_LOCATOR = LocatorDescriptor(css="body")


# ---------------------------------------------------------------------------
# ManualStep
# ---------------------------------------------------------------------------


class ManualStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order: int = Field(..., ge=0)
    locator: LocatorDescriptor
    action: ActionKind
    value: Optional[str] = None
    description: Optional[str] = None
    wait_after: Optional[float] = Field(None, alias="waitAfter", ge=0, allow_inf_nan=False)
    verification: Optional[str] = None
    health_score: float = Field(1.0, alias="healthScore", ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Manual
# ---------------------------------------------------------------------------


class Manual(BaseModel):
    """A cached, ordered interaction sequence for a class of pages."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    url_pattern: str
    task_pattern: str
    platform: str = "other"
    steps: list[ManualStep] = Field(..., min_length=1)
    health_score: float = Field(1.0, ge=0.0, le=1.0)
    source: ManualSource = "recorded"
    success_count: int = Field(0, ge=0)
    failure_count: int = Field(0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("steps")
    @classmethod
    def _unique_order(cls, steps: list[ManualStep]) -> list[ManualStep]:
        orders = [s.order for s in steps]
        if len(orders) != len(set(orders)):
            raise ValueError("ManualStep.order values must be unique within a manual")
        return steps

    def sorted_steps(self) -> list[ManualStep]:
        return sorted(self.steps, key=lambda s: s.order)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_manual(data: str | bytes | dict[str, Any], source: str = "<memory>") -> Manual:
    """Validate a persisted manual document.

    Raises:
        InvalidManualError: If the document is not JSON or fails validation.
    """
    try:
        if isinstance(data, (str, bytes)):
            data = json.loads(data)
    except ValueError as e:
        raise InvalidManualError(source, f"not valid JSON ({e})") from e

    if not isinstance(data, dict):
        raise InvalidManualError(source, "document is not a JSON object")

    try:
        return Manual.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {"loc": (), "msg": str(e)}
        where = ".".join(str(p) for p in first["loc"]) or "<root>"
        raise InvalidManualError(source, f"{where}: {first['msg']}") from e


def new_manual(
    steps: list[ManualStep],
    url_pattern: str,
    task_pattern: str,
    platform: str = "other",
    source: ManualSource = "recorded",
) -> Manual:
    """Build a fresh manual seeded with the initial health for its source."""
    now = utcnow()
    return Manual(
        url_pattern=url_pattern,
        task_pattern=task_pattern,
        platform=platform,
        steps=steps,
        health_score=INITIAL_HEALTH[source],
        source=source,
        created_at=now,
        updated_at=now,
    )
