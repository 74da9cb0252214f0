"""The capability every escalation layer satisfies.

Layers are plain objects with a name, a declared per-attempt cost ceiling
and an async attempt(). The orchestrator holds them in an ordered list,
cheapest first, and treats them uniformly.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

from formpilot.engine.adapters import CostTracker
from formpilot.engine.types import ActionKind, Manual
from formpilot.engine.url_patterns import GENERIC_PLATFORM

if TYPE_CHECKING:
    from playwright.async_api import Page

    from formpilot.engine.trace_recorder import TraceRecorder


@dataclass
class LayerContext:
    """Mutable per-task state shared by the orchestrator and its layers."""

    page: "Page"
    user_data: Mapping[str, object]
    budget_remaining: float
    task_type: str = "apply"
    total_cost: float = 0.0
    manual: Optional[Manual] = None
    platform: str = GENERIC_PLATFORM
    task_id: str | None = None
    cost_tracker: Optional[CostTracker] = None
    recorder: Optional["TraceRecorder"] = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("formpilot.engine.orchestrator"))

    def charge(self, cost: float) -> None:
        cost = max(0.0, cost)
        self.budget_remaining -= cost
        self.total_cost += cost

    def record(self, action: ActionKind, info: Mapping[str, Any], value: str | None = None) -> None:
        """Report a step the layer performed on the page itself."""
        if self.recorder is not None:
            self.recorder.record_element(action, info, value)

    def adapter_acted(self, adapter: object) -> None:
        """An adapter changed the page; the trace only covers it if the recorder heard it."""
        if self.recorder is not None and not self.recorder.hears(adapter):
            self.recorder.mark_gap(f"unrecorded act() by {type(adapter).__name__}")


@dataclass
class LayerOutcome:
    """Result of one layer attempt on the current page."""

    advanced: bool
    cost_incurred: float = 0.0
    done: bool = False
    error: str | None = None
    actions_executed: int = 0
    actions_verified: int = 0
    actions_failed: int = 0


@runtime_checkable
class LayerHand(Protocol):
    name: str
    max_attempt_cost: float

    async def attempt(self, ctx: LayerContext) -> LayerOutcome: ...
