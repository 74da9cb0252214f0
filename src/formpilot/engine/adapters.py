"""Contracts for the collaborators the engine consumes but does not own.

Browser launch, LLM prompting and cost accounting live outside the engine.
These Protocols describe the slice of each that the engine calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Literal, Protocol, Union, runtime_checkable

if TYPE_CHECKING:
    from playwright.async_api import Page


@dataclass
class ActResult:
    """Outcome of a natural-language act() call."""

    success: bool
    message: str = ""
    duration_ms: int = 0


@dataclass
class ObservedElement:
    """An interactive element reported by adapter.observe()."""

    selector: str
    description: str
    action: str = "unknown"


# ---------------------------------------------------------------------------
# Primitive actions (the trace recorder's input)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClickAction:
    x: float
    y: float
    kind: Literal["click"] = "click"


@dataclass(frozen=True)
class TypeAction:
    content: str
    # Coordinates are absent for pure keyboard input into the focused element.
    x: float | None = None
    y: float | None = None
    kind: Literal["type"] = "type"


@dataclass(frozen=True)
class ScrollAction:
    x: float
    y: float
    delta_x: float = 0.0
    delta_y: float = 0.0
    kind: Literal["scroll"] = "scroll"


@dataclass(frozen=True)
class NavigateAction:
    url: str
    kind: Literal["navigate"] = "navigate"


PrimitiveAction = Union[ClickAction, TypeAction, ScrollAction, NavigateAction]
ActionListener = Callable[[PrimitiveAction], Awaitable[None]]


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


@runtime_checkable
class Adapter(Protocol):
    """Browser automation backend (vision agent, scripted agent, ...)."""

    @property
    def page(self) -> "Page": ...

    async def act(self, instruction: str, context: dict[str, Any] | None = None) -> ActResult: ...

    async def extract(self, instruction: str, schema: type) -> Any: ...

    async def observe(self, instruction: str) -> list[ObservedElement]: ...

    async def navigate(self, url: str) -> None: ...


@runtime_checkable
class RecordableAdapter(Adapter, Protocol):
    """Adapter that can stream its primitive actions to a listener."""

    def add_action_listener(self, listener: ActionListener) -> None: ...

    def remove_action_listener(self, listener: ActionListener) -> None: ...


class CostTracker(Protocol):
    """Per-task cost accounting owned by the job executor."""

    def record_action(self) -> None: ...

    def record_mode_step(self, mode: str) -> None: ...

    def set_mode(self, mode: str) -> None: ...

    def get_remaining_budget(self) -> float: ...


@dataclass
class BlockerSignal:
    """Yes/no/confidence verdict from an external blocker classifier."""

    blocked: bool
    confidence: float = 0.0
    kind: str | None = None


BlockerDetector = Callable[["Page"], Awaitable[BlockerSignal]]


def page_is_closed(page: Any) -> bool:
    is_closed = getattr(page, "is_closed", None)
    return bool(is_closed()) if callable(is_closed) else False
