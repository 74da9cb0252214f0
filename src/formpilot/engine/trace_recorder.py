"""TraceRecorder: turn a live agent session into a replayable manual.

The recorder registers a listener on a RecordableAdapter and receives each
primitive action (click, type, scroll, navigate) after it has happened. For
mouse actions the acted-upon element is found by hit-testing the action's
coordinates; for keyboard input without coordinates the focused element is
used. Typed values that match a profile field are stored as {{field}} so the
resulting manual works for any applicant.

Layers that act on the page themselves (DOM fills, Next clicks) report those
steps through record_element(), so the trace covers every page of the flow.
When something changed the page without being recorded (an unrecordable
adapter, an element with no stable attributes) the trace is marked as having
a gap and is not worth saving.

Element-info extraction can fail mid-session (navigation in progress, frame
detached). Such actions are skipped; the partial trace remains usable.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from formpilot.engine.adapters import (
    ClickAction,
    NavigateAction,
    PrimitiveAction,
    RecordableAdapter,
    ScrollAction,
    TypeAction,
)
from formpilot.engine.templates import templatize
from formpilot.engine.types import ROOT_LOCATOR, ActionKind, LocatorDescriptor, ManualStep

if TYPE_CHECKING:
    from playwright.async_api import Page

log = logging.getLogger(__name__)

# Text is only a useful locator for short labels on clickable elements.
_MAX_TEXT_LEN = 80
_TEXT_TAGS = {"button", "a", "label", "summary"}

# Runs in the page. arg is {x, y} for hit-testing or null for the focused element.
_ELEMENT_INFO_JS = """
(point) => {
  const el = point
    ? document.elementFromPoint(point.x, point.y)
    : document.activeElement;
  if (!el || el === document.body || el === document.documentElement) return null;

  const attr = (n) => el.getAttribute(n) || '';
  const tag = el.tagName.toLowerCase();
  const automationId = attr('data-automation-id');
  const elId = attr('id');
  const name = attr('name');

  let css = tag;
  if (automationId) css += `[data-automation-id="${automationId}"]`;
  else if (elId) css += `#${CSS.escape(elId)}`;
  if (name) css += `[name="${name}"]`;

  const parts = [];
  let cur = el;
  while (cur && cur !== document.documentElement) {
    const parent = cur.parentElement;
    const t = cur.tagName.toLowerCase();
    if (parent) {
      const same = Array.from(parent.children).filter((c) => c.tagName === cur.tagName);
      parts.unshift(`${t}[${same.indexOf(cur) + 1}]`);
    } else {
      parts.unshift(t);
    }
    cur = parent;
  }

  return {
    tag,
    testId: attr('data-testid') || automationId,
    role: attr('role'),
    ariaLabel: attr('aria-label'),
    id: elId,
    name,
    text: (el.textContent || '').trim().replace(/\\s+/g, ' '),
    css,
    xpath: '/html/' + parts.join('/'),
  };
}
"""


def build_locator(info: Mapping[str, Any]) -> LocatorDescriptor:
    """Build a descriptor from extracted element attributes, dropping empties.

    Raises:
        ValidationError: If no usable attribute was extracted.
    """
    fields: dict[str, Any] = {}
    for key in ("testId", "role", "ariaLabel", "id", "name", "css", "xpath"):
        value = info.get(key)
        if value:
            fields[key] = value

    text = info.get("text") or ""
    if text and len(text) <= _MAX_TEXT_LEN and info.get("tag") in _TEXT_TAGS:
        fields["text"] = text

    return LocatorDescriptor.model_validate(fields)


class TraceRecorder:
    """Accumulates ManualSteps from an adapter's primitive-action feed."""

    def __init__(
        self,
        page: "Page",
        user_data: Mapping[str, object] | None = None,
        adapter: RecordableAdapter | None = None,
    ) -> None:
        self.page = page
        self.user_data = dict(user_data or {})
        self.adapter = adapter
        self._steps: list[ManualStep] = []
        self._recording = False
        self.gap: str | None = None

    def start(self) -> None:
        if self._recording:
            return
        if self.adapter is not None:
            self.adapter.add_action_listener(self.record)
        self._recording = True
        log.debug("Trace recording started")

    def stop_recording(self) -> None:
        """Stop listening. The captured trace is kept."""
        if not self._recording:
            return
        if self.adapter is not None:
            self.adapter.remove_action_listener(self.record)
        self._recording = False
        log.debug("Trace recording stopped with %d step(s)", len(self._steps))

    def is_recording(self) -> bool:
        return self._recording

    def get_trace(self) -> list[ManualStep]:
        return list(self._steps)

    @property
    def complete(self) -> bool:
        return self.gap is None

    def hears(self, adapter: object) -> bool:
        """True when adapter's primitive actions reach this recorder."""
        return self._recording and self.adapter is not None and adapter is self.adapter

    def mark_gap(self, reason: str) -> None:
        if not self._recording or self.gap is not None:
            return
        self.gap = reason
        log.info("Trace incomplete: %s", reason)

    def record_element(self, action: ActionKind, info: Mapping[str, Any], value: str | None = None) -> None:
        """Append a step a layer performed directly on the page."""
        if not self._recording:
            return
        try:
            locator = build_locator(info)
        except ValidationError:
            self.mark_gap(f"{action} on an element with no stable locator")
            return
        if value is not None:
            value = templatize(value, self.user_data)
        self._steps.append(ManualStep(order=len(self._steps), locator=locator, action=action, value=value))

    async def record(self, action: PrimitiveAction) -> None:
        """Listener entry point. Never raises."""
        if not self._recording:
            return
        try:
            step = await self._to_step(action)
        except Exception as e:
            log.debug("Skipping %s action: %s", getattr(action, "kind", "?"), e)
            return
        if step is not None:
            self._steps.append(step)

    async def _to_step(self, action: PrimitiveAction) -> ManualStep | None:
        order = len(self._steps)

        if isinstance(action, NavigateAction):
            return ManualStep(order=order, locator=ROOT_LOCATOR, action="navigate", value=action.url)

        kind: ActionKind
        value: str | None = None
        if isinstance(action, ClickAction):
            kind = "click"
            point = {"x": action.x, "y": action.y}
        elif isinstance(action, ScrollAction):
            kind = "scroll"
            point = {"x": action.x, "y": action.y}
        elif isinstance(action, TypeAction):
            kind = "fill"
            value = templatize(action.content, self.user_data)
            point = None if action.x is None or action.y is None else {"x": action.x, "y": action.y}
        else:
            return None

        info = await self._element_info(point)
        if not info:
            log.debug("No element at %s for %s action", point or "focus", kind)
            return None

        try:
            locator = build_locator(info)
        except ValidationError:
            log.debug("Element for %s action had no usable locator attributes", kind)
            return None

        return ManualStep(order=order, locator=locator, action=kind, value=value)

    async def _element_info(self, point: dict[str, float] | None) -> dict[str, Any] | None:
        try:
            return await self.page.evaluate(_ELEMENT_INFO_JS, point)
        except Exception as e:
            log.debug("Element info extraction failed: %s", e)
            return None
