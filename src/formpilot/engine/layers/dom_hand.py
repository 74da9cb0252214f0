"""DomHand: fill the current page from DOM heuristics alone.

No LLM and no adapter: scan the page's form controls with one evaluate(),
match each empty field to a profile value, fill it, read the value back,
then click the page's Next/Continue (or Submit) button. Cost is zero, so
this layer is always tried first.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from formpilot.engine.layers.base import LayerContext, LayerOutcome
from formpilot.engine.layers.field_matching import match_field

if TYPE_CHECKING:
    from playwright.async_api import Page

log = logging.getLogger(__name__)

SKIP_TYPES = {"hidden", "file", "password", "submit", "button", "reset", "image"}
TRUTHY = {"yes", "true", "1", "y", "on", "checked"}

NEXT_RE = re.compile(r"^(next|continue|save\s*(and|&)?\s*continue|next\s+step)$", re.IGNORECASE)
SUBMIT_RE = re.compile(r"^(submit|submit\s+application|confirm|review\s*(and|&)?\s*submit)$", re.IGNORECASE)

# Tags every visible control with data-formpilot-id so it can be addressed
# by a unique selector, then reports fields and buttons.
SCAN_JS = """
() => {
  const visible = (el) => {
    const r = el.getBoundingClientRect();
    const s = window.getComputedStyle(el);
    return r.width > 0 && r.height > 0 && s.visibility !== 'hidden' && s.display !== 'none';
  };
  const labelFor = (el) => {
    if (el.id) {
      const l = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
      if (l) return l.innerText.trim();
    }
    const wrap = el.closest('label');
    if (wrap) return wrap.innerText.trim();
    const by = el.getAttribute('aria-labelledby');
    if (by) {
      const l = document.getElementById(by.split(' ')[0]);
      if (l) return l.innerText.trim();
    }
    return '';
  };
  let n = 0;
  const tag = (el) => {
    if (!el.dataset.formpilotId) el.dataset.formpilotId = `fp-${n++}-${Date.now()}`;
    return `[data-formpilot-id="${el.dataset.formpilotId}"]`;
  };
  const fields = [];
  for (const el of document.querySelectorAll('input, textarea, select')) {
    if (!visible(el)) continue;
    const type = el.tagName === 'SELECT' ? 'select'
      : el.tagName === 'TEXTAREA' ? 'textarea'
      : (el.getAttribute('type') || 'text').toLowerCase();
    fields.push({
      selector: tag(el),
      type,
      name: el.getAttribute('name') || '',
      id: el.id || '',
      automationId: el.getAttribute('data-automation-id') || '',
      label: labelFor(el),
      ariaLabel: el.getAttribute('aria-label') || '',
      placeholder: el.getAttribute('placeholder') || '',
      value: (type === 'checkbox' || type === 'radio') ? (el.checked ? 'on' : '') : (el.value || ''),
      disabled: !!el.disabled || el.readOnly === true,
    });
  }
  const buttons = [];
  for (const el of document.querySelectorAll('button, input[type="submit"], [role="button"], a[role="button"]')) {
    if (!visible(el)) continue;
    buttons.push({
      selector: tag(el),
      id: el.id || '',
      automationId: el.getAttribute('data-automation-id') || '',
      text: (el.innerText || el.value || el.getAttribute('aria-label') || '').trim(),
      disabled: !!el.disabled || el.getAttribute('aria-disabled') === 'true',
    });
  }
  return { url: location.href, fields, buttons };
}
"""


@dataclass
class PageScan:
    url: str
    fields: list[dict[str, Any]] = field(default_factory=list)
    buttons: list[dict[str, Any]] = field(default_factory=list)

    def tokens(self) -> Counter:
        return Counter(f.get("name") or f.get("id") or f.get("label") or f.get("selector") for f in self.fields)


async def scan_page(page: "Page") -> PageScan:
    data = await page.evaluate(SCAN_JS) or {}
    return PageScan(
        url=data.get("url") or page.url,
        fields=list(data.get("fields") or []),
        buttons=list(data.get("buttons") or []),
    )


def page_turned(before: PageScan, after: PageScan) -> bool:
    """True when most of the fields seen before are gone, or the URL changed.

    Fields appearing (conditional questions) do not count as a page turn.
    """
    if before.url != after.url:
        return True
    before_tokens = before.tokens()
    if not before_tokens:
        return [b.get("text") for b in before.buttons] != [b.get("text") for b in after.buttons]
    after_tokens = after.tokens()
    missing = sum(max(0, n - after_tokens.get(tok, 0)) for tok, n in before_tokens.items())
    return missing > sum(before_tokens.values()) * 0.5


def pick_advance_button(buttons: list[dict[str, Any]]) -> dict[str, Any] | None:
    enabled = [b for b in buttons if not b.get("disabled")]
    for pattern in (NEXT_RE, SUBMIT_RE):
        for b in enabled:
            if pattern.match((b.get("text") or "").strip()):
                return b
    return None


def field_locator_info(f: dict[str, Any]) -> dict[str, Any]:
    """Stable attributes of a scanned field, in the shape build_locator takes.

    The scan's data-formpilot-id selector is per page load and is left out.
    """
    return {
        "tag": "input",
        "testId": f.get("automationId"),
        "ariaLabel": f.get("ariaLabel") or f.get("label"),
        "id": f.get("id"),
        "name": f.get("name"),
    }


def button_locator_info(b: dict[str, Any]) -> dict[str, Any]:
    text = (b.get("text") or "").strip()
    info: dict[str, Any] = {"tag": "button", "testId": b.get("automationId"), "id": b.get("id"), "text": text}
    if text:
        # role alone would match every button on the page
        info.update(role="button", name=text)
    return info


def recorded_action(kind: str, value: str) -> tuple[str, str | None]:
    if kind in ("checkbox", "radio"):
        return ("check" if value.strip().lower() in TRUTHY else "uncheck"), None
    if kind == "select":
        return "select", value
    return "fill", value


def fillable(f: dict[str, Any]) -> bool:
    return not f.get("disabled") and not f.get("value") and f.get("type") not in SKIP_TYPES


async def fill_and_verify(page: "Page", selector: str, kind: str, value: str) -> bool:
    """Fill one control and read it back. Returns False on any failure."""
    locator = page.locator(selector)
    try:
        if kind in ("checkbox", "radio"):
            want = value.strip().lower() in TRUTHY
            if want:
                await locator.check()
            else:
                await locator.uncheck()
            return await locator.is_checked() == want
        if kind == "select":
            try:
                await locator.select_option(label=value)
            except Exception:
                await locator.select_option(value=value)
            return bool(await locator.input_value())
        await locator.fill(value)
        actual = await locator.input_value()
        return " ".join(actual.split()).lower() == " ".join(value.split()).lower()
    except Exception as e:
        log.debug("Fill of %s failed: %s", selector, e)
        return False


async def settle(page: "Page", timeout_ms: float = 3000) -> None:
    try:
        await page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
    except Exception:
        # Persistent connections keep some pages from ever settling.
        pass


class DomHand:
    """Zero-cost heuristic layer."""

    name = "dom"
    max_attempt_cost = 0.0

    def __init__(self, settle_timeout_ms: float = 3000) -> None:
        self.settle_timeout_ms = settle_timeout_ms

    async def attempt(self, ctx: LayerContext) -> LayerOutcome:
        page = ctx.page
        before = await scan_page(page)
        outcome = LayerOutcome(advanced=False)

        for f in before.fields:
            if not fillable(f):
                continue
            match = match_field(f, ctx.user_data)
            if match is None:
                continue
            outcome.actions_executed += 1
            kind = f.get("type", "text")
            if await fill_and_verify(page, f["selector"], kind, match.value):
                outcome.actions_verified += 1
                action, value = recorded_action(kind, match.value)
                ctx.record(action, field_locator_info(f), value)
            else:
                outcome.actions_failed += 1
                ctx.logger.debug("DOM fill not verified for %s (%s)", match.key, match.method)

        button = pick_advance_button(before.buttons)
        if button is None:
            outcome.error = "no Next/Continue/Submit button found"
            return outcome

        ctx.logger.debug("Clicking %r", button.get("text"))
        await page.locator(button["selector"]).click()
        await settle(page, self.settle_timeout_ms)
        after = await scan_page(page)

        outcome.advanced = page_turned(before, after)
        if not outcome.advanced:
            outcome.error = f"page did not advance after clicking {button.get('text')!r}"
            return outcome
        ctx.record("click", button_locator_info(button))
        return outcome
