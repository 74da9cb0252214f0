"""Multi-strategy element resolution against a live Playwright page.

Strategies are tried in a fixed priority order:

    testId > role > ariaLabel > name > id > text > css > xpath

Stable authoring attributes come first; structural selectors last, since
they break on unrelated markup changes. A strategy only wins if it yields
exactly one visible element. Running out of strategies is a normal outcome
(ResolveResult.found is False), not an exception.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from formpilot.engine.types import LocatorDescriptor

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

log = logging.getLogger(__name__)

_CSS_IDENT_RE = re.compile(r"^[A-Za-z_][\w-]*$")
_STALE_MARKERS = ("stale", "detached", "not attached")
STRATEGY_NONE = "none"


@dataclass
class ResolveResult:
    locator: Optional["Locator"]
    strategy: str
    attempts: int

    @property
    def found(self) -> bool:
        return self.locator is not None


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _id_selector(element_id: str) -> str:
    if _CSS_IDENT_RE.match(element_id):
        return f"#{element_id}"
    return f'[id="{_quote(element_id)}"]'


def _by_role(page: "Page", d: LocatorDescriptor) -> "Locator":
    if d.name:
        return page.get_by_role(d.role, name=d.name)
    return page.get_by_role(d.role)


_Builder = Callable[["Page", LocatorDescriptor], Optional["Locator"]]

STRATEGIES: tuple[tuple[str, _Builder], ...] = (
    ("testId", lambda page, d: page.get_by_test_id(d.test_id) if d.test_id else None),
    ("role", lambda page, d: _by_role(page, d) if d.role else None),
    ("ariaLabel", lambda page, d: page.get_by_label(d.aria_label) if d.aria_label else None),
    # With a role present, name is the accessible name and was used above.
    ("name", lambda page, d: page.locator(f'[name="{_quote(d.name)}"]') if d.name and not d.role else None),
    ("id", lambda page, d: page.locator(_id_selector(d.id)) if d.id else None),
    ("text", lambda page, d: page.get_by_text(d.text, exact=True) if d.text else None),
    ("css", lambda page, d: page.locator(d.css) if d.css else None),
    ("xpath", lambda page, d: page.locator(f"xpath={d.xpath}") if d.xpath else None),
)


class LocatorResolver:
    """Resolve a LocatorDescriptor to a single visible element."""

    def __init__(self, max_retries: int = 1, retry_delay_s: float = 0.1) -> None:
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s

    async def resolve(self, page: "Page", descriptor: LocatorDescriptor) -> ResolveResult:
        attempts = 0
        for name, build in STRATEGIES:
            try:
                locator = build(page, descriptor)
            except Exception as e:
                # e.g. an unknown ARIA role; treat as a miss for this strategy.
                log.debug("Strategy %s could not build a locator: %s", name, e)
                continue
            if locator is None:
                continue

            attempts += 1
            if await self._is_unique_visible(locator):
                log.debug("Resolved via %s after %d attempt(s)", name, attempts)
                return ResolveResult(locator=locator, strategy=name, attempts=attempts)

        return ResolveResult(locator=None, strategy=STRATEGY_NONE, attempts=attempts)

    async def _is_unique_visible(self, locator: Any) -> bool:
        retries_left = self.max_retries
        while True:
            try:
                if await locator.count() != 1:
                    return False
                return bool(await locator.is_visible())
            except Exception as e:
                msg = str(e).lower()
                if retries_left > 0 and any(m in msg for m in _STALE_MARKERS):
                    retries_left -= 1
                    await asyncio.sleep(self.retry_delay_s)
                    continue
                log.debug("Locator check failed: %s", e)
                return False
