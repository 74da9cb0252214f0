"""Classify the page the orchestrator is looking at.

    active    a form page that still needs work
    complete  confirmation reached; the task is done
    error     the site reported a failure
    blocked   CAPTCHA, bot check or login wall

Heuristics only: one evaluate() for body text and a few selectors, plus the
URL. Callers may supply a smarter classifier or an external blocker detector.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Literal

from formpilot.engine.adapters import BlockerDetector

if TYPE_CHECKING:
    from playwright.async_api import Page

log = logging.getLogger(__name__)

PageKind = Literal["active", "complete", "error", "blocked"]

CAPTCHA_SELECTORS = (
    'iframe[src*="recaptcha"]',
    'iframe[src*="hcaptcha"]',
    ".g-recaptcha",
    "#captcha",
    "[data-sitekey]",
)

PAGE_SIGNALS_JS = """
(selectors) => {
  const captcha = selectors.find((s) => document.querySelector(s)) || null;
  const text = (document.body ? document.body.innerText : '').slice(0, 5000);
  return { captcha, text };
}
"""

_LOGIN_URL_RE = re.compile(r"/(login|signin|sign-in|sso)(/|\?|$)", re.IGNORECASE)
_BOT_CHECK_RE = re.compile(
    r"checking your browser|please verify you are a human|just a moment\.\.\.", re.IGNORECASE
)
_COMPLETE_RE = re.compile(
    r"thank you for (applying|your application)"
    r"|application (has been )?(submitted|received)"
    r"|we('ve| have) received your application"
    r"|your application (was|has been) (submitted|sent)",
    re.IGNORECASE,
)
_ERROR_RE = re.compile(
    r"something went wrong|an (unexpected )?error (has )?occurred|page not found"
    r"|this job (is no longer available|has been closed|posting has expired)",
    re.IGNORECASE,
)


@dataclass
class PageState:
    kind: PageKind
    confidence: float = 1.0
    reason: str = ""

    @property
    def terminal(self) -> bool:
        return self.kind != "active"


PageClassifier = Callable[["Page"], Awaitable[PageState]]


async def classify_page(page: "Page") -> PageState:
    url = page.url or ""
    if _LOGIN_URL_RE.search(url):
        return PageState("blocked", 0.9, f"login page: {url}")

    signals = await page.evaluate(PAGE_SIGNALS_JS, list(CAPTCHA_SELECTORS)) or {}
    text = signals.get("text") or ""

    if signals.get("captcha"):
        return PageState("blocked", 0.95, f"captcha: {signals['captcha']}")
    if _BOT_CHECK_RE.search(text):
        return PageState("blocked", 0.8, "bot check")
    if _COMPLETE_RE.search(text):
        return PageState("complete", 0.9, "confirmation text")
    if _ERROR_RE.search(text):
        return PageState("error", 0.8, "error text")
    return PageState("active", 1.0)


async def detect_blocker(page: "Page", detector: BlockerDetector, threshold: float) -> PageState | None:
    """Ask an external detector; only confident verdicts count. Detector errors are ignored."""
    try:
        signal = await detector(page)
    except Exception as e:
        log.warning("Blocker detector failed: %s", e)
        return None
    if signal.blocked and signal.confidence >= threshold:
        return PageState("blocked", signal.confidence, signal.kind or "blocker")
    return None
