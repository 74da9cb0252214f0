"""CookbookExecutor: deterministic replay of a manual. Zero LLM calls.

Each step is resolved with LocatorResolver and performed directly on the
page. Step failures are counted, not raised; the run aborts only after too
many consecutive failures. When the run ends the manual's health (and each
attempted step's health) is updated and written back to the store.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from formpilot.config import DEFAULTS
from formpilot.engine.adapters import page_is_closed
from formpilot.engine.errors import PageClosedError
from formpilot.engine.health import blend_health, step_health
from formpilot.engine.locator_resolver import LocatorResolver
from formpilot.engine.templates import MissingFieldError, resolve_template
from formpilot.engine.types import Manual, ManualStep, utcnow

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

    from formpilot.engine.manual_store import ManualStore

log = logging.getLogger(__name__)

# Fraction of failed-to-succeeded actions a run may have and still count as a success.
MAX_FAILURE_RATIO = 0.3
DEFAULT_WAIT_MS = 1000


@dataclass
class StepResult:
    success: bool
    strategy: str | None = None
    error: str | None = None


@dataclass
class CookbookResult:
    success: bool = False
    actions_attempted: int = 0
    actions_succeeded: int = 0
    actions_failed: int = 0
    actions_skipped: int = 0
    cost_incurred: float = 0.0
    error: str | None = None
    failed_at: int | None = None
    step_errors: list[str] = field(default_factory=list)
    manual: Manual | None = None


def _normalize(value: str | None) -> str:
    return " ".join((value or "").split()).casefold()


class CookbookExecutor:
    """Replays manuals against a page and keeps their health scores current."""

    def __init__(
        self,
        store: "ManualStore | None" = None,
        resolver: LocatorResolver | None = None,
        max_consecutive_failures: int = DEFAULTS["max_consecutive_failures"],
        min_step_health: float = DEFAULTS["min_step_health"],
        default_wait_after_ms: float = 0,
    ) -> None:
        self.store = store
        self.resolver = resolver or LocatorResolver()
        self.max_consecutive_failures = max_consecutive_failures
        self.min_step_health = min_step_health
        self.default_wait_after_ms = default_wait_after_ms

    async def execute(
        self,
        page: "Page",
        manual: Manual,
        user_data: Mapping[str, object] | None = None,
    ) -> CookbookResult:
        if page_is_closed(page):
            raise PageClosedError("page closed before cookbook replay")

        user_data = user_data or {}
        result = CookbookResult()
        consecutive_failures = 0
        updated_steps: dict[int, ManualStep] = {}

        log.info("Replaying manual %s (%d steps)", manual.id, len(manual.steps))

        for step in manual.sorted_steps():
            if step.health_score < self.min_step_health:
                result.actions_skipped += 1
                log.debug("Skipping step %d: health %.2f below threshold", step.order, step.health_score)
                continue

            result.actions_attempted += 1
            outcome = await self.execute_step(page, step, user_data)
            updated_steps[step.order] = step.model_copy(
                update={"health_score": step_health(step.health_score, outcome.success)}
            )

            if outcome.success:
                result.actions_succeeded += 1
                consecutive_failures = 0
                log.debug("Step %d (%s) ok via %s", step.order, step.action, outcome.strategy)
                continue

            result.actions_failed += 1
            consecutive_failures += 1
            result.step_errors.append(outcome.error or f"step {step.order} failed")
            log.debug("Step %d (%s) failed: %s", step.order, step.action, outcome.error)

            if consecutive_failures >= self.max_consecutive_failures:
                result.error = f"{consecutive_failures} consecutive failures at step {step.order}"
                result.failed_at = step.order
                break

        aborted = result.failed_at is not None
        result.success = (
            not aborted
            and result.actions_succeeded > 0
            and result.actions_failed <= result.actions_succeeded * MAX_FAILURE_RATIO
        )
        if not result.success and result.error is None:
            if result.actions_attempted == 0:
                result.error = "no steps attempted"
            else:
                result.error = (
                    f"insufficient success rate: {result.actions_succeeded}/{result.actions_attempted}"
                )

        result.manual = self._record_outcome(manual, updated_steps, result)
        log.info(
            "Manual %s replay %s: %d/%d ok, %d failed, %d skipped (health %.2f -> %.2f)",
            manual.id,
            "succeeded" if result.success else "failed",
            result.actions_succeeded,
            result.actions_attempted,
            result.actions_failed,
            result.actions_skipped,
            manual.health_score,
            result.manual.health_score,
        )
        return result

    # -- health bookkeeping ----------------------------------------------

    def _record_outcome(
        self,
        manual: Manual,
        updated_steps: dict[int, ManualStep],
        result: CookbookResult,
    ) -> Manual:
        new_health = blend_health(
            manual.health_score,
            result.actions_succeeded,
            result.actions_attempted,
            result.success,
            failure_count=manual.failure_count,
        )
        updated = manual.model_copy(
            update={
                "steps": [updated_steps.get(s.order, s) for s in manual.steps],
                "health_score": new_health,
                "success_count": manual.success_count + (1 if result.success else 0),
                "failure_count": manual.failure_count + (0 if result.success else 1),
                "updated_at": utcnow(),
            }
        )
        if self.store is not None:
            try:
                self.store.save(updated)
            except Exception as e:
                log.warning("Failed to persist health for manual %s: %s", manual.id, e)
        return updated

    # -- single step ------------------------------------------------------

    async def execute_step(
        self,
        page: "Page",
        step: ManualStep,
        user_data: Mapping[str, object],
    ) -> StepResult:
        """Resolve, perform, verify and wait for one step. Never raises
        except for PageClosedError."""
        value = step.value
        if value is not None:
            try:
                value = resolve_template(value, user_data)
            except MissingFieldError as e:
                return StepResult(False, error=f"step {step.order}: {e}")

        if step.action == "navigate":
            return await self._navigate(page, step, value)
        if step.action == "wait":
            return await self._wait(step, value)

        try:
            resolved = await self.resolver.resolve(page, step.locator)
        except Exception as e:
            return StepResult(False, error=f"step {step.order}: locator resolution failed: {e}")

        if not resolved.found:
            label = step.description or step.action
            return StepResult(False, error=f"step {step.order}: no element found for {label}")

        try:
            await self._perform(resolved.locator, step, value)
        except Exception as e:
            if page_is_closed(page):
                raise PageClosedError(f"page closed during step {step.order}") from e
            return StepResult(
                False,
                strategy=resolved.strategy,
                error=f"step {step.order}: action '{step.action}' failed: {e}",
            )

        try:
            verified, detail = await self._verify(page, resolved.locator, step, value, user_data)
        except Exception as e:
            verified, detail = False, str(e)
        if not verified:
            return StepResult(False, strategy=resolved.strategy, error=f"step {step.order}: verification failed: {detail}")

        wait_ms = step.wait_after if step.wait_after is not None else self.default_wait_after_ms
        if wait_ms > 0:
            await asyncio.sleep(wait_ms / 1000)

        return StepResult(True, strategy=resolved.strategy)

    async def _perform(self, locator: "Locator", step: ManualStep, value: str | None) -> None:
        action = step.action
        if action in ("fill", "select", "press") and value is None:
            raise ValueError(f"{action} action requires a value")

        if action == "click":
            await locator.click()
        elif action == "fill":
            await locator.fill(value)
        elif action == "select":
            await locator.select_option(value)
        elif action == "check":
            await locator.check()
        elif action == "uncheck":
            await locator.uncheck()
        elif action == "hover":
            await locator.hover()
        elif action == "press":
            await locator.press(value)
        elif action == "scroll":
            await locator.scroll_into_view_if_needed()
        else:
            raise ValueError(f"Unsupported action: {action}")

    async def _verify(
        self,
        page: "Page",
        locator: "Locator",
        step: ManualStep,
        value: str | None,
        user_data: Mapping[str, object],
    ) -> tuple[bool, str]:
        """Check the step's effect where it can be observed.

        Hints: "none" skips, "url:<part>" checks the page URL, "text:<str>"
        checks that text is present, "value:<expected>" overrides the
        expected input value. Without a hint, fills compare the input's
        value and check/uncheck read the checked state.
        """
        hint = (step.verification or "").strip()
        if hint == "none":
            return True, ""
        if hint.startswith("url:"):
            expected = hint[4:].strip()
            return expected in page.url, f"url {page.url!r} lacks {expected!r}"
        if hint.startswith("text:"):
            expected = hint[5:].strip()
            count = await page.get_by_text(expected).count()
            return count > 0, f"text {expected!r} not present"

        expected = value
        if hint.startswith("value:"):
            expected = resolve_template(hint[6:].strip(), user_data)
        elif step.action != "fill":
            expected = None

        if expected is not None and step.action in ("fill", "select"):
            actual = await locator.input_value()
            return _normalize(actual) == _normalize(expected), f"expected {expected!r}, got {actual!r}"
        if step.action in ("check", "uncheck"):
            checked = await locator.is_checked()
            want = step.action == "check"
            return checked == want, f"checked={checked}"
        return True, ""

    async def _navigate(self, page: "Page", step: ManualStep, url: str | None) -> StepResult:
        if not url:
            return StepResult(False, error=f"step {step.order}: navigate requires a URL")
        try:
            await page.goto(url)
        except Exception as e:
            if page_is_closed(page):
                raise PageClosedError(f"page closed during navigation to {url}") from e
            return StepResult(False, error=f"step {step.order}: navigation failed: {e}")
        return StepResult(True, strategy="navigate")

    async def _wait(self, step: ManualStep, value: str | None) -> StepResult:
        try:
            ms = float(value) if value else (step.wait_after if step.wait_after is not None else DEFAULT_WAIT_MS)
        except ValueError:
            return StepResult(False, error=f"step {step.order}: wait requires a duration in ms")
        if ms < 0 or not math.isfinite(ms):
            return StepResult(False, error=f"step {step.order}: wait requires a duration in ms")
        await asyncio.sleep(ms / 1000)
        return StepResult(True, strategy="wait")
