"""ScriptedHand: adapter-assisted observation, DOM fills, one act() to advance.

The adapter's observe() finds the fields heuristics missed (custom widgets,
unlabeled inputs) and describes them in words; the descriptions are matched
to the profile and filled directly. Advancing the page is a single guarded
act() call.

Nothing touches the adapter or the page while the adapter's mutex is held by
an earlier act(), including one that timed out and may still be running.
"""

from __future__ import annotations

import logging
from typing import Any

from formpilot.config import DEFAULTS
from formpilot.engine.act_mutex import (
    BUSY_IN_FLIGHT,
    BUSY_MESSAGES,
    BUSY_STILL_RUNNING,
    ActMutexState,
    guarded_act,
    is_busy,
    refresh,
)
from formpilot.engine.adapters import Adapter
from formpilot.engine.layers.base import LayerContext, LayerOutcome
from formpilot.engine.layers.dom_hand import fill_and_verify, recorded_action
from formpilot.engine.layers.field_matching import fuzzy_lookup

log = logging.getLogger(__name__)

OBSERVE_COST = 0.001
ACT_COST = 0.005

OBSERVE_INSTRUCTION = "List every empty form field on this page that the applicant must fill"
ADVANCE_INSTRUCTION = (
    "Click the button that moves this application to its next page "
    "(Next, Continue, Save and Continue, or Submit)"
)


def selector_locator_info(selector: str) -> dict[str, Any]:
    """Locator attributes for a Playwright selector returned by observe()."""
    if selector.startswith("xpath="):
        return {"xpath": selector[len("xpath="):]}
    if selector.startswith("/"):
        return {"xpath": selector}
    return {"css": selector}


class ScriptedHand:
    """Moderate-cost layer around a scripted automation adapter."""

    name = "scripted"
    max_attempt_cost = OBSERVE_COST + ACT_COST

    def __init__(
        self,
        adapter: Adapter,
        mutex: ActMutexState | None = None,
        act_timeout_s: float = DEFAULTS["act_timeout_s"],
        grace_s: float = DEFAULTS["mutex_grace_s"],
    ) -> None:
        self.adapter = adapter
        self.mutex = mutex or ActMutexState()
        self.act_timeout_s = act_timeout_s
        self.grace_s = grace_s

    async def attempt(self, ctx: LayerContext) -> LayerOutcome:
        await refresh(self.mutex, self.grace_s)
        if is_busy(self.mutex):
            busy = BUSY_STILL_RUNNING if self.mutex.poisoned else BUSY_IN_FLIGHT
            log.warning("Skipping scripted layer: %s", busy)
            return LayerOutcome(advanced=False, error=busy)

        outcome = LayerOutcome(advanced=False)

        observed = await self.adapter.observe(OBSERVE_INSTRUCTION)
        outcome.cost_incurred += OBSERVE_COST

        for el in observed:
            key = fuzzy_lookup(el.description, ctx.user_data)
            if key is None:
                continue
            value = ctx.user_data[key]
            if value is None:
                continue
            outcome.actions_executed += 1
            kind = "select" if el.action == "select" else "text"
            if await fill_and_verify(ctx.page, el.selector, kind, str(value)):
                outcome.actions_verified += 1
                action, recorded = recorded_action(kind, str(value))
                ctx.record(action, selector_locator_info(el.selector), recorded)
            else:
                outcome.actions_failed += 1

        url_before = ctx.page.url
        result = await guarded_act(
            self.mutex, self.adapter, ADVANCE_INSTRUCTION, timeout_s=self.act_timeout_s, grace_s=self.grace_s
        )
        if result.message in BUSY_MESSAGES:
            # Rejected before reaching the backend: nothing was spent.
            outcome.error = result.message
            return outcome

        outcome.cost_incurred += ACT_COST
        ctx.adapter_acted(self.adapter)
        if not result.success:
            outcome.error = result.message or "advance act() failed"
            return outcome

        outcome.advanced = True
        ctx.logger.debug("Scripted advance from %s (%s)", url_before, result.message)
        return outcome
