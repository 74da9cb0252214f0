"""AgentHand: hand the whole page to a vision agent. Most capable, most expensive."""

from __future__ import annotations

import logging

from formpilot.config import DEFAULTS
from formpilot.engine.act_mutex import BUSY_MESSAGES, ActMutexState, guarded_act
from formpilot.engine.adapters import Adapter
from formpilot.engine.layers.base import LayerContext, LayerOutcome

log = logging.getLogger(__name__)

COST_PER_ACT = 0.02


def build_instruction(task_type: str) -> str:
    return (
        f"You are completing a job application ({task_type}). "
        "Fill in every required field on the current page using the applicant profile "
        "provided in the context, answer questions truthfully from that profile, "
        "then click the button that continues to the next page."
    )


class AgentHand:
    name = "agent"
    max_attempt_cost = COST_PER_ACT

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
        context = {"profile": dict(ctx.user_data), "platform": ctx.platform}
        result = await guarded_act(
            self.mutex,
            self.adapter,
            build_instruction(ctx.task_type),
            context,
            timeout_s=self.act_timeout_s,
            grace_s=self.grace_s,
        )
        if result.message in BUSY_MESSAGES:
            return LayerOutcome(advanced=False, error=result.message)
        ctx.adapter_acted(self.adapter)

        log.info("Agent act() %s in %dms: %s", "succeeded" if result.success else "failed", result.duration_ms, result.message)
        outcome = LayerOutcome(advanced=result.success, cost_incurred=COST_PER_ACT, actions_executed=1)
        if result.success:
            outcome.actions_verified = 1
        else:
            outcome.actions_failed = 1
            outcome.error = result.message or "agent could not complete the page"
        return outcome
