"""SectionOrchestrator: drive a multi-page form through the layer stack.

Each page is offered to the cheapest layer first. A layer that advances the
page sends the loop back to the cheapest layer for the next page; a layer
that cannot advance hands the same page to the next, costlier layer. The
loop ends when the page classifies as terminal, the budget cannot cover the
next layer's declared ceiling, the page ceiling is hit, or every layer has
failed on the same page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from formpilot.config import DEFAULTS
from formpilot.engine.adapters import BlockerDetector, page_is_closed
from formpilot.engine.errors import PageClosedError
from formpilot.engine.layers.base import LayerContext, LayerHand, LayerOutcome
from formpilot.engine.page_state import PageClassifier, PageState, classify_page, detect_blocker

log = logging.getLogger(__name__)

OrchestratorState = Literal[
    "running",
    "succeeded",
    "budget_exhausted",
    "terminal_page",
    "max_pages_reached",
    "unresolved",
]


@dataclass
class OrchestratorResult:
    success: bool = False
    state: OrchestratorState = "running"
    pages_processed: int = 0
    actions_executed: int = 0
    actions_verified: int = 0
    actions_failed: int = 0
    total_cost: float = 0.0
    errors: list[str] = field(default_factory=list)
    layer_costs: dict[str, float] = field(default_factory=dict)

    def absorb(self, layer: str, outcome: LayerOutcome, cost: float) -> None:
        self.actions_executed += outcome.actions_executed
        self.actions_verified += outcome.actions_verified
        self.actions_failed += outcome.actions_failed
        self.total_cost += cost
        self.layer_costs[layer] = self.layer_costs.get(layer, 0.0) + cost


class SectionOrchestrator:
    def __init__(
        self,
        layers: list[LayerHand],
        max_pages: int = DEFAULTS["max_pages"],
        page_classifier: PageClassifier = classify_page,
        blocker_detector: BlockerDetector | None = None,
        blocker_confidence: float = DEFAULTS["blocker_confidence"],
    ) -> None:
        if not layers:
            raise ValueError("SectionOrchestrator needs at least one layer")
        self.layers = list(layers)
        self.max_pages = max_pages
        self.page_classifier = page_classifier
        self.blocker_detector = blocker_detector
        self.blocker_confidence = blocker_confidence

    async def _page_state(self, ctx: LayerContext) -> PageState:
        if self.blocker_detector is not None:
            blocked = await detect_blocker(ctx.page, self.blocker_detector, self.blocker_confidence)
            if blocked is not None:
                return blocked
        try:
            return await self.page_classifier(ctx.page)
        except Exception as e:
            if page_is_closed(ctx.page):
                raise PageClosedError("page closed while classifying") from e
            ctx.logger.warning("Page classification failed, assuming active: %s", e)
            return PageState("active", 0.0, "classification failed")

    async def run(self, ctx: LayerContext) -> OrchestratorResult:
        result = OrchestratorResult()
        logger = ctx.logger
        layer_idx = 0
        # Classify once per page, not once per escalation.
        needs_classify = True

        log.debug("Layer stack: %s", " -> ".join(layer.name for layer in self.layers))

        while True:
            if needs_classify:
                state = await self._page_state(ctx)
                needs_classify = False
                if state.kind == "complete":
                    result.state = "succeeded"
                    break
                if state.terminal:
                    result.state = "terminal_page"
                    result.errors.append(f"{state.kind} page: {state.reason}")
                    break
                if result.pages_processed >= self.max_pages:
                    result.state = "max_pages_reached"
                    result.errors.append(f"Stopped after {self.max_pages} pages")
                    break

            layer = self.layers[layer_idx]
            if ctx.budget_remaining < 0 or ctx.budget_remaining - layer.max_attempt_cost < 0:
                result.state = "budget_exhausted"
                result.errors.append(
                    f"Budget exhausted: ${ctx.budget_remaining:.4f} left, "
                    f"{layer.name} needs up to ${layer.max_attempt_cost:.4f}"
                )
                logger.warning("Budget exhausted before layer %s", layer.name)
                break

            logger.debug("Page %d: trying layer %s", result.pages_processed + 1, layer.name)
            try:
                outcome = await layer.attempt(ctx)
            except PageClosedError:
                raise
            except Exception as e:
                if page_is_closed(ctx.page):
                    raise PageClosedError(f"page closed during {layer.name} attempt") from e
                outcome = LayerOutcome(advanced=False, error=f"{type(e).__name__}: {e}")

            cost = max(0.0, outcome.cost_incurred)
            ctx.charge(cost)
            result.absorb(layer.name, outcome, cost)
            if ctx.cost_tracker is not None:
                ctx.cost_tracker.record_mode_step(layer.name)

            if outcome.done:
                result.pages_processed += 1
                result.state = "succeeded"
                break

            if outcome.advanced:
                result.pages_processed += 1
                if layer_idx > 0:
                    logger.info("Layer %s advanced page %d", layer.name, result.pages_processed)
                layer_idx = 0
                needs_classify = True
                continue

            if outcome.error:
                result.errors.append(f"{layer.name}: {outcome.error}")
            layer_idx += 1
            if layer_idx >= len(self.layers):
                result.state = "unresolved"
                result.errors.append(f"No layer could advance {ctx.page.url}")
                break
            logger.info("Escalating from %s to %s", layer.name, self.layers[layer_idx].name)

        result.success = result.state == "succeeded"
        logger.info(
            "Orchestrator finished: %s after %d page(s), $%.4f spent",
            result.state, result.pages_processed, result.total_cost,
        )
        return result
