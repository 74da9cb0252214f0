"""ExecutionEngine: the single entry point a job executor calls.

Sequence for one task:

    1. Find a manual (supplied, local store, then optional catalog seeding).
    2. Replay it with CookbookExecutor. Success ends the task at near-zero cost.
    3. Otherwise run SectionOrchestrator over the layer stack with the rest
       of the task budget, recording the run as a new manual.

Modes:
    auto           cookbook first, then layers (default)
    layered_only   skip the cookbook
    cookbook_only  never escalate

Every outcome comes back as an ExecutionResult. The only exception that
escapes is PageClosedError: without a page there is nothing to report on.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Optional

from formpilot.config import DEFAULTS, load_engine_config
from formpilot.engine.adapters import Adapter, BlockerDetector, CostTracker, RecordableAdapter
from formpilot.engine.catalog import CatalogClient, seed_from_catalog
from formpilot.engine.cookbook import CookbookExecutor, CookbookResult
from formpilot.engine.errors import BudgetExceededError, PageClosedError
from formpilot.engine.layers import DomHand, LayerContext, LayerHand, build_default_layers
from formpilot.engine.manual_store import ManualStore
from formpilot.engine.orchestrator import OrchestratorResult, SectionOrchestrator
from formpilot.engine.page_state import PageClassifier, classify_page
from formpilot.engine.trace_recorder import TraceRecorder
from formpilot.engine.types import Manual
from formpilot.engine.url_patterns import detect_platform

if TYPE_CHECKING:
    from playwright.async_api import Page

log = logging.getLogger(__name__)

ExecutionMode = Literal["auto", "layered_only", "cookbook_only"]
ResultMode = Literal["cookbook", "layered", "escalated"]
EventSink = Callable[[str, dict[str, Any]], Awaitable[None]]
LayerFactory = Callable[["ExecutionParams"], list[LayerHand]]


@dataclass
class ExecutionParams:
    url: str
    task_type: str
    page: "Page"
    user_data: Mapping[str, object] = field(default_factory=dict)
    adapter: Optional[Adapter] = None
    scripted_adapter: Optional[Adapter] = None
    manual: Optional[Manual] = None
    platform: str | None = None
    budget_usd: float | None = None
    mode: ExecutionMode = "auto"
    cost_tracker: Optional[CostTracker] = None
    task_id: str | None = None
    logger: Optional[logging.Logger] = None


@dataclass
class ExecutionResult:
    success: bool = False
    mode: ResultMode = "layered"
    state: str = "running"
    total_cost: float = 0.0
    pages_processed: int = 0
    actions_executed: int = 0
    actions_verified: int = 0
    actions_failed: int = 0
    errors: list[str] = field(default_factory=list)
    manual_id: str | None = None
    recorded_manual_id: str | None = None
    cookbook: Optional[CookbookResult] = None
    orchestrator: Optional[OrchestratorResult] = None


def default_layers(
    params: ExecutionParams,
    act_timeout_s: float = DEFAULTS["act_timeout_s"],
    grace_s: float = DEFAULTS["mutex_grace_s"],
) -> list[LayerHand]:
    if params.adapter is None:
        return [DomHand()]
    return build_default_layers(params.adapter, params.scripted_adapter, act_timeout_s, grace_s)


class ExecutionEngine:
    def __init__(
        self,
        store: ManualStore,
        executor: CookbookExecutor | None = None,
        layer_factory: LayerFactory | None = None,
        catalog: CatalogClient | None = None,
        page_classifier: PageClassifier = classify_page,
        blocker_detector: BlockerDetector | None = None,
        log_event: EventSink | None = None,
        config: Mapping[str, Any] | None = None,
    ) -> None:
        self.store = store
        self.config = {**DEFAULTS, **(config or {})}
        self.executor = executor or CookbookExecutor(
            store,
            max_consecutive_failures=self.config["max_consecutive_failures"],
            min_step_health=self.config["min_step_health"],
        )
        self.layer_factory = layer_factory or self._default_layers
        self.catalog = catalog
        self.page_classifier = page_classifier
        self.blocker_detector = blocker_detector
        self.log_event = log_event

    @classmethod
    def from_config(
        cls,
        store: ManualStore,
        path: Path | None = None,
        with_catalog: bool = False,
        **kwargs: Any,
    ) -> "ExecutionEngine":
        """Build an engine tuned by engine.yaml (defaults where the file is silent).

        A catalog client for the configured catalog_url is attached when
        with_catalog=True and no client is passed explicitly.
        """
        cfg = load_engine_config(path)
        if with_catalog and kwargs.get("catalog") is None:
            kwargs["catalog"] = CatalogClient(cfg["catalog_url"])
        return cls(store, config=cfg, **kwargs)

    def _default_layers(self, params: ExecutionParams) -> list[LayerHand]:
        return default_layers(params, self.config["act_timeout_s"], self.config["mutex_grace_s"])

    async def _event(self, event_type: str, **metadata: Any) -> None:
        if self.log_event is None:
            return
        try:
            await self.log_event(event_type, metadata)
        except Exception as e:
            log.warning("Event sink failed for %s: %s", event_type, e)

    # -- manual lookup --------------------------------------------------

    async def _find_manual(self, params: ExecutionParams, platform: str) -> Manual | None:
        if params.manual is not None:
            return params.manual
        try:
            manual = self.store.lookup(params.url, params.task_type, platform)
        except Exception as e:
            log.warning("Manual lookup failed for %s: %s", params.url, e)
            manual = None
        if manual is None and self.catalog is not None:
            manual = await seed_from_catalog(params.url, params.task_type, self.catalog, self.store)
        return manual

    # -- main entry -----------------------------------------------------

    async def execute(self, params: ExecutionParams) -> ExecutionResult:
        result = ExecutionResult()
        platform = params.platform or detect_platform(params.url)
        await self._event("execution_mode", mode=params.mode, platform=platform, url=params.url)

        manual = None
        if params.mode != "layered_only":
            manual = await self._find_manual(params, platform)

        if manual is not None:
            result.manual_id = manual.id
            result.mode = "escalated"
            if await self._replay(params, manual, result):
                return result
        elif params.mode == "cookbook_only":
            result.state = "cache_miss"
            result.errors.append(f"cookbook_only: no manual for {params.task_type} at {params.url}")
            return result

        if params.mode == "cookbook_only":
            result.state = "cache_miss"
            result.errors.append("cookbook_only: replay failed, not escalating")
            return result

        await self._run_layers(params, platform, manual, result)
        return result

    async def _replay(self, params: ExecutionParams, manual: Manual, result: ExecutionResult) -> bool:
        """Run the cookbook. Returns True when the task is finished."""
        tracker = params.cost_tracker
        await self._event("mode_selected", mode="cookbook", manual_id=manual.id)
        if tracker is not None:
            tracker.set_mode("cookbook")

        try:
            cb = await self.executor.execute(params.page, manual, params.user_data)
        except PageClosedError:
            raise
        except Exception as e:
            log.error("Cookbook replay of %s raised: %s", manual.id, e, exc_info=True)
            result.errors.append(f"cookbook: {e}")
            await self._event("cookbook_error", error=str(e))
            return False

        result.cookbook = cb
        result.total_cost += cb.cost_incurred
        result.actions_executed += cb.actions_attempted
        result.actions_verified += cb.actions_succeeded
        result.actions_failed += cb.actions_failed

        if tracker is not None:
            try:
                for _ in range(cb.actions_attempted):
                    tracker.record_action()
            except BudgetExceededError as e:
                result.state = "budget_exhausted"
                result.errors.append(str(e))
                return True

        if cb.success:
            result.success = True
            result.mode = "cookbook"
            result.state = "succeeded"
            log.info("Task completed from manual %s", manual.id, extra={"manual_id": manual.id, "mode": "cookbook"})
            await self._event(
                "cookbook_success",
                actions_attempted=cb.actions_attempted,
                actions_succeeded=cb.actions_succeeded,
                actions_skipped=cb.actions_skipped,
                cost=cb.cost_incurred,
            )
            return True

        result.errors.append(f"cookbook: {cb.error}")
        log.info("Manual %s replay failed (%s); escalating", manual.id, cb.error, extra={"manual_id": manual.id})
        await self._event("cookbook_failed", reason=cb.error, actions_failed=cb.actions_failed)
        return False

    def _budget(self, params: ExecutionParams, spent: float) -> float:
        budget = params.budget_usd if params.budget_usd is not None else self.config["task_budget_usd"]
        tracker = params.cost_tracker
        if tracker is not None:
            try:
                budget = min(budget, tracker.get_remaining_budget())
            except Exception as e:
                log.warning("Cost tracker could not report remaining budget: %s", e)
        return budget - spent

    async def _run_layers(
        self,
        params: ExecutionParams,
        platform: str,
        manual: Manual | None,
        result: ExecutionResult,
    ) -> None:
        await self._event("mode_selected", mode="layered")
        if params.cost_tracker is not None:
            params.cost_tracker.set_mode("layered")

        recorder = self._start_recorder(params)
        ctx = LayerContext(
            page=params.page,
            user_data=params.user_data,
            budget_remaining=self._budget(params, result.total_cost),
            task_type=params.task_type,
            total_cost=result.total_cost,
            manual=manual,
            platform=platform,
            task_id=params.task_id,
            cost_tracker=params.cost_tracker,
            recorder=recorder,
        )
        if params.logger is not None:
            ctx.logger = params.logger

        try:
            orchestrator = SectionOrchestrator(
                self.layer_factory(params),
                max_pages=self.config["max_pages"],
                page_classifier=self.page_classifier,
                blocker_detector=self.blocker_detector,
                blocker_confidence=self.config["blocker_confidence"],
            )
            orch = await orchestrator.run(ctx)
        except PageClosedError:
            raise
        except BudgetExceededError as e:
            result.state = "budget_exhausted"
            result.total_cost = ctx.total_cost
            result.errors.append(str(e))
            return
        except Exception as e:
            log.error("Orchestrator raised: %s", e, exc_info=True)
            result.state = "error"
            result.total_cost = ctx.total_cost
            result.errors.append(f"orchestrator: {e}")
            await self._event("orchestrator_error", error=str(e))
            return
        finally:
            if recorder is not None:
                recorder.stop_recording()

        result.orchestrator = orch
        result.success = orch.success
        result.state = orch.state
        result.total_cost += orch.total_cost
        result.pages_processed += orch.pages_processed
        result.actions_executed += orch.actions_executed
        result.actions_verified += orch.actions_verified
        result.actions_failed += orch.actions_failed
        result.errors.extend(orch.errors)
        await self._event(
            "orchestrator_finished",
            state=orch.state,
            pages=orch.pages_processed,
            cost=orch.total_cost,
            layer_costs=orch.layer_costs,
        )

        if orch.success and recorder is not None:
            self._save_trace(params, platform, recorder, result)

    def _start_recorder(self, params: ExecutionParams) -> TraceRecorder | None:
        """Record the layered run. Returns None if the adapter refuses a listener."""
        adapter = params.adapter if isinstance(params.adapter, RecordableAdapter) else None
        recorder = TraceRecorder(params.page, params.user_data, adapter)
        try:
            recorder.start()
        except Exception as e:
            log.warning("Trace recording unavailable, run will not be learned: %s", e)
            return None
        return recorder

    def _save_trace(
        self,
        params: ExecutionParams,
        platform: str,
        recorder: TraceRecorder,
        result: ExecutionResult,
    ) -> None:
        steps = recorder.get_trace()
        if not steps:
            return
        if not recorder.complete:
            log.info("Not saving trace for %s: %s", params.url, recorder.gap)
            return
        try:
            saved = self.store.save_from_trace(steps, params.url, params.task_type, platform)
        except Exception as e:
            log.warning("Could not save recorded manual for %s: %s", params.url, e)
            return
        result.recorded_manual_id = saved.id
