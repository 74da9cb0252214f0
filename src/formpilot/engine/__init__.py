"""Cache-first execution engine.

Replays recorded manuals when possible and escalates through progressively
more capable (and costlier) layers when not.
"""

from formpilot.engine.act_mutex import ActMutexState, acquire, guarded_act, poison, refresh, release
from formpilot.engine.catalog import CatalogClient, convert_catalog_entry, seed_from_catalog
from formpilot.engine.cookbook import CookbookExecutor, CookbookResult
from formpilot.engine.errors import (
    BudgetExceededError,
    CatalogError,
    FormPilotError,
    InvalidManualError,
    PageClosedError,
)
from formpilot.engine.execution import ExecutionEngine, ExecutionParams, ExecutionResult
from formpilot.engine.layers import LayerContext, LayerHand, LayerOutcome, build_default_layers
from formpilot.engine.locator_resolver import LocatorResolver, ResolveResult
from formpilot.engine.manual_store import FileManualStore, ManualStore, MemoryManualStore
from formpilot.engine.orchestrator import OrchestratorResult, SectionOrchestrator
from formpilot.engine.trace_recorder import TraceRecorder
from formpilot.engine.types import LocatorDescriptor, Manual, ManualStep, parse_manual
from formpilot.engine.url_patterns import detect_platform, url_matches_pattern, url_to_pattern

__all__ = [
    "ActMutexState",
    "BudgetExceededError",
    "CatalogClient",
    "CatalogError",
    "CookbookExecutor",
    "CookbookResult",
    "ExecutionEngine",
    "ExecutionParams",
    "ExecutionResult",
    "FileManualStore",
    "FormPilotError",
    "InvalidManualError",
    "LayerContext",
    "LayerHand",
    "LayerOutcome",
    "LocatorDescriptor",
    "LocatorResolver",
    "Manual",
    "ManualStep",
    "ManualStore",
    "MemoryManualStore",
    "OrchestratorResult",
    "PageClosedError",
    "ResolveResult",
    "SectionOrchestrator",
    "TraceRecorder",
    "acquire",
    "build_default_layers",
    "convert_catalog_entry",
    "detect_platform",
    "guarded_act",
    "parse_manual",
    "poison",
    "refresh",
    "release",
    "seed_from_catalog",
    "url_matches_pattern",
    "url_to_pattern",
]
