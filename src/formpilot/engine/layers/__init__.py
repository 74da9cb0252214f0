"""Escalation layers, cheapest first: dom -> scripted -> agent."""

from __future__ import annotations

from formpilot.config import DEFAULTS
from formpilot.engine.act_mutex import ActMutexState
from formpilot.engine.adapters import Adapter
from formpilot.engine.layers.agent_hand import AgentHand
from formpilot.engine.layers.base import LayerContext, LayerHand, LayerOutcome
from formpilot.engine.layers.dom_hand import DomHand
from formpilot.engine.layers.scripted_hand import ScriptedHand

__all__ = [
    "AgentHand",
    "DomHand",
    "LayerContext",
    "LayerHand",
    "LayerOutcome",
    "ScriptedHand",
    "build_default_layers",
]


def build_default_layers(
    adapter: Adapter,
    scripted_adapter: Adapter | None = None,
    act_timeout_s: float = DEFAULTS["act_timeout_s"],
    grace_s: float = DEFAULTS["mutex_grace_s"],
) -> list[LayerHand]:
    """Standard stack for one task.

    Each adapter instance gets exactly one mutex, shared by every layer that
    drives it.
    """
    mutexes: dict[int, ActMutexState] = {}

    def mutex_for(a: Adapter) -> ActMutexState:
        return mutexes.setdefault(id(a), ActMutexState())

    layers: list[LayerHand] = [DomHand()]
    if scripted_adapter is not None:
        layers.append(ScriptedHand(scripted_adapter, mutex_for(scripted_adapter), act_timeout_s, grace_s))
    layers.append(AgentHand(adapter, mutex_for(adapter), act_timeout_s, grace_s))
    return layers
