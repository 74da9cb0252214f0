"""Single-flight guard for adapters whose act() cannot be cancelled.

When a caller stops waiting on act(), the backend call keeps running and may
still be clicking and typing on the page. The mutex records that situation as
"poisoned" and rejects new act() calls until the old one settles, so the
orchestrator escalates to a different layer instead of racing the stale call.

The state is owned by one adapter instance and mutated only through
acquire / release / poison / refresh. Nothing here touches a page.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Optional

from formpilot.config import DEFAULTS
from formpilot.engine.adapters import ActResult, Adapter

log = logging.getLogger(__name__)

BUSY_STILL_RUNNING = "adapter busy: previous act() still running"
BUSY_IN_FLIGHT = "adapter busy: act() already in flight"
BUSY_MESSAGES = (BUSY_STILL_RUNNING, BUSY_IN_FLIGHT)


@dataclass
class ActMutexState:
    act_in_flight: bool = False
    poisoned: bool = False
    pending_act: Optional[asyncio.Future] = None


def _clear(state: ActMutexState) -> None:
    pending = state.pending_act
    if pending is not None and pending.done() and not pending.cancelled():
        # Mark a failed stale call as observed so asyncio does not report it.
        pending.exception()
    state.poisoned = False
    state.act_in_flight = False
    state.pending_act = None


async def _settles_within(pending: asyncio.Future, grace_s: float) -> bool:
    if pending.done():
        return True
    # asyncio.wait never cancels what it waits on.
    done, _ = await asyncio.wait({pending}, timeout=grace_s)
    return bool(done)


async def acquire(state: ActMutexState, grace_s: float = DEFAULTS["mutex_grace_s"]) -> str | None:
    """Admit a new act() call.

    Returns None when the caller may proceed (and marks the call in flight),
    or a busy message when it must back off or escalate.
    """
    if state.poisoned:
        if state.pending_act is None:
            _clear(state)
        elif await _settles_within(state.pending_act, grace_s):
            log.info("Timed-out act() has settled; clearing poisoned mutex")
            _clear(state)
        else:
            return BUSY_STILL_RUNNING

    if state.act_in_flight:
        return BUSY_IN_FLIGHT

    state.act_in_flight = True
    return None


def release(state: ActMutexState) -> None:
    """Called when act() returns normally, successful or not."""
    state.act_in_flight = False
    state.pending_act = None


def poison(state: ActMutexState, pending: Awaitable[Any]) -> None:
    """Called when the caller gives up on an act() that is still running.

    act_in_flight stays set: the old call really is still in flight.
    """
    state.poisoned = True
    state.pending_act = asyncio.ensure_future(pending)


async def refresh(state: ActMutexState, grace_s: float = DEFAULTS["mutex_grace_s"]) -> None:
    """Clear the poison if the stale call has quietly finished.

    For non-act() paths (reads, DOM fills) that want to know whether the
    adapter is idle again.
    """
    if not state.poisoned or state.pending_act is None:
        return
    if await _settles_within(state.pending_act, grace_s):
        _clear(state)


def is_busy(state: ActMutexState) -> bool:
    return state.act_in_flight or state.poisoned


async def guarded_act(
    state: ActMutexState,
    adapter: Adapter,
    instruction: str,
    context: dict[str, Any] | None = None,
    timeout_s: float = DEFAULTS["act_timeout_s"],
    grace_s: float = DEFAULTS["mutex_grace_s"],
) -> ActResult:
    """Run adapter.act() under the mutex with a caller-side timeout.

    Busy and timeout outcomes come back as a failed ActResult. On timeout the
    underlying call is left running and the mutex is poisoned with it.
    """
    busy = await acquire(state, grace_s)
    if busy:
        log.warning("act() rejected: %s", busy)
        return ActResult(success=False, message=busy)

    task = asyncio.ensure_future(adapter.act(instruction, context))
    done, _ = await asyncio.wait({task}, timeout=timeout_s)
    if not done:
        log.warning("act() timed out after %.1fs; poisoning mutex", timeout_s)
        poison(state, task)
        return ActResult(success=False, message=f"act() timed out after {timeout_s:g}s")

    release(state)
    try:
        return task.result()
    except Exception as e:
        return ActResult(success=False, message=f"act() failed: {e}")
