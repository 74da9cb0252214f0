"""Health-score update rule shared by manuals and their steps.

Scores live on a 0-1 scale. A run moves the score toward its success ratio
with an exponential moving average. Failed runs are additionally forced down
by a fixed penalty, tripled once a manual has failed more than five times, so
a manual that keeps failing reaches 0 in a bounded number of runs.
"""

from __future__ import annotations

from formpilot.config import DEFAULTS

HEALTH_ALPHA: float = DEFAULTS["health_alpha"]
FAILURE_PENALTY: float = DEFAULTS["failure_penalty"]
SEVERE_FAILURE_THRESHOLD = 5
SEVERE_PENALTY_MULTIPLIER = 3


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, score))


def blend_health(
    prior: float,
    succeeded: int,
    attempted: int,
    success: bool,
    failure_count: int = 0,
    alpha: float = HEALTH_ALPHA,
    penalty: float = FAILURE_PENALTY,
) -> float:
    """Return the new health after one replay.

    Args:
        prior: Health before the run.
        succeeded: Actions that succeeded.
        attempted: Actions attempted (skipped actions excluded).
        success: Overall outcome of the run.
        failure_count: Failures recorded before this run.
    """
    ratio = succeeded / attempted if attempted > 0 else 0.0
    ema = (1.0 - alpha) * prior + alpha * ratio

    if success:
        # A fully successful run never lowers the score.
        if attempted > 0 and succeeded == attempted:
            return _clamp(max(ema, prior))
        return _clamp(ema)

    if failure_count + 1 > SEVERE_FAILURE_THRESHOLD:
        penalty *= SEVERE_PENALTY_MULTIPLIER
    return _clamp(min(ema, prior - penalty))


def step_health(prior: float, ok: bool, alpha: float = HEALTH_ALPHA) -> float:
    """Per-step variant: one observation of success or failure."""
    target = 1.0 if ok else 0.0
    return _clamp((1.0 - alpha) * prior + alpha * target)
