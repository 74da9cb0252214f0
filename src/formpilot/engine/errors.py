"""Exception taxonomy for the execution engine.

Only PageClosedError is allowed to escape ExecutionEngine.execute(). Every
other failure is folded into a structured result by the component that
observes it.
"""

from __future__ import annotations


class FormPilotError(Exception):
    """Base class for engine errors."""

    pass


class InvalidManualError(FormPilotError):
    """Raised when a persisted manual document fails validation."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid manual '{source}': {reason}")


class PageClosedError(FormPilotError):
    """Raised when the page handle is gone and no further work is possible."""

    pass


class CatalogError(FormPilotError):
    """Raised when the third-party action catalog cannot be queried or parsed."""

    pass


class BudgetExceededError(FormPilotError):
    """Raised by cost trackers when a task spends past its limit."""

    def __init__(self, spent: float, budget: float) -> None:
        self.spent = spent
        self.budget = budget
        super().__init__(f"Budget exceeded: spent ${spent:.4f} of ${budget:.4f}")
