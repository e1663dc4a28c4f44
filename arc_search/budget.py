"""Search budgets and cooperative cancellation."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Optional


class BudgetError(ValueError):
    """Raised when an enumerative search is started without a full budget."""


@dataclass(frozen=True)
class SearchBudget:
    """Depth, step and wall-clock bounds for one search.

    All three limits are mandatory; there is no "run forever" default.
    """

    max_depth: int
    max_steps: int
    time_limit: float

    def __post_init__(self) -> None:
        for name in ("max_depth", "max_steps", "time_limit"):
            value = getattr(self, name)
            if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
                raise BudgetError(f"{name} is required, got {value!r}")
            if value <= 0:
                raise BudgetError(f"{name} must be positive, got {value!r}")
        if not isinstance(self.max_depth, int) or not isinstance(self.max_steps, int):
            raise BudgetError("max_depth and max_steps must be integers")

    def scaled(self, **changes: Any) -> "SearchBudget":
        """Copy with some limits replaced."""
        params = {
            "max_depth": self.max_depth,
            "max_steps": self.max_steps,
            "time_limit": self.time_limit,
        }
        params.update(changes)
        return SearchBudget(**params)


def require_budget(budget: Optional[SearchBudget]) -> SearchBudget:
    if not isinstance(budget, SearchBudget):
        raise BudgetError("a SearchBudget(max_depth, max_steps, time_limit) is required")
    return budget


class CancelToken:
    """Thread-safe flag an orchestrator uses to stop searches it launched."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Deadline:
    """Monotonic wall-clock deadline."""

    def __init__(self, seconds: float, clock=time.monotonic) -> None:
        self.clock = clock
        self.start = clock()
        self.seconds = seconds

    @property
    def elapsed(self) -> float:
        return self.clock() - self.start

    @property
    def remaining(self) -> float:
        return max(0.0, self.seconds - self.elapsed)

    def expired(self) -> bool:
        return self.elapsed >= self.seconds


__all__ = ["BudgetError", "SearchBudget", "require_budget", "CancelToken", "Deadline"]
