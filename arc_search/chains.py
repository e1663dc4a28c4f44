"""
Local chain search for ARC tasks.

Starting from one grid, the search composes primitives one step at a time and
yields every intermediate ``(grid, pipeline)`` candidate lazily. The caller
decides what to do with each candidate; :class:`ChainSearch` offers the usual
questions (first chain that validates, all valid chains, best scoring chain).

Two traversal orders are available. Breadth-first finds the shortest
explanation first and never revisits a grid anywhere in the expansion.
Depth-first keeps far fewer grids alive and only refuses grids already on the
current path. Both stop when the candidate cap, the wall clock or a
cancellation token says so.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Sequence, Set, Tuple

from .budget import CancelToken, Deadline, SearchBudget, require_budget
from .dsl import Pipeline, Step, apply_op, apply_program, enumerate_steps
from .grid import Array, eq, grid_key
from .validation import ScoreReport, TrainPairs, score_pipeline

logger = logging.getLogger(__name__)

STOP_EXHAUSTED = "exhausted"
STOP_LIMIT = "limit"
STOP_TIMEOUT = "timeout"
STOP_CANCELLED = "cancelled"


@dataclass(frozen=True)
class ChainCandidate:
    grid: Array
    pipeline: Pipeline

    @property
    def depth(self) -> int:
        return len(self.pipeline)


@dataclass
class ChainStats:
    generated: int = 0
    evaluated: int = 0
    max_depth_reached: int = 0
    stop_reason: Optional[str] = None

    @property
    def timed_out(self) -> bool:
        return self.stop_reason == STOP_TIMEOUT

    @property
    def cancelled(self) -> bool:
        return self.stop_reason == STOP_CANCELLED

    @property
    def limited(self) -> bool:
        return self.stop_reason == STOP_LIMIT

    def as_dict(self) -> Dict[str, object]:
        return {
            "generated": self.generated,
            "evaluated": self.evaluated,
            "max_depth_reached": self.max_depth_reached,
            "timed_out": self.timed_out,
            "cancelled": self.cancelled,
            "stop_reason": self.stop_reason,
        }


class _ChainCursor:
    """Shared bookkeeping for the traversal cursors."""

    def __init__(self, search: "ChainSearch", root: Array) -> None:
        self.search = search
        self.root = root
        self.steps: Sequence[Step] = search.steps
        self.max_depth = search.budget.max_depth
        self.deadline = Deadline(search.budget.time_limit)
        self.stats = search.stats
        self.done = False
        self.ticks = 0

    def __iter__(self) -> "_ChainCursor":
        return self

    def _stop(self, reason: str) -> None:
        self.done = True
        if self.stats.stop_reason is None:
            self.stats.stop_reason = reason
        logger.debug("chain expansion stopped", extra={"reason": reason, **self.stats.as_dict()})

    def _should_stop(self) -> bool:
        if self.done:
            return True
        self.ticks += 1
        cancel = self.search.cancel
        if cancel is not None and cancel.cancelled:
            self._stop(STOP_CANCELLED)
        elif self.stats.generated >= self.search.budget.max_steps:
            self._stop(STOP_LIMIT)
        elif self.ticks % self.search.check_interval == 0 and self.deadline.expired():
            self._stop(STOP_TIMEOUT)
        return self.done

    def _emit(self, grid: Array, pipeline: Pipeline) -> ChainCandidate:
        self.stats.generated += 1
        if len(pipeline) > self.stats.max_depth_reached:
            self.stats.max_depth_reached = len(pipeline)
        return ChainCandidate(grid, pipeline)

    def __next__(self) -> ChainCandidate:  # pragma: no cover - overridden
        raise NotImplementedError


class BreadthFirstCursor(_ChainCursor):
    """Level-by-level expansion with a global seen set."""

    def __init__(self, search: "ChainSearch", root: Array) -> None:
        super().__init__(search, root)
        self.queue: Deque[Tuple[Array, Pipeline]] = deque([(root, [])])
        self.seen: Set = {grid_key(root)}
        self.current: Optional[Tuple[Array, Pipeline]] = None
        self.index = 0

    def __next__(self) -> ChainCandidate:
        while not self._should_stop():
            if self.current is None:
                if not self.queue:
                    self._stop(STOP_EXHAUSTED)
                    break
                self.current = self.queue.popleft()
                self.index = 0
            grid, pipeline = self.current
            if len(pipeline) >= self.max_depth or self.index >= len(self.steps):
                self.current = None
                continue
            name, params = self.steps[self.index]
            self.index += 1
            out = apply_op(grid, name, params)
            if out is None:
                continue
            key = grid_key(out)
            if key in self.seen:
                continue
            self.seen.add(key)
            nxt = pipeline + [(name, params)]
            if len(nxt) < self.max_depth:
                self.queue.append((out, nxt))
            return self._emit(out, nxt)
        raise StopIteration


class DepthFirstCursor(_ChainCursor):
    """Pre-order expansion; only grids on the current path are refused."""

    def __init__(self, search: "ChainSearch", root: Array) -> None:
        super().__init__(search, root)
        # frames: grid, pipeline, index of the next step to try
        self.stack: List[List] = [[root, [], 0]]
        self.path: List = [grid_key(root)]
        self.on_path: Set = {self.path[0]}

    def _pop(self) -> None:
        self.stack.pop()
        self.on_path.discard(self.path.pop())

    def __next__(self) -> ChainCandidate:
        while not self._should_stop():
            if not self.stack:
                self._stop(STOP_EXHAUSTED)
                break
            frame = self.stack[-1]
            grid, pipeline, index = frame
            if len(pipeline) >= self.max_depth or index >= len(self.steps):
                self._pop()
                continue
            frame[2] = index + 1
            name, params = self.steps[index]
            out = apply_op(grid, name, params)
            if out is None:
                continue
            key = grid_key(out)
            if key in self.on_path:
                continue
            nxt = pipeline + [(name, params)]
            self.stack.append([out, nxt, 0])
            self.path.append(key)
            self.on_path.add(key)
            return self._emit(out, nxt)
        raise StopIteration


class ChainSearch:
    """Bounded multi-hop composition of primitives from a root grid."""

    def __init__(
        self,
        budget: SearchBudget,
        steps: Optional[Sequence[Step]] = None,
        cancel: Optional[CancelToken] = None,
        check_interval: int = 256,
    ) -> None:
        self.budget = require_budget(budget)
        self.steps: List[Step] = list(steps) if steps is not None else enumerate_steps()
        self.cancel = cancel
        self.check_interval = max(1, int(check_interval))
        self.stats = ChainStats()

    def reset_stats(self) -> None:
        self.stats = ChainStats()

    def iter_chains(self, root: Array, order: str = "bfs") -> _ChainCursor:
        """Lazy cursor over chain candidates rooted at ``root``."""
        if order == "bfs":
            return BreadthFirstCursor(self, root)
        if order == "dfs":
            return DepthFirstCursor(self, root)
        raise ValueError(f"unknown traversal order {order!r}")

    @staticmethod
    def _matches(candidate: ChainCandidate, train_pairs: TrainPairs) -> bool:
        # the candidate grid is already the first pair's output under the chain
        if not eq(candidate.grid, train_pairs[0][1]):
            return False
        return all(eq(apply_program(inp, candidate.pipeline), out) for inp, out in train_pairs[1:])

    def find_valid_chain(self, train_pairs: TrainPairs, order: str = "bfs") -> Optional[ChainCandidate]:
        """First chain from the first pair's input that validates on all pairs."""
        self.reset_stats()
        if not train_pairs:
            return None
        for candidate in self.iter_chains(train_pairs[0][0], order):
            self.stats.evaluated += 1
            if self._matches(candidate, train_pairs):
                logger.info(
                    "chain found",
                    extra={"depth": candidate.depth, "evaluated": self.stats.evaluated},
                )
                return candidate
        logger.debug("no valid chain", extra=self.stats.as_dict())
        return None

    def find_all_valid_chains(self, train_pairs: TrainPairs, limit: int = 10) -> List[ChainCandidate]:
        self.reset_stats()
        found: List[ChainCandidate] = []
        if not train_pairs:
            return found
        for candidate in self.iter_chains(train_pairs[0][0]):
            self.stats.evaluated += 1
            if self._matches(candidate, train_pairs):
                found.append(candidate)
                if len(found) >= limit:
                    break
        return found

    def find_best_chain(
        self, train_pairs: TrainPairs, sample_limit: int = 1000
    ) -> Optional[Tuple[ChainCandidate, ScoreReport]]:
        """Highest-scoring chain among up to ``sample_limit`` candidates.

        Stops early on a chain that solves every pair.
        """
        self.reset_stats()
        if not train_pairs:
            return None
        best: Optional[Tuple[ChainCandidate, ScoreReport]] = None
        for candidate in self.iter_chains(train_pairs[0][0]):
            if self.stats.evaluated >= sample_limit:
                break
            self.stats.evaluated += 1
            report = score_pipeline(candidate.pipeline, train_pairs)
            if best is None or (report.exact_pairs, report.cell_accuracy) > (
                best[1].exact_pairs,
                best[1].cell_accuracy,
            ):
                best = (candidate, report)
            if report.solved:
                break
        return best

    @staticmethod
    def apply_chain(grid: Array, pipeline: Pipeline) -> Optional[Array]:
        return apply_program(grid, pipeline)

    @staticmethod
    def score_chain(pipeline: Pipeline, train_pairs: TrainPairs) -> ScoreReport:
        return score_pipeline(pipeline, train_pairs)


__all__ = [
    "ChainCandidate",
    "ChainStats",
    "ChainSearch",
    "BreadthFirstCursor",
    "DepthFirstCursor",
    "STOP_EXHAUSTED",
    "STOP_LIMIT",
    "STOP_TIMEOUT",
    "STOP_CANCELLED",
]
