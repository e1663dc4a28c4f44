"""Beam + depth-first hybrid search over DSL pipelines.

The search runs three phases and reports what it is doing as a stream of
events:

1. memory seeds: pipelines recalled for the task fingerprint (and stored
   near misses) are validated first;
2. beam: one more primitive per depth level for every frontier state, the
   frontier ranked by cell accuracy and pruned back to ``beam_width``;
3. depth-first: expansion continues from the final frontier up to twice the
   configured depth.

Every candidate is checked against all training pairs as soon as it is
generated. The generator ends with exactly one terminal event: ``win``,
``timeout``, ``limit``, ``cancelled`` or ``none``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Dict, Generator, Iterator, List, Optional, Sequence, Set, Tuple, Union

from .budget import BudgetError, CancelToken, Deadline, SearchBudget, require_budget
from .convergence import Converger, pipeline_candidate
from .dsl import Pipeline, Step, apply_op, apply_program, enumerate_steps
from .features import compute_fingerprint
from .grid import Array, eq, grids_key
from .memory import MemoryStore
from .validation import ScoreReport, TrainPairs, score_outputs

logger = logging.getLogger(__name__)

PHASE_MEMORY = "memory"
PHASE_BEAM = "beam"
PHASE_DFS = "dfs"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SearchEvent:
    kind: ClassVar[str] = "event"
    terminal: ClassVar[bool] = False

    steps: int
    elapsed: float


@dataclass(frozen=True)
class CandidateEvent(SearchEvent):
    kind: ClassVar[str] = "candidate"

    pipeline: Pipeline = field(default_factory=list)
    phase: str = PHASE_BEAM
    score: float = 0.0


@dataclass(frozen=True)
class ProgressEvent(SearchEvent):
    kind: ClassVar[str] = "progress"

    phase: str = PHASE_BEAM
    depth: int = 0
    frontier: int = 0


@dataclass(frozen=True)
class WinEvent(SearchEvent):
    kind: ClassVar[str] = "win"
    terminal: ClassVar[bool] = True

    pipeline: Pipeline = field(default_factory=list)
    phase: str = PHASE_BEAM
    depth: int = 0
    stabilized: bool = False


@dataclass(frozen=True)
class TimeoutEvent(SearchEvent):
    kind: ClassVar[str] = "timeout"
    terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class LimitEvent(SearchEvent):
    kind: ClassVar[str] = "limit"
    terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class ExhaustedEvent(SearchEvent):
    kind: ClassVar[str] = "none"
    terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class CancelledEvent(SearchEvent):
    kind: ClassVar[str] = "cancelled"
    terminal: ClassVar[bool] = True


TERMINAL_KINDS = frozenset({"win", "timeout", "limit", "none", "cancelled"})


@dataclass
class SearchState:
    """Grids for every training input after ``pipeline``."""

    grids: Tuple[Array, ...]
    pipeline: Pipeline
    score: Optional[float] = None

    @property
    def depth(self) -> int:
        return len(self.pipeline)


_Valve = Generator[SearchEvent, None, Optional[SearchEvent]]


class HybridSearch:
    """Bounded beam search that falls back to depth-first expansion."""

    def __init__(
        self,
        budget: SearchBudget,
        beam_width: int,
        memory: Optional[MemoryStore] = None,
        converger: Optional[Converger] = None,
        check_interval: int = 1000,
        checkpoint_dir: Optional[Union[str, Path]] = None,
        cancel: Optional[CancelToken] = None,
        emit_candidates: bool = True,
        op_priors: Optional[Dict[str, float]] = None,
        alphabet: Optional[Sequence[Step]] = None,
        converge_iterations: int = 1,
        checkpoint_name: str = "checkpoint.json",
    ) -> None:
        self.budget = require_budget(budget)
        if beam_width is None or beam_width <= 0:
            raise BudgetError("beam_width must be a positive integer")
        self.beam_width = int(beam_width)
        self.memory = memory
        self.converger = converger
        self.check_interval = max(1, int(check_interval))
        self.checkpoint_dir = Path(checkpoint_dir) if checkpoint_dir is not None else None
        self.checkpoint_name = checkpoint_name
        self.cancel = cancel
        self.emit_candidates = emit_candidates
        if op_priors is None and memory is not None:
            op_priors = memory.op_priors()
        self.op_priors = op_priors or {}
        self.alphabet: List[Step] = list(alphabet) if alphabet is not None else enumerate_steps()
        self.converge_iterations = converge_iterations

        self.steps = 0
        self.best: Optional[Tuple[Pipeline, ScoreReport]] = None
        self.last_checkpoint: Optional[Dict[str, Any]] = None
        self._deadline: Optional[Deadline] = None
        self._seen: Set = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @property
    def elapsed(self) -> float:
        return self._deadline.elapsed if self._deadline is not None else 0.0

    def _checkpoint(self, phase: str, depth: int) -> None:
        data = {"phase": phase, "depth": depth, "steps": self.steps, "elapsed": round(self.elapsed, 3)}
        self.last_checkpoint = data
        if self.checkpoint_dir is None:
            return
        tmp_path: Optional[str] = None
        try:
            self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.checkpoint_dir, prefix=".checkpoint-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.checkpoint_dir / self.checkpoint_name)
        except OSError as exc:
            logger.warning("checkpoint write failed", extra={"error": str(exc), **data})
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def _valve(self, phase: str, depth: int, frontier: int) -> _Valve:
        """Count one step and apply the safety valves.

        Yields a progress event at every ``check_interval`` steps and returns
        a terminal event when the search must stop.
        """
        if self.cancel is not None and self.cancel.cancelled:
            return CancelledEvent(steps=self.steps, elapsed=self.elapsed)
        if self.steps >= self.budget.max_steps:
            logger.info("hybrid search step limit", extra={"steps": self.steps, "phase": phase})
            return LimitEvent(steps=self.steps, elapsed=self.elapsed)
        self.steps += 1
        if self.steps % self.check_interval == 0:
            self._checkpoint(phase, depth)
            if self.elapsed > self.budget.time_limit:
                logger.info("hybrid search timeout", extra={"steps": self.steps, "phase": phase})
                return TimeoutEvent(steps=self.steps, elapsed=self.elapsed)
            yield ProgressEvent(
                steps=self.steps, elapsed=self.elapsed, phase=phase, depth=depth, frontier=frontier
            )
        return None

    def _apply_all(self, grids: Tuple[Array, ...], name: str, params: Dict[str, Any]) -> Optional[Tuple[Array, ...]]:
        out = []
        for g in grids:
            nxt = apply_op(g, name, params)
            if nxt is None:
                return None
            out.append(nxt)
        return tuple(out)

    def _record(self, pipeline: Pipeline, report: ScoreReport) -> None:
        if self.best is None or (report.exact_pairs, report.cell_accuracy) > (
            self.best[1].exact_pairs,
            self.best[1].cell_accuracy,
        ):
            self.best = (pipeline, report)

    def _stabilize(self, pipeline: Pipeline, train_pairs: TrainPairs) -> bool:
        if self.converger is None:
            return False
        inp, expected = train_pairs[0]
        try:
            out = self.converger.converge(inp, [pipeline_candidate(pipeline)], self.converge_iterations)
        except Exception as exc:  # external collaborator
            logger.warning("convergence failed", extra={"error": str(exc)})
            return False
        return eq(out, expected)

    def _rank(self, states: List[SearchState]) -> List[SearchState]:
        def key(state: SearchState) -> Tuple[float, float]:
            prior = self.op_priors.get(state.pipeline[-1][0], 0.0) if state.pipeline else 0.0
            return (state.score or 0.0, prior)

        return sorted(states, key=key, reverse=True)[: self.beam_width]

    def _win(self, pipeline: Pipeline, phase: str, stabilized: bool = False) -> WinEvent:
        logger.info(
            "hybrid search win",
            extra={"phase": phase, "depth": len(pipeline), "steps": self.steps},
        )
        return WinEvent(
            steps=self.steps,
            elapsed=self.elapsed,
            pipeline=list(pipeline),
            phase=phase,
            depth=len(pipeline),
            stabilized=stabilized,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    def _seeds(self, train_pairs: TrainPairs) -> List[Pipeline]:
        if self.memory is None:
            return []
        fp = compute_fingerprint(train_pairs)
        seeds: List[Pipeline] = [r.entry.pipeline for r in self.memory.recall(fp, limit=self.beam_width)]
        seeds += [h.pipeline for h in self.memory.heuristics_for(fp, limit=self.beam_width)]
        return seeds[: self.beam_width]

    def _expand(
        self,
        state: SearchState,
        train_pairs: TrainPairs,
        phase: str,
        children: List[SearchState],
        frontier: int,
    ) -> _Valve:
        """Try every primitive on ``state``; returns a terminal event or ``None``."""
        depth = state.depth + 1
        for name, params in self.alphabet:
            terminal = yield from self._valve(phase, depth, frontier)
            if terminal is not None:
                return terminal
            grids = self._apply_all(state.grids, name, params)
            if grids is None:
                continue
            key = grids_key(grids)
            if key in self._seen:
                continue
            self._seen.add(key)
            pipeline = state.pipeline + [(name, params)]
            report = score_outputs(grids, train_pairs)
            self._record(pipeline, report)
            if self.emit_candidates:
                yield CandidateEvent(
                    steps=self.steps,
                    elapsed=self.elapsed,
                    pipeline=pipeline,
                    phase=phase,
                    score=report.cell_accuracy,
                )
            if report.solved:
                return self._win(pipeline, phase, self._stabilize(pipeline, train_pairs))
            children.append(SearchState(grids, pipeline, report.cell_accuracy))
        return None

    def search(self, train_pairs: TrainPairs) -> Iterator[SearchEvent]:
        """Run the search, yielding events; the last one is terminal."""
        self.steps = 0
        self.best = None
        self.last_checkpoint = None
        self._deadline = Deadline(self.budget.time_limit)
        self._seen = set()
        train_pairs = list(train_pairs)
        if not train_pairs:
            yield ExhaustedEvent(steps=0, elapsed=0.0)
            return

        inputs = tuple(inp for inp, _ in train_pairs)
        root_report = score_outputs(inputs, train_pairs)
        root = SearchState(inputs, [], root_report.cell_accuracy)
        self._seen.add(grids_key(inputs))
        if root_report.solved:
            yield self._win([], PHASE_BEAM)
            return

        # Phase 1: memory seeds
        frontier: List[SearchState] = [root]
        for pipeline in self._seeds(train_pairs):
            terminal = yield from self._valve(PHASE_MEMORY, len(pipeline), len(frontier))
            if terminal is not None:
                yield terminal
                return
            outputs = [apply_program(inp, pipeline) for inp in inputs]
            report = score_outputs(outputs, train_pairs)
            self._record(pipeline, report)
            if self.emit_candidates:
                yield CandidateEvent(
                    steps=self.steps,
                    elapsed=self.elapsed,
                    pipeline=list(pipeline),
                    phase=PHASE_MEMORY,
                    score=report.cell_accuracy,
                )
            if report.solved:
                yield self._win(pipeline, PHASE_MEMORY)
                return
            if all(o is not None for o in outputs) and len(pipeline) < self.budget.max_depth:
                grids = tuple(outputs)
                key = grids_key(grids)
                if key not in self._seen:
                    self._seen.add(key)
                    frontier.append(SearchState(grids, list(pipeline), report.cell_accuracy))
        frontier = self._rank(frontier)

        # Phase 2: beam
        for depth in range(1, self.budget.max_depth + 1):
            children: List[SearchState] = []
            for state in frontier:
                if state.depth >= depth:
                    children.append(state)
                    continue
                terminal = yield from self._expand(state, train_pairs, PHASE_BEAM, children, len(frontier))
                if terminal is not None:
                    yield terminal
                    return
            frontier = self._rank(children)
            logger.debug(
                "beam level complete",
                extra={"depth": depth, "frontier": len(frontier), "steps": self.steps},
            )
            if not frontier:
                break

        # Phase 3: depth-first from the final frontier
        dfs_limit = 2 * self.budget.max_depth
        stack: List[SearchState] = list(reversed(frontier))
        while stack:
            state = stack.pop()
            if state.depth >= dfs_limit:
                continue
            children = []
            terminal = yield from self._expand(state, train_pairs, PHASE_DFS, children, len(stack))
            if terminal is not None:
                yield terminal
                return
            # best child on top of the stack
            stack.extend(sorted(children, key=lambda s: s.score or 0.0))

        logger.info("hybrid search exhausted", extra={"steps": self.steps})
        yield ExhaustedEvent(steps=self.steps, elapsed=self.elapsed)


def run_search(
    train_pairs: TrainPairs,
    budget: SearchBudget,
    beam_width: int,
    **kwargs: Any,
) -> SearchEvent:
    """Drain a :class:`HybridSearch` and return its terminal event."""
    search = HybridSearch(budget, beam_width, **kwargs)
    last: Optional[SearchEvent] = None
    for event in search.search(train_pairs):
        last = event
    assert last is not None and last.terminal
    return last


__all__ = [
    "SearchEvent",
    "CandidateEvent",
    "ProgressEvent",
    "WinEvent",
    "TimeoutEvent",
    "LimitEvent",
    "ExhaustedEvent",
    "CancelledEvent",
    "TERMINAL_KINDS",
    "SearchState",
    "HybridSearch",
    "run_search",
    "PHASE_MEMORY",
    "PHASE_BEAM",
    "PHASE_DFS",
]
