"""Top-level escalation solver for ARC tasks.

The solver tries strategies from cheapest to most expensive and stops at the
first one that explains every training pair:

1. ``memory``: pipelines distilled from earlier, similar tasks;
2. ``chain``: bounded breadth-first composition of primitives;
3. ``converge``: the convergence collaborator applied to each input;
4. ``hybrid``: the beam + depth-first search.

Solutions are canonicalised, re-validated and distilled into memory so that a
similar task later on is answered from the fast path.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .beam_search import HybridSearch, WinEvent
from .budget import CancelToken, Deadline, SearchBudget
from .canonical import canonicalize_pipeline
from .chains import ChainSearch
from .config import SolverConfig
from .convergence import Converger, GreedyConverger, primitive_candidates
from .dsl import Pipeline, apply_program
from .features import Fingerprint, compute_fingerprint
from .grid import Array, eq
from .memory import MemoryStore
from .types import STATUS_FAIL, STATUS_LIMIT, STATUS_OK, STATUS_TIMEOUT, SolveResult, Task
from .validation import ScoreReport, cell_accuracy, is_near_miss, score_pipeline, validate

PHASES: Tuple[str, ...] = ("memory", "chain", "converge", "hybrid")


@dataclass
class PhaseOutcome:
    """What one phase (or one branch of a phase) produced."""

    phase: str
    solved: bool = False
    pipeline: Optional[Pipeline] = None
    outputs: Optional[List[Optional[Array]]] = None
    score: float = 0.0
    steps: int = 0
    stop_reason: Optional[str] = None
    near_miss: Optional[Tuple[Pipeline, ScoreReport]] = None
    branch: int = 0
    detail: Dict[str, Any] = field(default_factory=dict)


def build_memory(config: SolverConfig) -> MemoryStore:
    return MemoryStore(
        path=config.memory_path,
        max_entries=config.max_entries,
        similarity_threshold=config.similarity_threshold,
        max_heuristics=config.max_heuristics,
        recency_decay_days=config.recency_decay_days,
    )


class EscalationSolver:
    """Memory -> chain -> convergence -> hybrid cascade."""

    def __init__(
        self,
        config: Optional[SolverConfig] = None,
        memory: Optional[MemoryStore] = None,
        converger: Optional[Converger] = None,
    ):
        self.config = config or SolverConfig()
        self.memory = memory if memory is not None else build_memory(self.config)
        self.converger = converger if converger is not None else GreedyConverger()
        self.stats: Dict[str, Any] = {
            "tasks": 0,
            "solved": 0,
            "strategies_tried": 0,
            "deepest_pipeline": 0,
            "phase_hits": {phase: 0 for phase in PHASES},
            "phase_invocations": {phase: 0 for phase in PHASES},
        }
        self._stats_lock = threading.Lock()

        # Structured logger for observability
        self.logger = logging.getLogger(self.__class__.__name__)
        if not self.logger.handlers and not logging.getLogger().handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter('%(asctime)s %(name)s %(levelname)s: %(message)s')
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)
            self.logger.setLevel(self.config.log_level.upper())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def solve(self, task: Task, time_limit: Optional[float] = None) -> SolveResult:
        """Run the cascade on ``task`` within ``time_limit`` seconds."""
        start = time.monotonic()
        deadline = Deadline(time_limit if time_limit is not None else self.config.time_limit)
        with self._stats_lock:
            self.stats["tasks"] += 1
        if not task.train:
            return SolveResult(STATUS_FAIL, duration=time.monotonic() - start, detail={"reason": "no training pairs"})

        fp = compute_fingerprint(task.train)
        total_steps = 0
        stop_reasons: List[Optional[str]] = []
        self.logger.info("solving task %s", task.task_id or "<anonymous>", extra={"fingerprint": fp.hash})

        for phase in PHASES:
            if deadline.expired():
                stop_reasons.append("timeout")
                break
            with self._stats_lock:
                self.stats["strategies_tried"] += 1
                self.stats["phase_invocations"][phase] += 1
            outcome = self._execute_phase(phase, task, fp, deadline)
            total_steps += outcome.steps
            stop_reasons.append(outcome.stop_reason)
            if outcome.near_miss is not None:
                self._remember_near_miss(fp, *outcome.near_miss)
            if outcome.solved:
                return self._finish(task, fp, outcome, start, total_steps)

        status = STATUS_FAIL
        if deadline.expired() or "timeout" in stop_reasons[-1:]:
            status = STATUS_TIMEOUT
        elif "limit" in stop_reasons[-1:]:
            status = STATUS_LIMIT
        self.logger.info("task unsolved", extra={"status": status, "steps": total_steps})
        return SolveResult(
            status,
            duration=time.monotonic() - start,
            steps=total_steps,
            detail={"fingerprint": fp.hash, "stop_reasons": stop_reasons},
        )

    # ------------------------------------------------------------------
    # Phase plumbing
    # ------------------------------------------------------------------
    def _execute_phase(self, phase: str, task: Task, fp: Fingerprint, deadline: Deadline) -> PhaseOutcome:
        return self.run_phase(phase, task, fp, deadline, branch=0)

    def branch_params(self, phase: str, branch: int) -> Dict[str, Any]:
        """Phase parameters for branch ``branch``; branch 0 uses the config as is."""
        c = self.config
        if phase == "memory":
            return {"offset": branch * c.memory_candidates, "limit": c.memory_candidates}
        if phase == "chain":
            return {
                "depth": c.chain_depth + (branch + 1) // 2,
                "max_candidates": c.chain_max_candidates * (branch + 1),
                "order": "bfs" if branch % 2 == 0 else "dfs",
            }
        if phase == "converge":
            return {
                "offset": branch * 5,
                "limit": c.converge_candidates or None,
                "iterations": c.converge_iterations + 2 * branch,
            }
        if phase == "hybrid":
            return {
                "depth": c.hybrid_depth + branch,
                "beam_width": c.beam_width + 5 * branch,
                "max_steps": c.hybrid_max_steps * (branch + 1),
                "time_limit": c.hybrid_time_limit * (branch + 1),
                "checkpoint_name": f"checkpoint-hybrid-b{branch}.json",
            }
        raise ValueError(f"unknown phase {phase!r}")

    def run_phase(
        self,
        phase: str,
        task: Task,
        fp: Fingerprint,
        deadline: Deadline,
        branch: int = 0,
        cancel: Optional[CancelToken] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> PhaseOutcome:
        params = params if params is not None else self.branch_params(phase, branch)
        runner = getattr(self, f"_phase_{phase}")
        outcome: PhaseOutcome = runner(task, fp, deadline, cancel, **params)
        outcome.branch = branch
        self.logger.debug(
            "phase finished",
            extra={"phase": phase, "branch": branch, "solved": outcome.solved, "score": round(outcome.score, 3)},
        )
        return outcome

    def _phase_memory(
        self, task: Task, fp: Fingerprint, deadline: Deadline, cancel: Optional[CancelToken],
        offset: int = 0, limit: int = 5,
    ) -> PhaseOutcome:
        outcome = PhaseOutcome("memory")
        recalled = self.memory.recall(fp, limit=offset + limit)[offset:]
        for item in recalled:
            if cancel is not None and cancel.cancelled:
                outcome.stop_reason = "cancelled"
                break
            outcome.steps += 1
            report = score_pipeline(item.entry.pipeline, task.train)
            outcome.score = max(outcome.score, report.cell_accuracy)
            if report.solved:
                if item.entry.key != fp.hash:
                    self.memory.record_outcome(item.entry.key, True)
                outcome.solved = True
                outcome.pipeline = list(item.entry.pipeline)
                outcome.detail = {"recalled": item.entry.key, "similarity": item.similarity}
                return outcome
            self.memory.record_outcome(item.entry.key, False)
        return outcome

    def _phase_chain(
        self, task: Task, fp: Fingerprint, deadline: Deadline, cancel: Optional[CancelToken],
        depth: int = 3, max_candidates: int = 20000, order: str = "bfs",
    ) -> PhaseOutcome:
        outcome = PhaseOutcome("chain")
        budget = SearchBudget(
            max_depth=depth,
            max_steps=max_candidates,
            time_limit=max(1e-3, min(self.config.chain_time_limit, deadline.remaining)),
        )
        search = ChainSearch(budget, cancel=cancel)
        found = search.find_valid_chain(task.train, order=order)
        outcome.steps = search.stats.generated
        if found is not None:
            outcome.solved = True
            outcome.pipeline = found.pipeline
            outcome.score = 1.0
            return outcome
        outcome.stop_reason = search.stats.stop_reason
        if outcome.stop_reason == "exhausted":
            outcome.stop_reason = None
        if not (cancel is not None and cancel.cancelled) and not deadline.expired():
            # sampled feedback for near misses and branch adaptation
            sampler = ChainSearch(budget.scaled(max_steps=min(max_candidates, 500)), cancel=cancel)
            best = sampler.find_best_chain(task.train, sample_limit=500)
            if best is not None:
                candidate, report = best
                outcome.score = report.cell_accuracy
                outcome.near_miss = (candidate.pipeline, report)
        return outcome

    def _phase_converge(
        self, task: Task, fp: Fingerprint, deadline: Deadline, cancel: Optional[CancelToken],
        offset: int = 0, limit: Optional[int] = None, iterations: int = 8,
    ) -> PhaseOutcome:
        outcome = PhaseOutcome("converge")
        candidates = primitive_candidates(limit=limit, offset=offset)
        if not candidates:
            return outcome
        accs: List[float] = []
        solved = True
        for inp, expected in task.train:
            if cancel is not None and cancel.cancelled:
                outcome.stop_reason = "cancelled"
                return outcome
            outcome.steps += 1
            out = self.converger.converge(inp, candidates, iterations)
            accs.append(cell_accuracy(out, expected))
            if not eq(out, expected):
                solved = False
        outcome.score = sum(accs) / len(accs)
        if solved:
            outcome.solved = True
            outcome.pipeline = []
            outcome.outputs = [self.converger.converge(t, candidates, iterations) for t in task.test_inputs]
        return outcome

    def _phase_hybrid(
        self, task: Task, fp: Fingerprint, deadline: Deadline, cancel: Optional[CancelToken],
        depth: int = 4, beam_width: int = 8, max_steps: int = 50000, time_limit: float = 30.0,
        checkpoint_name: str = "checkpoint.json",
    ) -> PhaseOutcome:
        outcome = PhaseOutcome("hybrid")
        budget = SearchBudget(
            max_depth=depth,
            max_steps=max_steps,
            time_limit=max(1e-3, min(time_limit, deadline.remaining)),
        )
        search = HybridSearch(
            budget,
            beam_width,
            memory=self.memory,
            converger=self.converger,
            check_interval=self.config.check_interval,
            checkpoint_dir=self.config.checkpoint_path,
            checkpoint_name=checkpoint_name,
            cancel=cancel,
            emit_candidates=False,
        )
        terminal = None
        for event in search.search(task.train):
            if event.terminal:
                terminal = event
        outcome.steps = search.steps
        if isinstance(terminal, WinEvent):
            outcome.solved = True
            outcome.pipeline = terminal.pipeline
            outcome.score = 1.0
            outcome.detail = {"from": terminal.phase, "stabilized": terminal.stabilized}
            return outcome
        if terminal is not None and terminal.kind in ("timeout", "limit", "cancelled"):
            outcome.stop_reason = terminal.kind
        if search.best is not None:
            pipeline, report = search.best
            outcome.score = report.cell_accuracy
            outcome.near_miss = (pipeline, report)
        return outcome

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------
    def _remember_near_miss(self, fp: Fingerprint, pipeline: Pipeline, report: ScoreReport) -> None:
        if not is_near_miss(report, self.config.near_miss_threshold):
            return
        self.memory.remember_heuristic(fp, canonicalize_pipeline(pipeline), report.cell_accuracy)

    def _finish(
        self, task: Task, fp: Fingerprint, outcome: PhaseOutcome, start: float, steps: int
    ) -> SolveResult:
        pipeline = outcome.pipeline or []
        outputs = outcome.outputs
        if outcome.phase != "converge":
            canonical = canonicalize_pipeline(pipeline)
            if not validate(canonical, task.train):
                self.logger.warning("canonical pipeline failed validation", extra={"phase": outcome.phase})
                canonical = list(pipeline)
            pipeline = canonical
            self.memory.distill(fp, pipeline, source=outcome.phase)
            outputs = [apply_program(t, pipeline) for t in task.test_inputs]
        with self._stats_lock:
            self.stats["solved"] += 1
            self.stats["phase_hits"][outcome.phase] += 1
            self.stats["deepest_pipeline"] = max(self.stats["deepest_pipeline"], len(pipeline))
        self.logger.info(
            "task solved",
            extra={"phase": outcome.phase, "depth": len(pipeline), "branch": outcome.branch},
        )
        detail = {"fingerprint": fp.hash, "branch": outcome.branch}
        detail.update(outcome.detail)
        return SolveResult(
            STATUS_OK,
            method=outcome.phase,
            pipeline=pipeline,
            outputs=list(outputs or []),
            duration=time.monotonic() - start,
            steps=steps,
            detail=detail,
        )


__all__ = ["EscalationSolver", "PhaseOutcome", "PHASES", "build_memory"]
