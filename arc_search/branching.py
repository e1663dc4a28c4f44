"""Adaptive branching variant of the escalation solver.

Each phase of the cascade is run as several parallel branches with different
parameters. The first branch that explains the training pairs wins and cancels
the rest. After every phase the mean branch score is fed back: a phase that
scores poorly gets more branches next time, one that scores well gets fewer.
"""

from __future__ import annotations

import math
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .budget import CancelToken, Deadline
from .config import SolverConfig
from .convergence import Converger
from .features import Fingerprint
from .memory import MemoryStore
from .solver import PHASES, EscalationSolver, PhaseOutcome
from .types import Task

MAX_ADAPTED_BEAM = 50
MAX_ADAPTED_DEPTH = 12


@dataclass
class PhaseHistory:
    runs: int = 0
    successes: int = 0
    avg_score: float = 0.5

    @property
    def success_rate(self) -> float:
        return self.successes / self.runs if self.runs else 0.0


class BranchingSolver(EscalationSolver):
    """Escalation solver that fans each phase out over parallel branches."""

    def __init__(
        self,
        config: Optional[SolverConfig] = None,
        memory: Optional[MemoryStore] = None,
        converger: Optional[Converger] = None,
    ):
        super().__init__(config, memory, converger)
        self.branch_factor = self.config.initial_branch_factor
        self.generation = 0
        self.phase_history: Dict[str, PhaseHistory] = {phase: PhaseHistory() for phase in PHASES}
        self.stats.update(
            {
                "generation": 0,
                "total_branches": 0,
                "successful_branches": 0,
                "branch_factor": self.branch_factor,
            }
        )

    def solve(self, task: Task, time_limit: Optional[float] = None):
        with self._stats_lock:
            self.generation += 1
            self.stats["generation"] = self.generation
        return super().solve(task, time_limit)

    # ------------------------------------------------------------------
    # Adaptation
    # ------------------------------------------------------------------
    def adapt_parameter(self, param: str, base: float, phase: str) -> float:
        """Adjust ``base`` from the recorded history of ``phase``.

        Needs at least two runs of the phase; otherwise ``base`` is returned.
        """
        history = self.phase_history.get(phase)
        if history is None or history.runs < 2:
            return base
        rate = history.success_rate
        if param == "branch_factor":
            if rate < 0.2:
                return min(self.config.max_branches, base + 2)
            if rate > 0.7:
                return max(1, base - 1)
            if history.avg_score < 0.3:
                return min(self.config.max_branches, base + 1)
            return base
        if param == "beam_width":
            if rate < 0.3:
                return min(MAX_ADAPTED_BEAM, base * 1.5)
            return base
        if param == "max_depth":
            if history.avg_score < 0.2:
                return min(MAX_ADAPTED_DEPTH, base + 2)
            return base
        return base

    def collect_feedback(self, phase: str, outcomes: List[PhaseOutcome]) -> float:
        """Update phase history and the global branch factor; returns the mean score."""
        if not outcomes:
            return 0.0
        avg = sum(o.score for o in outcomes) / len(outcomes)
        alpha = self.config.ema_alpha
        with self._stats_lock:
            history = self.phase_history.setdefault(phase, PhaseHistory())
            history.runs += 1
            if any(o.solved for o in outcomes):
                history.successes += 1
            history.avg_score = (1 - alpha) * history.avg_score + alpha * avg

            previous = self.branch_factor
            if avg < self.config.low_score and self.branch_factor < self.config.max_branches:
                self.branch_factor += 1
            elif avg > self.config.high_score and self.branch_factor > 1:
                self.branch_factor -= 1
            self.stats["branch_factor"] = self.branch_factor
        if self.branch_factor != previous:
            self.logger.info(
                "branch factor evolved",
                extra={"phase": phase, "previous": previous, "current": self.branch_factor, "avg_score": round(avg, 3)},
            )
        return avg

    def branches_for(self, phase: str) -> int:
        adapted = int(self.adapt_parameter("branch_factor", self.branch_factor, phase))
        return max(1, min(self.config.max_branches, adapted))

    def branch_params(self, phase: str, branch: int) -> Dict[str, Any]:
        params = super().branch_params(phase, branch)
        if phase == "hybrid":
            params["beam_width"] = int(math.ceil(self.adapt_parameter("beam_width", params["beam_width"], phase)))
            params["depth"] = int(self.adapt_parameter("max_depth", params["depth"], phase))
        return params

    # ------------------------------------------------------------------
    # Parallel phase execution
    # ------------------------------------------------------------------
    def _execute_phase(self, phase: str, task: Task, fp: Fingerprint, deadline: Deadline) -> PhaseOutcome:
        count = self.branches_for(phase)
        cancel = CancelToken()
        outcomes: List[PhaseOutcome] = []
        winner: Optional[PhaseOutcome] = None

        with ThreadPoolExecutor(max_workers=count, thread_name_prefix=f"arc-{phase}") as pool:
            pending = {
                pool.submit(self.run_phase, phase, task, fp, deadline, branch, cancel)
                for branch in range(count)
            }
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    outcome = future.result()
                    outcomes.append(outcome)
                    if outcome.solved and winner is None:
                        winner = outcome
                        cancel.cancel()

        with self._stats_lock:
            self.stats["total_branches"] += count
            self.stats["successful_branches"] += sum(1 for o in outcomes if o.solved)
        self.collect_feedback(phase, outcomes)

        if winner is not None:
            winner.steps = sum(o.steps for o in outcomes)
            return winner
        merged = max(outcomes, key=lambda o: o.score)
        merged.steps = sum(o.steps for o in outcomes)
        reasons = [o.stop_reason for o in outcomes if o.stop_reason]
        merged.stop_reason = "timeout" if "timeout" in reasons else ("limit" if "limit" in reasons else None)
        near = [o.near_miss for o in outcomes if o.near_miss is not None and o is not merged]
        for pipeline, report in near:
            self._remember_near_miss(fp, pipeline, report)
        return merged


__all__ = ["BranchingSolver", "PhaseHistory"]
