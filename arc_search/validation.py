"""
Validation oracle for candidate pipelines.

A pipeline solves a task only when it reproduces every training output
exactly. Besides the strict yes/no check this module computes partial scores
(cell accuracy) that the searches use to rank candidates they keep exploring.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .grid import Array, eq
from .dsl import Pipeline, apply_program

logger = logging.getLogger(__name__)

TrainPairs = Sequence[Tuple[Array, Array]]

DEFAULT_NEAR_MISS = 0.8

__all__ = [
    "ScoreReport",
    "TrainPairs",
    "DEFAULT_NEAR_MISS",
    "validate",
    "cell_accuracy",
    "score_outputs",
    "score_pipeline",
    "is_near_miss",
]


@dataclass(frozen=True)
class ScoreReport:
    """Partial-credit result of running a pipeline over the training pairs."""

    exact_pairs: int
    cell_accuracy: float
    pair_count: int

    @property
    def solved(self) -> bool:
        return self.pair_count > 0 and self.exact_pairs == self.pair_count

    @property
    def pair_ratio(self) -> float:
        return self.exact_pairs / self.pair_count if self.pair_count else 0.0


def validate(pipeline: Pipeline, train_pairs: TrainPairs) -> bool:
    """Return True iff ``pipeline`` maps every training input onto its output.

    Stops at the first pair that fails. An empty list of pairs never
    validates.
    """
    if not train_pairs:
        return False
    for inp, expected in train_pairs:
        if not eq(apply_program(inp, pipeline), expected):
            return False
    return True


def cell_accuracy(out: Optional[Array], expected: Array) -> float:
    """Fraction of matching cells; 0 for ``None`` or a shape mismatch."""
    if out is None or out.shape != expected.shape:
        return 0.0
    return float(np.count_nonzero(out == expected)) / expected.size


def score_outputs(outputs: Sequence[Optional[Array]], train_pairs: TrainPairs) -> ScoreReport:
    """Score already-computed outputs against the expected training outputs."""
    exact = 0
    accs: List[float] = []
    for out, (_, expected) in zip(outputs, train_pairs):
        exact += int(eq(out, expected))
        accs.append(cell_accuracy(out, expected))
    mean = float(np.mean(accs)) if accs else 0.0
    return ScoreReport(exact_pairs=exact, cell_accuracy=mean, pair_count=len(train_pairs))


def score_pipeline(pipeline: Pipeline, train_pairs: TrainPairs) -> ScoreReport:
    """Run ``pipeline`` over every pair (no short circuit) and score it."""
    outputs = [apply_program(inp, pipeline) for inp, _ in train_pairs]
    return score_outputs(outputs, train_pairs)


def is_near_miss(report: ScoreReport, threshold: float = DEFAULT_NEAR_MISS) -> bool:
    """High accuracy without an exact solution."""
    return not report.solved and report.cell_accuracy >= threshold
