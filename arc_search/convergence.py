"""
Convergence collaborator.

A converger takes a grid and a list of named candidate transformations and
repeatedly applies them until the grid settles. The searches use it in two
places: the escalation cascade tries it as a phase of its own, and the hybrid
search offers every matching pipeline to it before declaring a win.

Any object with a ``converge(grid, candidates, max_iterations)`` method can
play the part. :class:`GreedyConverger` is the reference implementation: each
cycle it applies the candidate whose output scores highest against the
current grid under a composite of cell agreement, symmetry and diagonal
structure.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from .dsl import OPS, Pipeline, apply_op, apply_program, parameter_grid
from .grid import Array, eq

logger = logging.getLogger(__name__)

Candidate = Tuple[str, Callable[[Array], Optional[Array]]]


class Converger(Protocol):
    def converge(
        self, grid: Array, candidates: Sequence[Candidate], max_iterations: int
    ) -> Optional[Array]:
        ...


def score_mapping(a: Array, b: Array) -> float:
    """Fraction of equal cells; 0 for different shapes."""
    if a.shape != b.shape:
        return 0.0
    return float(np.count_nonzero(a == b)) / a.size


def score_symmetry(a: Array, b: Array) -> float:
    """Bonus when ``b`` mirrors (0.5) and/or rotates (0.3) ``a``."""
    s = 0.0
    if a.shape == b.shape and (np.array_equal(np.fliplr(a), b) or np.array_equal(np.flipud(a), b)):
        s += 0.5
    rotated = (a.shape[::-1] == b.shape and np.array_equal(np.rot90(a, -1), b)) or (
        a.shape == b.shape and np.array_equal(np.rot90(a, 2), b)
    )
    if rotated:
        s += 0.3
    return s


def score_diagonal(a: Array, b: Array) -> float:
    """Bonus (0.4) when diagonals are mostly preserved or ``b`` is ``a`` transposed."""
    if a.shape != b.shape:
        return 0.0
    n = min(a.shape)
    main = np.count_nonzero(np.diagonal(a) == np.diagonal(b))
    anti = np.count_nonzero(np.diagonal(np.fliplr(a)) == np.diagonal(np.fliplr(b)))
    transposed = a.shape[0] == a.shape[1] and np.array_equal(a.T, b)
    if main >= 0.8 * n or anti >= 0.8 * n or transposed:
        return 0.4
    return 0.0


def composite_score(original: Array, transformed: Array) -> float:
    return (
        score_mapping(original, transformed)
        + score_symmetry(original, transformed)
        + score_diagonal(original, transformed)
    )


class GreedyConverger:
    """Apply the best-scoring candidate until the grid stops changing."""

    def converge(
        self, grid: Array, candidates: Sequence[Candidate], max_iterations: int = 8
    ) -> Optional[Array]:
        current = grid
        for iteration in range(max_iterations):
            best: Optional[Array] = None
            best_score = -1.0
            for _, fn in candidates:
                out = fn(current)
                if out is None or eq(out, current):
                    continue
                score = composite_score(current, out)
                if score > best_score:
                    best, best_score = out, score
            if best is None:
                logger.debug("convergence settled", extra={"iterations": iteration})
                break
            current = best
        return current


_default = GreedyConverger()


def converge(grid: Array, candidates: Sequence[Candidate], max_iterations: int = 8) -> Optional[Array]:
    """Module-level shortcut for :class:`GreedyConverger`."""
    return _default.converge(grid, candidates, max_iterations)


def primitive_candidates(limit: Optional[int] = None, offset: int = 0) -> List[Candidate]:
    """One candidate per registered primitive using its first parameter set.

    ``offset`` and ``limit`` select a window of the registry, which lets
    parallel branches try different candidate subsets.
    """
    cands: List[Candidate] = []
    for name in OPS:
        if name == "identity":
            continue
        params = parameter_grid(name)[0]
        cands.append((name, lambda g, n=name, p=params: apply_op(g, n, p)))
    cands = cands[offset:]
    return cands[:limit] if limit else cands


def pipeline_candidate(pipeline: Pipeline) -> Candidate:
    """Wrap a whole pipeline as a single candidate."""
    name = "_".join(step[0] for step in pipeline) or "identity"
    return name, lambda g: apply_program(g, pipeline)


__all__ = [
    "Candidate",
    "Converger",
    "GreedyConverger",
    "converge",
    "composite_score",
    "score_mapping",
    "score_symmetry",
    "score_diagonal",
    "primitive_candidates",
    "pipeline_candidate",
]
