"""Tests for the convergence collaborator."""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure project root on path for direct test execution
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np

from arc_search.convergence import (
    GreedyConverger,
    composite_score,
    converge,
    pipeline_candidate,
    primitive_candidates,
    score_diagonal,
    score_symmetry,
)
from arc_search.grid import to_array


def test_scores() -> None:
    a = to_array([[1, 2], [3, 4]])
    assert score_symmetry(a, np.fliplr(a)) == 0.5
    assert score_symmetry(a, np.rot90(a, -1)) == 0.3
    assert score_diagonal(a, a.T) == 0.4
    assert composite_score(a, a) > composite_score(a, np.fliplr(a))


def test_converge_stops_when_nothing_applies() -> None:
    a = to_array([[1, 2]])
    out = converge(a, [("never", lambda g: None)], max_iterations=5)
    assert np.array_equal(out, a)


def test_converge_respects_iteration_cap() -> None:
    calls = []

    def bump(g):
        calls.append(1)
        return to_array(np.minimum(g + 1, 9))

    out = GreedyConverger().converge(to_array([[0]]), [("bump", bump)], max_iterations=3)
    assert out.tolist() == [[3]]
    assert len(calls) == 3


def test_pipeline_candidate_applies_whole_pipeline() -> None:
    name, fn = pipeline_candidate([("rotate", {"k": 1}), ("rotate", {"k": 1})])
    assert name == "rotate_rotate"
    a = to_array([[1, 2]])
    assert fn(a).tolist() == [[2, 1]]


def test_primitive_candidates_window() -> None:
    everything = primitive_candidates()
    assert all(name != "identity" for name, _ in everything)
    window = primitive_candidates(limit=3, offset=2)
    assert [n for n, _ in window] == [n for n, _ in everything[2:5]]
