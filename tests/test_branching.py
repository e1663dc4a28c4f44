"""Tests for the adaptive branching solver."""

from __future__ import annotations

import json
import sys
from pathlib import Path

# Ensure project root on path for direct test execution
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from arc_search.branching import BranchingSolver
from arc_search.config import build_config
from arc_search.grid import to_array
from arc_search.solver import PhaseOutcome
from arc_search.types import Task


def outcomes(*scores, solved=False):
    return [PhaseOutcome("chain", solved=solved, score=s) for s in scores]


def test_low_feedback_grows_branch_factor():
    solver = BranchingSolver(build_config({"initial_branch_factor": 2, "max_branches": 3}))
    solver.collect_feedback("chain", outcomes(0.0, 0.1))
    assert solver.branch_factor == 3
    solver.collect_feedback("chain", outcomes(0.0))
    assert solver.branch_factor == 3


def test_high_feedback_shrinks_branch_factor():
    solver = BranchingSolver(build_config({"initial_branch_factor": 2}))
    solver.collect_feedback("hybrid", outcomes(0.9, 1.0))
    assert solver.branch_factor == 1
    solver.collect_feedback("hybrid", outcomes(1.0))
    assert solver.branch_factor == 1


def test_middling_feedback_keeps_branch_factor():
    solver = BranchingSolver()
    before = solver.branch_factor
    avg = solver.collect_feedback("chain", outcomes(0.4, 0.6))
    assert avg == pytest.approx(0.5)
    assert solver.branch_factor == before


def test_phase_history_uses_moving_average():
    solver = BranchingSolver(build_config({"ema_alpha": 0.3}))
    solver.collect_feedback("memory", outcomes(1.0, solved=True))
    history = solver.phase_history["memory"]
    assert history.runs == 1
    assert history.successes == 1
    assert history.avg_score == pytest.approx(0.7 * 0.5 + 0.3 * 1.0)


def test_adapt_parameter_needs_history():
    solver = BranchingSolver()
    assert solver.adapt_parameter("beam_width", 8, "hybrid") == 8
    solver.collect_feedback("hybrid", outcomes(0.0))
    assert solver.adapt_parameter("beam_width", 8, "hybrid") == 8


def test_adapt_parameter_for_struggling_phase():
    solver = BranchingSolver(build_config({"max_branches": 6, "initial_branch_factor": 1}))
    for _ in range(3):
        solver.collect_feedback("hybrid", outcomes(0.0))
    assert solver.adapt_parameter("branch_factor", 1, "hybrid") == 3
    assert solver.adapt_parameter("beam_width", 8, "hybrid") == pytest.approx(12)
    assert solver.adapt_parameter("beam_width", 40, "hybrid") == 50
    assert solver.adapt_parameter("max_depth", 4, "hybrid") == 6
    assert solver.adapt_parameter("unknown", 7, "hybrid") == 7


def test_adapt_parameter_for_successful_phase():
    solver = BranchingSolver()
    for _ in range(3):
        solver.collect_feedback("memory", outcomes(1.0, solved=True))
    assert solver.adapt_parameter("branch_factor", 3, "memory") == 2
    assert solver.adapt_parameter("beam_width", 8, "memory") == 8


def test_branch_parameters_vary_by_index():
    solver = BranchingSolver()
    zero = solver.branch_params("hybrid", 0)
    two = solver.branch_params("hybrid", 2)
    assert zero["depth"] == solver.config.hybrid_depth
    assert two["depth"] == zero["depth"] + 2
    assert two["beam_width"] > zero["beam_width"]
    assert solver.branch_params("chain", 1)["order"] == "dfs"
    assert solver.branch_params("memory", 1)["offset"] == solver.config.memory_candidates


def test_branching_solver_solves_colour_remap():
    task = Task(
        train=[
            (to_array([[1, 0], [0, 1]]), to_array([[2, 0], [0, 2]])),
            (to_array([[1, 1], [0, 0]]), to_array([[2, 2], [0, 0]])),
        ],
        test_inputs=[to_array([[0, 1], [1, 0]])],
    )
    solver = BranchingSolver()
    result = solver.solve(task)
    assert result.ok
    assert result.outputs[0].tolist() == [[0, 2], [2, 0]]
    assert solver.stats["generation"] == 1
    assert solver.stats["total_branches"] >= 2
    assert solver.stats["successful_branches"] >= 1


def test_parallel_hybrid_branches_write_separate_checkpoints(tmp_path, caplog):
    config = build_config(
        {
            "checkpoint_dir": str(tmp_path),
            "initial_branch_factor": 3,
            "max_branches": 3,
            "chain_depth": 1,
            "chain_max_candidates": 50,
            "converge_candidates": 1,
            "converge_iterations": 1,
            "hybrid_depth": 1,
            "beam_width": 2,
            "hybrid_max_steps": 200,
            "check_interval": 5,
        }
    )
    solver = BranchingSolver(config)
    names = {solver.branch_params("hybrid", b)["checkpoint_name"] for b in range(3)}
    assert len(names) == 3

    task = Task(train=[(to_array([[1, 2], [3, 4]]), to_array([[5, 6, 7]]))])
    with caplog.at_level("WARNING"):
        result = solver.solve(task, time_limit=30)
    assert not result.ok
    assert not [r for r in caplog.records if r.getMessage() == "checkpoint write failed"]
    written = sorted(p.name for p in tmp_path.iterdir())
    assert "checkpoint-hybrid-b0.json" in written
    assert all(name.startswith("checkpoint-hybrid-b") for name in written)
    for name in written:
        data = json.loads((tmp_path / name).read_text(encoding="utf-8"))
        assert data["steps"] % 5 == 0
