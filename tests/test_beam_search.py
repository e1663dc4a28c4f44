"""Tests for the hybrid beam + depth-first search."""

from __future__ import annotations

import json
import sys
from pathlib import Path

# Ensure project root on path for direct test execution
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st
import hypothesis.extra.numpy as hnp

from arc_search.beam_search import (
    CancelledEvent,
    ExhaustedEvent,
    HybridSearch,
    LimitEvent,
    ProgressEvent,
    TimeoutEvent,
    WinEvent,
    run_search,
)
from arc_search.budget import BudgetError, CancelToken, SearchBudget
from arc_search.convergence import GreedyConverger
from arc_search.dsl import apply_program
from arc_search.features import compute_fingerprint
from arc_search.grid import to_array
from arc_search.memory import MemoryStore


def budget(depth=2, steps=20000, seconds=10.0) -> SearchBudget:
    return SearchBudget(max_depth=depth, max_steps=steps, time_limit=seconds)


def test_search_finds_rotation():
    inp = to_array([[1, 2], [3, 4]])
    out = np.rot90(inp, -1)
    event = run_search([(inp, out)], budget(), beam_width=5)
    assert isinstance(event, WinEvent)
    assert np.array_equal(apply_program(inp, event.pipeline), out)
    assert event.depth == 1


@settings(max_examples=10, deadline=None)
@given(
    grid=hnp.arrays(dtype=np.int16, shape=(3, 3), elements=st.integers(0, 9)),
    k=st.integers(1, 3),
)
def test_search_rotation_property(grid, k):
    out = np.rot90(grid, -k)
    event = run_search([(grid, out)], budget(depth=1), beam_width=5)
    assert isinstance(event, WinEvent)
    assert np.array_equal(apply_program(grid, event.pipeline), out)


def test_exactly_one_terminal_event_and_it_is_last():
    pairs = [(to_array([[1, 2], [3, 4]]), to_array([[5, 6, 7]]))]
    search = HybridSearch(budget(depth=1, steps=300), beam_width=2, check_interval=50)
    events = list(search.search(pairs))
    terminals = [e for e in events if e.terminal]
    assert len(terminals) == 1
    assert events[-1] is terminals[0]
    assert isinstance(terminals[0], (LimitEvent, ExhaustedEvent))


def test_step_limit_produces_limit_event():
    pairs = [(to_array([[1, 2], [3, 4]]), to_array([[5, 6, 7]]))]
    search = HybridSearch(budget(depth=3, steps=100), beam_width=3)
    event = list(search.search(pairs))[-1]
    assert isinstance(event, LimitEvent)
    assert event.kind == "limit"
    assert search.steps == 100


def test_timeout_event():
    pairs = [(to_array([[1, 2], [3, 4]]), to_array([[5, 6, 7]]))]
    event = run_search(pairs, budget(depth=4, steps=10 ** 7, seconds=1e-6), beam_width=4, check_interval=10)
    assert isinstance(event, TimeoutEvent)


def test_cancelled_search():
    token = CancelToken()
    token.cancel()
    pairs = [(to_array([[1, 2]]), to_array([[2, 1]]))]
    event = run_search(pairs, budget(), beam_width=2, cancel=token)
    assert isinstance(event, CancelledEvent)


def test_missing_budget_or_beam_width_raises():
    with pytest.raises(BudgetError):
        HybridSearch(None, beam_width=2)
    with pytest.raises(BudgetError):
        HybridSearch(budget(), beam_width=0)


def test_already_solved_task_wins_with_empty_pipeline():
    grid = to_array([[1, 2]])
    event = run_search([(grid, grid)], budget(), beam_width=2)
    assert isinstance(event, WinEvent)
    assert event.pipeline == []


def test_memory_seed_wins_without_expansion():
    pairs = [(to_array([[1, 2], [3, 4]]), to_array([[3, 1], [4, 2]]))]
    store = MemoryStore()
    store.distill(compute_fingerprint(pairs), [("rotate", {"k": 1})], source="chain")
    search = HybridSearch(budget(), beam_width=4, memory=store)
    event = list(search.search(pairs))[-1]
    assert isinstance(event, WinEvent)
    assert event.phase == "memory"
    assert search.steps == 1


def test_progress_and_checkpoint(tmp_path):
    pairs = [(to_array([[1, 2], [3, 4]]), to_array([[5, 6, 7]]))]
    search = HybridSearch(budget(depth=2, steps=250), beam_width=2, check_interval=100, checkpoint_dir=tmp_path)
    events = list(search.search(pairs))
    progress = [e for e in events if isinstance(e, ProgressEvent)]
    assert len(progress) == 2
    data = json.loads((tmp_path / "checkpoint.json").read_text(encoding="utf-8"))
    assert data["steps"] == 200
    assert search.last_checkpoint == data


def test_win_is_offered_to_converger():
    inp = to_array([[1, 1], [0, 0]])
    out = to_array([[0, 0], [1, 1]])
    event = run_search([(inp, out)], budget(), beam_width=3, converger=GreedyConverger())
    assert isinstance(event, WinEvent)
    assert event.stabilized


def test_best_tracks_highest_accuracy():
    pairs = [(to_array([[1, 2], [3, 4]]), to_array([[9, 2], [3, 5]]))]
    search = HybridSearch(budget(depth=1, steps=5000), beam_width=2)
    list(search.search(pairs))
    assert search.best is not None
    assert search.best[1].cell_accuracy > 0


def test_checkpoint_name_and_no_temp_files_left(tmp_path):
    pairs = [(to_array([[1, 2], [3, 4]]), to_array([[5, 6, 7]]))]
    search = HybridSearch(
        budget(depth=2, steps=120),
        beam_width=2,
        check_interval=40,
        checkpoint_dir=tmp_path,
        checkpoint_name="checkpoint-hybrid-b1.json",
    )
    list(search.search(pairs))
    assert [p.name for p in tmp_path.iterdir()] == ["checkpoint-hybrid-b1.json"]
    data = json.loads((tmp_path / "checkpoint-hybrid-b1.json").read_text(encoding="utf-8"))
    assert data["steps"] == 120


def test_depth_first_continuation_finds_deeper_pipeline():
    inp = to_array([[1, 2], [3, 4]])
    out = apply_program(inp, [("rotate", {"k": 1}), ("recolor", {"mapping": {1: 7}})])
    search = HybridSearch(budget(depth=1, steps=100000, seconds=30.0), beam_width=2)
    event = list(search.search([(inp, out)]))[-1]
    assert isinstance(event, WinEvent)
    assert event.phase == "dfs"
    assert 1 < event.depth <= 2
    assert np.array_equal(apply_program(inp, event.pipeline), out)
