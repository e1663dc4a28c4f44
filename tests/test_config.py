"""Tests for solver configuration and budgets."""

from __future__ import annotations

import os
import sys
from pathlib import Path

# Ensure project root on path for direct test execution
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from arc_search.budget import BudgetError, Deadline, SearchBudget
from arc_search.config import SolverConfig, build_config


def test_defaults_are_valid():
    config = SolverConfig()
    assert config.chain_budget().max_depth == config.chain_depth
    assert config.hybrid_budget(time_limit=2.0).time_limit == 2.0
    assert config.to_dict()["beam_width"] == config.beam_width


def test_build_config_merges_and_coerces():
    config = build_config({"beam_width": "12", "time_limit": "3.5", "memory_path": ""})
    assert config.beam_width == 12
    assert config.time_limit == 3.5
    assert config.memory_path is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"no_such_key": 1},
        {"beam_width": 0},
        {"beam_width": "wide"},
        {"similarity_threshold": 1.5},
        {"low_score": 0.8, "high_score": 0.7},
        {"initial_branch_factor": 9, "max_branches": 4},
    ],
)
def test_invalid_configuration_raises(overrides):
    with pytest.raises(ValueError):
        build_config(overrides)


def test_from_env_reads_prefixed_variables():
    config = SolverConfig.from_env({"ARC_SEARCH_CHAIN_DEPTH": "2", "ARC_SEARCH_LOG_LEVEL": "DEBUG", "OTHER": "x"})
    assert config.chain_depth == 2
    assert config.log_level == "DEBUG"


def test_budget_validation():
    with pytest.raises(BudgetError):
        SearchBudget(max_depth=2, max_steps=None, time_limit=1.0)
    with pytest.raises(BudgetError):
        SearchBudget(max_depth=2.5, max_steps=10, time_limit=1.0)
    assert SearchBudget(2, 10, 1.0).scaled(max_steps=5).max_steps == 5


def test_deadline_with_fake_clock():
    now = [0.0]
    deadline = Deadline(2.0, clock=lambda: now[0])
    assert not deadline.expired()
    now[0] = 1.5
    assert deadline.remaining == pytest.approx(0.5)
    now[0] = 2.0
    assert deadline.expired()


def test_checkpoint_path_defaults_under_memory(tmp_path):
    assert SolverConfig().checkpoint_path is None
    memory_only = build_config({"memory_path": str(tmp_path)})
    assert memory_only.checkpoint_path == os.path.join(str(tmp_path), "checkpoints")
    explicit = build_config({"memory_path": str(tmp_path), "checkpoint_dir": str(tmp_path / "ck")})
    assert explicit.checkpoint_path == str(tmp_path / "ck")
