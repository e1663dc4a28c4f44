"""Solver configuration with validated defaults and environment overrides."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

from .budget import SearchBudget

ENV_PREFIX = "ARC_SEARCH_"


@dataclass(frozen=True)
class SolverConfig:
    """Tunable bounds for the escalation cascade.

    Every search phase gets its own depth, step and time limits; the overall
    ``time_limit`` additionally caps the whole solve call.
    """

    time_limit: float = 60.0

    # memory
    memory_path: Optional[str] = None
    max_entries: int = 500
    similarity_threshold: float = 0.75
    max_heuristics: int = 1000
    recency_decay_days: float = 1.0
    memory_candidates: int = 5

    # local chain search
    chain_depth: int = 3
    chain_max_candidates: int = 20000
    chain_time_limit: float = 10.0

    # convergence
    converge_iterations: int = 8
    converge_candidates: int = 0  # 0 means every registered primitive

    # hybrid search
    hybrid_depth: int = 4
    beam_width: int = 8
    hybrid_max_steps: int = 50000
    hybrid_time_limit: float = 30.0
    check_interval: int = 1000
    checkpoint_dir: Optional[str] = None

    near_miss_threshold: float = 0.8

    # adaptive branching
    max_branches: int = 4
    initial_branch_factor: int = 2
    low_score: float = 0.2
    high_score: float = 0.7
    ema_alpha: float = 0.3

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        positive = (
            "time_limit", "max_entries", "max_heuristics", "recency_decay_days",
            "memory_candidates", "chain_depth", "chain_max_candidates",
            "chain_time_limit", "converge_iterations", "hybrid_depth", "beam_width",
            "hybrid_max_steps", "hybrid_time_limit", "check_interval",
            "max_branches", "initial_branch_factor",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)!r}")
        if self.converge_candidates < 0:
            raise ValueError("converge_candidates must be >= 0")
        for name in ("similarity_threshold", "near_miss_threshold", "low_score", "high_score", "ema_alpha"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must lie in [0, 1], got {value!r}")
        if self.low_score >= self.high_score:
            raise ValueError("low_score must be below high_score")
        if self.initial_branch_factor > self.max_branches:
            raise ValueError("initial_branch_factor cannot exceed max_branches")

    def chain_budget(self, time_limit: Optional[float] = None) -> SearchBudget:
        return SearchBudget(
            max_depth=self.chain_depth,
            max_steps=self.chain_max_candidates,
            time_limit=time_limit if time_limit is not None else self.chain_time_limit,
        )

    def hybrid_budget(self, time_limit: Optional[float] = None) -> SearchBudget:
        return SearchBudget(
            max_depth=self.hybrid_depth,
            max_steps=self.hybrid_max_steps,
            time_limit=time_limit if time_limit is not None else self.hybrid_time_limit,
        )

    @property
    def checkpoint_path(self) -> Optional[str]:
        """Where hybrid checkpoints go: ``checkpoint_dir``, else ``<memory_path>/checkpoints``."""
        if self.checkpoint_dir is not None:
            return self.checkpoint_dir
        if self.memory_path is not None:
            return os.path.join(self.memory_path, "checkpoints")
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SolverConfig":
        """Defaults overridden by ``ARC_SEARCH_<FIELD>`` environment variables."""
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None:
                overrides[f.name] = raw
        return build_config(overrides)


def _coerce(name: str, default: Any, value: Any) -> Any:
    if isinstance(value, str):
        if name in ("memory_path", "checkpoint_dir"):
            return value or None
        if isinstance(default, bool):
            return value.lower() in {"1", "true", "yes"}
        if isinstance(default, int):
            try:
                return int(value)
            except ValueError as exc:
                raise ValueError(f"{name} expects an integer, got {value!r}") from exc
        if isinstance(default, float):
            try:
                return float(value)
            except ValueError as exc:
                raise ValueError(f"{name} expects a number, got {value!r}") from exc
    return value


def build_config(
    overrides: Optional[Mapping[str, Any]] = None,
    base: Optional[SolverConfig] = None,
) -> SolverConfig:
    """Return :class:`SolverConfig` merged with optional overrides.

    Raises
    ------
    ValueError
        For an unknown key or a value that fails validation.
    """
    base = base or SolverConfig()
    if not overrides:
        return base
    known = {f.name: getattr(base, f.name) for f in fields(SolverConfig)}
    params: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in known:
            raise ValueError(f"unknown configuration key {key!r}")
        params[key] = _coerce(key, known[key], value)
    return replace(base, **params)


__all__ = ["ENV_PREFIX", "SolverConfig", "build_config"]
