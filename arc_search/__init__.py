"""ARC program search package.

This package exposes the escalation solvers alongside the primitive registry,
task I/O and the persistent pipeline memory. A solve call tries recalled
pipelines first, then local chain search, convergence and finally a bounded
beam + depth-first search.
"""

from .branching import BranchingSolver
from .config import SolverConfig, build_config
from .grid import Array
from .io_utils import load_task, load_tasks, save_results
from .memory import MemoryStore
from .solver import EscalationSolver
from .types import SolveResult, Task

__all__ = [
    "EscalationSolver",
    "BranchingSolver",
    "SolverConfig",
    "build_config",
    "MemoryStore",
    "Task",
    "SolveResult",
    "load_task",
    "load_tasks",
    "save_results",
    "Array",
]
