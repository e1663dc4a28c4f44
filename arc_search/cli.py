"""Batch harness: solve a directory of ARC tasks and report the results."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

from .branching import BranchingSolver
from .config import SolverConfig, build_config
from .grid import eq
from .io_utils import load_tasks, save_results
from .solver import EscalationSolver
from .types import SolveResult, Task


def score_test_outputs(task: Task, result: SolveResult) -> Optional[bool]:
    """True/False when every expected test output is known, else ``None``."""
    if not task.test_outputs or any(o is None for o in task.test_outputs):
        return None
    if len(result.outputs) != len(task.test_outputs):
        return False
    return all(eq(pred, gold) for pred, gold in zip(result.outputs, task.test_outputs))


def run_batch(
    solver: EscalationSolver, tasks: Sequence[Task], time_limit: Optional[float] = None
) -> Dict[str, Any]:
    """Solve ``tasks`` in order and collect a JSON-ready summary."""
    per_task: Dict[str, Any] = {}
    passed = failed = correct = scored = 0
    for task in tasks:
        result = solver.solve(task, time_limit)
        entry = result.to_dict()
        verdict = score_test_outputs(task, result)
        entry["test_correct"] = verdict
        per_task[task.task_id] = entry
        if result.ok:
            passed += 1
        else:
            failed += 1
        if verdict is not None:
            scored += 1
            correct += int(verdict)
    return {
        "passed": passed,
        "failed": failed,
        "test_scored": scored,
        "test_correct": correct,
        "test_accuracy": correct / scored if scored else None,
        "tasks": per_task,
        "stats": dict(solver.stats),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Solve ARC tasks by program search")
    parser.add_argument("tasks", help="Directory of task JSON files")
    parser.add_argument("--time-limit", type=float, default=None, help="Seconds per task")
    parser.add_argument("--memory", default=None, help="Directory for persisted memory")
    parser.add_argument("--output", default=None, help="Write per-task results to this JSON file")
    parser.add_argument("--branching", action="store_true", help="Use the adaptive branching solver")
    parser.add_argument("--checkpoint-dir", default=None, help="Directory for hybrid search checkpoints")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides: Dict[str, Any] = {}
    if args.time_limit is not None:
        overrides["time_limit"] = args.time_limit
    if args.memory is not None:
        overrides["memory_path"] = args.memory
    if args.checkpoint_dir is not None:
        overrides["checkpoint_dir"] = args.checkpoint_dir
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    try:
        config = build_config(overrides, base=SolverConfig.from_env())
        tasks = load_tasks(args.tasks)
    except (ValueError, FileNotFoundError) as exc:
        parser.error(str(exc))

    logging.basicConfig(level=config.log_level.upper(), format='%(asctime)s %(name)s %(levelname)s: %(message)s')
    solver_cls = BranchingSolver if args.branching else EscalationSolver
    solver = solver_cls(config)

    summary = run_batch(solver, tasks, config.time_limit)
    print(f"passed {summary['passed']} / {len(tasks)}, failed {summary['failed']}")
    if summary["test_scored"]:
        print(f"test accuracy {summary['test_correct']}/{summary['test_scored']} ({summary['test_accuracy']:.1%})")
    if args.output:
        path = save_results(summary, args.output)
        print(f"results written to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
