"""
Input/output helpers for ARC task documents and solve results.

Tasks are read from individual ``<task_id>.json`` files holding ``train`` and
``test`` pair lists, or from a combined file keyed by task id. Results are
written as a single JSON document.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Union

from .types import Task

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def load_task(path: PathLike) -> Task:
    """Load one task document; the file stem becomes the task id."""
    path = Path(path)
    with open(path, "r") as f:
        data = json.load(f)
    if not isinstance(data, dict) or "train" not in data:
        raise ValueError(f"{path} is not an ARC task document")
    return Task.from_dict(data, task_id=path.stem)


def load_tasks(directory: PathLike) -> List[Task]:
    """Load every task under ``directory`` in file-name order.

    A file keyed by task id (the combined challenge format) expands into one
    task per key. Unreadable files are skipped with a warning.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"task directory not found: {directory}")
    tasks: List[Task] = []
    for path in sorted(directory.glob("*.json")):
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("skipping unreadable task file", extra={"path": str(path), "error": str(exc)})
            continue
        if isinstance(data, dict) and "train" in data:
            docs = [(path.stem, data)]
        elif isinstance(data, dict):
            docs = [(task_id, doc) for task_id, doc in sorted(data.items()) if isinstance(doc, dict) and "train" in doc]
        else:
            logger.warning("skipping non-task file", extra={"path": str(path)})
            continue
        for task_id, doc in docs:
            try:
                tasks.append(Task.from_dict(doc, task_id=task_id))
            except (TypeError, ValueError) as exc:
                logger.warning(
                    "skipping malformed task",
                    extra={"path": str(path), "task_id": task_id, "error": str(exc)},
                )
    return tasks


def save_results(obj: Dict[str, Any], out_path: PathLike = "results.json") -> str:
    """Write the results object to a JSON file.

    Returns the path to the written file for convenience.
    """
    out_path = str(out_path)
    tmp = out_path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(obj, f, indent=2)
    os.replace(tmp, out_path)
    return out_path


__all__ = ["load_task", "load_tasks", "save_results"]
