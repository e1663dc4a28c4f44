"""Task and result records shared by the orchestrators, I/O and CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .dsl import Pipeline, pipeline_to_json
from .grid import Array, to_array, to_list

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_FAIL = "fail"
STATUS_TIMEOUT = "timeout"
STATUS_LIMIT = "limit"
STATUSES = (STATUS_OK, STATUS_FAIL, STATUS_TIMEOUT, STATUS_LIMIT)


def _pair_list(data: Dict[str, Any], key: str, task_id: str) -> List[Any]:
    pairs = data.get(key, [])
    if isinstance(pairs, list):
        return pairs
    logger.warning("ignoring non-list %s section", key, extra={"task_id": task_id})
    return []


@dataclass
class Task:
    """Training pairs plus test inputs (and expected outputs when known)."""

    train: List[Tuple[Array, Array]]
    test_inputs: List[Array] = field(default_factory=list)
    test_outputs: List[Optional[Array]] = field(default_factory=list)
    task_id: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], task_id: str = "") -> "Task":
        """Build a task from an ARC task document.

        Pairs whose grids fail validation are skipped with a warning, and a
        ``train`` or ``test`` entry that is not a list counts as empty.
        """
        train: List[Tuple[Array, Array]] = []
        for idx, pair in enumerate(_pair_list(data, "train", task_id)):
            try:
                train.append((to_array(pair["input"]), to_array(pair["output"])))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "skipping malformed train pair",
                    extra={"task_id": task_id, "index": idx, "error": str(exc)},
                )
        test_inputs: List[Array] = []
        test_outputs: List[Optional[Array]] = []
        for idx, pair in enumerate(_pair_list(data, "test", task_id)):
            try:
                inp = to_array(pair["input"])
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "skipping malformed test input",
                    extra={"task_id": task_id, "index": idx, "error": str(exc)},
                )
                continue
            expected: Optional[Array] = None
            if "output" in pair:
                try:
                    expected = to_array(pair["output"])
                except (TypeError, ValueError):
                    expected = None
            test_inputs.append(inp)
            test_outputs.append(expected)
        return cls(train=train, test_inputs=test_inputs, test_outputs=test_outputs, task_id=task_id)


@dataclass
class SolveResult:
    """Outcome of one solve call."""

    status: str
    method: Optional[str] = None
    pipeline: Optional[Pipeline] = None
    outputs: List[Optional[Array]] = field(default_factory=list)
    duration: float = 0.0
    steps: int = 0
    detail: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.status not in STATUSES:
            raise ValueError(f"unknown status {self.status!r}")

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "method": self.method,
            "pipeline": pipeline_to_json(self.pipeline) if self.pipeline is not None else None,
            "outputs": [to_list(o) if o is not None else None for o in self.outputs],
            "duration": round(self.duration, 4),
            "steps": self.steps,
            "detail": self.detail,
        }


__all__ = [
    "Task",
    "SolveResult",
    "STATUS_OK",
    "STATUS_FAIL",
    "STATUS_TIMEOUT",
    "STATUS_LIMIT",
    "STATUSES",
]
