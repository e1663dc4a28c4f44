"""Canonicalisation utilities for pipelines.

Different pipelines frequently compute the same function: two quarter turns
equal one half turn, a flip followed by the same flip is the identity, and so
on. This module rewrites a pipeline into a shorter equivalent form so that
memory stores one representative per strategy and search does not revisit
trivially equivalent programs.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from .dsl import Pipeline, Step

# Steps that undo themselves when applied twice in a row.
INVOLUTIONS = frozenset({"flip", "transpose", "flip_diagonal", "swap_colors"})


def _step_key(step: Step) -> Tuple[str, Tuple[Tuple[str, Any], ...]]:
    name, params = step
    items = []
    for k, v in sorted(params.items()):
        if isinstance(v, dict):
            v = tuple(sorted(v.items()))
        items.append((k, v))
    return name, tuple(items)


def _swap_pair(params: Dict[str, Any]) -> Optional[frozenset]:
    if "a" not in params or "b" not in params:
        return None
    return frozenset((params["a"], params["b"]))


def _cancels(prev: Step, step: Step) -> bool:
    """True when ``step`` immediately undoes ``prev``."""
    if prev[0] != step[0] or step[0] not in INVOLUTIONS:
        return False
    if step[0] == "swap_colors":
        pair = _swap_pair(step[1])
        return pair is not None and pair == _swap_pair(prev[1])
    return _step_key(prev) == _step_key(step)


def _is_quarter(step: Step) -> bool:
    return step[0] == "rotate" and step[1].get("k") in (0, 1, 2, 3)


def _is_noop(step: Step) -> bool:
    if step[0] == "identity":
        return True
    return _is_quarter(step) and step[1]["k"] % 4 == 0


def canonicalize_pipeline(pipeline: Pipeline) -> Pipeline:
    """Return a shorter pipeline computing the same function.

    Parameters
    ----------
    pipeline:
        Sequence of ``(name, params)`` steps.

    Returns
    -------
    list
        Equivalent pipeline with identity steps and ``rotate k=0`` removed,
        consecutive rotations merged (``k`` summed mod 4) and consecutive
        involutions (flip on the same axis, transpose, flip_diagonal, swap of
        the same colour pair) cancelled. The result is never longer than the
        input and canonicalising it again returns it unchanged.
    """
    out: List[Step] = []
    for name, params in pipeline:
        step: Step = (name, dict(params))
        if _is_noop(step):
            continue
        if _is_quarter(step) and out and _is_quarter(out[-1]):
            k = (out[-1][1]["k"] + step[1]["k"]) % 4
            out.pop()
            if k:
                out.append(("rotate", {"k": k}))
            continue
        if _is_quarter(step):
            step = ("rotate", {"k": step[1]["k"] % 4})
        if out and _cancels(out[-1], step):
            out.pop()
            continue
        out.append(step)
    return out


def is_canonical(pipeline: Pipeline) -> bool:
    """True when :func:`canonicalize_pipeline` would leave ``pipeline`` unchanged."""
    canon = canonicalize_pipeline(pipeline)
    return [_step_key(s) for s in canon] == [_step_key((n, dict(p))) for n, p in pipeline]


def pipeline_key(pipeline: Pipeline) -> Tuple:
    """Hashable key identifying a pipeline by content."""
    return tuple(_step_key(step) for step in pipeline)


__all__ = ["canonicalize_pipeline", "is_canonical", "pipeline_key", "INVOLUTIONS"]
