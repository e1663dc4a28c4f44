"""
Grid utilities for the ARC search engine.

Grids are small 2D numpy arrays of colour values 0-9. Every transformation in
the package produces a fresh array, so callers can treat grids as values. The
helpers here convert between nested lists and arrays, compare grids and build
exact content keys used for deduplication during search.
"""

from __future__ import annotations

import numpy as np
from typing import Any, Dict, Hashable, List, Optional, Tuple


# Type alias for clarity. ARC grids are small 2D arrays of integers.
Array = np.ndarray

MAX_COLOR = 9
MAX_SIDE = 30

__all__ = [
    "Array",
    "MAX_COLOR",
    "MAX_SIDE",
    "to_array",
    "to_list",
    "is_well_formed",
    "same_shape",
    "eq",
    "histogram",
    "bg_color",
    "majority_color",
    "grid_key",
    "grids_key",
    "freeze",
]


def to_array(grid: Any) -> Array:
    """Convert a nested Python list into a read-only numpy array of dtype int16.

    Raises
    ------
    ValueError
        If ``grid`` is ragged, empty, not two dimensional or holds values
        outside ``0..9``.
    """
    try:
        a = np.asarray(grid)
    except ValueError as exc:
        raise ValueError(f"grid is not rectangular: {exc}") from exc

    if a.ndim == 1 and a.size:
        a = a[None, :]

    if a.ndim != 2:
        raise ValueError(f"ARC grid must be 2-D, got {a.ndim}D shape={a.shape}")
    if a.size == 0:
        raise ValueError("ARC grid must not be empty")
    if not np.issubdtype(a.dtype, np.integer):
        if a.dtype == object or not np.all(np.equal(np.mod(a, 1), 0)):
            raise ValueError(f"grid values must be integers, got dtype {a.dtype}")
    if a.min() < 0 or a.max() > MAX_COLOR:
        raise ValueError("grid values must lie in 0..9")
    return freeze(a.astype(np.int16))


def to_list(arr: Array) -> List[List[int]]:
    """Convert a numpy array back into a nested Python list of ints."""
    return arr.astype(int).tolist()


def freeze(a: Array) -> Array:
    """Mark ``a`` read-only and return it."""
    a.setflags(write=False)
    return a


def is_well_formed(a: Any) -> bool:
    """Return True for a non-empty 2-D integer numpy array."""
    return (
        isinstance(a, np.ndarray)
        and a.ndim == 2
        and a.size > 0
        and np.issubdtype(a.dtype, np.integer)
    )


def same_shape(a: Array, b: Array) -> bool:
    """Return True if two arrays have identical shape."""
    return a.shape == b.shape


def eq(a: Optional[Array], b: Optional[Array]) -> bool:
    """Check structural equality of two grids (shape and element-wise).

    ``None`` never equals anything, including another ``None``.
    """
    if a is None or b is None:
        return False
    return a.shape == b.shape and bool(np.array_equal(a, b))


def histogram(a: Array) -> Dict[int, int]:
    """Return a dictionary mapping color values to their counts in the array."""
    vals, counts = np.unique(a, return_counts=True)
    return {int(v): int(c) for v, c in zip(vals, counts)}


def bg_color(a: Array) -> int:
    """Return the most frequent color in the array (background heuristic)."""
    vals, counts = np.unique(a, return_counts=True)
    idx = int(np.argmax(counts))
    return int(vals[idx])


def majority_color(a: Array, exclude_zero: bool = True) -> Optional[int]:
    """Most frequent colour, ignoring zero by default.

    Ties resolve to the smallest colour value. Returns ``None`` when no cell
    qualifies.
    """
    vals, counts = np.unique(a, return_counts=True)
    if exclude_zero:
        keep = vals != 0
        vals, counts = vals[keep], counts[keep]
    if vals.size == 0:
        return None
    return int(vals[int(np.argmax(counts))])


def grid_key(a: Array) -> Tuple[Tuple[int, ...], bytes]:
    """Exact, hashable content key for ``a``."""
    return (tuple(a.shape), np.ascontiguousarray(a, dtype=np.int16).tobytes())


def grids_key(grids: Tuple[Array, ...]) -> Hashable:
    """Content key for a tuple of grids (one per training pair)."""
    return tuple(grid_key(g) for g in grids)
