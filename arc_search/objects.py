"""
Object extraction utilities for the ARC search engine.

ARC tasks often involve reasoning about contiguous patches of color (objects).
This module finds 4-connected single-colour components with
``scipy.ndimage.label`` and reports their colour, cells and bounding box. The
alignment and extraction primitives in :mod:`arc_search.dsl` build on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from scipy import ndimage

from .grid import Array

# 4-connectivity: orthogonal neighbours only.
FOUR_CONNECTED = ndimage.generate_binary_structure(2, 1)


@dataclass(frozen=True)
class Component:
    """A 4-connected patch of a single colour.

    Attributes:
        color: Colour value shared by every cell.
        rows, cols: Cell coordinates, in row-major order.
        bbox: ``(top, left, height, width)`` of the bounding box.
    """

    color: int
    rows: Tuple[int, ...]
    cols: Tuple[int, ...]
    bbox: Tuple[int, int, int, int]

    @property
    def size(self) -> int:
        return len(self.rows)

    @property
    def first_cell(self) -> Tuple[int, int]:
        return self.rows[0], self.cols[0]


def connected_components(a: Array, background: Optional[int] = 0) -> List[Component]:
    """Find all 4-connected components of ``a``.

    Cells equal to ``background`` are skipped; pass ``None`` to label every
    colour. Components are returned in the order a row-major scan first meets
    them, which keeps downstream primitives deterministic.
    """
    comps: List[Component] = []
    for color in np.unique(a):
        color = int(color)
        if background is not None and color == background:
            continue
        labels, count = ndimage.label(a == color, structure=FOUR_CONNECTED)
        for idx in range(1, count + 1):
            rows, cols = np.nonzero(labels == idx)
            top, left = int(rows.min()), int(cols.min())
            height = int(rows.max()) - top + 1
            width = int(cols.max()) - left + 1
            comps.append(Component(
                color=color,
                rows=tuple(int(r) for r in rows),
                cols=tuple(int(c) for c in cols),
                bbox=(top, left, height, width),
            ))
    comps.sort(key=lambda comp: comp.first_cell)
    return comps


def largest_component(a: Array, background: Optional[int] = 0) -> Optional[Component]:
    """Return the component with the most cells; ties go to the first found."""
    best: Optional[Component] = None
    for comp in connected_components(a, background):
        if best is None or comp.size > best.size:
            best = comp
    return best


def content_bbox(a: Array, background: int = 0) -> Optional[Tuple[int, int, int, int]]:
    """Bounding box ``(top, left, height, width)`` of all non-background cells."""
    rows, cols = np.nonzero(a != background)
    if rows.size == 0:
        return None
    top, left = int(rows.min()), int(cols.min())
    return top, left, int(rows.max()) - top + 1, int(cols.max()) - left + 1


__all__ = [
    "Component",
    "connected_components",
    "largest_component",
    "content_bbox",
]
