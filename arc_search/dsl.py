"""Domain-specific language (DSL) primitives for ARC program synthesis.

This module defines a set of composable operations that act on grids. Each
operation is represented by an :class:`Op` and registered in :data:`OPS`.
Programs (pipelines) are sequences of ``(name, params)`` steps applied to a
grid from left to right.

Every primitive is total: when it cannot be applied to a grid (wrong shape,
bad parameter, result too large) it returns ``None`` instead of raising. The
only error raised by :func:`apply_op` is :class:`UnknownPrimitiveError` for a
name that is not registered.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from .grid import Array, MAX_COLOR, MAX_SIDE, freeze, is_well_formed, majority_color
from .objects import connected_components, content_bbox, largest_component

Step = Tuple[str, Dict[str, Any]]
Pipeline = List[Step]


class UnknownPrimitiveError(KeyError):
    """Raised when a pipeline names a primitive that is not registered."""


class Op:
    """Represents a primitive transformation on a grid."""

    def __init__(self, name: str, fn: Callable[..., Optional[Array]], param_names: List[str]):
        self.name = name
        self.fn = fn
        self.param_names = param_names

    def __call__(self, *args: Any, **kwargs: Any) -> Optional[Array]:
        return self.fn(*args, **kwargs)

    def __repr__(self) -> str:
        return f"Op({self.name!r}, params={self.param_names})"


def _fits(shape: Tuple[int, int]) -> bool:
    return 0 < shape[0] <= MAX_SIDE and 0 < shape[1] <= MAX_SIDE


def _is_color(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool) and 0 <= value <= MAX_COLOR


# ---------------------------------------------------------------------------
# Geometric primitives
# ---------------------------------------------------------------------------

def op_identity(a: Array) -> Array:
    """Return a copy of the input grid."""
    return a.copy()


def op_rotate(a: Array, k: int) -> Optional[Array]:
    """Rotate grid by ``k`` quarter turns clockwise."""
    if k not in (0, 1, 2, 3):
        return None
    return np.rot90(a, -k)


def op_flip(a: Array, axis: int) -> Optional[Array]:
    """Flip grid along the specified axis (0=vertical, 1=horizontal)."""
    if axis == 0:
        return np.flipud(a)
    if axis == 1:
        return np.fliplr(a)
    return None


def op_flip_diagonal(a: Array) -> Array:
    """Reflect over the anti-diagonal."""
    return np.rot90(a, 2).T


def op_transpose(a: Array) -> Array:
    """Transpose the grid."""
    return a.T


def op_translate(a: Array, dy: int, dx: int) -> Optional[Array]:
    """Shift content by ``(dy, dx)``; uncovered cells become 0.

    Positive values move content down/right.
    """
    h, w = a.shape
    if abs(dy) >= h and dy != 0 or abs(dx) >= w and dx != 0:
        return None
    out = np.zeros_like(a)
    src_r = slice(max(0, -dy), h - max(0, dy))
    dst_r = slice(max(0, dy), h - max(0, -dy))
    src_c = slice(max(0, -dx), w - max(0, dx))
    dst_c = slice(max(0, dx), w - max(0, -dx))
    out[dst_r, dst_c] = a[src_r, src_c]
    return out


def op_scale_up(a: Array, factor: int) -> Optional[Array]:
    """Repeat every cell ``factor`` times along both axes."""
    if factor < 1:
        return None
    return np.kron(a, np.ones((factor, factor), dtype=a.dtype))


def op_scale_down(a: Array, factor: int) -> Optional[Array]:
    """Keep the top-left cell of every ``factor`` x ``factor`` block."""
    h, w = a.shape
    if factor < 1 or h % factor or w % factor:
        return None
    return a[::factor, ::factor].copy()


def op_tile(a: Array, reps: int) -> Optional[Array]:
    """Tile the grid ``reps`` times along both axes."""
    if reps < 1:
        return None
    return np.tile(a, (reps, reps))


def op_mirror(a: Array, axis: int) -> Optional[Array]:
    """Append a mirrored copy below (axis 0) or to the right (axis 1)."""
    if axis == 0:
        return np.vstack([a, np.flipud(a)])
    if axis == 1:
        return np.hstack([a, np.fliplr(a)])
    return None


def op_pad(a: Array, width: int) -> Optional[Array]:
    """Pad symmetrically with ``width`` rings of zeros."""
    if width < 1:
        return None
    return np.pad(a, width, mode="constant", constant_values=0)


def op_crop_to_content(a: Array) -> Optional[Array]:
    """Crop to the bounding box of non-zero cells."""
    box = content_bbox(a)
    if box is None:
        return None
    top, left, height, width = box
    return a[top:top + height, left:left + width].copy()


def op_remove_border(a: Array) -> Optional[Array]:
    """Strip the outermost ring of cells, shrinking each side by two.

    See :func:`op_clear_border` for the variant that keeps the shape.
    """
    if a.shape[0] < 3 or a.shape[1] < 3:
        return None
    return a[1:-1, 1:-1].copy()


def op_clear_border(a: Array) -> Array:
    """Zero the outermost ring and keep the grid dimensions."""
    out = a.copy()
    out[0, :] = 0
    out[-1, :] = 0
    out[:, 0] = 0
    out[:, -1] = 0
    return out


def op_extract_border(a: Array) -> Array:
    """Keep the outermost ring and zero the interior."""
    out = a.copy()
    out[1:-1, 1:-1] = 0
    return out


def op_fill_border(a: Array, color: Optional[int] = None) -> Optional[Array]:
    """Paint the outermost ring with ``color``.

    When ``color`` is ``None`` the dominant non-zero colour of the grid is
    used; an all-zero grid is then not applicable.
    """
    if color is None:
        color = majority_color(a)
        if color is None:
            return None
    elif not _is_color(color):
        return None
    out = a.copy()
    out[0, :] = color
    out[-1, :] = color
    out[:, 0] = color
    out[:, -1] = color
    return out


def op_gravity(a: Array, direction: str) -> Optional[Array]:
    """Compact non-zero cells toward ``direction`` keeping their order."""
    if direction in ("down", "up"):
        lines = a.T
    elif direction in ("left", "right"):
        lines = a
    else:
        return None
    out = np.zeros_like(lines)
    toward_end = direction in ("down", "right")
    for i, line in enumerate(lines):
        kept = line[line != 0]
        if toward_end:
            out[i, len(line) - len(kept):] = kept
        else:
            out[i, :len(kept)] = kept
    return out.T if direction in ("down", "up") else out


# ---------------------------------------------------------------------------
# Colour primitives
# ---------------------------------------------------------------------------

def op_recolor(a: Array, mapping: Dict[int, int]) -> Optional[Array]:
    """Recolour grid according to a mapping from old to new colours."""
    if not mapping:
        return None
    out = a.copy()
    for src, dst in mapping.items():
        if not (_is_color(src) and _is_color(dst)):
            return None
        out[a == src] = dst
    return out


def op_swap_colors(grid: Array, a: int, b: int) -> Optional[Array]:
    """Exchange colours ``a`` and ``b``."""
    if not (_is_color(a) and _is_color(b)) or a == b:
        return None
    out = grid.copy()
    out[grid == a] = b
    out[grid == b] = a
    return out


def op_fill(a: Array, color: int) -> Optional[Array]:
    """Fill the whole grid with ``color``."""
    if not _is_color(color):
        return None
    return np.full_like(a, color)


def op_invert_colors(a: Array) -> Array:
    """Zero cells take the maximum colour, every other cell becomes zero."""
    top = int(a.max())
    if top == 0:
        return a.copy()
    return np.where(a == 0, top, 0).astype(a.dtype)


def op_swap_top_colors(a: Array) -> Optional[Array]:
    """Exchange the two most frequent colours."""
    vals, counts = np.unique(a, return_counts=True)
    if vals.size < 2:
        return None
    order = sorted(zip(counts.tolist(), vals.tolist()), key=lambda t: (-t[0], t[1]))
    return op_swap_colors(a, order[0][1], order[1][1])


def op_majority_fill(a: Array) -> Optional[Array]:
    """Background (zero) cells take the majority non-zero colour."""
    color = majority_color(a)
    if color is None:
        return None
    out = a.copy()
    out[a == 0] = color
    return out


def op_count_fill(a: Array) -> Optional[Array]:
    """Every non-zero cell takes the most frequent non-zero colour."""
    color = majority_color(a)
    if color is None:
        return None
    out = a.copy()
    out[a != 0] = color
    return out


# ---------------------------------------------------------------------------
# Pattern and object primitives
# ---------------------------------------------------------------------------

def _smallest_period(lines: Array) -> Optional[int]:
    n = lines.shape[0]
    for period in range(1, n):
        if np.array_equal(lines[period:], lines[:n - period]):
            return period
    return None


def op_continue_rows(a: Array) -> Optional[Array]:
    """Append the next row of the smallest repeating row pattern."""
    period = _smallest_period(a)
    if period is None:
        return None
    nxt = a[a.shape[0] - period]
    return np.vstack([a, nxt[None, :]])


def op_continue_columns(a: Array) -> Optional[Array]:
    """Append the next column of the smallest repeating column pattern."""
    out = op_continue_rows(a.T)
    return None if out is None else out.T


def op_align_center(a: Array) -> Optional[Array]:
    """Move every component so its bounding-box centre sits on the grid centre."""
    comps = connected_components(a)
    if not comps:
        return None
    h, w = a.shape
    out = np.zeros_like(a)
    for comp in comps:
        top, left, height, width = comp.bbox
        dy = (h - height) // 2 - top
        dx = (w - width) // 2 - left
        out[np.array(comp.rows) + dy, np.array(comp.cols) + dx] = comp.color
    return out


def op_align_corners(a: Array) -> Optional[Array]:
    """Move the first four components into the four corners.

    Components are taken in discovery order and sent to the top-left,
    top-right, bottom-left and bottom-right corners respectively. Anything
    beyond the fourth component is dropped.
    """
    comps = connected_components(a)[:4]
    if not comps:
        return None
    h, w = a.shape
    out = np.zeros_like(a)
    for idx, comp in enumerate(comps):
        top, left, height, width = comp.bbox
        new_top = 0 if idx in (0, 1) else h - height
        new_left = 0 if idx in (0, 2) else w - width
        out[np.array(comp.rows) - top + new_top, np.array(comp.cols) - left + new_left] = comp.color
    return out


def op_largest_component(a: Array) -> Optional[Array]:
    """Crop to the bounding box of the largest component."""
    comp = largest_component(a)
    if comp is None:
        return None
    top, left, height, width = comp.bbox
    return a[top:top + height, left:left + width].copy()


# Registry of primitive operations, in search order ----------------------------------------
OPS: Dict[str, Op] = {
    "identity": Op("identity", op_identity, []),
    "rotate": Op("rotate", op_rotate, ["k"]),
    "flip": Op("flip", op_flip, ["axis"]),
    "flip_diagonal": Op("flip_diagonal", op_flip_diagonal, []),
    "transpose": Op("transpose", op_transpose, []),
    "recolor": Op("recolor", op_recolor, ["mapping"]),
    "swap_colors": Op("swap_colors", op_swap_colors, ["a", "b"]),
    "fill": Op("fill", op_fill, ["color"]),
    "invert_colors": Op("invert_colors", op_invert_colors, []),
    "swap_top_colors": Op("swap_top_colors", op_swap_top_colors, []),
    "translate": Op("translate", op_translate, ["dy", "dx"]),
    "scale_up": Op("scale_up", op_scale_up, ["factor"]),
    "scale_down": Op("scale_down", op_scale_down, ["factor"]),
    "tile": Op("tile", op_tile, ["reps"]),
    "mirror": Op("mirror", op_mirror, ["axis"]),
    "gravity": Op("gravity", op_gravity, ["direction"]),
    "extract_border": Op("extract_border", op_extract_border, []),
    "fill_border": Op("fill_border", op_fill_border, ["color"]),
    "remove_border": Op("remove_border", op_remove_border, []),
    "clear_border": Op("clear_border", op_clear_border, []),
    "crop_to_content": Op("crop_to_content", op_crop_to_content, []),
    "pad": Op("pad", op_pad, ["width"]),
    "majority_fill": Op("majority_fill", op_majority_fill, []),
    "count_fill": Op("count_fill", op_count_fill, []),
    "continue_rows": Op("continue_rows", op_continue_rows, []),
    "continue_columns": Op("continue_columns", op_continue_columns, []),
    "align_center": Op("align_center", op_align_center, []),
    "align_corners": Op("align_corners", op_align_corners, []),
    "largest_component": Op("largest_component", op_largest_component, []),
}


def parameter_grid(name: str) -> List[Dict[str, Any]]:
    """Parameter combinations explored by the searches for primitive ``name``."""
    if name not in OPS:
        raise UnknownPrimitiveError(name)
    if name == "rotate":
        return [{"k": k} for k in (1, 2, 3)]
    if name in ("flip", "mirror"):
        return [{"axis": axis} for axis in (0, 1)]
    if name == "recolor":
        return [
            {"mapping": {src: dst}}
            for src in range(MAX_COLOR + 1)
            for dst in range(MAX_COLOR + 1)
            if src != dst
        ]
    if name == "swap_colors":
        return [
            {"a": x, "b": y}
            for x in range(MAX_COLOR + 1)
            for y in range(x + 1, MAX_COLOR + 1)
        ]
    if name == "fill":
        return [{"color": c} for c in range(MAX_COLOR + 1)]
    if name == "translate":
        return [{"dy": dy, "dx": dx} for dy, dx in ((1, 0), (-1, 0), (0, 1), (0, -1))]
    if name in ("scale_up", "scale_down"):
        return [{"factor": f} for f in (2, 3)]
    if name == "tile":
        return [{"reps": r} for r in (2, 3)]
    if name == "gravity":
        return [{"direction": d} for d in ("down", "up", "left", "right")]
    if name == "fill_border":
        return [{"color": None}] + [{"color": c} for c in range(1, MAX_COLOR + 1)]
    if name == "pad":
        return [{"width": w} for w in (1, 2)]
    return [{}]


def enumerate_steps(exclude: Tuple[str, ...] = ("identity",)) -> List[Step]:
    """Every ``(name, params)`` step in registry order.

    ``identity`` is excluded by default since it never changes a grid.
    """
    return [
        (name, params)
        for name in OPS
        if name not in exclude
        for params in parameter_grid(name)
    ]


def _canonical_params(name: str, params: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``params`` with JSON-decoded values typed."""
    new_params = dict(params)
    if name == "recolor" and new_params.get("mapping"):
        new_params["mapping"] = {int(k): int(v) for k, v in new_params["mapping"].items()}
    return new_params


def apply_op(a: Array, name: str, params: Optional[Dict[str, Any]] = None) -> Optional[Array]:
    """Apply one primitive; ``None`` when it is not applicable.

    Raises
    ------
    UnknownPrimitiveError
        If ``name`` is not registered.
    """
    op = OPS.get(name)
    if op is None:
        raise UnknownPrimitiveError(name)
    if not is_well_formed(a):
        return None
    try:
        out = op(a, **_canonical_params(name, params or {}))
    except (TypeError, ValueError):
        # Missing or malformed parameters.
        return None
    if out is None or out.ndim != 2 or not _fits(out.shape):
        return None
    return freeze(np.array(out, dtype=np.int16))


def apply_program(a: Array, program: Pipeline) -> Optional[Array]:
    """Apply a sequence of operations to the input grid, left to right."""
    out: Optional[Array] = a
    for name, params in program:
        out = apply_op(out, name, params)
        if out is None:
            return None
    return out


def validate_pipeline_names(program: Pipeline) -> None:
    """Raise :class:`UnknownPrimitiveError` for the first unregistered step."""
    for name, _ in program:
        if name not in OPS:
            raise UnknownPrimitiveError(name)


def pipeline_to_json(program: Pipeline) -> List[Dict[str, Any]]:
    """Persisted representation: ``[{"op": name, "params": {...}}, ...]``."""
    out = []
    for name, params in program:
        params = dict(params)
        if name == "recolor" and "mapping" in params:
            params["mapping"] = {str(k): int(v) for k, v in params["mapping"].items()}
        out.append({"op": name, "params": params})
    return out


def pipeline_from_json(data: List[Dict[str, Any]]) -> Pipeline:
    """Inverse of :func:`pipeline_to_json`; recolor keys come back as ints."""
    return [(str(step["op"]), _canonical_params(str(step["op"]), step.get("params") or {})) for step in data]


def format_pipeline(program: Pipeline) -> str:
    """Short human readable form, e.g. ``rotate(k=1) -> flip(axis=0)``."""
    if not program:
        return "<empty>"
    parts = []
    for name, params in program:
        args = ",".join(f"{k}={json.dumps(v, default=str)}" for k, v in sorted(params.items()))
        parts.append(f"{name}({args})")
    return " -> ".join(parts)


__all__ = [
    "Array",
    "Step",
    "Pipeline",
    "Op",
    "OPS",
    "UnknownPrimitiveError",
    "apply_op",
    "apply_program",
    "parameter_grid",
    "enumerate_steps",
    "validate_pipeline_names",
    "pipeline_to_json",
    "pipeline_from_json",
    "format_pipeline",
]
