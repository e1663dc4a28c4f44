"""
Task fingerprints for memory indexing.

A fingerprint summarises how the inputs of a task relate to its outputs:
whether the shape changes, how the palette changes, whether the output is a
mirrored or rotated input, and so on. Fingerprints are cheap to compute and
purely derived from the training pairs, so two identical tasks always share
one. The memory store keys distilled pipelines by fingerprint hash and uses
:func:`similarity` to find strategies from related tasks.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .grid import Array, is_well_formed

EMPTY_HASH = "empty"


@dataclass(frozen=True)
class Fingerprint:
    """Categorical summary of a task's training pairs.

    Every tuple holds one entry per training pair. ``hash`` is a short stable
    digest used as the memory key; ``degenerate`` marks the sentinel returned
    for empty or malformed data.
    """

    hash: str
    dim_changes: Tuple[str, ...] = ()
    size_ratios: Tuple[str, ...] = ()
    color_changes: Tuple[str, ...] = ()
    color_mappings: Tuple[str, ...] = ()
    symmetries: Tuple[str, ...] = ()
    density_deltas: Tuple[float, ...] = ()
    degenerate: bool = False

    @classmethod
    def empty(cls) -> "Fingerprint":
        return cls(hash=EMPTY_HASH, degenerate=True)

    @property
    def pair_count(self) -> int:
        return len(self.dim_changes)

    def primary(self) -> Dict[str, Optional[str]]:
        """First-pair categorical features compared by :func:`similarity`."""
        def first(values: Tuple[str, ...]) -> Optional[str]:
            return values[0] if values else None

        return {
            "dim_change": first(self.dim_changes),
            "color_change": first(self.color_changes),
            "symmetry": first(self.symmetries),
            "size_ratio": first(self.size_ratios),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "dim_changes": list(self.dim_changes),
            "size_ratios": list(self.size_ratios),
            "color_changes": list(self.color_changes),
            "color_mappings": list(self.color_mappings),
            "symmetries": list(self.symmetries),
            "density_deltas": list(self.density_deltas),
            "degenerate": self.degenerate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fingerprint":
        return cls(
            hash=str(data["hash"]),
            dim_changes=tuple(data.get("dim_changes", ())),
            size_ratios=tuple(data.get("size_ratios", ())),
            color_changes=tuple(data.get("color_changes", ())),
            color_mappings=tuple(data.get("color_mappings", ())),
            symmetries=tuple(data.get("symmetries", ())),
            density_deltas=tuple(float(x) for x in data.get("density_deltas", ())),
            degenerate=bool(data.get("degenerate", False)),
        )


def dimension_change(inp: Array, out: Array) -> str:
    """Classify how the grid shape changes from input to output."""
    (ih, iw), (oh, ow) = inp.shape, out.shape
    if (oh, ow) == (ih, iw):
        return "same"
    if (oh, ow) == (2 * ih, 2 * iw):
        return "scale2x"
    if (oh, ow) == (iw, ih):
        return "transpose"
    if oh > ih or ow > iw:
        return "expand"
    return "shrink"


def color_change(inp: Array, out: Array) -> str:
    """Compare the number of distinct colours before and after."""
    n_in, n_out = np.unique(inp).size, np.unique(out).size
    if n_in == n_out:
        return "preserve"
    return "add" if n_out > n_in else "reduce"


def color_mapping(inp: Array, out: Array) -> str:
    """Describe a consistent per-cell colour remap.

    Returns ``"none"`` when shapes differ or a colour maps to two values,
    ``"identity"`` when nothing changes colour, otherwise e.g. ``"1>2,3>4"``.
    """
    if inp.shape != out.shape:
        return "none"
    mapping: Dict[int, int] = {}
    for src, dst in zip(inp.ravel().tolist(), out.ravel().tolist()):
        if mapping.setdefault(src, dst) != dst:
            return "none"
    changed = [f"{src}>{dst}" for src, dst in sorted(mapping.items()) if src != dst]
    return ",".join(changed) if changed else "identity"


def symmetry_type(inp: Array, out: Array) -> str:
    """Coarse symmetry relation: is the output a mirrored or turned input?"""
    if inp.shape == out.shape:
        if np.array_equal(np.fliplr(inp), out):
            return "flip_h"
        if np.array_equal(np.flipud(inp), out):
            return "flip_v"
        if np.array_equal(np.rot90(inp, 2), out):
            return "rot180"
    if inp.shape == out.shape[::-1]:
        if np.array_equal(np.rot90(inp, -1), out):
            return "rot90"
        if np.array_equal(np.rot90(inp, 1), out):
            return "rot270"
    return "none"


def density(a: Array) -> float:
    return float(np.count_nonzero(a)) / a.size


def _digest(parts: Sequence[str]) -> str:
    return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()[:16]


def compute_fingerprint(train_pairs: Sequence[Tuple[Array, Array]]) -> Fingerprint:
    """Derive the fingerprint of a task from its training pairs.

    Empty input, or any pair that is not a well-formed grid pair, yields the
    degenerate sentinel :meth:`Fingerprint.empty`.
    """
    if not train_pairs:
        return Fingerprint.empty()
    dims: List[str] = []
    ratios: List[str] = []
    colors: List[str] = []
    mappings: List[str] = []
    syms: List[str] = []
    deltas: List[float] = []
    for pair in train_pairs:
        try:
            inp, out = pair
        except (TypeError, ValueError):
            return Fingerprint.empty()
        if not (is_well_formed(inp) and is_well_formed(out)):
            return Fingerprint.empty()
        dims.append(dimension_change(inp, out))
        ratios.append(f"{out.size / inp.size:.2f}")
        colors.append(color_change(inp, out))
        mappings.append(color_mapping(inp, out))
        syms.append(symmetry_type(inp, out))
        deltas.append(round(density(out) - density(inp), 2))

    digest = _digest([dims[0], colors[0], syms[0], ",".join(ratios)])
    return Fingerprint(
        hash=digest,
        dim_changes=tuple(dims),
        size_ratios=tuple(ratios),
        color_changes=tuple(colors),
        color_mappings=tuple(mappings),
        symmetries=tuple(syms),
        density_deltas=tuple(deltas),
    )


def similarity(a: Fingerprint, b: Fingerprint) -> float:
    """Similarity in ``[0, 1]`` between two fingerprints.

    Identical (non-degenerate) hashes score 1.0. Otherwise the score is the
    fraction of agreeing first-pair features: dimension change, colour
    change, symmetry and size ratio.
    """
    if a.degenerate or b.degenerate:
        return 0.0
    if a.hash == b.hash:
        return 1.0
    pa, pb = a.primary(), b.primary()
    agree = sum(1 for key in pa if pa[key] is not None and pa[key] == pb[key])
    return agree / len(pa)


__all__ = [
    "EMPTY_HASH",
    "Fingerprint",
    "compute_fingerprint",
    "similarity",
    "dimension_change",
    "color_change",
    "color_mapping",
    "symmetry_type",
    "density",
]
