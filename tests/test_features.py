"""Tests for task fingerprints."""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure project root on path for direct test execution
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
from hypothesis import given, strategies as st
import hypothesis.extra.numpy as hnp

from arc_search.features import (
    EMPTY_HASH,
    Fingerprint,
    color_mapping,
    compute_fingerprint,
    dimension_change,
    similarity,
    symmetry_type,
)
from arc_search.grid import to_array

array_shapes = hnp.array_shapes(min_dims=2, max_dims=2, min_side=1, max_side=5)
colour_arrays = hnp.arrays(np.int16, array_shapes, elements=st.integers(min_value=0, max_value=9))


@given(colour_arrays, colour_arrays)
def test_fingerprint_is_deterministic(inp, out) -> None:
    a = compute_fingerprint([(inp, out)])
    b = compute_fingerprint([(inp.copy(), out.copy())])
    assert a == b
    assert not a.degenerate
    assert len(a.hash) == 16


def test_empty_and_malformed_inputs_yield_sentinel() -> None:
    assert compute_fingerprint([]).hash == EMPTY_HASH
    assert compute_fingerprint([]).degenerate
    assert compute_fingerprint([([[1]], [[1]])]).degenerate
    assert compute_fingerprint([(to_array([[1]]),)]).degenerate


def test_feature_classifiers() -> None:
    a = to_array([[1, 1], [0, 0]])
    assert symmetry_type(a, to_array([[0, 0], [1, 1]])) == "flip_v"
    assert symmetry_type(a, to_array([[1, 1], [0, 0]])) == "flip_h"
    assert symmetry_type(to_array([[1, 2]]), to_array([[1], [2]])) == "rot90"
    assert dimension_change(a, to_array(np.zeros((4, 4), dtype=int))) == "scale2x"
    assert dimension_change(a, to_array([[1]])) == "shrink"
    assert color_mapping(to_array([[1, 0]]), to_array([[2, 0]])) == "1>2"
    assert color_mapping(a, a) == "identity"
    assert color_mapping(to_array([[1, 1]]), to_array([[1, 2]])) == "none"


def test_similarity() -> None:
    flip_task = [(to_array([[1, 1], [0, 0]]), to_array([[0, 0], [1, 1]]))]
    other_flip = [(to_array([[2, 2], [3, 3]]), to_array([[3, 3], [2, 2]]))]
    scale_task = [(to_array([[1]]), to_array([[1, 1], [1, 1]]))]
    fp = compute_fingerprint(flip_task)
    assert similarity(fp, fp) == 1.0
    assert similarity(fp, compute_fingerprint(other_flip)) == 1.0
    assert similarity(fp, compute_fingerprint(scale_task)) < 0.75
    assert similarity(fp, Fingerprint.empty()) == 0.0


def test_fingerprint_dict_roundtrip_preserves_equality() -> None:
    fp = compute_fingerprint([(to_array([[1, 2]]), to_array([[2, 1]]))])
    assert Fingerprint.from_dict(fp.to_dict()) == fp
