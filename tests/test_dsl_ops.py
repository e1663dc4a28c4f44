"""Tests for DSL primitives and pipeline helpers.

Property tests check that every registered step keeps grids well formed and
that the geometric identities hold.
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure project root on path for direct test execution
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st
import hypothesis.extra.numpy as hnp

from arc_search.dsl import (
    OPS,
    UnknownPrimitiveError,
    apply_op,
    apply_program,
    enumerate_steps,
    format_pipeline,
    parameter_grid,
    pipeline_from_json,
    pipeline_to_json,
)
from arc_search.grid import MAX_SIDE, is_well_formed, to_array

array_shapes = hnp.array_shapes(min_dims=2, max_dims=2, min_side=1, max_side=6)
colour_arrays = hnp.arrays(np.int16, array_shapes, elements=st.integers(min_value=0, max_value=9))


@given(colour_arrays)
def test_four_quarter_turns_are_identity(grid) -> None:
    out = grid
    for _ in range(4):
        out = apply_op(out, "rotate", {"k": 1})
    assert np.array_equal(out, grid)


@given(colour_arrays, st.sampled_from([0, 1]))
def test_double_flip_is_identity(grid, axis) -> None:
    out = apply_program(grid, [("flip", {"axis": axis}), ("flip", {"axis": axis})])
    assert np.array_equal(out, grid)


@given(colour_arrays)
def test_transpose_and_flip_diagonal_are_involutions(grid) -> None:
    assert np.array_equal(apply_program(grid, [("transpose", {})] * 2), grid)
    assert np.array_equal(apply_program(grid, [("flip_diagonal", {})] * 2), grid)


@settings(max_examples=20, deadline=None)
@given(colour_arrays)
def test_every_step_returns_well_formed_grid_or_none(grid) -> None:
    for name, params in enumerate_steps():
        out = apply_op(grid, name, params)
        if out is None:
            continue
        assert is_well_formed(out)
        assert out.shape[0] <= MAX_SIDE and out.shape[1] <= MAX_SIDE
        assert out.min() >= 0 and out.max() <= 9


def test_rotate_is_clockwise() -> None:
    a = to_array([[1, 2], [3, 4]])
    assert apply_op(a, "rotate", {"k": 1}).tolist() == [[3, 1], [4, 2]]


def test_flip_axis_zero_is_vertical() -> None:
    a = to_array([[1, 1], [0, 0]])
    assert apply_op(a, "flip", {"axis": 0}).tolist() == [[0, 0], [1, 1]]


def test_oversized_result_is_not_applicable() -> None:
    a = to_array(np.ones((20, 20), dtype=int))
    assert apply_op(a, "scale_up", {"factor": 2}) is None
    assert apply_op(a, "tile", {"reps": 2}) is None


def test_bad_parameters_are_not_applicable() -> None:
    a = to_array([[1, 2], [3, 4]])
    assert apply_op(a, "rotate", {"k": 7}) is None
    assert apply_op(a, "fill", {"color": 12}) is None
    assert apply_op(a, "rotate", {}) is None
    assert apply_op(a, "scale_down", {"factor": 3}) is None


def test_unknown_primitive_raises() -> None:
    with pytest.raises(UnknownPrimitiveError):
        apply_op(to_array([[1]]), "teleport", {})
    with pytest.raises(UnknownPrimitiveError):
        parameter_grid("teleport")


def test_apply_program_short_circuits_on_none() -> None:
    a = to_array([[1, 2]])
    assert apply_program(a, [("remove_border", {}), ("rotate", {"k": 1})]) is None


def test_outputs_are_read_only() -> None:
    out = apply_op(to_array([[1, 2]]), "flip", {"axis": 1})
    assert not out.flags.writeable


def test_colour_primitives() -> None:
    a = to_array([[1, 0], [2, 1]])
    assert apply_op(a, "recolor", {"mapping": {1: 5}}).tolist() == [[5, 0], [2, 5]]
    assert apply_op(a, "swap_colors", {"a": 1, "b": 2}).tolist() == [[2, 0], [1, 2]]
    assert apply_op(a, "invert_colors").tolist() == [[0, 2], [0, 0]]
    assert apply_op(a, "majority_fill").tolist() == [[1, 1], [2, 1]]


def test_gravity_down_keeps_order() -> None:
    a = to_array([[1, 0], [0, 0], [2, 3]])
    assert apply_op(a, "gravity", {"direction": "down"}).tolist() == [[0, 0], [1, 0], [2, 3]]


def test_crop_and_border_primitives() -> None:
    a = to_array([[0, 0, 0], [0, 4, 0], [0, 0, 0]])
    assert apply_op(a, "crop_to_content").tolist() == [[4]]
    assert apply_op(a, "remove_border").tolist() == [[4]]
    assert apply_op(to_array([[0, 0]]), "crop_to_content") is None
    assert apply_op(a, "fill_border", {"color": None}).tolist() == [[4, 4, 4], [4, 4, 4], [4, 4, 4]]


def test_continue_rows_extends_period() -> None:
    a = to_array([[1, 1], [2, 2], [1, 1], [2, 2]])
    assert apply_op(a, "continue_rows").tolist()[-1] == [1, 1]


def test_align_corners_moves_components() -> None:
    a = to_array([[0, 0, 0], [0, 5, 0], [0, 0, 0]])
    assert apply_op(a, "align_corners").tolist() == [[5, 0, 0], [0, 0, 0], [0, 0, 0]]


def test_parameter_grid_covers_registry() -> None:
    for name in OPS:
        assert parameter_grid(name)
    assert {"mapping": {1: 2}} in parameter_grid("recolor")
    assert all(p["a"] < p["b"] for p in parameter_grid("swap_colors"))


def test_pipeline_json_keeps_recolor_keys_typed() -> None:
    pipeline = [("recolor", {"mapping": {1: 2}}), ("rotate", {"k": 1})]
    doc = pipeline_to_json(pipeline)
    assert doc[0] == {"op": "recolor", "params": {"mapping": {"1": 2}}}
    assert pipeline_from_json(doc) == pipeline


def test_format_pipeline() -> None:
    assert format_pipeline([]) == "<empty>"
    assert format_pipeline([("rotate", {"k": 1})]) == "rotate(k=1)"


def test_largest_component_uses_four_connectivity() -> None:
    # the diagonal 2s are three separate cells, so the 3-cell bar wins
    a = to_array([[2, 0, 2, 0], [0, 2, 0, 0], [3, 3, 3, 0]])
    assert apply_op(a, "largest_component").tolist() == [[3, 3, 3]]
    b = to_array([[1, 1, 0, 0], [1, 0, 0, 2], [0, 0, 0, 2]])
    assert apply_op(b, "largest_component").tolist() == [[1, 1], [1, 0]]
    assert apply_op(to_array([[0, 0]]), "largest_component") is None


def test_align_center_moves_bbox_to_middle() -> None:
    a = to_array([[6, 0, 0, 0], [6, 0, 0, 0], [0, 0, 0, 0]])
    assert apply_op(a, "align_center").tolist() == [[0, 6, 0, 0], [0, 6, 0, 0], [0, 0, 0, 0]]
    b = to_array([[7, 0, 0], [0, 0, 0], [0, 0, 0]])
    assert apply_op(b, "align_center").tolist() == [[0, 0, 0], [0, 7, 0], [0, 0, 0]]


@pytest.mark.parametrize(
    "direction, expected",
    [
        ("up", [[1, 3], [2, 0], [0, 0]]),
        ("down", [[0, 0], [1, 0], [2, 3]]),
    ],
)
def test_gravity_vertical(direction, expected) -> None:
    a = to_array([[1, 0], [0, 0], [2, 3]])
    assert apply_op(a, "gravity", {"direction": direction}).tolist() == expected


def test_gravity_horizontal_keeps_order() -> None:
    a = to_array([[0, 1, 0, 2], [3, 0, 0, 0]])
    assert apply_op(a, "gravity", {"direction": "left"}).tolist() == [[1, 2, 0, 0], [3, 0, 0, 0]]
    assert apply_op(a, "gravity", {"direction": "right"}).tolist() == [[0, 0, 1, 2], [0, 0, 0, 3]]
    assert apply_op(a, "gravity", {"direction": "sideways"}) is None


def test_continue_columns_extends_period() -> None:
    a = to_array([[1, 2, 1, 2], [3, 4, 3, 4]])
    assert apply_op(a, "continue_columns").tolist() == [[1, 2, 1, 2, 1], [3, 4, 3, 4, 3]]
    assert apply_op(to_array([[1, 2, 3]]), "continue_columns") is None


def test_translate_fills_with_zero() -> None:
    a = to_array([[1, 2], [3, 4]])
    assert apply_op(a, "translate", {"dy": 1, "dx": 0}).tolist() == [[0, 0], [1, 2]]
    assert apply_op(a, "translate", {"dy": 0, "dx": -1}).tolist() == [[2, 0], [4, 0]]
    assert apply_op(a, "translate", {"dy": 2, "dx": 0}) is None


def test_scaling_primitives() -> None:
    a = to_array([[1, 2]])
    up = apply_op(a, "scale_up", {"factor": 2})
    assert up.tolist() == [[1, 1, 2, 2], [1, 1, 2, 2]]
    assert apply_op(up, "scale_down", {"factor": 2}).tolist() == [[1, 2]]
    assert apply_op(a, "scale_down", {"factor": 2}) is None


def test_tile_mirror_and_pad() -> None:
    a = to_array([[1, 2], [3, 4]])
    assert apply_op(to_array([[1, 2]]), "tile", {"reps": 2}).tolist() == [[1, 2, 1, 2], [1, 2, 1, 2]]
    assert apply_op(a, "mirror", {"axis": 0}).tolist() == [[1, 2], [3, 4], [3, 4], [1, 2]]
    assert apply_op(a, "mirror", {"axis": 1}).tolist() == [[1, 2, 2, 1], [3, 4, 4, 3]]
    assert apply_op(to_array([[5]]), "pad", {"width": 1}).tolist() == [[0, 0, 0], [0, 5, 0], [0, 0, 0]]
    assert apply_op(a, "pad", {"width": 0}) is None


def test_count_fill_and_swap_top_colors() -> None:
    assert apply_op(to_array([[1, 2, 0], [1, 3, 1]]), "count_fill").tolist() == [[1, 1, 0], [1, 1, 1]]
    assert apply_op(to_array([[1, 1, 0], [1, 2, 0]]), "swap_top_colors").tolist() == [[0, 0, 1], [0, 2, 1]]
    assert apply_op(to_array([[4, 4]]), "swap_top_colors") is None
    assert apply_op(to_array([[0, 0]]), "count_fill") is None


def test_border_variants() -> None:
    solid = to_array([[5, 5, 5], [5, 5, 5], [5, 5, 5]])
    assert apply_op(solid, "extract_border").tolist() == [[5, 5, 5], [5, 0, 5], [5, 5, 5]]
    a = to_array([[1, 2, 3], [4, 5, 6], [7, 8, 9]])
    assert apply_op(a, "clear_border").tolist() == [[0, 0, 0], [0, 5, 0], [0, 0, 0]]
    assert apply_op(a, "remove_border").tolist() == [[5]]
    assert apply_program(a, [("remove_border", {}), ("pad", {"width": 1})]).tolist() == apply_op(
        a, "clear_border"
    ).tolist()
