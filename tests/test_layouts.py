import math
import random

import pytest

from layout_engine import (
    Frame,
    InvalidFrame,
    InvalidParameters,
    ScaledFrame,
    compute_layout,
    flatten,
    justify_row,
    layout_width,
    round_half_up,
    scale_to_height,
)


SCENARIO = [
    Frame(1000, 360, "a"),
    Frame(400, 600, "b"),
    Frame(600, 400, "c"),
    Frame(600, 400, "d"),
    Frame(300, 400, "e"),
    Frame(300, 400, "f"),
]

ASPECTS = [(3, 2), (2, 3), (4, 3), (3, 4), (1, 1), (16, 9), (5, 2)]


def _random_frames(seed: int, count: int):
    rng = random.Random(seed)
    frames = []
    for i in range(count):
        aw, ah = rng.choice(ASPECTS)
        scale = rng.randint(50, 900)
        frames.append(Frame(aw * scale, ah * scale, payload=i))
    return frames


def _geometry(layout):
    return [[(f.width, f.height, f.payload) for f in row] for row in layout]


def test_scenario_golden():
    layout = compute_layout(SCENARIO, 800, 360, 10)
    assert _geometry(layout) == [
        [(800, 288, "a")],
        [(145, 218, "b"), (317, 218, "c"), (317, 218, "d")],
        [(270, 360, "e"), (270, 360, "f")],
    ]


def test_scenario_rendered_row_widths():
    layout = compute_layout(SCENARIO, 800, 360, 10)
    assert [layout_width(row, 10) for row in layout] == [800, 799, 550]


def test_empty_input_gives_empty_layout():
    assert compute_layout([], 800, 360, 10) == []


def test_order_and_count_preserved():
    frames = _random_frames(1, 250)
    layout = compute_layout(frames, 1200, 300, 8)
    assert all(row for row in layout)
    assert [f.payload for f in flatten(layout)] == list(range(250))


def test_payload_passed_through_by_identity():
    payloads = [object() for _ in range(5)]
    frames = [Frame(400, 300, p) for p in payloads]
    out = flatten(compute_layout(frames, 700, 200, 4))
    assert all(o.payload is p for o, p in zip(out, payloads))


def test_input_not_mutated():
    frames = list(SCENARIO)
    compute_layout(frames, 800, 360, 10)
    assert frames == SCENARIO


@pytest.mark.parametrize("seed", [2, 3, 4])
def test_row_width_law_for_full_rows(seed):
    spacing = 8
    layout = compute_layout(_random_frames(seed, 120), 1200, 300, spacing)
    for row in layout[:-1]:
        # each frame can be off by half a pixel of rounding
        assert abs(layout_width(row, spacing) - 1200) <= math.ceil(len(row) / 2)


@pytest.mark.parametrize("seed", [5, 6])
def test_aspect_ratio_preserved(seed):
    frames = _random_frames(seed, 80)
    layout = compute_layout(frames, 1000, 250, 0)
    for original, scaled in zip(frames, flatten(layout)):
        ratio = original.width / original.height
        assert abs(scaled.width - scaled.height * ratio) <= 1 + 0.5 * ratio


def test_height_never_exceeds_max_row_height():
    layout = compute_layout(_random_frames(7, 150), 900, 240, 6)
    for row in layout:
        assert max(f.height for f in row) <= 240


def test_full_rows_share_a_height():
    layout = compute_layout(_random_frames(8, 60), 900, 240, 6)
    for row in layout[:-1]:
        assert len({f.height for f in row}) == 1


def test_deterministic():
    frames = _random_frames(9, 100)
    assert compute_layout(frames, 1100, 280, 5) == compute_layout(frames, 1100, 280, 5)


def test_trailing_row_not_justified_by_default():
    layout = compute_layout([Frame(300, 400), Frame(300, 400)], 800, 360, 10)
    assert _geometry(layout) == [[(270, 360, None), (270, 360, None)]]


def test_short_trailing_row_stays_within_max_row_height():
    frames = [Frame(1000, 360), Frame(300, 400), Frame(300, 400)]
    layout = compute_layout(frames, 800, 360, 10)
    assert _geometry(layout)[-1] == [(270, 360, None), (270, 360, None)]
    assert layout_width(layout[-1], 10) < 800


def test_trailing_row_cannot_be_stretched():
    with pytest.raises(TypeError):
        compute_layout([Frame(300, 400)], 800, 360, 10, justify_last_row=True)


def test_fractional_spacing_rejected():
    with pytest.raises(InvalidParameters, match="whole number"):
        compute_layout(SCENARIO, 800, 360, 2.9)


def test_integral_float_spacing_accepted():
    assert compute_layout(SCENARIO, 800, 360, 10.0) == compute_layout(SCENARIO, 800, 360, 10)


def test_single_oversized_frame_corrected_to_container():
    layout = compute_layout([Frame(4000, 1000, "wide")], 800, 300, 10)
    assert _geometry(layout) == [[(800, 200, "wide")]]


def test_row_closes_exactly_at_container_width():
    layout = compute_layout([Frame(400, 400), Frame(400, 400), Frame(400, 400)], 800, 400, 0)
    assert [len(row) for row in layout] == [2, 1]
    assert _geometry(layout)[0] == [(400, 400, None), (400, 400, None)]


@pytest.mark.parametrize("width,height", [(0, 100), (100, 0), (-5, 100), (float("nan"), 100), (100, float("inf")), (None, 100)])
def test_invalid_frame_raises(width, height):
    frames = [Frame(100, 100), Frame(width, height)]
    with pytest.raises(InvalidFrame) as excinfo:
        compute_layout(frames, 800, 360, 10)
    assert excinfo.value.index == 1


def test_invalid_frame_is_a_value_error():
    with pytest.raises(ValueError):
        compute_layout([Frame(0, 0)], 800, 360, 10)


@pytest.mark.parametrize("container_width,max_row_height,spacing", [
    (0, 360, 10),
    (-800, 360, 10),
    (800, 0, 10),
    (800, -1, 10),
    (800, 360, -1),
    (float("nan"), 360, 10),
    (800, 360, float("inf")),
])
def test_invalid_parameters_raise(container_width, max_row_height, spacing):
    with pytest.raises(InvalidParameters):
        compute_layout([], container_width, max_row_height, spacing)


def test_parameters_checked_before_frames():
    with pytest.raises(InvalidParameters):
        compute_layout([Frame(0, 0)], 0, 360, 10)


def test_round_half_up_differs_from_bankers_rounding():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2
    assert scale_to_height(Frame(5, 2), 1).width == 3


def test_justify_row_subtracts_spacing_after_first_frame():
    row = [ScaledFrame(240, 360), ScaledFrame(540, 360), ScaledFrame(540, 360)]
    justified = justify_row(row, 1320, 800, 10)
    assert [(f.width, f.height) for f in justified] == [(145, 218), (317, 218), (317, 218)]


def test_justify_row_clamps_widths_at_zero():
    row = [ScaledFrame(1000, 100), ScaledFrame(4, 100)]
    justified = justify_row(row, 1004, 1004, 10)
    assert justified[1].width == 0


def test_fractional_max_row_height_rounds_down():
    layout = compute_layout([Frame(100, 100)], 800, 120.9, 0)
    assert layout[0][0].height == 120
