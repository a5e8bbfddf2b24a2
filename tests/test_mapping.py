from __future__ import annotations

import math
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from scanlayer.geometry import Rect
from scanlayer.mapping import (
    Quad,
    baseline_angle,
    bounding_quad,
    quad_from_rect,
    quad_to_page,
    rotate_quad,
    to_pixels,
)


def test_quad_from_rect_corners():
    quad = quad_from_rect(0.1, 0.2, 0.3, 0.4)

    assert quad.bl == (0.1, 0.2)
    assert quad.br == pytest.approx((0.4, 0.2))
    assert quad.tl == pytest.approx((0.1, 0.6))
    assert quad.centroid == pytest.approx((0.25, 0.4))


def test_bounding_quad_of_nothing_is_none():
    assert bounding_quad([]) is None


def test_quad_to_page_maps_unit_square_onto_target():
    target = Rect(0, 0, 612, 792)
    quad = quad_from_rect(0.0, 0.0, 1.0, 1.0)

    mapped = quad_to_page(quad, (1224, 1584), 2.0, target)

    assert mapped.bl == pytest.approx((0.0, 0.0))
    assert mapped.tr == pytest.approx((612.0, 792.0))


def test_quad_to_page_measures_rows_from_the_top_of_a_padded_bitmap():
    target = Rect(0, 0, 100.3, 50.2)
    # ceil(100.3 * 2) x ceil(50.2 * 2)
    size = (201, 101)
    top_row = quad_from_rect(0.0, 1.0 - 10 / 101, 0.5, 10 / 101)

    mapped = quad_to_page(top_row, size, 2.0, target)

    assert mapped.tl[1] == pytest.approx(50.2)
    assert mapped.bl[1] == pytest.approx(50.2 - 5.0)


def test_quad_to_page_clamps_to_target():
    target = Rect(0, 0, 100, 100)
    quad = Quad(tl=(-0.5, 1.5), tr=(1.5, 1.5), br=(1.5, -0.5), bl=(-0.5, -0.5))

    mapped = quad_to_page(quad, (200, 200), 2.0, target)

    for x, y in mapped.points:
        assert 0.0 <= x <= 100.0
        assert 0.0 <= y <= 100.0


def test_rotate_quad_keeps_centroid_and_turns_baseline():
    size = (1224, 1584)
    quad = quad_from_rect(0.3, 0.5, 0.4, 0.02)
    angle = math.radians(3.0)

    rotated = rotate_quad(quad, angle, size)

    assert to_pixels(rotated, size).centroid == pytest.approx(to_pixels(quad, size).centroid)
    assert baseline_angle(to_pixels(rotated, size)) == pytest.approx(angle)


def test_rotate_quad_clamps_to_image():
    size = (100, 100)
    quad = quad_from_rect(0.0, 0.0, 1.0, 0.1)

    rotated = rotate_quad(quad, math.radians(30.0), size)

    for x, y in rotated.points:
        assert 0.0 <= x <= 1.0
        assert 0.0 <= y <= 1.0
