from __future__ import annotations

import math
from dataclasses import dataclass

from .geometry import Rect

Point = tuple[float, float]


@dataclass(frozen=True)
class Quad:
    """Four corners of a text footprint: top-left, top-right, bottom-right, bottom-left."""

    tl: Point
    tr: Point
    br: Point
    bl: Point

    @property
    def points(self) -> tuple[Point, Point, Point, Point]:
        return (self.tl, self.tr, self.br, self.bl)

    @property
    def centroid(self) -> Point:
        xs = [point[0] for point in self.points]
        ys = [point[1] for point in self.points]
        return (sum(xs) / 4.0, sum(ys) / 4.0)

    def map(self, func) -> Quad:  # noqa: ANN001
        return Quad(func(self.tl), func(self.tr), func(self.br), func(self.bl))


def quad_from_rect(x: float, y: float, width: float, height: float) -> Quad:
    return Quad(
        tl=(x, y + height),
        tr=(x + width, y + height),
        br=(x + width, y),
        bl=(x, y),
    )


def bounding_quad(quads: list[Quad]) -> Quad | None:
    points = [point for quad in quads for point in quad.points]
    if not points:
        return None
    min_x = min(point[0] for point in points)
    max_x = max(point[0] for point in points)
    min_y = min(point[1] for point in points)
    max_y = max(point[1] for point in points)
    return quad_from_rect(min_x, min_y, max_x - min_x, max_y - min_y)


def to_pixels(quad: Quad, image_size: tuple[int, int]) -> Quad:
    width, height = image_size
    return quad.map(lambda point: (point[0] * width, point[1] * height))


def to_normalized(quad: Quad, image_size: tuple[int, int]) -> Quad:
    width, height = image_size
    return quad.map(lambda point: (point[0] / width, point[1] / height))


def edge_angle(start: Point, end: Point) -> float | None:
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    if abs(dx) < 1e-9 and abs(dy) < 1e-9:
        return None
    return math.atan2(dy, dx)


def baseline_angle(quad: Quad) -> float | None:
    return edge_angle(quad.bl, quad.br)


def top_edge_angle(quad: Quad) -> float | None:
    return edge_angle(quad.tl, quad.tr)


def rotate_quad(quad: Quad, angle: float, image_size: tuple[int, int]) -> Quad:
    """Rotate a normalized quad about its centroid.

    The rotation happens in pixel space so non-square bitmaps keep their
    proportions; the result is clamped to the image and returned normalized.
    """
    width, height = image_size
    pixel_quad = to_pixels(quad, image_size)
    cx, cy = pixel_quad.centroid
    cos_a = math.cos(angle)
    sin_a = math.sin(angle)

    def rotate(point: Point) -> Point:
        x = point[0] - cx
        y = point[1] - cy
        rx = x * cos_a - y * sin_a + cx
        ry = x * sin_a + y * cos_a + cy
        return (min(max(rx, 0.0), width), min(max(ry, 0.0), height))

    return to_normalized(pixel_quad.map(rotate), image_size)


def quad_to_page(
    quad: Quad,
    bitmap_size: tuple[int, int],
    scale: float,
    target: Rect,
) -> Quad:
    width, height = bitmap_size

    def to_page(point: Point) -> Point:
        px = point[0] * width
        py = point[1] * height
        # Bitmap rows start at the top edge of the target rect; the ceil
        # padding row/column falls outside it and is clamped away.
        x = px / scale + target.x
        y = target.y + target.height - (height - py) / scale
        return (
            min(max(x, target.x), target.max_x),
            min(max(y, target.y), target.max_y),
        )

    return quad.map(to_page)
