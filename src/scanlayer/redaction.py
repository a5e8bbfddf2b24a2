from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import NoRedactionsError
from .geometry import PagePlacement, Rect

if TYPE_CHECKING:
    from PIL import Image

MIN_MARK_EXTENT = 0.5

Color = tuple[int, int, int]


@dataclass(frozen=True)
class RedactionMark:
    """A rectangle to black out, in the coordinates of the output page."""

    page_index: int
    rect: Rect


def group_marks(marks: Iterable[RedactionMark], page_count: int) -> dict[int, list[Rect]]:
    grouped: dict[int, list[Rect]] = {}
    for mark in marks:
        if mark.page_index < 0 or mark.page_index >= page_count:
            continue
        rect = mark.rect.standardized()
        if rect.width <= MIN_MARK_EXTENT or rect.height <= MIN_MARK_EXTENT:
            continue
        grouped.setdefault(mark.page_index, []).append(rect)

    if not grouped:
        raise NoRedactionsError("No valid redaction rectangles were supplied")
    return grouped


def pixel_box(
    rect: Rect,
    placement: PagePlacement,
    scale: float,
    image_size: tuple[int, int],
) -> tuple[int, int, int, int] | None:
    target = placement.target
    x0 = max(rect.x, target.x)
    y0 = max(rect.y, target.y)
    x1 = min(rect.max_x, target.max_x)
    y1 = min(rect.max_y, target.max_y)
    if x1 <= x0 or y1 <= y0:
        return None

    width, height = image_size
    # Pixel rows grow downward from the top edge of the target.
    left = int(math.floor((x0 - target.x) * scale))
    right = int(math.ceil((x1 - target.x) * scale))
    top = int(math.floor((target.max_y - y1) * scale))
    bottom = int(math.ceil((target.max_y - y0) * scale))
    left, right = max(0, left), min(width, right)
    top, bottom = max(0, top), min(height, bottom)
    if right <= left or bottom <= top:
        return None
    return left, top, right, bottom


def burn_in(
    image: Image.Image,
    rects: Iterable[Rect],
    placement: PagePlacement,
    scale: float,
    color: Color = (0, 0, 0),
) -> int:
    from PIL import ImageDraw

    draw = ImageDraw.Draw(image)
    applied = 0
    for rect in rects:
        box = pixel_box(rect, placement, scale, image.size)
        if box is None:
            continue
        left, top, right, bottom = box
        draw.rectangle((left, top, right - 1, bottom - 1), fill=color)
        applied += 1
    return applied


def parse_color(value: str) -> Color:
    from PIL import ImageColor

    try:
        rgb = ImageColor.getrgb(value.strip())
    except ValueError as exc:
        raise ValueError(f"Unsupported colour: {value!r}") from exc
    return (int(rgb[0]), int(rgb[1]), int(rgb[2]))
