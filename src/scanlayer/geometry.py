from __future__ import annotations

from dataclasses import dataclass
from typing import Any

Matrix = tuple[float, float, float, float, float, float]

BOX_ORDER: tuple[str, ...] = ("/MediaBox", "/CropBox", "/TrimBox", "/BleedBox", "/ArtBox")
_INHERITABLE_BOXES = ("/MediaBox", "/CropBox")
DEFAULT_PAGE_SIZE = (612.0, 792.0)


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_pdf_array(cls, values: Any) -> Rect:
        x0, y0, x1, y1 = (float(value) for value in list(values)[:4])
        return cls(x0, y0, x1 - x0, y1 - y0).standardized()

    def standardized(self) -> Rect:
        x, width = (self.x + self.width, -self.width) if self.width < 0 else (self.x, self.width)
        y, height = (self.y + self.height, -self.height) if self.height < 0 else (self.y, self.height)
        return Rect(x, y, width, height)

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    @property
    def area(self) -> float:
        return abs(self.width * self.height)

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    def as_pdf_list(self) -> list[float]:
        return [self.x, self.y, self.max_x, self.max_y]


@dataclass(frozen=True)
class PageBoxChoice:
    name: str
    rect: Rect


@dataclass(frozen=True)
class PagePlacement:
    index: int
    box: PageBoxChoice
    rotation: int
    target: Rect
    transform: Matrix

    @property
    def page_number(self) -> int:
        return self.index + 1


def _inherited(page_obj: Any, key: str) -> Any:
    node = page_obj
    seen = 0
    while node is not None and seen < 64:
        value = node.get(key)
        if value is not None:
            return value
        node = node.get("/Parent")
        seen += 1
    return None


def page_boxes(page: Any) -> dict[str, Rect | None]:
    page_obj = page.obj
    boxes: dict[str, Rect | None] = {}
    for name in BOX_ORDER:
        raw = _inherited(page_obj, name) if name in _INHERITABLE_BOXES else page_obj.get(name)
        if raw is None:
            boxes[name] = None
            continue
        try:
            boxes[name] = Rect.from_pdf_array(raw)
        except (TypeError, ValueError):
            boxes[name] = None
    return boxes


def choose_box(boxes: dict[str, Rect | None]) -> PageBoxChoice:
    best_name = "/MediaBox"
    best_area = 0.0
    for name in BOX_ORDER:
        rect = boxes.get(name)
        if rect is None or rect.is_empty:
            continue
        if rect.area > best_area:
            best_name, best_area = name, rect.area

    for name in (best_name, "/CropBox", "/MediaBox"):
        rect = boxes.get(name)
        if rect is not None and not rect.is_empty:
            return PageBoxChoice(name, rect)

    return PageBoxChoice("default", Rect(0.0, 0.0, *DEFAULT_PAGE_SIZE))


def page_rotation(page: Any) -> int:
    raw = _inherited(page.obj, "/Rotate")
    try:
        degrees = int(raw) if raw is not None else 0
    except (TypeError, ValueError):
        degrees = 0
    # Snap to the nearest quarter turn.
    return (int(round(degrees / 90.0)) * 90) % 360


def target_rect(box: Rect, rotation: int) -> Rect:
    if rotation in (90, 270):
        return Rect(0.0, 0.0, box.height, box.width)
    return Rect(0.0, 0.0, box.width, box.height)


def drawing_transform(box: Rect, target: Rect, rotation: int) -> Matrix:
    width, height = box.width, box.height
    if rotation == 90:
        # (x, y) -> (y, w - x)
        a, b, c, d, e, f = 0.0, -1.0, 1.0, 0.0, 0.0, width
        rotated_width, rotated_height = height, width
    elif rotation == 180:
        a, b, c, d, e, f = -1.0, 0.0, 0.0, -1.0, width, height
        rotated_width, rotated_height = width, height
    elif rotation == 270:
        # (x, y) -> (h - y, x)
        a, b, c, d, e, f = 0.0, 1.0, -1.0, 0.0, height, 0.0
        rotated_width, rotated_height = height, width
    else:
        a, b, c, d, e, f = 1.0, 0.0, 0.0, 1.0, 0.0, 0.0
        rotated_width, rotated_height = width, height

    scale_x = target.width / rotated_width if rotated_width else 1.0
    scale_y = target.height / rotated_height if rotated_height else 1.0

    # Move the box origin to (0, 0) before rotating.
    e -= a * box.x + c * box.y
    f -= b * box.x + d * box.y

    return (
        a * scale_x,
        b * scale_y,
        c * scale_x,
        d * scale_y,
        e * scale_x + target.x,
        f * scale_y + target.y,
    )


def apply_transform(matrix: Matrix, point: tuple[float, float]) -> tuple[float, float]:
    a, b, c, d, e, f = matrix
    x, y = point
    return (a * x + c * y + e, b * x + d * y + f)


def resolve_placement(page: Any, index: int) -> PagePlacement:
    box = choose_box(page_boxes(page))
    rotation = page_rotation(page)
    target = target_rect(box.rect, rotation)
    return PagePlacement(
        index=index,
        box=box,
        rotation=rotation,
        target=target,
        transform=drawing_transform(box.rect, target, rotation),
    )


def describe_placement(placement: PagePlacement) -> str:
    rect = placement.box.rect
    return (
        f"Page {placement.page_number}: chosen={placement.box.name.lstrip('/')} "
        f"rotation={placement.rotation} "
        f"box=({rect.x:.1f}, {rect.y:.1f}, {rect.width:.1f}, {rect.height:.1f})"
    )
