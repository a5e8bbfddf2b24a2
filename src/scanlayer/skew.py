from __future__ import annotations

import math
import statistics
from collections.abc import Callable
from dataclasses import dataclass

from .mapping import Point, Quad, baseline_angle, rotate_quad, to_pixels, top_edge_angle
from .recognition import RecognizedSpan


@dataclass(frozen=True)
class SkewSettings:
    band_count: int = 20
    max_sample_degrees: float = 45.0
    axis_aligned_degrees: float = 0.25
    max_substring_samples: int = 10


@dataclass(frozen=True)
class AngleSample:
    y: float
    angle: float


@dataclass(frozen=True)
class LocalAngleModel:
    """Band angles (radians) from the bottom of the page to the top."""

    bands: tuple[float, ...]

    def angle_at(self, y: float) -> float:
        count = len(self.bands)
        if count == 0:
            return 0.0
        if count == 1:
            return self.bands[0]

        position = min(max(y, 0.0), 1.0) * count - 0.5
        if position <= 0.0:
            return self.bands[0]
        if position >= count - 1:
            return self.bands[-1]
        lower = int(math.floor(position))
        frac = position - lower
        return self.bands[lower] * (1.0 - frac) + self.bands[lower + 1] * frac

    def describe(self) -> str:
        return " ".join(f"{math.degrees(angle):.2f}" for angle in self.bands)


def _substring_ranges(length: int, max_samples: int) -> list[tuple[int, int]]:
    if length < 3 or max_samples < 1:
        return []
    count = min(max_samples, length)
    ranges: list[tuple[int, int]] = []
    for idx in range(count):
        start = (idx * length) // count
        end = max(start + 1, ((idx + 1) * length) // count)
        ranges.append((start, end))
    return ranges


def _fit_line_angle(centers: list[Point]) -> float | None:
    count = len(centers)
    mean_x = sum(point[0] for point in centers) / count
    mean_y = sum(point[1] for point in centers) / count
    sxx = sum((point[0] - mean_x) ** 2 for point in centers)
    sxy = sum((point[0] - mean_x) * (point[1] - mean_y) for point in centers)
    if sxx < 1e-9:
        return None
    return math.atan(sxy / sxx)


def _two_point_angle(pixel_quad: Quad) -> float | None:
    left = ((pixel_quad.tl[0] + pixel_quad.bl[0]) / 2.0, (pixel_quad.tl[1] + pixel_quad.bl[1]) / 2.0)
    right = ((pixel_quad.tr[0] + pixel_quad.br[0]) / 2.0, (pixel_quad.tr[1] + pixel_quad.br[1]) / 2.0)
    dx = right[0] - left[0]
    if abs(dx) < 1e-6:
        return None
    return math.atan((right[1] - left[1]) / dx)


def estimate_span_angle(
    span: RecognizedSpan,
    image_size: tuple[int, int],
    settings: SkewSettings = SkewSettings(),
) -> float | None:
    limit = math.radians(settings.max_sample_degrees)
    full_quad = span.substring_quad(0, len(span.text))

    if full_quad is None:
        # No substring geometry from the engine: use the top edge.
        if is_axis_aligned(span.quad, image_size, settings.axis_aligned_degrees):
            return None
        angle = top_edge_angle(to_pixels(span.quad, image_size))
        if angle is None or abs(angle) > limit:
            return None
        return angle

    quads = [full_quad]
    for start, end in _substring_ranges(len(span.text), settings.max_substring_samples):
        quad = span.substring_quad(start, end)
        if quad is not None:
            quads.append(quad)

    centers: list[Point] = []
    seen: set[tuple[float, float]] = set()
    for quad in quads:
        cx, cy = to_pixels(quad, image_size).centroid
        key = (round(cx, 3), round(cy, 3))
        if key in seen:
            continue
        seen.add(key)
        centers.append((cx, cy))

    angle = _fit_line_angle(centers) if len(centers) >= 2 else None
    if angle is None:
        # A lone axis-aligned box has no measurable slope.
        if is_axis_aligned(full_quad, image_size, settings.axis_aligned_degrees):
            return None
        angle = _two_point_angle(to_pixels(full_quad, image_size))
    if angle is None or abs(angle) > limit:
        return None
    return angle


def collect_samples(
    spans: list[RecognizedSpan],
    image_size: tuple[int, int],
    settings: SkewSettings = SkewSettings(),
) -> list[AngleSample]:
    samples: list[AngleSample] = []
    for span in spans:
        angle = estimate_span_angle(span, image_size, settings)
        if angle is None:
            continue
        y = min(max(span.quad.centroid[1], 0.0), 1.0)
        samples.append(AngleSample(y=y, angle=angle))
    return samples


def _band_index(y: float, band_count: int) -> int:
    return min(band_count - 1, max(0, int(y * band_count)))


def _fill_empty_bands(values: list[float | None]) -> list[float]:
    known = [idx for idx, value in enumerate(values) if value is not None]
    if not known:
        return [0.0] * len(values)

    filled: list[float] = []
    for idx, value in enumerate(values):
        if value is not None:
            filled.append(value)
            continue
        lower = max((k for k in known if k < idx), default=None)
        upper = min((k for k in known if k > idx), default=None)
        if lower is not None and upper is not None:
            frac = (idx - lower) / (upper - lower)
            filled.append(values[lower] * (1.0 - frac) + values[upper] * frac)
        elif lower is not None:
            filled.append(values[lower])
        else:
            filled.append(values[upper])
    return filled


def _smooth(values: list[float]) -> list[float]:
    if len(values) < 3:
        return list(values)
    smoothed: list[float] = []
    last = len(values) - 1
    for idx, value in enumerate(values):
        prev_value = values[max(0, idx - 1)]
        next_value = values[min(last, idx + 1)]
        smoothed.append(0.25 * prev_value + 0.5 * value + 0.25 * next_value)
    return smoothed


def build_model(samples: list[AngleSample], band_count: int = 20) -> LocalAngleModel:
    if band_count < 1:
        raise ValueError("band_count must be >= 1")

    buckets: list[list[float]] = [[] for _ in range(band_count)]
    for sample in samples:
        buckets[_band_index(sample.y, band_count)].append(sample.angle)

    medians: list[float | None] = [statistics.median(bucket) if bucket else None for bucket in buckets]
    return LocalAngleModel(bands=tuple(_smooth(_fill_empty_bands(medians))))


def is_axis_aligned(quad: Quad, image_size: tuple[int, int], tolerance_degrees: float = 0.25) -> bool:
    pixel_quad = to_pixels(quad, image_size)
    tolerance = math.radians(tolerance_degrees)
    for angle in (baseline_angle(pixel_quad), top_edge_angle(pixel_quad)):
        if angle is None or abs(angle) > tolerance:
            return False
    return True


def correct_spans(
    spans: list[RecognizedSpan],
    image_size: tuple[int, int],
    settings: SkewSettings = SkewSettings(),
    *,
    log: Callable[[str], None] | None = None,
) -> tuple[list[RecognizedSpan], LocalAngleModel]:
    samples = collect_samples(spans, image_size, settings)
    model = build_model(samples, settings.band_count)
    if log:
        filled = len({_band_index(sample.y, settings.band_count) for sample in samples})
        log(
            f"skew: {len(samples)}/{len(spans)} span samples, "
            f"{filled}/{settings.band_count} bands, angles(deg)=[{model.describe()}]"
        )

    corrected: list[RecognizedSpan] = []
    for span in spans:
        if not is_axis_aligned(span.quad, image_size, settings.axis_aligned_degrees):
            corrected.append(span)
            continue
        angle = model.angle_at(span.quad.centroid[1])
        if angle == 0.0:
            corrected.append(span)
            continue
        corrected.append(span.with_quad(rotate_quad(span.quad, angle, image_size)))
    return corrected, model
