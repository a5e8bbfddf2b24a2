from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from .errors import RecognitionError, RecognitionExhaustedError
from .mapping import Quad, bounding_quad

if TYPE_CHECKING:
    from PIL import Image

DOWNSCALE_LADDER: tuple[int | None, ...] = (None, 1600, 1200, 900, 700)

LogFn = Callable[[str], None]


class Quality(str, Enum):
    FAST = "fast"
    ACCURATE = "accurate"


@dataclass(frozen=True)
class RecognitionRequest:
    languages: tuple[str, ...] = ("de-DE", "en-US")
    quality: Quality = Quality.ACCURATE
    use_language_correction: bool = True

    def describe(self) -> str:
        langs = ",".join(self.languages) if self.languages else "-"
        correction = "on" if self.use_language_correction else "off"
        return f"quality={self.quality.value} correction={correction} languages={langs}"


@dataclass(frozen=True)
class SpanSegment:
    start: int
    end: int
    quad: Quad


@dataclass(frozen=True)
class RecognizedSpan:
    text: str
    quad: Quad
    segments: tuple[SpanSegment, ...] = ()

    def substring_quad(self, start: int, end: int) -> Quad | None:
        if not self.segments:
            return None
        if start <= 0 and end >= len(self.text):
            return self.quad
        hits = [seg.quad for seg in self.segments if seg.start < end and seg.end > start]
        return bounding_quad(hits)

    def with_quad(self, quad: Quad) -> RecognizedSpan:
        return replace(self, quad=quad)


class RecognitionEngine(Protocol):
    def recognize(self, image: Image.Image, request: RecognitionRequest) -> list[RecognizedSpan]:
        ...


@dataclass
class RecognitionResult:
    spans: list[RecognizedSpan]
    image_size: tuple[int, int]
    request: RecognitionRequest
    max_dimension: int | None = None
    attempts: int = 1
    errors: list[str] = field(default_factory=list)


def build_request_ladder(request: RecognitionRequest) -> list[RecognitionRequest]:
    candidates = [
        request,
        replace(request, use_language_correction=False),
        replace(request, quality=Quality.FAST, use_language_correction=False),
        RecognitionRequest(languages=(), quality=Quality.FAST, use_language_correction=False),
    ]
    ladder: list[RecognitionRequest] = []
    for candidate in candidates:
        if candidate not in ladder:
            ladder.append(candidate)
    return ladder


def downscale(image: Image.Image, max_dimension: int, log: LogFn | None = None) -> Image.Image:
    from PIL import Image

    width, height = image.size
    longest = max(width, height)
    if longest <= max_dimension:
        return image

    factor = max_dimension / longest
    size = (max(1, round(width * factor)), max(1, round(height * factor)))
    try:
        return image.resize(size, resample=Image.Resampling.LANCZOS)
    except ValueError:
        if log:
            log(f"Lanczos resample unavailable for mode {image.mode}, redrawing at {size[0]}x{size[1]}")
        return image.convert("RGB").resize(size)


def recognize_with_fallback(
    engine: RecognitionEngine,
    image: Image.Image,
    request: RecognitionRequest,
    *,
    max_dimensions: Sequence[int | None] = DOWNSCALE_LADDER,
    page_number: int | None = None,
    log: LogFn | None = None,
) -> RecognitionResult:
    ladder = build_request_ladder(request)
    prefix = f"Page {page_number} OCR" if page_number is not None else "OCR"
    errors: list[str] = []
    last_error: BaseException | None = None
    attempts = 0

    for max_dimension in max_dimensions:
        if max_dimension is None:
            candidate = image
        else:
            if max(image.size) <= max_dimension:
                continue
            candidate = downscale(image, max_dimension, log=log)
            if log:
                log(f"{prefix}: retrying at {candidate.size[0]}x{candidate.size[1]} (max {max_dimension}px)")

        for config in ladder:
            attempts += 1
            try:
                spans = engine.recognize(candidate, config)
            except (RecognitionError, MemoryError) as exc:
                last_error = exc
                errors.append(f"{config.describe()} max={max_dimension or 'full'}: {exc}")
                if log:
                    log(f"{prefix}: attempt {attempts} failed ({config.describe()}): {exc}")
                continue

            if log and attempts > 1:
                log(f"{prefix}: attempt {attempts} succeeded ({config.describe()})")
            return RecognitionResult(
                spans=list(spans),
                image_size=candidate.size,
                request=config,
                max_dimension=max_dimension,
                attempts=attempts,
                errors=errors,
            )

    raise RecognitionExhaustedError(
        f"text recognition failed after {attempts} attempts",
        page_number=page_number,
        attempts=attempts,
        last_error=last_error,
    )
