from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pikepdf
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from scanlayer.errors import RecognitionError, RenderError
from scanlayer.mapping import quad_from_rect
from scanlayer.recognition import RecognitionRequest, RecognizedSpan
from scanlayer.render import bitmap_size, white_canvas


def _helvetica_resources() -> pikepdf.Dictionary:
    return pikepdf.Dictionary(
        Font=pikepdf.Dictionary(
            F1=pikepdf.Dictionary(
                Type=pikepdf.Name.Font,
                Subtype=pikepdf.Name.Type1,
                BaseFont=pikepdf.Name.Helvetica,
            )
        )
    )


def write_pdf(
    path: Path,
    pages: list[dict],
) -> Path:
    """Each page dict may hold size, text, rotate and extra box entries."""
    with pikepdf.Pdf.new() as pdf:
        for layout in pages:
            width, height = layout.get("size", (612, 792))
            page = pdf.add_blank_page(page_size=(width, height))
            content = b"q 0.2 0.2 0.2 rg 72 72 144 36 re f Q\n"
            if layout.get("text"):
                page.obj.Resources = _helvetica_resources()
                content += f"BT /F1 18 Tf 72 {height - 100} Td ({layout['text']}) Tj ET\n".encode("latin-1")
            page.obj.Contents = pdf.make_stream(content)
            if "rotate" in layout:
                page.obj.Rotate = layout["rotate"]
            for key, value in layout.get("boxes", {}).items():
                page.obj[key] = pikepdf.Array(value)
        pdf.save(path)
    return path


class FakeRenderer:
    def __init__(self, fail_on_page: int | None = None) -> None:
        self.calls: list[tuple[int, float]] = []
        self.forms: list = []
        self.fail_on_page = fail_on_page

    def render(self, form, placement, scale):
        self.calls.append((placement.page_number, scale))
        self.forms.append(form)
        if placement.page_number == self.fail_on_page:
            raise RenderError("Cannot allocate bitmap")
        return white_canvas(bitmap_size(placement.target, scale))


class FakeEngine:
    def __init__(
        self,
        spans: list[RecognizedSpan] | None = None,
        *,
        max_side: int | None = None,
        always_fail: bool = False,
    ) -> None:
        self.spans = spans if spans is not None else []
        self.max_side = max_side
        self.always_fail = always_fail
        self.calls: list[tuple[tuple[int, int], RecognitionRequest]] = []

    def recognize(self, image, request):
        self.calls.append((image.size, request))
        if self.always_fail:
            raise RecognitionError("engine rejected the bitmap")
        if self.max_side is not None and max(image.size) > self.max_side:
            raise RecognitionError(f"bitmap {image.size[0]}x{image.size[1]} is too large")
        return list(self.spans)


@pytest.fixture
def make_pdf(tmp_path: Path) -> Callable[..., Path]:
    def factory(*pages: dict, name: str = "source.pdf") -> Path:
        return write_pdf(tmp_path / name, list(pages) or [{}])

    return factory


@pytest.fixture
def fake_renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def line_span() -> RecognizedSpan:
    return RecognizedSpan(text="Invoice 4711", quad=quad_from_rect(0.1, 0.8, 0.4, 0.03))


@pytest.fixture
def make_engine() -> type[FakeEngine]:
    return FakeEngine


@pytest.fixture
def make_renderer() -> type[FakeRenderer]:
    return FakeRenderer
