from __future__ import annotations

import sys
from pathlib import Path

import pikepdf
import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from scanlayer.errors import NoRedactionsError
from scanlayer.geometry import PageBoxChoice, PagePlacement, Rect
from scanlayer.pipeline import RedactionOptions, apply_permanent_redactions
from scanlayer.redaction import RedactionMark, burn_in, group_marks, parse_color, pixel_box


def _placement(width: float = 612, height: float = 792) -> PagePlacement:
    rect = Rect(0, 0, width, height)
    return PagePlacement(
        index=0,
        box=PageBoxChoice("/MediaBox", rect),
        rotation=0,
        target=rect,
        transform=(1.0, 0.0, 0.0, 1.0, 0.0, 0.0),
    )


def _page_image(path: Path, index: int) -> Image.Image:
    with pikepdf.open(path) as pdf:
        xobject = pdf.pages[index].obj.Resources.XObject.Im0
        return pikepdf.PdfImage(xobject).as_pil_image().convert("RGB")


def test_group_marks_drops_out_of_range_and_tiny_marks():
    marks = [
        RedactionMark(0, Rect(100, 100, 50, 20)),
        RedactionMark(1, Rect(150, 120, -40, -10)),
        RedactionMark(2, Rect(10, 10, 50, 50)),
        RedactionMark(0, Rect(10, 10, 0.4, 0.4)),
        RedactionMark(-1, Rect(10, 10, 50, 50)),
    ]

    grouped = group_marks(marks, page_count=2)

    assert grouped == {0: [Rect(100, 100, 50, 20)], 1: [Rect(110, 110, 40, 10)]}


def test_group_marks_without_valid_marks_is_fatal():
    with pytest.raises(NoRedactionsError, match="No valid redaction rectangles"):
        group_marks([RedactionMark(0, Rect(0, 0, 0.5, 10)), RedactionMark(3, Rect(0, 0, 10, 10))], 2)


def test_pixel_box_flips_rows():
    box = pixel_box(Rect(100, 700, 50, 20), _placement(), 2.0, (1224, 1584))

    assert box == (200, 144, 300, 184)


def test_pixel_box_outside_target_is_none():
    assert pixel_box(Rect(700, 10, 20, 20), _placement(), 2.0, (1224, 1584)) is None


def test_burn_in_fills_only_the_rectangle():
    image = Image.new("RGB", (1224, 1584), "white")

    applied = burn_in(image, [Rect(100, 700, 50, 20)], _placement(), 2.0, (200, 0, 0))

    assert applied == 1
    assert image.getpixel((250, 160)) == (200, 0, 0)
    assert image.getpixel((250, 100)) == (255, 255, 255)
    assert image.getpixel((299, 183)) == (200, 0, 0)
    assert image.getpixel((300, 184)) == (255, 255, 255)


def test_parse_color():
    assert parse_color("black") == (0, 0, 0)
    assert parse_color("#ff8000") == (255, 128, 0)
    with pytest.raises(ValueError, match="Unsupported colour"):
        parse_color("not-a-colour")


def test_two_page_document_applies_valid_marks_only(make_pdf, make_renderer, tmp_path: Path):
    source = make_pdf({"text": "Name: Erika Mustermann"}, {"text": "IBAN DE00"})
    output = tmp_path / "redacted.pdf"
    renderer = make_renderer()
    marks = [
        RedactionMark(0, Rect(72, 680, 200, 30)),
        RedactionMark(1, Rect(72, 680, 200, 30)),
        RedactionMark(5, Rect(72, 680, 200, 30)),
    ]
    progress: list[tuple[int, int]] = []
    lines: list[str] = []

    report = apply_permanent_redactions(
        source,
        output,
        marks,
        RedactionOptions(render_scale=2.0),
        renderer=renderer,
        progress=lambda current, total: progress.append((current, total)),
        log=lines.append,
    )

    assert report.redactions_applied == 2
    assert report.page_count == 2
    assert progress == [(1, 2), (2, 2)]
    assert "Page 1: 1 redaction(s) applied" in lines
    assert "Page 2: 1 redaction(s) applied" in lines
    assert renderer.calls == [(1, 2.0), (2, 2.0)]

    with pikepdf.open(output) as pdf:
        assert len(pdf.pages) == 2
    first = _page_image(output, 0)
    assert first.size == (1224, 1584)
    assert first.getpixel((300, 200)) == (0, 0, 0)
    assert first.getpixel((300, 600)) == (255, 255, 255)


def test_no_valid_marks_fails_before_rendering(make_pdf, make_renderer, tmp_path: Path):
    source = make_pdf({})
    output = tmp_path / "redacted.pdf"
    renderer = make_renderer()

    with pytest.raises(NoRedactionsError):
        apply_permanent_redactions(
            source,
            output,
            [RedactionMark(0, Rect(10, 10, 0.2, 0.2))],
            renderer=renderer,
        )

    assert renderer.calls == []
    assert not output.exists()
