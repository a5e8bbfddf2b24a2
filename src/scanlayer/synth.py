from __future__ import annotations

import math
import zlib
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .errors import OutputError
from .geometry import PagePlacement, Rect
from .mapping import Quad

if TYPE_CHECKING:
    import pikepdf
    from PIL import Image

TEXT_FONT_SIZE = 10.0
MIN_SPAN_EXTENT = 1.0


@dataclass(frozen=True)
class PlacedSpan:
    text: str
    quad: Quad


@lru_cache(maxsize=1)
def _helvetica_metrics() -> tuple[float, float, dict[str, int]]:
    from pdfminer.fontmetrics import FONT_METRICS

    descriptor, widths = FONT_METRICS["Helvetica"]
    return float(descriptor["Ascent"]), float(descriptor["Descent"]), widths


def _pdf_text(text: str) -> str:
    cleaned = " ".join(text.split())
    return cleaned.encode("cp1252", errors="replace").decode("cp1252")


def text_run_width(text: str, font_size: float = TEXT_FONT_SIZE) -> float:
    _ascent, _descent, widths = _helvetica_metrics()
    units = sum(widths.get(char, 556) for char in text)
    return units * font_size / 1000.0


def text_run_height(font_size: float = TEXT_FONT_SIZE) -> tuple[float, float]:
    """Return (ascent + descent, descent) for the text font at font_size."""
    ascent, descent, _widths = _helvetica_metrics()
    descent = abs(descent) * font_size / 1000.0
    return ascent * font_size / 1000.0 + descent, descent


def _escape_pdf_text(data: bytes) -> bytes:
    return data.replace(b"\\", b"\\\\").replace(b"(", b"\\(").replace(b")", b"\\)")


def _fmt(value: float) -> str:
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def invisible_text_operators(span: PlacedSpan, font_name: str = "/F1") -> bytes | None:
    text = _pdf_text(span.text)
    if not text.strip():
        return None

    quad = span.quad
    vx = quad.br[0] - quad.bl[0]
    vy = quad.br[1] - quad.bl[1]
    target_width = math.hypot(vx, vy)
    left_height = math.hypot(quad.tl[0] - quad.bl[0], quad.tl[1] - quad.bl[1])
    right_height = math.hypot(quad.tr[0] - quad.br[0], quad.tr[1] - quad.br[1])
    target_height = 0.5 * (left_height + right_height)
    if target_width <= MIN_SPAN_EXTENT or target_height <= MIN_SPAN_EXTENT:
        return None

    line_width = text_run_width(text)
    line_height, descent = text_run_height()
    if line_width <= 1.0:
        return None

    angle = math.atan2(vy, vx)
    scale_x = target_width / line_width
    scale_y = target_height / max(1.0, line_height)
    cos_a = math.cos(angle)
    sin_a = math.sin(angle)
    matrix = (
        scale_x * cos_a,
        scale_x * sin_a,
        -scale_y * sin_a,
        scale_y * cos_a,
        quad.bl[0],
        quad.bl[1],
    )
    escaped = _escape_pdf_text(text.encode("cp1252"))
    return (
        f"BT 3 Tr {font_name} {_fmt(TEXT_FONT_SIZE)} Tf "
        f"{' '.join(_fmt(value) for value in matrix)} Tm "
        f"0 {_fmt(descent)} Td (".encode("ascii")
        + escaped
        + b") Tj ET"
    )


def _box_array(rect: Rect) -> pikepdf.Array:
    import pikepdf

    return pikepdf.Array([float(value) for value in rect.as_pdf_list()])


def _new_page(pdf: pikepdf.Pdf, placement: PagePlacement) -> pikepdf.Page:
    import pikepdf

    target = placement.target
    page = pdf.add_blank_page(page_size=(target.width, target.height))
    for key in ("/MediaBox", "/CropBox", "/TrimBox", "/BleedBox", "/ArtBox"):
        page.obj[key] = _box_array(target)
    page.obj.Resources = pikepdf.Dictionary()
    return page


def page_form(source_page: Any, placement: PagePlacement) -> pikepdf.Object:
    """Wrap a source page as a Form XObject clipped to its chosen box.

    The form lives in the source document. Build it once per page and pass it
    to both the renderer and the output document.
    """
    form = source_page.as_form_xobject(handle_transformations=False)
    form.BBox = _box_array(placement.box.rect)
    return form


def _draw_form_operators(name: str, placement: PagePlacement) -> bytes:
    matrix = " ".join(_fmt(value) for value in placement.transform)
    return f"q {matrix} cm {name} Do Q".encode("ascii")


def _helvetica(pdf: pikepdf.Pdf) -> pikepdf.Object:
    import pikepdf

    return pdf.make_indirect(
        pikepdf.Dictionary(
            Type=pikepdf.Name("/Font"),
            Subtype=pikepdf.Name("/Type1"),
            BaseFont=pikepdf.Name("/Helvetica"),
            Encoding=pikepdf.Name("/WinAnsiEncoding"),
        )
    )


def _compose_page(
    pdf: pikepdf.Pdf,
    form: pikepdf.Object,
    placement: PagePlacement,
    spans: list[PlacedSpan] | None = None,
) -> int:
    import pikepdf

    page = _new_page(pdf, placement)
    resources = page.obj.Resources
    resources.XObject = pikepdf.Dictionary(Pg0=pdf.copy_foreign(form))
    stream_lines = [_draw_form_operators("/Pg0", placement)]

    written = 0
    if spans:
        text_lines: list[bytes] = []
        for span in spans:
            operators = invisible_text_operators(span)
            if operators is not None:
                text_lines.append(operators)
        if text_lines:
            resources.Font = pikepdf.Dictionary(F1=_helvetica(pdf))
            stream_lines.extend(text_lines)
            written = len(text_lines)

    page.obj.Contents = pdf.make_stream(b"\n".join(stream_lines) + b"\n")
    return written


def write_single_page_pdf(form: pikepdf.Object, placement: PagePlacement, output_pdf: Path) -> None:
    import pikepdf

    with pikepdf.Pdf.new() as pdf:
        _compose_page(pdf, form, placement)
        pdf.save(output_pdf)


class OutputDocument:
    """Append-only output PDF; pages are written in the order they are added."""

    def __init__(self, output_pdf: Path) -> None:
        import pikepdf

        self.path = output_pdf
        try:
            output_pdf.parent.mkdir(parents=True, exist_ok=True)
            self._stream = output_pdf.open("wb")
        except OSError as exc:
            raise OutputError(f"Cannot create output PDF {output_pdf}: {exc}") from exc
        self.pdf = pikepdf.Pdf.new()
        self.page_count = 0
        self.default_size: Rect | None = None
        self._closed = False

    def __enter__(self) -> OutputDocument:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def declare_default_size(self, target: Rect) -> None:
        if self.default_size is None:
            self.default_size = Rect(0.0, 0.0, target.width, target.height)

    def add_copied_page(self, form: pikepdf.Object, placement: PagePlacement) -> None:
        _compose_page(self.pdf, form, placement)
        self.page_count += 1

    def add_text_page(
        self,
        form: pikepdf.Object,
        placement: PagePlacement,
        spans: list[PlacedSpan],
    ) -> int:
        written = _compose_page(self.pdf, form, placement, spans)
        self.page_count += 1
        return written

    def add_image_page(self, image: Image.Image, placement: PagePlacement) -> None:
        import pikepdf

        rgb = image.convert("RGB")
        target = placement.target
        page = _new_page(self.pdf, placement)
        picture = self.pdf.make_stream(b"")
        picture.write(zlib.compress(rgb.tobytes()), filter=pikepdf.Name("/FlateDecode"))
        picture.Type = pikepdf.Name("/XObject")
        picture.Subtype = pikepdf.Name("/Image")
        picture.Width = rgb.width
        picture.Height = rgb.height
        picture.ColorSpace = pikepdf.Name("/DeviceRGB")
        picture.BitsPerComponent = 8
        page.obj.Resources.XObject = pikepdf.Dictionary(Im0=picture)

        box = " ".join(_fmt(value) for value in (target.x, target.y, target.width, target.height))
        content = (
            f"q 1 1 1 rg {box} re f Q\n"
            f"q {_fmt(target.width)} 0 0 {_fmt(target.height)} "
            f"{_fmt(target.x)} {_fmt(target.y)} cm /Im0 Do Q\n"
        )
        page.obj.Contents = self.pdf.make_stream(content.encode("ascii"))
        self.page_count += 1

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            # Page insertion strips inherited keys from the tree root.
            if self.default_size is not None:
                self.pdf.Root.Pages.MediaBox = _box_array(self.default_size)
            self.pdf.save(self._stream)
        except OSError as exc:
            raise OutputError(f"Cannot write output PDF {self.path}: {exc}") from exc
        finally:
            self._stream.close()
            self.pdf.close()

    def abort(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stream.close()
        self.pdf.close()
        self.path.unlink(missing_ok=True)
