from __future__ import annotations

import math
import subprocess
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from .errors import RenderError
from .geometry import PagePlacement, Rect

if TYPE_CHECKING:
    from PIL import Image


class PageRenderer(Protocol):
    def render(self, form: Any, placement: PagePlacement, scale: float) -> Image.Image:
        ...


def bitmap_size(target: Rect, scale: float) -> tuple[int, int]:
    return (
        max(1, int(math.ceil(target.width * scale))),
        max(1, int(math.ceil(target.height * scale))),
    )


def white_canvas(size: tuple[int, int]) -> Image.Image:
    from PIL import Image

    try:
        return Image.new("RGB", size, (255, 255, 255))
    except (MemoryError, ValueError) as exc:
        raise RenderError(f"Cannot allocate {size[0]}x{size[1]} bitmap: {exc}") from exc


def flatten_on_white(image: Image.Image, size: tuple[int, int]) -> Image.Image:
    canvas = white_canvas(size)
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        canvas.paste(rgba, (0, 0), rgba)
    else:
        canvas.paste(image.convert("RGB"), (0, 0))
    return canvas


class GhostscriptRenderer:
    def __init__(self, gs_binary: str = "gs", *, antialias_bits: int = 4) -> None:
        self.gs_binary = gs_binary
        self.antialias_bits = antialias_bits

    def render(self, form: Any, placement: PagePlacement, scale: float) -> Image.Image:
        from PIL import Image

        from .synth import write_single_page_pdf

        if scale < 1.0:
            raise ValueError("render scale must be >= 1.0")

        size = bitmap_size(placement.target, scale)
        with tempfile.TemporaryDirectory(prefix="scanlayer_render_") as temp_dir_raw:
            temp_dir = Path(temp_dir_raw)
            page_pdf = temp_dir / f"page_{placement.page_number:05d}.pdf"
            output_png = temp_dir / f"page_{placement.page_number:05d}.png"
            write_single_page_pdf(form, placement, page_pdf)
            self._run_ghostscript(page_pdf, output_png, dpi=72.0 * scale)

            try:
                with Image.open(output_png) as rendered:
                    rendered.load()
                    return flatten_on_white(rendered, size)
            except (OSError, MemoryError, Image.DecompressionBombError) as exc:
                raise RenderError(f"Cannot load rendered bitmap: {exc}") from exc

    def _run_ghostscript(self, page_pdf: Path, output_png: Path, *, dpi: float) -> None:
        cmd = [
            self.gs_binary,
            "-q",
            "-dSAFER",
            "-dBATCH",
            "-dNOPAUSE",
            "-sDEVICE=png16m",
            f"-dTextAlphaBits={self.antialias_bits}",
            f"-dGraphicsAlphaBits={self.antialias_bits}",
            f"-r{dpi:.4f}",
            "-o",
            str(output_png),
            str(page_pdf),
        ]
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise RenderError(f"Ghostscript executable not found: {self.gs_binary}") from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or "").strip() or f"exit code {exc.returncode}"
            raise RenderError(f"Ghostscript failed: {detail}") from exc
