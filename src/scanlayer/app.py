from __future__ import annotations

import argparse
import shutil
import sys
from collections.abc import Sequence
from pathlib import Path

from .geometry import Rect
from .pipeline import (
    ConversionReport,
    OcrOptions,
    RedactionOptions,
    apply_permanent_redactions,
    describe_report,
    ocr_to_searchable_pdf,
    parse_languages,
)
from .recognition import Quality
from .redaction import RedactionMark, parse_color
from .skew import SkewSettings


def _default_output_path(input_pdf: Path, suffix: str) -> Path:
    return input_pdf.with_name(f"{input_pdf.stem}_{suffix}.pdf")


def _parse_mark(value: str) -> RedactionMark:
    try:
        page_raw, rect_raw = value.split(":", 1)
        x, y, width, height = (float(part) for part in rect_raw.split(","))
        page_number = int(page_raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"invalid rectangle {value!r}, expected PAGE:X,Y,WIDTH,HEIGHT"
        ) from exc
    return RedactionMark(page_index=page_number - 1, rect=Rect(x, y, width, height))


def _parse_color_arg(value: str) -> tuple[int, int, int]:
    try:
        return parse_color(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scanlayer",
        description=(
            "Add an invisible, searchable text layer to scanned PDFs, or burn "
            "redaction rectangles permanently into rasterized pages."
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ocr = subparsers.add_parser("ocr", help="Add a searchable text layer")
    ocr.add_argument("input_pdf", type=Path, help="Path to source scanned PDF")
    ocr.add_argument(
        "output_pdf",
        type=Path,
        nargs="?",
        help="Output searchable PDF path (default: <input>_searchable.pdf)",
    )
    ocr.add_argument(
        "-l",
        "--lang",
        default="de-DE,en-US",
        help="Preferred languages as locale tags, e.g. de-DE,en-US (default: de-DE,en-US)",
    )
    ocr.add_argument(
        "--quality",
        choices=tuple(quality.value for quality in Quality),
        default=Quality.ACCURATE.value,
        help="Recognition quality (default: accurate)",
    )
    ocr.add_argument(
        "--no-language-correction",
        action="store_true",
        help="Disable dictionary-based language correction",
    )
    ocr.add_argument(
        "--scale",
        type=float,
        default=2.0,
        help="Render scale relative to 72 dpi, must be >= 1 (default: 2.0)",
    )
    ocr.add_argument(
        "--force-ocr",
        action="store_true",
        help="Recognize pages even when they already carry extractable text",
    )
    ocr.add_argument(
        "--bands",
        type=int,
        default=SkewSettings().band_count,
        help="Horizontal bands in the local skew model (default: 20)",
    )
    ocr.add_argument("--quiet", action="store_true", help="Only print errors and the final line")

    redact = subparsers.add_parser("redact", help="Burn redaction rectangles into the pages")
    redact.add_argument("input_pdf", type=Path, help="Path to source PDF")
    redact.add_argument(
        "output_pdf",
        type=Path,
        nargs="?",
        help="Output PDF path (default: <input>_redacted.pdf)",
    )
    redact.add_argument(
        "-r",
        "--rect",
        dest="marks",
        type=_parse_mark,
        action="append",
        default=[],
        metavar="PAGE:X,Y,W,H",
        help="Rectangle to redact in page units, page numbers start at 1 (repeatable)",
    )
    redact.add_argument(
        "--color",
        type=_parse_color_arg,
        default=(0, 0, 0),
        help="Fill colour, e.g. black or #202020 (default: black)",
    )
    redact.add_argument(
        "--scale",
        type=float,
        default=2.5,
        help="Render scale relative to 72 dpi, must be >= 1 (default: 2.5)",
    )
    redact.add_argument("--quiet", action="store_true", help="Only print errors and the final line")
    return parser


def _validate_args(args: argparse.Namespace) -> None:
    if not args.input_pdf.exists():
        raise FileNotFoundError(f"Input file not found: {args.input_pdf}")
    if args.input_pdf.suffix.lower() != ".pdf":
        raise ValueError(f"Input file is not a PDF: {args.input_pdf}")
    if args.scale < 1.0:
        raise ValueError("--scale must be >= 1")
    if args.command == "ocr" and args.bands < 1:
        raise ValueError("--bands must be >= 1")
    if args.command == "redact" and not args.marks:
        raise ValueError("at least one --rect is required")


def _ensure_runtime_dependencies(required_bins: Sequence[str]) -> None:
    missing = [bin_name for bin_name in required_bins if shutil.which(bin_name) is None]
    if missing:
        joined = ", ".join(missing)
        raise RuntimeError(
            "Missing required executables in PATH: "
            f"{joined}. Install Ghostscript and Tesseract first."
        )


def _stderr_line(line: str) -> None:
    print(line, file=sys.stderr)


def _stderr_progress(current: int, total: int) -> None:
    print(f"Page {current}/{total}", file=sys.stderr)


def run_ocr(
    input_pdf: Path,
    output_pdf: Path | None = None,
    *,
    languages: Sequence[str] = ("de-DE", "en-US"),
    quality: str = "accurate",
    use_language_correction: bool = True,
    scale: float = 2.0,
    force_ocr: bool = False,
    bands: int = 20,
    quiet: bool = False,
) -> ConversionReport:
    options = OcrOptions(
        languages=tuple(languages),
        quality=quality,
        use_language_correction=use_language_correction,
        render_scale=scale,
        skip_pages_with_existing_text=not force_ocr,
        skew=SkewSettings(band_count=bands),
    )
    _ensure_runtime_dependencies(("gs", "tesseract"))
    return ocr_to_searchable_pdf(
        input_pdf,
        output_pdf or _default_output_path(input_pdf, "searchable"),
        options,
        progress=None if quiet else _stderr_progress,
        log=None if quiet else _stderr_line,
    )


def run_redaction(
    input_pdf: Path,
    marks: Sequence[RedactionMark],
    output_pdf: Path | None = None,
    *,
    color: tuple[int, int, int] = (0, 0, 0),
    scale: float = 2.5,
    quiet: bool = False,
) -> ConversionReport:
    options = RedactionOptions(render_scale=scale, color=color)
    _ensure_runtime_dependencies(("gs",))
    return apply_permanent_redactions(
        input_pdf,
        output_pdf or _default_output_path(input_pdf, "redacted"),
        marks,
        options,
        progress=None if quiet else _stderr_progress,
        log=None if quiet else _stderr_line,
    )


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        _validate_args(args)
        if args.command == "ocr":
            report = run_ocr(
                args.input_pdf,
                args.output_pdf,
                languages=parse_languages(args.lang),
                quality=args.quality,
                use_language_correction=not args.no_language_correction,
                scale=args.scale,
                force_ocr=args.force_ocr,
                bands=args.bands,
                quiet=args.quiet,
            )
            what = "searchable PDF"
        else:
            report = run_redaction(
                args.input_pdf,
                args.marks,
                args.output_pdf,
                color=args.color,
                scale=args.scale,
                quiet=args.quiet,
            )
            what = "redacted PDF"
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    print(f"Done: {what} written to {report.output_pdf} ({' '.join(describe_report(report))})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
