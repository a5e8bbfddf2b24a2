from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .errors import InputError, PageError, RenderError
from .geometry import PagePlacement, describe_placement, resolve_placement
from .mapping import quad_to_page
from .recognition import LogFn, Quality, RecognitionEngine, RecognitionRequest, recognize_with_fallback
from .redaction import Color, RedactionMark, burn_in, group_marks
from .render import GhostscriptRenderer, PageRenderer
from .skew import SkewSettings, correct_spans
from .synth import OutputDocument, PlacedSpan, page_form

if TYPE_CHECKING:
    import pikepdf
    from PIL import Image

ProgressFn = Callable[[int, int], None]


@dataclass(frozen=True)
class OcrOptions:
    languages: tuple[str, ...] = ("de-DE", "en-US")
    quality: str = "accurate"
    use_language_correction: bool = True
    render_scale: float = 2.0
    skip_pages_with_existing_text: bool = True
    skew: SkewSettings = field(default_factory=SkewSettings)

    def request(self) -> RecognitionRequest:
        return RecognitionRequest(
            languages=tuple(self.languages),
            quality=Quality(self.quality),
            use_language_correction=self.use_language_correction,
        )


@dataclass(frozen=True)
class RedactionOptions:
    render_scale: float = 2.5
    color: Color = (0, 0, 0)


@dataclass
class ConversionReport:
    output_pdf: Path
    page_count: int = 0
    recognized_pages: int = 0
    skipped_pages: int = 0
    text_runs: int = 0
    redactions_applied: int = 0
    fallback_pages: list[int] = field(default_factory=list)


def validate_ocr_options(options: OcrOptions) -> None:
    if options.render_scale < 1.0:
        raise ValueError("render scale must be >= 1.0")
    if options.quality not in {quality.value for quality in Quality}:
        raise ValueError(f"quality must be one of: fast, accurate (got {options.quality!r})")
    if options.skew.band_count < 1:
        raise ValueError("band count must be >= 1")
    if options.skew.max_substring_samples < 0:
        raise ValueError("substring sample count must be >= 0")


def validate_redaction_options(options: RedactionOptions) -> None:
    if options.render_scale < 1.0:
        raise ValueError("render scale must be >= 1.0")
    if len(options.color) != 3 or any(not 0 <= channel <= 255 for channel in options.color):
        raise ValueError(f"colour must be three 0-255 channels (got {options.color!r})")


@contextmanager
def _open_input(input_pdf: Path) -> Iterator[pikepdf.Pdf]:
    import pikepdf

    try:
        pdf = pikepdf.open(input_pdf)
    except (pikepdf.PdfError, OSError) as exc:
        raise InputError(f"Cannot open input PDF {input_pdf}: {exc}") from exc

    with pdf:
        if len(pdf.pages) == 0:
            raise InputError(f"Input PDF has no pages: {input_pdf}")
        yield pdf


def _fetch_page(pdf: pikepdf.Pdf, index: int) -> tuple[pikepdf.Object, PagePlacement]:
    import pikepdf

    try:
        page = pdf.pages[index]
        placement = resolve_placement(page, index)
        return page_form(page, placement), placement
    except (pikepdf.PdfError, IndexError, KeyError, TypeError) as exc:
        raise PageError(f"cannot read page: {exc}", page_number=index + 1, stage="fetch") from exc


def _render(renderer: PageRenderer, form: Any, placement: PagePlacement, scale: float) -> Image.Image:
    try:
        return renderer.render(form, placement, scale)
    except RenderError as exc:
        raise PageError(str(exc), page_number=placement.page_number, stage="render") from exc


def _layout_text(item: Any) -> Iterator[str]:
    from pdfminer.layout import LTContainer, LTText

    if isinstance(item, LTText):
        yield item.get_text()
    elif isinstance(item, LTContainer):
        for child in item:
            yield from _layout_text(child)


class ExistingTextScanner:
    """Answers, page by page and in order, whether the input already carries text.

    pdfminer walks the file once; each query advances the walk to the asked
    page. A parse failure marks that page and every later one as image-only.
    """

    def __init__(self, input_pdf: Path, *, log: LogFn | None = None) -> None:
        from pdfminer.high_level import extract_pages

        self._layouts = extract_pages(str(input_pdf))
        self._next_index = 0
        self._failed = False
        self._log = log

    def has_text(self, index: int) -> bool:
        from pdfminer.psexceptions import PSException

        if index < self._next_index:
            raise ValueError(f"page {index + 1} was already scanned")
        if self._failed:
            return False
        try:
            for layout in self._layouts:
                current = self._next_index
                self._next_index += 1
                if current == index:
                    return any(char.isalnum() for text in _layout_text(layout) for char in text)
        except PSException as exc:
            self._failed = True
            if self._log:
                self._log(
                    f"Page {index + 1}: text extraction failed ({exc}), "
                    "treating this and later pages as image-only"
                )
        return False

    def close(self) -> None:
        self._layouts.close()


def ocr_to_searchable_pdf(
    input_pdf: Path,
    output_pdf: Path,
    options: OcrOptions = OcrOptions(),
    *,
    engine: RecognitionEngine | None = None,
    renderer: PageRenderer | None = None,
    progress: ProgressFn | None = None,
    log: LogFn | None = None,
) -> ConversionReport:
    validate_ocr_options(options)
    if engine is None:
        from .tesseract import TesseractEngine

        engine = TesseractEngine()
    renderer = renderer or GhostscriptRenderer()
    request = options.request()
    scale = options.render_scale
    report = ConversionReport(output_pdf=output_pdf)

    with _open_input(input_pdf) as pdf, closing(ExistingTextScanner(input_pdf, log=log)) as scanner:
        total = len(pdf.pages)
        report.page_count = total
        with OutputDocument(output_pdf) as out:
            for index in range(total):
                if progress:
                    progress(index + 1, total)
                form, placement = _fetch_page(pdf, index)
                if index == 0:
                    out.declare_default_size(placement.target)
                if log:
                    log(describe_placement(placement))

                if options.skip_pages_with_existing_text and scanner.has_text(index):
                    out.add_copied_page(form, placement)
                    report.skipped_pages += 1
                    if log:
                        log(f"Page {placement.page_number}: already has text, copied without OCR")
                    continue

                image = _render(renderer, form, placement, scale)
                result = recognize_with_fallback(
                    engine,
                    image,
                    request,
                    page_number=placement.page_number,
                    log=log,
                )
                if result.attempts > 1:
                    report.fallback_pages.append(placement.page_number)

                corrected, _model = correct_spans(result.spans, result.image_size, options.skew, log=log)
                spans = [
                    PlacedSpan(span.text, quad_to_page(span.quad, image.size, scale, placement.target))
                    for span in corrected
                    if span.text.strip()
                ]
                written = out.add_text_page(form, placement, spans)
                report.recognized_pages += 1
                report.text_runs += written
                if log:
                    dropped = len(spans) - written
                    message = f"Page {placement.page_number}: {written} text run(s) placed"
                    if dropped:
                        message += f", {dropped} degenerate span(s) skipped"
                    log(message)

    return report


def apply_permanent_redactions(
    input_pdf: Path,
    output_pdf: Path,
    marks: Iterable[RedactionMark],
    options: RedactionOptions = RedactionOptions(),
    *,
    renderer: PageRenderer | None = None,
    progress: ProgressFn | None = None,
    log: LogFn | None = None,
) -> ConversionReport:
    validate_redaction_options(options)
    renderer = renderer or GhostscriptRenderer()
    scale = options.render_scale
    marks = list(marks)
    report = ConversionReport(output_pdf=output_pdf)

    with _open_input(input_pdf) as pdf:
        total = len(pdf.pages)
        report.page_count = total
        grouped = group_marks(marks, total)
        dropped = len(marks) - sum(len(rects) for rects in grouped.values())
        if log and dropped:
            log(f"{dropped} redaction mark(s) dropped as too small or outside the document")

        with OutputDocument(output_pdf) as out:
            for index in range(total):
                if progress:
                    progress(index + 1, total)
                form, placement = _fetch_page(pdf, index)
                if index == 0:
                    out.declare_default_size(placement.target)
                if log:
                    log(describe_placement(placement))

                image = _render(renderer, form, placement, scale)
                applied = burn_in(image, grouped.get(index, []), placement, scale, options.color)
                out.add_image_page(image, placement)
                report.redactions_applied += applied
                if log:
                    log(f"Page {placement.page_number}: {applied} redaction(s) applied")

    return report


def parse_languages(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.replace("+", ",").split(",") if part.strip())


def describe_report(report: ConversionReport) -> Sequence[str]:
    lines = [f"pages={report.page_count}"]
    if report.recognized_pages or report.skipped_pages:
        lines.append(f"recognized={report.recognized_pages} skipped={report.skipped_pages}")
        lines.append(f"text_runs={report.text_runs}")
    if report.redactions_applied:
        lines.append(f"redactions={report.redactions_applied}")
    if report.fallback_pages:
        lines.append("fallback_pages=" + ",".join(str(number) for number in report.fallback_pages))
    return lines
