from __future__ import annotations

import subprocess
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import RecognitionError
from .mapping import bounding_quad, quad_from_rect
from .recognition import Quality, RecognitionRequest, RecognizedSpan, SpanSegment

if TYPE_CHECKING:
    from PIL import Image

LANGUAGE_CODES: dict[str, str] = {
    "de": "deu",
    "en": "eng",
    "fr": "fra",
    "es": "spa",
    "it": "ita",
    "nl": "nld",
    "pt": "por",
    "pl": "pol",
    "cs": "ces",
    "da": "dan",
    "sv": "swe",
    "fi": "fin",
    "nb": "nor",
    "no": "nor",
    "ru": "rus",
    "uk": "ukr",
    "tr": "tur",
    "ja": "jpn",
    "ko": "kor",
    "zh-hans": "chi_sim",
    "zh-cn": "chi_sim",
    "zh-hant": "chi_tra",
    "zh-tw": "chi_tra",
}

_PSM_BY_QUALITY = {Quality.ACCURATE: 3, Quality.FAST: 6}


@dataclass(frozen=True)
class TsvWord:
    block: int
    paragraph: int
    line: int
    left: int
    top: int
    width: int
    height: int
    conf: float
    text: str


def tesseract_language(tag: str) -> str:
    normalized = tag.strip().replace("_", "-").lower()
    if normalized in LANGUAGE_CODES:
        return LANGUAGE_CODES[normalized]
    base = normalized.split("-", 1)[0]
    if base in LANGUAGE_CODES:
        return LANGUAGE_CODES[base]
    # Already a tesseract code such as "deu" or "chi_sim".
    return tag.strip()


def language_argument(languages: Sequence[str]) -> str | None:
    codes: list[str] = []
    for tag in languages:
        code = tesseract_language(tag)
        if code and code not in codes:
            codes.append(code)
    return "+".join(codes) if codes else None


def build_command(
    image_path: Path,
    request: RecognitionRequest,
    *,
    tesseract_binary: str = "tesseract",
) -> list[str]:
    cmd = [tesseract_binary, str(image_path), "stdout"]
    lang = language_argument(request.languages)
    if lang:
        cmd.extend(["-l", lang])
    cmd.extend(["--psm", str(_PSM_BY_QUALITY[request.quality])])
    if not request.use_language_correction:
        cmd.extend(["-c", "load_system_dawg=0", "-c", "load_freq_dawg=0"])
    cmd.append("tsv")
    return cmd


def parse_tsv(output: str, *, min_conf: float = 30.0) -> list[TsvWord]:
    words: list[TsvWord] = []
    lines = output.splitlines()
    if len(lines) <= 1:
        return words

    for line in lines[1:]:
        parts = line.split("\t")
        if len(parts) < 12:
            continue

        text = parts[11].strip()
        if not text:
            continue

        try:
            level = int(parts[0])
            block = int(parts[2])
            paragraph = int(parts[3])
            line_num = int(parts[4])
            left = int(parts[6])
            top = int(parts[7])
            width = int(parts[8])
            height = int(parts[9])
            conf = float(parts[10])
        except ValueError:
            continue

        if level != 5 or conf < min_conf or width <= 0 or height <= 0:
            continue

        words.append(TsvWord(block, paragraph, line_num, left, top, width, height, conf, text))

    return words


def words_to_spans(words: list[TsvWord], image_size: tuple[int, int]) -> list[RecognizedSpan]:
    """Group TSV words into one span per text line.

    Each word becomes a segment so callers can ask for the box of any
    substring. TSV rows count from the top of the image; the quads are
    flipped to a bottom-left origin.
    """
    width, height = image_size
    lines: dict[tuple[int, int, int], list[TsvWord]] = {}
    for word in words:
        lines.setdefault((word.block, word.paragraph, word.line), []).append(word)

    spans: list[RecognizedSpan] = []
    for key in sorted(lines):
        line_words = sorted(lines[key], key=lambda word: word.left)
        parts: list[str] = []
        segments: list[SpanSegment] = []
        offset = 0
        for word in line_words:
            if parts:
                offset += 1
            quad = quad_from_rect(
                word.left / width,
                1.0 - (word.top + word.height) / height,
                word.width / width,
                word.height / height,
            )
            segments.append(SpanSegment(start=offset, end=offset + len(word.text), quad=quad))
            parts.append(word.text)
            offset += len(word.text)

        span_quad = bounding_quad([segment.quad for segment in segments])
        if span_quad is None:
            continue
        spans.append(RecognizedSpan(text=" ".join(parts), quad=span_quad, segments=tuple(segments)))
    return spans


class TesseractEngine:
    def __init__(self, tesseract_binary: str = "tesseract", *, min_conf: float = 30.0) -> None:
        self.tesseract_binary = tesseract_binary
        self.min_conf = min_conf

    def recognize(self, image: Image.Image, request: RecognitionRequest) -> list[RecognizedSpan]:
        with tempfile.TemporaryDirectory(prefix="scanlayer_ocr_") as temp_dir_raw:
            image_path = Path(temp_dir_raw) / "page.png"
            try:
                image.save(image_path)
            except (OSError, ValueError) as exc:
                raise RecognitionError(f"Cannot hand bitmap to tesseract: {exc}") from exc

            cmd = build_command(image_path, request, tesseract_binary=self.tesseract_binary)
            try:
                proc = subprocess.run(cmd, check=True, capture_output=True, text=True)
            except FileNotFoundError as exc:
                raise RecognitionError(f"Tesseract executable not found: {self.tesseract_binary}") from exc
            except subprocess.CalledProcessError as exc:
                detail = (exc.stderr or "").strip() or f"exit code {exc.returncode}"
                raise RecognitionError(f"Tesseract failed: {detail}") from exc

        return words_to_spans(parse_tsv(proc.stdout, min_conf=self.min_conf), image.size)
