from __future__ import annotations

import argparse
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from scanlayer.app import _build_parser, _parse_mark, main
from scanlayer.geometry import Rect
from scanlayer.pipeline import ConversionReport
from scanlayer.redaction import RedactionMark


def test_parse_mark_uses_one_based_pages():
    assert _parse_mark("2:72,700.5,200,30") == RedactionMark(1, Rect(72, 700.5, 200, 30))
    with pytest.raises(argparse.ArgumentTypeError, match="PAGE:X,Y,WIDTH,HEIGHT"):
        _parse_mark("2:72,700")


def test_parser_defaults():
    args = _build_parser().parse_args(["ocr", "scan.pdf"])

    assert args.lang == "de-DE,en-US"
    assert args.quality == "accurate"
    assert args.scale == 2.0
    assert args.bands == 20
    assert args.force_ocr is False


def test_main_ocr_success(monkeypatch, tmp_path: Path, capsys):
    input_pdf = tmp_path / "in.pdf"
    input_pdf.write_bytes(b"%PDF-1.4\n")
    executed = {}

    def fake_convert(input_pdf, output_pdf, options, *, progress, log):
        executed["output"] = output_pdf
        executed["options"] = options
        executed["log"] = log
        return ConversionReport(output_pdf=output_pdf, page_count=1, recognized_pages=1, text_runs=3)

    monkeypatch.setattr("scanlayer.app.shutil.which", lambda _: "/usr/bin/mock")
    monkeypatch.setattr("scanlayer.app.ocr_to_searchable_pdf", fake_convert)

    rc = main(["ocr", str(input_pdf), "--lang", "en-US", "--quality", "fast", "--force-ocr", "--bands", "12", "--quiet"])

    assert rc == 0
    assert executed["output"] == tmp_path / "in_searchable.pdf"
    assert executed["options"].languages == ("en-US",)
    assert executed["options"].quality == "fast"
    assert executed["options"].skip_pages_with_existing_text is False
    assert executed["options"].skew.band_count == 12
    assert executed["log"] is None
    assert "Done: searchable PDF written to" in capsys.readouterr().out


def test_main_redact_success(monkeypatch, tmp_path: Path, capsys):
    input_pdf = tmp_path / "in.pdf"
    output_pdf = tmp_path / "clean.pdf"
    input_pdf.write_bytes(b"%PDF-1.4\n")
    executed = {}

    def fake_redact(input_pdf, output_pdf, marks, options, *, progress, log):
        executed["marks"] = list(marks)
        executed["options"] = options
        return ConversionReport(output_pdf=output_pdf, page_count=2, redactions_applied=1)

    monkeypatch.setattr("scanlayer.app.shutil.which", lambda _: "/usr/bin/mock")
    monkeypatch.setattr("scanlayer.app.apply_permanent_redactions", fake_redact)

    rc = main(["redact", str(input_pdf), str(output_pdf), "--rect", "1:10,10,50,20", "--color", "#ff0000"])

    assert rc == 0
    assert executed["marks"] == [RedactionMark(0, Rect(10, 10, 50, 20))]
    assert executed["options"].color == (255, 0, 0)
    out = capsys.readouterr().out
    assert "Done: redacted PDF written to" in out
    assert "redactions=1" in out


def test_main_fails_when_dependencies_missing(monkeypatch, tmp_path: Path, capsys):
    input_pdf = tmp_path / "in.pdf"
    input_pdf.write_bytes(b"%PDF-1.4\n")

    monkeypatch.setattr("scanlayer.app.shutil.which", lambda _: None)

    rc = main(["ocr", str(input_pdf)])

    assert rc == 2
    err = capsys.readouterr().err
    assert "Missing required executables in PATH" in err
    assert "gs, tesseract" in err


def test_main_rejects_redaction_without_rectangles(tmp_path: Path, capsys):
    input_pdf = tmp_path / "in.pdf"
    input_pdf.write_bytes(b"%PDF-1.4\n")

    rc = main(["redact", str(input_pdf)])

    assert rc == 2
    assert "at least one --rect" in capsys.readouterr().err


def test_main_reports_conversion_errors(monkeypatch, tmp_path: Path, capsys):
    input_pdf = tmp_path / "in.pdf"
    input_pdf.write_bytes(b"%PDF-1.4\n")

    monkeypatch.setattr("scanlayer.app.shutil.which", lambda _: "/usr/bin/mock")

    rc = main(["ocr", str(input_pdf), "--quiet"])

    assert rc == 2
    err = capsys.readouterr().err
    assert err.startswith("Error: ")
    assert "in.pdf" in err


def test_main_rejects_missing_input(tmp_path: Path, capsys):
    rc = main(["ocr", str(tmp_path / "nope.pdf")])

    assert rc == 2
    assert "Input file not found" in capsys.readouterr().err
