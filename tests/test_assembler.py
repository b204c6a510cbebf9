"""Tests for translated PDF layout and generation."""

from __future__ import annotations

import fitz
import pytest

from pdftrans.conversion.output.pdf import PdfAssembler, char_width, paginate, wrap_text
from pdftrans.exceptions import AssemblyError


def test_char_width():
    assert char_width("a") == 1
    assert char_width("中") == 2
    assert char_width("é") == 2


def test_wrap_text_counts_cjk_as_double_width():
    assert wrap_text("abcdef", 4) == ["abcd", "ef"]
    assert wrap_text("中文字", 4) == ["中文", "字"]
    assert wrap_text("ab中c", 3) == ["ab", "中c"]


def test_wrap_text_keeps_blank_lines():
    assert wrap_text("one\n\ntwo", 10) == ["one", "", "two"]
    assert wrap_text("", 10) == [""]


def test_paginate():
    lines = [str(i) for i in range(5)]

    assert paginate(lines, 2) == [["0", "1"], ["2", "3"], ["4"]]
    assert paginate([], 3) == [[]]
    with pytest.raises(ValueError):
        paginate(lines, 0)


def test_layout_dimensions():
    assembler = PdfAssembler()

    assert assembler.max_units == 81
    assert assembler.lines_per_page == 46
    assert len(assembler.layout(["a"] * 30)) == 2


def test_generate_produces_pdf_with_expected_pages():
    assembler = PdfAssembler()
    texts = ["First page text", "第二页的中文内容", "Third page"]

    data = assembler.generate(texts)

    assert data.startswith(b"%PDF")
    with fitz.open(stream=data, filetype="pdf") as doc:
        assert doc.page_count == 1
        text = doc[0].get_text()
    assert "First page text" in text
    assert "Third page" in text


def test_generate_paginates_long_text():
    assembler = PdfAssembler()
    texts = ["line\n" * 100]

    with fitz.open(stream=assembler.generate(texts), filetype="pdf") as doc:
        assert doc.page_count == 3


def test_generate_empty_input_yields_single_blank_page():
    with fitz.open(stream=PdfAssembler().generate([]), filetype="pdf") as doc:
        assert doc.page_count == 1


def test_generate_wraps_pymupdf_errors(monkeypatch):
    def broken_open(*args, **kwargs):
        raise RuntimeError("cannot create document")

    monkeypatch.setattr(fitz, "open", broken_open)

    with pytest.raises(AssemblyError, match="cannot create document"):
        PdfAssembler().generate(["text"])
