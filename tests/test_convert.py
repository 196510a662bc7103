import io

import pytest
from pypdf import PdfReader
from reportlab.lib.pagesizes import A4

from app.core.exceptions import ValidationError
from app.pdf import convert
from conftest import make_png


def _reader(data: bytes) -> PdfReader:
    return PdfReader(io.BytesIO(data))


def _all_text(data: bytes) -> str:
    return "\n".join(p.extract_text() for p in _reader(data).pages)


def test_images_to_pdf_skips_unsupported():
    images = [("a.png", make_png()), ("notes.txt", b"hello"), ("b.png", make_png(10, 30, "blue"))]
    content, added = convert.images_to_pdf(images, "a4", "Photos")
    assert added == 2
    reader = _reader(content)
    assert len(reader.pages) == 2
    assert float(reader.pages[0].mediabox.width) == pytest.approx(A4[0])
    assert reader.metadata.title == "Photos"


def test_images_to_pdf_nothing_usable():
    with pytest.raises(ValidationError):
        convert.images_to_pdf([("notes.txt", b"hello")])


def test_unknown_page_size():
    with pytest.raises(ValidationError):
        convert.page_size("tabloid")


def test_text_to_pdf_wraps_long_lines():
    long_line = "word " * 400
    content = convert.text_to_pdf("Intro\n\n" + long_line, "Notes")
    text = _all_text(content)
    assert "Intro" in text
    assert text.count("word") == 400


def test_text_to_pdf_requires_text():
    with pytest.raises(ValidationError):
        convert.text_to_pdf("   ")


def test_markdown_to_pdf():
    md = "# Title\n\nSome **bold** text\n\n- first\n- second\n\n## Next"
    text = _all_text(convert.markdown_to_pdf(md))
    for expected in ("Title", "bold", "first", "second", "Next"):
        assert expected in text
    assert "**" not in text
    assert "#" not in text


def test_markdown_escapes_markup():
    text = _all_text(convert.markdown_to_pdf("a < b & c"))
    assert "a < b & c" in text


def test_html_to_pdf_extracts_blocks():
    html = (
        "<html><head><style>p {color: red}</style></head>"
        "<body><h1>Hello</h1><p>World &amp; friends</p><ul><li>One</li><li>Two</li></ul>"
        "<script>alert('x')</script></body></html>"
    )
    text = _all_text(convert.html_to_pdf(html, "Page", "legal"))
    assert "Hello" in text
    assert "World & friends" in text
    assert "One" in text and "Two" in text
    assert "alert" not in text
    assert "color" not in text


def test_html_without_text():
    with pytest.raises(ValidationError):
        convert.html_to_pdf("<div>   </div>")


def test_file_title():
    assert convert.file_title("  My  Report ") == "My_Report"
