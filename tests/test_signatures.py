import base64
import io
from datetime import datetime

import pytest
from pypdf import PdfReader

from app.core.exceptions import TransformError, ValidationError
from app.pdf import signatures
from app.pdf.signatures import InitialsSpec, SignatureSpec
from conftest import make_pdf, make_png

NOW = datetime(2026, 1, 5, 14, 30)


def _page_text(data: bytes, index: int = 0) -> str:
    return PdfReader(io.BytesIO(data)).pages[index].extract_text()


def test_format_date_variants():
    assert signatures.format_date(NOW, "short") == "1/5/26"
    assert signatures.format_date(NOW, "iso") == "2026-01-05"
    assert signatures.format_date(NOW, "full") == "Monday, January 5, 2026"
    assert signatures.format_date(NOW, "iso", include_time=True) == "2026-01-05 at 02:30 PM"


def test_sign_typed_signature_with_details():
    spec = SignatureSpec.model_validate(
        {
            "type": "type",
            "data": "Jane Doe",
            "x": 100,
            "y": 200,
            "page": 2,
            "includeDate": True,
            "name": "Jane Doe",
            "title": "CEO",
            "reason": "Approval",
        }
    )
    content = signatures.sign(make_pdf(2), spec, now=NOW)
    text = _page_text(content, 1)
    assert "Jane Doe" in text
    assert "CEO" in text
    assert "Signed: January 5, 2026" in text
    assert "Reason: Approval" in text
    assert "Jane Doe" not in _page_text(content, 0)


def test_sign_with_image_data_url():
    data_url = "data:image/png;base64," + base64.b64encode(make_png()).decode()
    spec = SignatureSpec(type="draw", data=data_url, x=50, y=100)
    content = signatures.sign(make_pdf(1), spec)
    page = PdfReader(io.BytesIO(content)).pages[0]
    assert len(page.images) == 1


def test_sign_rejects_bad_image():
    spec = SignatureSpec(type="image", data="bm90IGFuIGltYWdl", x=50, y=100)
    with pytest.raises(ValidationError):
        signatures.sign(make_pdf(1), spec)


def test_sign_page_out_of_range():
    spec = SignatureSpec(type="type", data="J", x=1, y=1, page=5)
    with pytest.raises(TransformError):
        signatures.sign(make_pdf(2), spec)


def test_add_initials_skips_missing_pages():
    marks = [
        InitialsSpec(text="JD", x=50, y=700, page=1),
        InitialsSpec(text="JD", x=50, y=700, page=2),
        InitialsSpec(text="JD", x=50, y=700, page=9),
    ]
    content, placed = signatures.add_initials(make_pdf(2), marks)
    assert placed == 2
    assert "JD" in _page_text(content, 1)


def test_add_initials_rejects_marks_outside_document():
    with pytest.raises(ValidationError):
        signatures.add_initials(make_pdf(2), [InitialsSpec(text="JD", x=50, y=700, page=5)])


def test_add_date_stamp_returns_text():
    content, text = signatures.add_date_stamp(make_pdf(1), fmt="short", now=NOW)
    assert text == "1/5/26"
    assert "1/5/26" in _page_text(content)


def test_stamp_certificate_carries_id():
    content = signatures.stamp_certificate(
        make_pdf(1), "CERT-AAAA-BBBB-CCCC", "Jane Doe", "Contract approval", NOW
    )
    text = _page_text(content)
    assert "DIGITALLY CERTIFIED" in text
    assert "CERT-AAAA-BBBB-CCCC" in text
    assert "Date: 01/05/2026" in text


def test_hash_document_is_sha256_hex():
    digest = signatures.hash_document(b"abc")
    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
