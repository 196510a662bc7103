"""Merge, split, rotate and the other page-level transforms."""

import io
import zipfile

import pytest
from pypdf import PdfReader

from app.core.exceptions import TransformError, ValidationError
from app.pdf import organize
from conftest import has_rotated_drawing, make_pdf, shown_strings


def _reader(data: bytes) -> PdfReader:
    return PdfReader(io.BytesIO(data))


def _texts(data: bytes) -> list[str]:
    return [p.extract_text().strip() for p in _reader(data).pages]


def test_merge_preserves_order():
    content, total = organize.merge([make_pdf(2, "A"), make_pdf(3, "B")])
    assert total == 5
    assert _texts(content) == ["A 1", "A 2", "B 1", "B 2", "B 3"]


def test_merge_needs_two_documents():
    with pytest.raises(ValidationError):
        organize.merge([make_pdf(1)])


def test_merge_reports_bad_input():
    with pytest.raises(TransformError) as exc:
        organize.merge([make_pdf(1), b"garbage"])
    assert "PDF #2" in exc.value.message


def test_extract_pages():
    content, extracted, total = organize.extract_pages(make_pdf(10), "1-3,5,7-9")
    assert (extracted, total) == (7, 10)
    assert _texts(content) == ["Page 1", "Page 2", "Page 3", "Page 5", "Page 7", "Page 8", "Page 9"]


def test_split_all_returns_zip_of_single_pages():
    result = organize.split(make_pdf(3), mode="all")
    assert result.archive
    assert result.parts == 3
    with zipfile.ZipFile(io.BytesIO(result.content)) as archive:
        assert archive.namelist() == ["page_1.pdf", "page_2.pdf", "page_3.pdf"]
        assert _texts(archive.read("page_2.pdf")) == ["Page 2"]


def test_split_every_n_chunks():
    result = organize.split(make_pdf(5), mode="every-n", every_n=2)
    with zipfile.ZipFile(io.BytesIO(result.content)) as archive:
        assert archive.namelist() == ["pages_1-2.pdf", "pages_3-4.pdf", "page_5.pdf"]


def test_split_range_and_single():
    ranged = organize.split(make_pdf(5), mode="range", range_expr="2-3")
    assert not ranged.archive
    assert _texts(ranged.content) == ["Page 2", "Page 3"]
    single = organize.split(make_pdf(5), mode="single", page_number=4)
    assert _texts(single.content) == ["Page 4"]


def test_split_single_out_of_range():
    with pytest.raises(ValidationError):
        organize.split(make_pdf(2), mode="single", page_number=3)


def test_rotate_is_additive_and_normalised():
    once, count = organize.rotate(make_pdf(2), 270)
    assert count == 2
    twice, _ = organize.rotate(once, 180)
    assert [p.rotation for p in _reader(twice).pages] == [90, 90]


@pytest.mark.parametrize("angle", [90, 180, 270, -90, -180, -270])
def test_rotate_then_inverse_restores_rotation(angle):
    start, _ = organize.rotate(make_pdf(3), 90, "2")
    there, _ = organize.rotate(start, angle)
    back, _ = organize.rotate(there, -angle)
    assert [p.rotation for p in _reader(back).pages] == [p.rotation for p in _reader(start).pages] == [0, 90, 0]


def test_rotate_negative_angle_and_selector():
    content, count = organize.rotate(make_pdf(4), -90, "even")
    assert count == 2
    assert [p.rotation for p in _reader(content).pages] == [0, 270, 0, 270]


def test_rotate_rejects_odd_angle():
    with pytest.raises(ValidationError):
        organize.rotate(make_pdf(1), 45)


def test_delete_pages():
    content, deleted, remaining = organize.delete_pages(make_pdf(5), "2,4")
    assert (deleted, remaining) == (2, 3)
    assert _texts(content) == ["Page 1", "Page 3", "Page 5"]


def test_delete_every_page_fails():
    with pytest.raises(ValidationError):
        organize.delete_pages(make_pdf(2), "1-2")


def test_reorder_pages():
    content, total = organize.reorder_pages(make_pdf(4), "3,1,2,4")
    assert total == 4
    assert _texts(content) == ["Page 3", "Page 1", "Page 2", "Page 4"]


def test_reorder_requires_full_permutation():
    with pytest.raises(ValidationError):
        organize.reorder_pages(make_pdf(4), "3,1,2")


def test_compress_keeps_pages_and_sets_producer():
    content = organize.compress(make_pdf(3), "low")
    reader = _reader(content)
    assert len(reader.pages) == 3
    assert reader.metadata["/Producer"] == "PDF Builder Pro"


def test_protect_then_unlock():
    locked = organize.protect(make_pdf(2), "secret")
    assert _reader(locked).is_encrypted
    unlocked = organize.unlock(locked, "secret")
    reader = _reader(unlocked)
    assert not reader.is_encrypted
    assert len(reader.pages) == 2


def test_unlock_wrong_password():
    locked = organize.protect(make_pdf(1), "secret")
    with pytest.raises(ValidationError):
        organize.unlock(locked, "nope")


def test_add_page_numbers_format():
    content, total = organize.add_page_numbers(make_pdf(3), "top-right", "{n}/{total}", 5)
    assert total == 3
    texts = _texts(content)
    assert "5/7" in texts[0]
    assert "7/7" in texts[2]


def test_add_page_numbers_rejects_position():
    with pytest.raises(ValidationError):
        organize.add_page_numbers(make_pdf(1), "middle")


def test_watermark_selected_pages():
    content, count = organize.watermark(make_pdf(3), text="CONFIDENTIAL", position="diagonal", selector="1,3")
    assert count == 2
    pages = _reader(content).pages
    assert b"CONFIDENTIAL" in pages[0].get_contents().get_data()
    assert b"CONFIDENTIAL" not in pages[1].get_contents().get_data()
    assert b"CONFIDENTIAL" in pages[2].get_contents().get_data()


def test_diagonal_watermark_is_rotated_over_intact_content():
    original = make_pdf(2)
    content, count = organize.watermark(original, text="CONFIDENTIAL", position="diagonal")
    assert count == 2
    for before, after in zip(_reader(original).pages, _reader(content).pages):
        assert has_rotated_drawing(after, 45)
        strings = shown_strings(after)
        assert "CONFIDENTIAL" in strings
        assert set(shown_strings(before)) <= set(strings)
        assert after.mediabox == before.mediabox


def test_watermark_rejects_opacity():
    with pytest.raises(ValidationError):
        organize.watermark(make_pdf(1), opacity=1.5)
