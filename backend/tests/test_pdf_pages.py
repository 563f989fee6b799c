import asyncio
import time

import pytest

from printdesk import pdf_pages
from printdesk.errors import UnreadableDocument
from printdesk.pdf_pages import count_pages, count_pages_async, looks_like_pdf


def test_counts_pages(make_pdf):
    assert count_pages(make_pdf(3), "notes.pdf") == 3
    assert count_pages(make_pdf(1), "single.pdf") == 1


def test_input_bytes_are_not_modified(make_pdf):
    data = make_pdf(2)
    before = bytes(data)
    count_pages(data, "notes.pdf")
    assert data == before


def test_protected_pdf_with_empty_user_password_still_counts(make_pdf):
    assert count_pages(make_pdf(5, user_password=""), "protected.pdf") == 5


def test_pdf_needing_a_password_is_unreadable(make_pdf):
    with pytest.raises(UnreadableDocument) as exc:
        count_pages(make_pdf(2, user_password="open-sesame"), "locked.pdf")
    assert exc.value.filename == "locked.pdf"


@pytest.mark.parametrize("data", [b"", b"not a pdf at all", b"%PDF-1.7\n1 0 obj\n<< /Type /Catalog"])
def test_garbage_is_unreadable_with_filename(data):
    with pytest.raises(UnreadableDocument) as exc:
        count_pages(data, "broken.pdf")
    assert exc.value.filename == "broken.pdf"
    assert "broken.pdf" in exc.value.message
    assert exc.value.details == {"filenames": ["broken.pdf"]}


def test_looks_like_pdf(make_pdf):
    assert looks_like_pdf(make_pdf(1))
    assert looks_like_pdf(b"\r\n%PDF-1.4 ...")
    assert not looks_like_pdf(b"\x89PNG\r\n\x1a\n")


def test_async_count(make_pdf):
    assert asyncio.run(count_pages_async(make_pdf(4), "a.pdf")) == 4


def test_async_count_gives_up_after_timeout(monkeypatch):
    def slow(data, filename):
        time.sleep(0.3)
        return 1

    monkeypatch.setattr(pdf_pages, "count_pages", slow)
    with pytest.raises(UnreadableDocument) as exc:
        asyncio.run(count_pages_async(b"%PDF-", "slow.pdf", timeout=0.01))
    assert exc.value.reason == "timed out"
