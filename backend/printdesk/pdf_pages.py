# Page counting for uploaded PDFs (reads the page tree only, never renders)
import asyncio
import io
import logging

from pypdf import PasswordType, PdfReader

from printdesk.config import PDF_PARSE_TIMEOUT_SECONDS
from printdesk.errors import UnreadableDocument

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"


def looks_like_pdf(data: bytes) -> bool:
    """True when the header carries the PDF magic (allowing leading junk, as readers do)."""
    return PDF_MAGIC in data[:1024]


def count_pages(data: bytes, filename: str) -> int:
    """
    Returns the number of pages in the PDF held in ``data``.

    Parsing is permissive (strict=False). Encrypted files are opened with the
    empty user password, which covers the usual "protected" PDFs that can be
    viewed but not edited. Anything without a readable page tree raises
    UnreadableDocument carrying the filename.
    """
    try:
        reader = PdfReader(io.BytesIO(data), strict=False)
        if reader.is_encrypted and reader.decrypt("") == PasswordType.NOT_DECRYPTED:
            raise UnreadableDocument(filename, "password protected")
        pages = len(reader.pages)
    except UnreadableDocument:
        raise
    except Exception as e:
        # Untrusted input: pypdf raises anything from PdfReadError to KeyError on broken trees
        logger.info(f"[PAGES] {filename}: unreadable ({type(e).__name__}: {e})")
        raise UnreadableDocument(filename, str(e)) from e

    if pages <= 0:
        raise UnreadableDocument(filename, "no pages")
    return pages


async def count_pages_async(data: bytes, filename: str, timeout: float | None = None) -> int:
    """Runs count_pages in a worker thread, giving up after ``timeout`` seconds."""
    limit = PDF_PARSE_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        return await asyncio.wait_for(asyncio.to_thread(count_pages, data, filename), timeout=limit)
    except asyncio.TimeoutError as e:
        logger.warning(f"[PAGES] {filename}: parse exceeded {limit}s")
        raise UnreadableDocument(filename, "timed out") from e
