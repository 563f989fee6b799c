# Order validation and pricing: file limits, page totals, cost
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from printdesk.config import CURRENCY_SYMBOL, MAX_FILE_SIZE_BYTES, MAX_FILES_PER_JOB, MIN_ORDER_PAGES, UNIT_RATE
from printdesk.errors import (
    DuplicateFilename,
    FileTooLarge,
    InvalidType,
    NoFiles,
    TooManyFiles,
    UnreadableDocument,
    UnreadableDocuments,
)
from printdesk.pdf_pages import count_pages_async, looks_like_pdf
from printdesk.storage import safe_filename

logger = logging.getLogger(__name__)

# Types browsers send when they could not sniff the file themselves
GENERIC_CONTENT_TYPES = {"", "application/octet-stream", "binary/octet-stream"}


@dataclass(frozen=True)
class CandidateFile:
    """A file picked by the user, as received (name, declared media type, bytes)."""
    filename: str
    content_type: str
    data: bytes = field(repr=False)


@dataclass
class OrderTotal:
    total_pages: int
    accepted_files: list[CandidateFile]
    pages_per_file: dict[str, int]

    @property
    def meets_minimum(self) -> bool:
        return self.total_pages >= MIN_ORDER_PAGES


def is_pdf(file: CandidateFile) -> bool:
    """Checks the declared type; only a missing/generic type falls back to sniffing the bytes."""
    declared = (file.content_type or "").split(";")[0].strip().lower()
    if declared in GENERIC_CONTENT_TYPES:
        return looks_like_pdf(file.data)
    return "pdf" in declared


def check_batch(files: list[CandidateFile]) -> None:
    """Count, type, size and name rules. Raises before any page is counted."""
    if not files:
        raise NoFiles()
    if len(files) > MAX_FILES_PER_JOB:
        raise TooManyFiles(len(files))

    invalid = [f.filename for f in files if not is_pdf(f)]
    if invalid:
        raise InvalidType(invalid)

    for f in files:
        if len(f.data) > MAX_FILE_SIZE_BYTES:
            raise FileTooLarge(f.filename, MAX_FILE_SIZE_BYTES)

    # compared as stored: "a/x.pdf" and "b/x.pdf" would share one storage key
    repeated = sorted(name for name, n in Counter(safe_filename(f.filename) for f in files).items() if n > 1)
    if repeated:
        raise DuplicateFilename(repeated)


async def validate_and_total(files: list[CandidateFile]) -> OrderTotal:
    """
    Validates a batch and sums its page counts.

    The batch is accepted or rejected as a whole. Page counting runs for all
    files at once; every unreadable file is reported, not just the first.
    The minimum order size is not checked here (see job_store.create_job).
    """
    check_batch(files)

    results = await asyncio.gather(
        *(count_pages_async(f.data, f.filename) for f in files),
        return_exceptions=True,
    )

    failures: list[UnreadableDocument] = []
    pages_per_file: dict[str, int] = {}
    for f, result in zip(files, results):
        if isinstance(result, UnreadableDocument):
            failures.append(result)
        elif isinstance(result, BaseException):
            raise result
        else:
            pages_per_file[f.filename] = result

    if failures:
        raise UnreadableDocuments(failures)

    total = sum(pages_per_file.values())
    logger.info(f"[ORDER] {len(files)} file(s), {total} page(s)")
    return OrderTotal(total_pages=total, accepted_files=list(files), pages_per_file=pages_per_file)


def order_cost(total_pages: int) -> Decimal:
    """pages x unit rate, rounded to two decimals for display."""
    return (Decimal(total_pages) * UNIT_RATE).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_cost(total_pages: int) -> str:
    return f"{CURRENCY_SYMBOL}{order_cost(total_pages)}"
