# Job endpoints for users: quote, submit, list own jobs, job detail
import asyncio
import logging
import re

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from printdesk import job_store, settings_registry, storage
from printdesk.config import MAX_FILE_SIZE_BYTES, MAX_FILES_PER_JOB, MIN_ORDER_PAGES
from printdesk.db import get_db
from printdesk.errors import JobNotFound, PersistenceError, StorageError, TooManyFiles
from printdesk.models import PrintJob
from printdesk.orders import CandidateFile, format_cost, order_cost, validate_and_total
from printdesk.session import CurrentUser, get_current_user, require_customer
from printdesk.storage import BlobStore, get_blob_store, safe_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])

# Job ids are UUIDs (rejects concatenated paths, blanks, etc.)
UUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def validate_job_id(job_id: str) -> str:
    """Returns the stripped job id; 422 if it is not a UUID."""
    job_id_stripped = (job_id or "").strip()
    if not UUID_PATTERN.match(job_id_stripped):
        raise HTTPException(
            status_code=422,
            detail=f"Invalid job_id: must be a UUID. Received: {repr(job_id)[:80]}",
        )
    return job_id_stripped


async def read_uploads(files: list[UploadFile], max_bytes: int | None = None) -> list[CandidateFile]:
    """
    Reads the uploads into CandidateFiles under their stored (basename) names.
    At most max_bytes + 1 bytes are read per file: enough for the size rule
    to reject it without holding the whole upload in memory.
    """
    if len(files) > MAX_FILES_PER_JOB:
        raise TooManyFiles(len(files))
    limit = MAX_FILE_SIZE_BYTES if max_bytes is None else max_bytes
    candidates = []
    for f in files:
        data = await f.read(limit + 1)
        candidates.append(
            CandidateFile(filename=safe_filename(f.filename or ""), content_type=f.content_type or "", data=data)
        )
    return candidates


def _job_payload(job: PrintJob) -> dict:
    return {
        "id": job.id,
        "status": job.status,
        "total_pages": job.total_pages,
        "print_instructions": job.print_instructions,
        "created_at": job.created_at.isoformat(),
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


@router.post("/quote")
async def quote(
    files: list[UploadFile] = File(..., description="Up to 4 PDF files"),
    current_user: CurrentUser = Depends(require_customer),
):
    """Counts pages and prices the selection without saving anything."""
    total = await validate_and_total(await read_uploads(files))
    return {
        "total_pages": total.total_pages,
        "pages_per_file": total.pages_per_file,
        "cost": str(order_cost(total.total_pages)),
        "cost_display": format_cost(total.total_pages),
        "minimum_pages": MIN_ORDER_PAGES,
        "meets_minimum": total.meets_minimum,
    }


@router.post("", status_code=201)
async def submit_job(
    files: list[UploadFile] = File(..., description="Up to 4 PDF files"),
    instructions: str = Form("", description="e.g. 2 copies, black & white, A4"),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    current_user: CurrentUser = Depends(require_customer),
):
    """
    Validates the PDFs, creates the job, stores every file and returns the
    payment summary. The job row is written before any file, so a failed
    upload leaves a job with fewer files (reported back), never orphan files.
    """
    total = await validate_and_total(await read_uploads(files))
    job = await asyncio.to_thread(job_store.create_job, db, current_user.id, total.total_pages, instructions)

    accepted = total.accepted_files
    results = await asyncio.gather(
        *(asyncio.to_thread(storage.store, blob_store, current_user.id, job.id, f.filename, f.data) for f in accepted),
        return_exceptions=True,
    )

    stored: list[str] = []
    failure: BaseException | None = None
    for f, result in zip(accepted, results):
        if isinstance(result, BaseException):
            failure = failure or result
            continue
        try:
            await asyncio.to_thread(job_store.attach_file, db, job.id, result, f.filename)
        except PersistenceError as e:
            failure = failure or e
            continue
        stored.append(f.filename)

    if failure is not None:
        logger.warning(f"[SUBMIT] job {job.id}: stored {len(stored)} of {len(accepted)} file(s)")
        if isinstance(failure, (StorageError, PersistenceError)):
            failure.details = {**(failure.details or {}), "job_id": job.id, "stored": stored, "expected": len(accepted)}
        raise failure

    payment = await asyncio.to_thread(settings_registry.get_payment_settings, db, blob_store)
    logger.info(f"[SUBMIT] job {job.id} user={current_user.id} pages={job.total_pages} files={len(stored)}")
    return {
        **_job_payload(job),
        "files": stored,
        "cost": str(order_cost(job.total_pages)),
        "cost_display": format_cost(job.total_pages),
        "payment": {
            "qr_url": payment.qr_url,
            "upi_id": payment.upi_id,
            "contact_number": payment.contact_number,
        },
    }


@router.get("")
def list_my_jobs(
    limit: int = 20,
    offset: int = 0,
    status: str | None = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Lists the caller's jobs (newest first). Params: limit, offset, status."""
    total, jobs = job_store.list_for_user(db, current_user.id, status=status, limit=limit, offset=offset)
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "jobs": [_job_payload(j) for j in jobs],
    }


@router.get("/{job_id}")
def get_my_job(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Status and files of one of the caller's jobs."""
    job = job_store.get_job(db, validate_job_id(job_id))
    if job.user_id != current_user.id:
        raise JobNotFound(job_id)
    return {
        **_job_payload(job),
        "files": [f.original_filename for f in job_store.files_for_job(db, job.id)],
        "cost_display": format_cost(job.total_pages),
    }
