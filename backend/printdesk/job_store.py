# Print job persistence: create, list pending, complete, attach files
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from printdesk.config import MIN_ORDER_PAGES
from printdesk.errors import BelowMinimum, JobNotFound, PersistenceError
from printdesk.models import JobFile, JobStatus, PrintJob, User

logger = logging.getLogger(__name__)


@dataclass
class PendingJob:
    """A pending job as the admin queue shows it (job joined with its owner)."""
    id: str
    user_id: str
    user_name: str
    mobile_number: str
    created_at: datetime
    total_pages: int
    print_instructions: str | None
    status: str
    file_count: int


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[JOBS] {what} failed: {e}")
        raise PersistenceError() from e


def create_job(db: Session, user_id: str, total_pages: int, instructions: str | None) -> PrintJob:
    """
    Creates a Pending job. This is the first write of a submission, so an
    interrupted upload always leaves a job with fewer files, never a file
    without a job.
    """
    if total_pages < MIN_ORDER_PAGES:
        raise BelowMinimum(total_pages)

    job = PrintJob(
        id=str(uuid.uuid4()),
        user_id=user_id,
        total_pages=total_pages,
        print_instructions=(instructions or "").strip() or None,
        status=JobStatus.PENDING,
        created_at=datetime.utcnow(),
    )
    db.add(job)
    _commit(db, "create_job")
    db.refresh(job)
    logger.info(f"[JOBS] created {job.id} user={user_id} pages={total_pages}")
    return job


def get_job(db: Session, job_id: str) -> PrintJob:
    job = db.query(PrintJob).filter(PrintJob.id == job_id).first()
    if not job:
        raise JobNotFound(job_id)
    return job


def list_pending(db: Session) -> list[PendingJob]:
    """Pending jobs with owner name and mobile, newest submission first."""
    file_counts = (
        db.query(JobFile.job_id, func.count(JobFile.id).label("n"))
        .group_by(JobFile.job_id)
        .subquery()
    )
    rows = (
        db.query(PrintJob, User.name, User.mobile_number, file_counts.c.n)
        .join(User, User.id == PrintJob.user_id)
        .outerjoin(file_counts, file_counts.c.job_id == PrintJob.id)
        .filter(PrintJob.status == JobStatus.PENDING)
        .order_by(PrintJob.created_at.desc())
        .all()
    )
    return [
        PendingJob(
            id=job.id,
            user_id=job.user_id,
            user_name=name,
            mobile_number=mobile,
            created_at=job.created_at,
            total_pages=job.total_pages,
            print_instructions=job.print_instructions,
            status=job.status,
            file_count=n or 0,
        )
        for job, name, mobile, n in rows
    ]


def list_for_user(
    db: Session,
    user_id: str,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[int, list[PrintJob]]:
    """A user's own jobs (newest first). Returns (total, page)."""
    query = db.query(PrintJob).filter(PrintJob.user_id == user_id)
    if status:
        query = query.filter(PrintJob.status == status)
    query = query.order_by(PrintJob.created_at.desc())
    total = query.count()
    return total, query.offset(offset).limit(limit).all()


def complete(db: Session, job_id: str) -> PrintJob:
    """
    Marks the job Completed. Completing an already completed job is a no-op.
    The flip is a single conditional UPDATE, so concurrent clicks cannot
    move the job back or overwrite completed_at.
    """
    updated = (
        db.query(PrintJob)
        .filter(PrintJob.id == job_id, PrintJob.status == JobStatus.PENDING)
        .update(
            {PrintJob.status: JobStatus.COMPLETED, PrintJob.completed_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    _commit(db, "complete")
    job = get_job(db, job_id)
    db.refresh(job)
    if updated:
        logger.info(f"[JOBS] {job_id} -> {JobStatus.COMPLETED}")
    return job


def attach_file(db: Session, job_id: str, storage_ref: str, original_filename: str) -> JobFile:
    """Records a stored file against its job. Called after the blob write succeeded."""
    record = JobFile(
        job_id=job_id,
        file_url=storage_ref,
        original_filename=original_filename,
        created_at=datetime.utcnow(),
    )
    db.add(record)
    _commit(db, "attach_file")
    db.refresh(record)
    return record


def files_for_job(db: Session, job_id: str) -> list[JobFile]:
    return db.query(JobFile).filter(JobFile.job_id == job_id).order_by(JobFile.id).all()
