# Admin queue: pending list, completion and zip export of a job's files
import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from printdesk import job_store, storage
from printdesk.models import PrintJob
from printdesk.storage import BlobStore

logger = logging.getLogger(__name__)


@dataclass
class JobExport:
    job_id: str
    archive: bytes
    filename: str
    entries: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.missing)


def pending_queue(db: Session) -> list[job_store.PendingJob]:
    return job_store.list_pending(db)


def complete_job(db: Session, job_id: str) -> PrintJob:
    return job_store.complete(db, job_id)


async def export_job(db: Session, blob_store: BlobStore, job_id: str) -> JobExport:
    """Bundles every stored file of the job into ``job-<id>.zip``."""
    job = await asyncio.to_thread(job_store.get_job, db, job_id)
    records = await asyncio.to_thread(job_store.files_for_job, db, job.id)
    fetched = await storage.fetch_all(blob_store, records)
    if fetched.missing:
        logger.warning(f"[EXPORT] job {job.id}: {len(fetched.missing)} file(s) skipped: {fetched.missing}")
    archive = storage.bundle(fetched.files)
    logger.info(f"[EXPORT] job {job.id}: {len(fetched.files)} file(s), {len(archive)} bytes")
    return JobExport(
        job_id=job.id,
        archive=archive,
        filename=f"job-{job.id}.zip",
        entries=[name for name, _ in fetched.files],
        missing=fetched.missing,
    )
