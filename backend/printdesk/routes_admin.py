# Admin endpoints: pending queue, completion, zip export, payment settings
import asyncio
import re

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, field_validator
from pydantic import ValidationError as FormError
from sqlalchemy.orm import Session

from printdesk import queue_manager, settings_registry
from printdesk.db import get_db
from printdesk.errors import ValidationError
from printdesk.routes_jobs import validate_job_id
from printdesk.session import CurrentUser, require_admin
from printdesk.storage import BlobStore, get_blob_store

router = APIRouter(prefix="/admin", tags=["admin"])

UPI_ID_PATTERN = re.compile(r"^[A-Za-z0-9.\-_]{2,256}@[A-Za-z]{2,64}$")
CONTACT_PATTERN = re.compile(r"^\d{10}$")


class PaymentSettingsForm(BaseModel):
    """Caller-side rules; the registry itself stores any string."""
    upi_id: str = ""
    contact_number: str = ""

    @field_validator("upi_id")
    @classmethod
    def upi_id_format(cls, v: str) -> str:
        v = v.strip()
        if v and not UPI_ID_PATTERN.match(v):
            raise ValueError("UPI ID must look like name@bank")
        return v

    @field_validator("contact_number")
    @classmethod
    def contact_ten_digits(cls, v: str) -> str:
        v = v.strip()
        if v and not CONTACT_PATTERN.match(v):
            raise ValueError("Contact number must be 10 digits")
        return v


def _settings_payload(payment: settings_registry.PaymentSettings) -> dict:
    return {"qr_url": payment.qr_url, "upi_id": payment.upi_id, "contact_number": payment.contact_number}


@router.get("/jobs")
def list_pending_jobs(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """Pending jobs, newest submission first, with the owner's name and mobile."""
    jobs = queue_manager.pending_queue(db)
    return {
        "total": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "user_name": j.user_name,
                "mobile_number": j.mobile_number,
                "submitted_at": j.created_at.isoformat(),
                "total_pages": j.total_pages,
                "print_instructions": j.print_instructions,
                "status": j.status,
                "file_count": j.file_count,
            }
            for j in jobs
        ],
    }


@router.post("/jobs/{job_id}/complete")
def complete_job(
    job_id: str,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """Marks the job Completed. Safe to repeat."""
    job = queue_manager.complete_job(db, validate_job_id(job_id))
    return {
        "id": job.id,
        "status": job.status,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


@router.get("/jobs/{job_id}/export")
async def export_job(
    job_id: str,
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    admin: CurrentUser = Depends(require_admin),
):
    """Downloads all files of the job as job-<id>.zip. Skipped files are listed in X-Missing-Files."""
    export = await queue_manager.export_job(db, blob_store, validate_job_id(job_id))
    headers = {"Content-Disposition": f'attachment; filename="{export.filename}"'}
    if export.is_partial:
        headers["X-Missing-Files"] = ", ".join(export.missing)
    return Response(content=export.archive, media_type="application/zip", headers=headers)


@router.get("/settings")
def get_settings(
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    admin: CurrentUser = Depends(require_admin),
):
    return _settings_payload(settings_registry.get_payment_settings(db, blob_store))


@router.put("/settings")
async def save_settings(
    upi_id: str = Form(""),
    contact_number: str = Form(""),
    qr_code: UploadFile | None = File(None, description="Payment QR image"),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    admin: CurrentUser = Depends(require_admin),
):
    """Saves UPI id, contact number and (optionally) a new QR image."""
    try:
        form = PaymentSettingsForm(upi_id=upi_id, contact_number=contact_number)
    except FormError as e:
        details = [{"field": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]} for err in e.errors()]
        raise ValidationError("Invalid settings", details=details) from e
    qr_image = None
    if qr_code is not None and qr_code.filename:
        qr_image = (qr_code.filename, await qr_code.read())
    payment = await asyncio.to_thread(
        settings_registry.save_payment_settings, db, blob_store, form.upi_id, form.contact_number, qr_image
    )
    return _settings_payload(payment)
