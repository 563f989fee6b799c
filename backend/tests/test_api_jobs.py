import asyncio
import io
import zipfile

import pytest
from conftest import pdf_upload
from fastapi import UploadFile
from starlette.datastructures import Headers

from printdesk import orders, routes_jobs
from printdesk.errors import TooManyFiles
from printdesk.models import JobFile, JobStatus, PrintJob
from printdesk.routes_jobs import read_uploads
from printdesk.settings_registry import upsert


def test_two_pdfs_three_and_two_pages(client, user_headers, make_pdf, db, blob_store):
    notes = make_pdf(3)
    response = client.post(
        "/jobs",
        files=[pdf_upload("notes.pdf", notes), pdf_upload("slides.pdf", make_pdf(2))],
        data={"instructions": "2 copies, black & white"},
        headers=user_headers,
    )
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["status"] == JobStatus.PENDING
    assert body["total_pages"] == 5
    assert body["cost"] == "7.50"
    assert body["cost_display"] == "₹7.50"
    assert body["files"] == ["notes.pdf", "slides.pdf"]
    assert body["print_instructions"] == "2 copies, black & white"

    records = db.query(JobFile).filter(JobFile.job_id == body["id"]).order_by(JobFile.id).all()
    assert [r.original_filename for r in records] == ["notes.pdf", "slides.pdf"]
    assert all(r.file_url.endswith(f"/{body['id']}/{r.original_filename}") for r in records)
    assert blob_store.get(records[0].file_url) == notes


def test_single_two_page_pdf_is_blocked(client, user_headers, make_pdf, db):
    response = client.post("/jobs", files=[pdf_upload("short.pdf", make_pdf(2))], headers=user_headers)
    assert response.status_code == 422
    assert response.json()["code"] == "BELOW_MINIMUM"
    assert db.query(PrintJob).count() == 0


def test_five_files_rejected_without_writes(client, user_headers, make_pdf, db, blob_store):
    files = [pdf_upload(f"f{i}.pdf", make_pdf(1)) for i in range(5)]
    response = client.post("/jobs", files=files, headers=user_headers)
    assert response.status_code == 422
    assert response.json()["code"] == "TOO_MANY_FILES"
    assert db.query(PrintJob).count() == 0
    assert not blob_store.root.exists()


def test_non_pdf_rejected(client, user_headers, make_pdf, db):
    response = client.post(
        "/jobs",
        files=[pdf_upload("a.pdf", make_pdf(4)), pdf_upload("b.docx", b"PK\x03\x04", "application/msword")],
        headers=user_headers,
    )
    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_TYPE"
    assert db.query(PrintJob).count() == 0


def test_unreadable_pdf_named_in_error(client, user_headers, make_pdf):
    response = client.post(
        "/jobs",
        files=[pdf_upload("good.pdf", make_pdf(4)), pdf_upload("broken.pdf", b"%PDF-1.4 nonsense")],
        headers=user_headers,
    )
    assert response.status_code == 422
    assert response.json()["details"] == {"filenames": ["broken.pdf"]}


def test_quote_reports_pages_and_minimum(client, user_headers, make_pdf, db):
    response = client.post("/jobs/quote", files=[pdf_upload("a.pdf", make_pdf(2))], headers=user_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["total_pages"] == 2
    assert body["cost_display"] == "₹3.00"
    assert body["meets_minimum"] is False
    assert db.query(PrintJob).count() == 0


def test_submission_returns_payment_settings(client, user_headers, make_pdf, db):
    upsert(db, "upi_id", "desk@okaxis")
    upsert(db, "contact_number", "9876500000")
    response = client.post("/jobs", files=[pdf_upload("a.pdf", make_pdf(4))], headers=user_headers)
    assert response.status_code == 201
    assert response.json()["payment"] == {"qr_url": None, "upi_id": "desk@okaxis", "contact_number": "9876500000"}


def test_storage_failure_keeps_job_with_fewer_files(client, user_headers, make_pdf, db, blob_store, monkeypatch):
    real_put = blob_store.put

    def flaky_put(key, data):
        if key.endswith("b.pdf"):
            raise OSError("bucket unavailable")
        real_put(key, data)

    monkeypatch.setattr(blob_store, "put", flaky_put)
    response = client.post(
        "/jobs",
        files=[pdf_upload("a.pdf", make_pdf(3)), pdf_upload("b.pdf", make_pdf(3))],
        headers=user_headers,
    )
    assert response.status_code == 502
    details = response.json()["details"]
    assert details["stored"] == ["a.pdf"] and details["expected"] == 2

    job = db.query(PrintJob).one()
    assert job.id == details["job_id"]
    assert [f.original_filename for f in db.query(JobFile).all()] == ["a.pdf"]


def test_admin_cannot_submit(client, admin_headers, make_pdf):
    response = client.post("/jobs", files=[pdf_upload("a.pdf", make_pdf(4))], headers=admin_headers)
    assert response.status_code == 403


def test_submission_requires_login(client, make_pdf):
    response = client.post("/jobs", files=[pdf_upload("a.pdf", make_pdf(4))])
    assert response.status_code == 401


def test_list_and_get_own_jobs(client, user_headers, make_pdf):
    created = client.post("/jobs", files=[pdf_upload("a.pdf", make_pdf(6))], headers=user_headers).json()

    listing = client.get("/jobs", headers=user_headers).json()
    assert listing["total"] == 1
    assert listing["jobs"][0]["id"] == created["id"]

    detail = client.get(f"/jobs/{created['id']}", headers=user_headers)
    assert detail.status_code == 200
    assert detail.json()["files"] == ["a.pdf"]
    assert detail.json()["cost_display"] == "₹9.00"


def test_invalid_job_id(client, user_headers):
    response = client.get("/jobs/not-a-uuid", headers=user_headers)
    assert response.status_code == 422


def test_payment_settings_and_notices(client, user_headers):
    response = client.get("/settings/payment", headers=user_headers)
    assert response.status_code == 200
    assert response.json()["unit_rate_display"] == "₹1.50"

    notices = client.get("/notices").json()["notices"]
    assert any("Minimum order size is 4 pages" in n for n in notices)


def test_same_name_in_different_folders_rejected(client, user_headers, make_pdf, db, blob_store):
    response = client.post(
        "/jobs",
        files=[pdf_upload("a/notes.pdf", make_pdf(2)), pdf_upload("b/notes.pdf", make_pdf(3))],
        headers=user_headers,
    )
    assert response.status_code == 422
    assert response.json()["code"] == "DUPLICATE_FILENAME"
    assert response.json()["details"] == {"filenames": ["notes.pdf"]}
    assert db.query(PrintJob).count() == 0
    assert not blob_store.root.exists()


def test_recorded_name_is_the_stored_name(client, user_headers, admin_headers, make_pdf, db):
    response = client.post("/jobs", files=[pdf_upload("scans/notes.pdf", make_pdf(4))], headers=user_headers)
    assert response.status_code == 201, response.text
    job_id = response.json()["id"]
    assert response.json()["files"] == ["notes.pdf"]

    record = db.query(JobFile).filter(JobFile.job_id == job_id).one()
    assert record.original_filename == "notes.pdf"
    assert record.file_url.endswith(f"/{job_id}/notes.pdf")

    export = client.get(f"/admin/jobs/{job_id}/export", headers=admin_headers)
    with zipfile.ZipFile(io.BytesIO(export.content)) as zf:
        assert zf.namelist() == ["notes.pdf"]


def test_uploads_read_no_further_than_the_size_limit():
    upload = UploadFile(
        file=io.BytesIO(b"%PDF-" + b"x" * 100),
        filename="big.pdf",
        headers=Headers({"content-type": "application/pdf"}),
    )
    [candidate] = asyncio.run(read_uploads([upload], max_bytes=10))
    assert len(candidate.data) == 11
    assert candidate.content_type == "application/pdf"


def test_oversized_upload_rejected(client, user_headers, make_pdf, monkeypatch):
    monkeypatch.setattr(routes_jobs, "MAX_FILE_SIZE_BYTES", 10)
    monkeypatch.setattr(orders, "MAX_FILE_SIZE_BYTES", 10)
    response = client.post("/jobs", files=[pdf_upload("big.pdf", make_pdf(4))], headers=user_headers)
    assert response.status_code == 422
    assert response.json()["code"] == "FILE_TOO_LARGE"


def test_too_many_uploads_rejected_before_reading(make_pdf):
    uploads = [UploadFile(file=io.BytesIO(make_pdf(1)), filename=f"f{i}.pdf") for i in range(5)]
    with pytest.raises(TooManyFiles):
        asyncio.run(read_uploads(uploads))
    assert all(u.file.tell() == 0 for u in uploads)
