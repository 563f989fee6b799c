# Domain errors and the FastAPI handlers that turn them into JSON responses
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from printdesk.config import ENV, MAX_FILES_PER_JOB, MIN_ORDER_PAGES

logger = logging.getLogger(__name__)


class PrintDeskError(Exception):
    """Base error: short user-facing message, machine code and HTTP status."""

    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details=None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(PrintDeskError):
    """Input the user must correct. Never retried."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", details=None):
        super().__init__(message, code=code, status_code=422, details=details)


class NoFiles(ValidationError):
    def __init__(self):
        super().__init__("Select at least one PDF file", code="NO_FILES")


class TooManyFiles(ValidationError):
    def __init__(self, count: int):
        super().__init__(
            f"Maximum {MAX_FILES_PER_JOB} PDF files allowed per submission",
            code="TOO_MANY_FILES",
            details={"count": count, "limit": MAX_FILES_PER_JOB},
        )


class InvalidType(ValidationError):
    def __init__(self, filenames: list[str]):
        super().__init__("Only PDF files are allowed", code="INVALID_TYPE", details={"filenames": filenames})


class FileTooLarge(ValidationError):
    def __init__(self, filename: str, limit_bytes: int):
        super().__init__(
            f"{filename} is larger than {limit_bytes // (1024 * 1024)} MB",
            code="FILE_TOO_LARGE",
            details={"filename": filename, "limit_bytes": limit_bytes},
        )


class DuplicateFilename(ValidationError):
    def __init__(self, filenames: list[str]):
        super().__init__(
            "Two files in one submission cannot share a name",
            code="DUPLICATE_FILENAME",
            details={"filenames": filenames},
        )


class BelowMinimum(ValidationError):
    def __init__(self, total_pages: int):
        super().__init__(
            f"Minimum order size is {MIN_ORDER_PAGES} pages",
            code="BELOW_MINIMUM",
            details={"total_pages": total_pages, "minimum": MIN_ORDER_PAGES},
        )


class UnreadableDocument(PrintDeskError):
    """A single PDF whose page tree could not be read."""

    def __init__(self, filename: str, reason: str = ""):
        self.filename = filename
        self.reason = reason
        super().__init__(
            f"Failed to process {filename}. Please try another file.",
            code="UNREADABLE_DOCUMENT",
            status_code=422,
            details={"filenames": [filename]},
        )


class UnreadableDocuments(PrintDeskError):
    """One or more PDFs of a batch failed; the whole batch is rejected."""

    def __init__(self, failures: list[UnreadableDocument]):
        self.failures = failures
        names = [f.filename for f in failures]
        super().__init__(
            f"Failed to process {', '.join(names)}. Please try other files.",
            code="UNREADABLE_DOCUMENT",
            status_code=422,
            details={"filenames": names},
        )


class JobNotFound(PrintDeskError):
    def __init__(self, job_id: str):
        super().__init__("Print job not found", code="NOT_FOUND", status_code=404, details={"job_id": job_id})


class PersistenceError(PrintDeskError):
    def __init__(self, message: str = "Could not save to the database. Please try again."):
        super().__init__(message, code="PERSISTENCE_ERROR", status_code=503)


class StorageError(PrintDeskError):
    def __init__(self, message: str = "Could not store the file. Please try again.", details=None):
        super().__init__(message, code="STORAGE_ERROR", status_code=502, details=details)


class SettingsSaveError(PrintDeskError):
    def __init__(self, saved_keys: list[str], failed_key: str):
        super().__init__(
            f"Settings update failed at '{failed_key}'",
            code="SETTINGS_SAVE_ERROR",
            status_code=502,
            details={"saved_keys": saved_keys, "failed_key": failed_key},
        )


class AuthenticationError(PrintDeskError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, code="AUTHENTICATION_FAILED", status_code=401)


class PermissionDenied(PrintDeskError):
    def __init__(self, message: str = "Not allowed"):
        super().__init__(message, code="FORBIDDEN", status_code=403)


class RegistrationError(PrintDeskError):
    def __init__(self, message: str):
        super().__init__(message, code="REGISTRATION_FAILED", status_code=400)


def _body(error: str, code: str, details=None) -> dict:
    return {"error": error, "code": code, "details": details}


def add_exception_handlers(app: FastAPI) -> None:
    """Registers the JSON error handlers on the app."""

    @app.exception_handler(PrintDeskError)
    async def printdesk_error_handler(request: Request, exc: PrintDeskError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content=_body(exc.message, exc.code, exc.details),
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=_body(str(exc.detail), "HTTP_ERROR"))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [{"loc": list(e.get("loc", [])), "msg": e.get("msg", "")} for e in exc.errors()]
        return JSONResponse(status_code=422, content=_body("Input validation failed", "VALIDATION_ERROR", details))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        message = "An internal error occurred. Please try again later." if ENV == "production" else str(exc)
        return JSONResponse(status_code=500, content=_body(message, "INTERNAL_ERROR"))
