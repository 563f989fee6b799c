# Main server: FastAPI (exposes the HTTP endpoints)
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from printdesk import models  # noqa: F401  registers the tables on Base before create_all
from printdesk import settings_registry
from printdesk.config import (
    CORS_ORIGINS,
    ENV,
    LOG_LEVEL,
    MAX_FILES_PER_JOB,
    MIN_ORDER_PAGES,
    STORAGE_DIR,
    get_env_loaded_path,
)
from printdesk.db import Base, SessionLocal, engine, get_db, get_driver_info, get_effective_url_masked, test_connection
from printdesk.errors import add_exception_handlers
from printdesk.orders import format_cost
from printdesk.routes_admin import router as admin_router
from printdesk.routes_auth import router as auth_router
from printdesk.routes_jobs import router as jobs_router
from printdesk.session import CurrentUser, get_current_user, start_session_listener, stop_session_listener
from printdesk.storage import QR_CODES_PREFIX, BlobStore, get_blob_store

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")
logger = logging.getLogger("uvicorn.error")

NOTICES = [
    "For best results, please combine all images into a single PDF before uploading.",
    "We do not edit files. Please ensure your documents are final.",
    "Turnaround Time: Orders placed today will be ready for pickup the next working day.",
    "Service is closed on college holidays. Orders will not be processed on holidays or the day before.",
    "We will contact you on WhatsApp to confirm your order before printing. "
    "Please pay only after you receive our confirmation.",
    f"Minimum order size is {MIN_ORDER_PAGES} pages. Max {MAX_FILES_PER_JOB} PDF files per submission.",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """On startup: check Postgres, create tables, register the session listener."""
    logger.info(f"[STARTUP] .env loaded from: {get_env_loaded_path() or '(no .env found)'}")
    logger.info(f"[STARTUP] DATABASE_URL (masked): {get_effective_url_masked()}")
    logger.info(f"[STARTUP] Driver: {get_driver_info()}")

    try:
        conn_info = test_connection()
        logger.info(f"[STARTUP] Postgres connected: db={conn_info['current_database']} user={conn_info['current_user']}")
    except Exception as e:
        logger.error(f"[STARTUP] ERROR connecting to Postgres: {e}")
        raise

    Base.metadata.create_all(bind=engine)
    logger.info("[STARTUP] Tables created/verified (create_all)")

    (STORAGE_DIR / QR_CODES_PREFIX).mkdir(parents=True, exist_ok=True)
    start_session_listener(SessionLocal)
    logger.info(f"[STARTUP] Storage at {STORAGE_DIR}; session listener registered")

    yield

    stop_session_listener()
    logger.info("[SHUTDOWN] Session listener released")


app = FastAPI(
    title="Print Desk",
    description="Campus PDF print orders: submission, payment summary and admin queue",
    lifespan=lifespan,
)

# CORS: explicit origins in production, anything in dev
if ENV == "production":
    allow_origins = [origin.strip() for origin in CORS_ORIGINS.split(",") if origin.strip()] or ["*"]
else:
    allow_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Missing-Files"],
)

add_exception_handlers(app)

app.include_router(auth_router)
app.include_router(jobs_router)
app.include_router(admin_router)

# Only the QR images are public; uploaded PDFs are served through the admin export
app.mount(
    f"/storage/{QR_CODES_PREFIX}",
    StaticFiles(directory=STORAGE_DIR / QR_CODES_PREFIX, check_dir=False),
    name="qr-codes",
)


@app.get("/settings/payment")
def payment_settings(
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    current_user: CurrentUser = Depends(get_current_user),
):
    """QR image URL, UPI id and contact number shown with the payment summary."""
    payment = settings_registry.get_payment_settings(db, blob_store)
    return {
        "qr_url": payment.qr_url,
        "upi_id": payment.upi_id,
        "contact_number": payment.contact_number,
        "unit_rate_display": format_cost(1),
    }


@app.get("/notices")
def notices():
    """The important-information list shown above the upload form."""
    return {"notices": NOTICES}


@app.get("/health")
def health():
    return {"status": "ok"}
