# Database engine and sessions for jobs, files, users and settings
# Postgres through psycopg3; the test suite swaps get_db for an in-memory SQLite session
import re

from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker

from printdesk.config import DATABASE_URL


def _mask_url(url: str) -> str:
    """Masks the password in the URL for logs."""
    match = re.match(r"(postgresql(?:\+psycopg)?://[^:]+:)([^@]+)(@.+)", url)
    if match:
        return f"{match.group(1)}****{match.group(3)}"
    return "****"


def _with_psycopg_driver(url: str) -> str:
    """postgresql:// -> postgresql+psycopg:// so SQLAlchemy picks psycopg3."""
    if url.startswith("postgresql://") and "+" not in url.split("?")[0]:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


_db_url = _with_psycopg_driver(DATABASE_URL)

# pool_pre_ping: the desk sits idle between orders; stale connections are replaced
engine = create_engine(_db_url, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    Yields a session per request. Routes that are async hand it to worker
    threads one call at a time, never concurrently.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def test_connection():
    """
    Startup check: returns current_database and current_user. Fails fast
    before create_all when Postgres is unreachable.
    """
    with engine.connect() as conn:
        row = conn.execute(text("SELECT current_database(), current_user")).fetchone()
        return {"current_database": row[0], "current_user": row[1]}


def get_effective_url_masked() -> str:
    """Returns the effective URL (with the psycopg driver) masked."""
    return _mask_url(_db_url)


def get_driver_info() -> str:
    return "postgresql+psycopg" if "+psycopg" in _db_url else "postgresql"
