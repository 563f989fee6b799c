# Blob storage for uploaded PDFs and the payment QR image, plus zip export
import asyncio
import io
import logging
import zipfile
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import Protocol

from printdesk.config import PUBLIC_STORAGE_URL, STORAGE_DIR
from printdesk.errors import StorageError
from printdesk.models import JobFile

logger = logging.getLogger(__name__)

QR_CODES_PREFIX = "qr-codes"
# Fixed entry timestamp so the same files always give the same archive bytes
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


class BlobNotFound(Exception):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Blob not found: {key}")


class BlobStore(Protocol):
    def put(self, key: str, data: bytes) -> None: ...

    def get(self, key: str) -> bytes: ...

    def public_url(self, key: str) -> str: ...


class LocalBlobStore:
    """BlobStore on the local disk. Keys are POSIX-style relative paths under ``root``."""

    def __init__(self, root: Path, public_base_url: str = PUBLIC_STORAGE_URL):
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.root / PurePosixPath(key)).resolve()
        if path != self.root and self.root not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise BlobNotFound(key)
        return path.read_bytes()

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"


@lru_cache
def get_blob_store() -> BlobStore:
    """FastAPI dependency: the process-wide blob store."""
    return LocalBlobStore(STORAGE_DIR)


def safe_filename(filename: str) -> str:
    """Strips any directory part a browser may have sent along with the name."""
    name = PurePosixPath(filename.replace("\\", "/")).name.strip()
    if name in ("", ".", ".."):
        return "document.pdf"
    return name


def build_storage_key(owner_id: str, job_id: str, filename: str) -> str:
    """owner/job/filename: uploads of different jobs never share a key."""
    return f"{owner_id}/{job_id}/{safe_filename(filename)}"


def store(blob_store: BlobStore, owner_id: str, job_id: str, filename: str, data: bytes) -> str:
    """Writes one file and returns its storage key."""
    key = build_storage_key(owner_id, job_id, filename)
    try:
        blob_store.put(key, data)
    except StorageError:
        raise
    except OSError as e:
        logger.error(f"[STORAGE] put {key} failed: {e}")
        raise StorageError(details={"filename": filename}) from e
    return key


@dataclass
class FetchResult:
    files: list[tuple[str, bytes]] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


async def fetch_all(blob_store: BlobStore, records: list[JobFile]) -> FetchResult:
    """
    Downloads every file of a job concurrently. A file that cannot be read is
    left out and its name reported in ``missing``; the rest still export.
    """
    results = await asyncio.gather(
        *(asyncio.to_thread(blob_store.get, r.file_url) for r in records),
        return_exceptions=True,
    )
    out = FetchResult()
    for record, result in zip(records, results):
        if isinstance(result, (BlobNotFound, OSError, StorageError)):
            logger.warning(f"[STORAGE] {record.file_url} unavailable: {result}")
            out.missing.append(record.original_filename)
        elif isinstance(result, BaseException):
            raise result
        else:
            out.files.append((record.original_filename, result))
    return out


def bundle(files: list[tuple[str, bytes]]) -> bytes:
    """Zips (filename, bytes) pairs; entry names are the original filenames, in order."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in files:
            info = zipfile.ZipInfo(safe_filename(name), date_time=ZIP_EPOCH)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            zf.writestr(info, data)
    return buffer.getvalue()
