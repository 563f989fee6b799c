# Admin-editable key/value settings (payment display metadata)
import logging
import time
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from printdesk import storage
from printdesk.errors import PersistenceError, SettingsSaveError
from printdesk.models import AppSetting
from printdesk.storage import QR_CODES_PREFIX, BlobStore

logger = logging.getLogger(__name__)

QR_CODE_URL = "qr_code_url"
UPI_ID = "upi_id"
CONTACT_NUMBER = "contact_number"


@dataclass
class PaymentSettings:
    qr_url: str | None = None
    upi_id: str | None = None
    contact_number: str | None = None


def get_all(db: Session) -> dict[str, str]:
    return {s.setting_key: s.setting_value for s in db.query(AppSetting).all()}


def upsert(db: Session, key: str, value: str) -> None:
    """Inserts or overwrites one key. Each call is its own commit."""
    try:
        db.merge(AppSetting(setting_key=key, setting_value=value))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[SETTINGS] upsert {key} failed: {e}")
        raise PersistenceError() from e


def _resolve_qr(blob_store: BlobStore, ref: str | None) -> str | None:
    if not ref:
        return None
    if ref.startswith(("http://", "https://")):
        return ref
    return blob_store.public_url(ref)


def get_payment_settings(db: Session, blob_store: BlobStore) -> PaymentSettings:
    raw = get_all(db)
    return PaymentSettings(
        qr_url=_resolve_qr(blob_store, raw.get(QR_CODE_URL)),
        upi_id=raw.get(UPI_ID) or None,
        contact_number=raw.get(CONTACT_NUMBER) or None,
    )


def save_payment_settings(
    db: Session,
    blob_store: BlobStore,
    upi_id: str,
    contact_number: str,
    qr_image: tuple[str, bytes] | None = None,
) -> PaymentSettings:
    """
    Saves the admin's payment settings. The QR image (if any) is uploaded
    first, then each key is upserted on its own. There is no transaction
    across keys: if one fails, the keys before it stay saved and the error
    says which ones.
    """
    updates = [(UPI_ID, upi_id), (CONTACT_NUMBER, contact_number)]
    if qr_image is not None:
        filename, data = qr_image
        key = f"{QR_CODES_PREFIX}/{int(time.time() * 1000)}-{storage.safe_filename(filename)}"
        try:
            blob_store.put(key, data)
        except OSError as e:
            raise SettingsSaveError(saved_keys=[], failed_key=QR_CODE_URL) from e
        updates.append((QR_CODE_URL, key))

    saved: list[str] = []
    for key, value in updates:
        try:
            upsert(db, key, value)
        except PersistenceError as e:
            logger.warning(f"[SETTINGS] partial save: saved={saved} failed={key}")
            raise SettingsSaveError(saved_keys=saved, failed_key=key) from e
        saved.append(key)

    logger.info(f"[SETTINGS] saved {saved}")
    return get_payment_settings(db, blob_store)
