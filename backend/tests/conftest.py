import io
import uuid

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfWriter
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from printdesk import models  # noqa: F401
from printdesk.auth import hash_password
from printdesk.db import Base, get_db
from printdesk.main import app
from printdesk.models import Role, User, UserRole
from printdesk.session import start_session_listener, stop_session_listener
from printdesk.storage import LocalBlobStore, get_blob_store

USER_MOBILE = "9876543210"
OTHER_MOBILE = "9812345678"
ADMIN_MOBILE = "9900112233"
PASSWORD = "secret-pass"


def build_pdf(pages: int, user_password: str | None = None) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=595, height=842)
    if user_password is not None:
        writer.encrypt(user_password=user_password, owner_password="owner-secret")
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs", public_base_url="/storage")


@pytest.fixture
def client(session_factory, blob_store):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    start_session_listener(session_factory)
    yield TestClient(app)
    stop_session_listener()
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(name: str = "Asha Rao", mobile: str = "+919876543210", role: str = Role.USER) -> User:
        user = User(id=str(uuid.uuid4()), name=name, mobile_number=mobile, password_hash="x")
        db.add(user)
        db.flush()
        db.add(UserRole(user_id=user.id, role=role))
        db.commit()
        return user

    return _make


def register(client: TestClient, name: str, mobile: str, password: str = PASSWORD) -> dict:
    response = client.post("/auth/register", json={"name": name, "mobile_number": mobile, "password": password})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def user_headers(client):
    token = register(client, "Asha Rao", USER_MOBILE)["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(client, db):
    admin = User(
        id=str(uuid.uuid4()),
        name="Desk Admin",
        mobile_number=f"+91{ADMIN_MOBILE}",
        password_hash=hash_password(PASSWORD),
    )
    db.add(admin)
    db.flush()
    db.add(UserRole(user_id=admin.id, role=Role.ADMIN))
    db.commit()
    response = client.post("/auth/login", json={"mobile_number": ADMIN_MOBILE, "password": PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def pdf_upload(name: str, data: bytes, content_type: str = "application/pdf"):
    return ("files", (name, data, content_type))
