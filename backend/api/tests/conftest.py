"""
FilDAS test suite: shared fixtures.

Run:  pytest backend/api/tests -v

Every test gets a fresh in-memory SQLite database, a temporary document disk,
a mailer that records instead of sending, and a converter that never starts
LibreOffice.
"""

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fildas import documents, hierarchy
from fildas.auth import create_access_token, hash_password
from fildas.conversion import CONVERTIBLE_TYPES, get_converter
from fildas.db import Base, create_db_engine, get_db
from fildas.main import app
from fildas.models import (
    ROLE_ADMIN,
    ROLE_STAFF,
    ROLE_SUPER_ADMIN,
    Department,
    Role,
    User,
)
from fildas.notifications import Notifier, get_notifier
from fildas.storage import FileStorage, get_storage, preview_path_for

PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class FakeMailer:
    """Records outgoing mail instead of talking to SMTP."""

    configured = True

    def __init__(self):
        self.sent = []

    def send(self, to_email, subject, text_body):
        self.sent.append({"to": to_email, "subject": subject, "body": text_body})
        return True


class FakeConverter:
    def __init__(self, storage, fail=False):
        self.storage = storage
        self.fail = fail
        self.calls = []

    def should_convert(self, mime_type):
        return mime_type in CONVERTIBLE_TYPES

    def convert_to_pdf(self, input_path):
        self.calls.append(input_path)
        if self.fail:
            return None
        out = preview_path_for(input_path)
        self.storage.path(out).write_bytes(b"%PDF-1.4 converted")
        return out


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    eng = create_db_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def seed(db):
    """Roles, three departments (one of them QA) and a user for each role."""
    roles = {
        name: Role(name=name)
        for name in (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_STAFF)
    }
    db.add_all(roles.values())

    eng = Department(name="Engineering", code="ENG")
    hr = Department(name="Human Resources", code="HR")
    qa = Department(name="Quality Assurance", code="QA", is_qa=True)
    db.add_all([eng, hr, qa])
    db.flush()

    def user(name, role, dept, status="active"):
        u = User(
            name=name,
            email=f"{name.lower()}@example.com",
            password_hash=PASSWORD_HASH,
            role_id=roles[role].id,
            department_id=dept.id if dept is not None else None,
            status=status,
        )
        db.add(u)
        return u

    ns = SimpleNamespace(
        roles=roles,
        eng=eng,
        hr=hr,
        qa=qa,
        root=user("Root", ROLE_SUPER_ADMIN, None),
        eng_admin=user("Erin", ROLE_ADMIN, eng),
        alice=user("Alice", ROLE_STAFF, eng),
        bob=user("Bob", ROLE_STAFF, eng),
        carol=user("Carol", ROLE_STAFF, hr),
        quinn=user("Quinn", ROLE_STAFF, qa),
        idle=user("Idle", ROLE_STAFF, eng, status="inactive"),
    )
    db.commit()
    return ns


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def storage(tmp_path):
    return FileStorage(tmp_path / "docs")


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def notifier(mailer):
    return Notifier(mailer, "http://fildas.test")


@pytest.fixture
def converter(storage):
    return FakeConverter(storage)


@pytest.fixture
def client(db, storage, notifier, converter):
    def _db():
        try:
            yield db
        finally:
            db.rollback()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_converter] = lambda: converter
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def headers(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}

    return headers


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

@pytest.fixture
def make_folder(db):
    def build(actor, name, parent=None, department=None):
        return hierarchy.create_folder(
            db,
            actor,
            name,
            department_id=department.id if department is not None else None,
            parent_id=parent.id if parent is not None else None,
        )

    return build


@pytest.fixture
def make_doc(db, storage):
    def build(actor, filename="report.pdf", folder=None, department=None,
              content_type="application/pdf", contents=b"%PDF-1.4 test", **kwargs):
        return documents.upload_document(
            db,
            storage,
            actor,
            filename=filename,
            content_type=content_type,
            contents=contents,
            folder_id=folder.id if folder is not None else None,
            department_id=department.id if department is not None else None,
            **kwargs,
        )

    return build
