"""Concurrent writers against a file-backed SQLite database.

The in-memory fixtures share one connection, so they cannot show lock
contention. These tests give every thread its own session on a real file.
"""

import threading

import pytest
from sqlalchemy.orm import sessionmaker

from fildas import documents, sharing, versions
from fildas.db import Base, create_db_engine
from fildas.models import ROLE_STAFF, Department, DocumentVersion, Role, Share, User

WORKERS = 6


@pytest.fixture
def file_engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'fildas.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def make_session(file_engine):
    return sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def shared_doc(make_session, storage):
    db = make_session()
    role = Role(name=ROLE_STAFF)
    dept = Department(name="Engineering", code="ENG")
    db.add_all([role, dept])
    db.flush()
    alice = User(name="Alice", email="alice@example.com", password_hash="x",
                 role_id=role.id, department_id=dept.id)
    carol = User(name="Carol", email="carol@example.com", password_hash="x",
                 role_id=role.id, department_id=dept.id)
    db.add_all([alice, carol])
    db.commit()
    doc = documents.upload_document(
        db, storage, alice,
        filename="report.pdf", content_type="application/pdf", contents=b"%PDF-1.4 v1",
    )
    ids = (doc.id, alice.id, carol.id)
    db.close()
    return ids


def run_together(make_session, work):
    """Start WORKERS threads behind a barrier; return (results, errors)."""
    barrier = threading.Barrier(WORKERS)
    results, errors = [], []
    lock = threading.Lock()

    def worker(index):
        db = make_session()
        try:
            barrier.wait()
            value = work(db, index)
            with lock:
                results.append(value)
        except Exception as exc:  # collected and asserted on below
            db.rollback()
            with lock:
                errors.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results, errors


def test_parallel_uploads_get_distinct_version_numbers(make_session, storage, shared_doc):
    doc_id, alice_id, _ = shared_doc

    def upload(db, index):
        version = versions.add_version(
            db,
            storage,
            doc_id,
            filename=f"report-{index}.pdf",
            content_type="application/pdf",
            contents=f"%PDF-1.4 worker {index}".encode(),
            uploader=db.get(User, alice_id),
        )
        return version.version_number

    numbers, errors = run_together(make_session, upload)

    assert errors == []
    assert sorted(numbers) == list(range(2, WORKERS + 2))
    db = make_session()
    stored = [v.version_number for v in versions.list_versions(db, doc_id)]
    assert sorted(stored) == list(range(1, WORKERS + 2))
    assert db.query(DocumentVersion).count() == WORKERS + 1
    db.close()


def test_parallel_grants_keep_one_share(make_session, shared_doc):
    doc_id, alice_id, carol_id = shared_doc
    permissions = ["viewer", "contributor", "editor"]

    def grant(db, index):
        share = sharing.grant(
            db,
            db.get(User, alice_id),
            db.get(User, carol_id),
            "document",
            doc_id,
            permissions[index % len(permissions)],
        )
        return share.id

    share_ids, errors = run_together(make_session, grant)

    assert errors == []
    assert len(set(share_ids)) == 1
    db = make_session()
    rows = db.query(Share).filter(Share.document_id == doc_id).all()
    assert len(rows) == 1
    assert rows[0].permission in permissions
    db.close()
