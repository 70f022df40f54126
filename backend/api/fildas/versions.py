import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import activity
from .errors import DocumentNotFound, DuplicateVersion, NotFound
from .models import Document, DocumentVersion, User, utcnow
from .storage import FileStorage

logger = logging.getLogger(__name__)

MAX_NUMBERING_ATTEMPTS = 5


def _lock_document(db: Session, document_id: int) -> Document:
    # FOR UPDATE serializes numbering per document where the backend supports it;
    # the unique (document_id, version_number) index covers the rest.
    doc = db.query(Document).filter(Document.id == document_id).with_for_update().first()
    if doc is None or doc.deleted_at is not None:
        raise DocumentNotFound(document_id)
    return doc


def next_version_number(db: Session, document_id: int) -> int:
    current = (
        db.query(func.max(DocumentVersion.version_number))
        .filter(DocumentVersion.document_id == document_id)
        .scalar()
    )
    return (current or 0) + 1


def append_version(
    db: Session,
    doc: Document,
    *,
    file_path: str,
    original_filename: str,
    mime_type,
    size_bytes: int,
    uploader: User,
) -> DocumentVersion:
    """Insert the next version row for ``doc``. Does not commit."""
    for attempt in range(1, MAX_NUMBERING_ATTEMPTS + 1):
        try:
            with db.begin_nested():
                version = DocumentVersion(
                    document_id=doc.id,
                    version_number=next_version_number(db, doc.id),
                    file_path=file_path,
                    original_filename=original_filename,
                    mime_type=mime_type,
                    size_bytes=size_bytes,
                    uploaded_by=uploader.id,
                )
                db.add(version)
            return version
        except IntegrityError:
            logger.warning(
                "Version number collision on document %s (attempt %d)", doc.id, attempt
            )
    raise DuplicateVersion(f"Could not assign a version number for document {doc.id}")


def _point_document_at(doc: Document, version: DocumentVersion) -> None:
    doc.file_path = version.file_path
    doc.original_filename = version.original_filename
    doc.mime_type = version.mime_type
    doc.size_bytes = version.size_bytes
    doc.preview_path = None
    doc.updated_at = utcnow()


def add_version(
    db: Session,
    storage: FileStorage,
    document_id: int,
    *,
    filename: str,
    content_type,
    contents: bytes,
    uploader: User,
) -> DocumentVersion:
    doc = _lock_document(db, document_id)
    rel_path = storage.save(filename, contents)

    version = append_version(
        db,
        doc,
        file_path=rel_path,
        original_filename=filename,
        mime_type=content_type,
        size_bytes=len(contents),
        uploader=uploader,
    )
    _point_document_at(doc, version)
    activity.record(
        db, doc, "updated", f"Uploaded version {version.version_number}", actor=uploader
    )
    db.commit()
    return version


def list_versions(db: Session, document_id: int) -> list[DocumentVersion]:
    return (
        db.query(DocumentVersion)
        .filter(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.version_number.desc())
        .all()
    )


def get_version(db: Session, document_id: int, version_number: int) -> DocumentVersion:
    version = (
        db.query(DocumentVersion)
        .filter(
            DocumentVersion.document_id == document_id,
            DocumentVersion.version_number == version_number,
        )
        .first()
    )
    if version is None:
        raise NotFound(f"Version {version_number} of document {document_id} not found")
    return version


def restore_version(db: Session, document_id: int, version_number: int, actor: User) -> DocumentVersion:
    """Make an old version current again by recording it as a new version."""
    doc = _lock_document(db, document_id)
    old = get_version(db, document_id, version_number)

    version = append_version(
        db,
        doc,
        file_path=old.file_path,
        original_filename=old.original_filename,
        mime_type=old.mime_type,
        size_bytes=old.size_bytes,
        uploader=actor,
    )
    _point_document_at(doc, version)
    activity.record(
        db,
        doc,
        "updated",
        f"Restored version {version_number} as version {version.version_number}",
        actor=actor,
    )
    db.commit()
    return version
