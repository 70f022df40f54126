"""Document operations: upload, edit, move/copy, trash and the QA review flow."""
import io
import logging
import re
import zipfile
from typing import Optional

from fastapi import BackgroundTasks
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from . import activity
from .errors import Forbidden, InvalidTransition, NotFound
from .hierarchy import (
    archive_entries,
    check_department_change,
    ensure_folder_path,
    get_department,
    get_folder,
    live_subtree,
    resolve_destination,
    shared_folder_ids,
    touch_parent,
)
from .models import Department, Document, Folder, Share, User, utcnow
from .notifications import (
    REJECTED_WITH_REASON,
    SUBMITTED_FOR_REVIEW,
    Notifier,
    item_title,
    notify_owner,
    render_item_updated,
)
from .permissions import can_contribute_to, require_modify, require_view
from .storage import FileStorage
from .versions import append_version

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "title": Document.title,
    "uploaded_at": Document.uploaded_at,
    "created_at": Document.created_at,
    "updated_at": Document.updated_at,
    "size_bytes": Document.size_bytes,
    "status": Document.status,
}

# status -> statuses it may move to
TRANSITIONS = {
    "pending": {"submitted"},
    "submitted": {"approved", "rejected"},
    "rejected": {"submitted"},
    "approved": set(),
}


def _require_contribute(db: Session, actor: User, department: Department, folder: Optional[Folder]):
    if not can_contribute_to(db, actor, department, folder):
        raise Forbidden("No permission to add documents here")


# ----------------- UPLOAD / EDIT -----------------
def upload_document(
    db: Session,
    storage: FileStorage,
    actor: User,
    *,
    filename: str,
    content_type: Optional[str],
    contents: bytes,
    title: Optional[str] = None,
    description: Optional[str] = None,
    department_id: Optional[int] = None,
    folder_id: Optional[int] = None,
    relative_path: Optional[str] = None,
    document_type_id: Optional[int] = None,
) -> Document:
    parent, department = resolve_destination(db, actor.department_id, folder_id, department_id)
    _require_contribute(db, actor, department, parent)

    if relative_path:
        parent = ensure_folder_path(db, actor, department, parent, relative_path)

    rel_path = storage.save(filename, contents)
    doc = Document(
        title=title or filename,
        description=description,
        file_path=rel_path,
        original_filename=filename,
        mime_type=content_type,
        size_bytes=len(contents),
        department_id=department.id,
        document_type_id=document_type_id,
        folder_id=parent.id if parent is not None else None,
        uploaded_by=actor.id,
        owner_id=actor.id,
        original_owner_id=actor.id,
        status="pending",
    )
    db.add(doc)
    db.flush()

    append_version(
        db,
        doc,
        file_path=rel_path,
        original_filename=filename,
        mime_type=content_type,
        size_bytes=len(contents),
        uploader=actor,
    )
    activity.record(db, doc, "uploaded", f"Uploaded file: {filename}", actor=actor)
    touch_parent(db, doc.folder_id, f"Uploaded document: {doc.title}", actor)
    db.commit()

    logger.info("Document %s uploaded by user %s (%d bytes)", doc.id, actor.id, doc.size_bytes)
    return doc


def update_document(
    db: Session,
    actor: User,
    doc: Document,
    title: Optional[str] = None,
    description: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Document:
    require_modify(db, actor, doc)
    renamed = title is not None and title != doc.title
    if title is not None:
        doc.title = title
    if description is not None:
        doc.description = description
    doc.updated_at = utcnow()

    activity.record(db, doc, "updated", "Title or description changed", actor=actor)
    if renamed:
        touch_parent(db, doc.folder_id, f"Renamed document: {doc.title}", actor)
    db.commit()

    if renamed:
        notify_owner(db, notifier, doc, actor, "renamed", background_tasks)
    return doc


# ----------------- MOVE / COPY -----------------
def move_document(
    db: Session,
    actor: User,
    doc: Document,
    target_folder_id: Optional[int],
    target_department_id: Optional[int] = None,
    notifier: Optional[Notifier] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Document:
    require_modify(db, actor, doc)
    dest, department = resolve_destination(db, doc.department_id, target_folder_id, target_department_id)
    check_department_change(actor, doc.department_id, department.id)
    _require_contribute(db, actor, department, dest)

    old_folder_id = doc.folder_id
    doc.folder_id = dest.id if dest is not None else None
    doc.department_id = department.id
    doc.updated_at = utcnow()

    details = f"Moved to folder: {dest.name}" if dest is not None else "Moved to department root"
    activity.record(db, doc, "moved", details, actor=actor)
    touch_parent(db, old_folder_id, f"Document moved out: {doc.title}", actor)
    touch_parent(db, doc.folder_id, f"Document moved here: {doc.title}", actor)
    db.commit()

    notify_owner(db, notifier, doc, actor, "moved", background_tasks)
    return doc


def _clone_document(db: Session, actor: User, doc: Document, department_id: int, folder_id: Optional[int]) -> Document:
    """New document row sharing ``doc``'s stored file, owned by ``actor``. Does not commit."""
    copy = Document(
        title=doc.title,
        description=doc.description,
        file_path=doc.file_path,
        preview_path=doc.preview_path,
        original_filename=doc.original_filename,
        mime_type=doc.mime_type,
        size_bytes=doc.size_bytes,
        department_id=department_id,
        document_type_id=doc.document_type_id,
        folder_id=folder_id,
        uploaded_by=actor.id,
        owner_id=actor.id,
        original_owner_id=doc.original_owner_id or doc.owner_id,
        status="pending",
    )
    db.add(copy)
    db.flush()

    append_version(
        db,
        copy,
        file_path=copy.file_path,
        original_filename=copy.original_filename,
        mime_type=copy.mime_type,
        size_bytes=copy.size_bytes,
        uploader=actor,
    )
    return copy


def _copy_destination(db: Session, actor: User, target_folder_id: Optional[int], fallback_department_id: int):
    if target_folder_id is not None:
        dest = get_folder(db, target_folder_id)
        return dest, get_department(db, dest.department_id)
    return None, get_department(db, actor.department_id or fallback_department_id)


def copy_document(
    db: Session,
    actor: User,
    doc: Document,
    target_folder_id: Optional[int] = None,
) -> Document:
    """Copy into a folder, or into the actor's department root when no folder is given."""
    require_view(db, actor, doc)
    dest, department = _copy_destination(db, actor, target_folder_id, doc.department_id)
    _require_contribute(db, actor, department, dest)

    copy = _clone_document(db, actor, doc, department.id, dest.id if dest is not None else None)
    activity.record(db, copy, "created", f"Document copied from: {doc.title}", actor=actor)
    touch_parent(db, copy.folder_id, f"Document copied here: {copy.title}", actor)
    db.commit()
    return copy


def copy_folder(
    db: Session,
    actor: User,
    folder: Folder,
    target_folder_id: Optional[int] = None,
) -> Folder:
    """Deep-copy a folder with its live subfolders and documents.

    The tree is read before anything is written, so copying a folder into
    its own subtree copies it once.
    """
    require_view(db, actor, folder)
    dest, department = _copy_destination(db, actor, target_folder_id, folder.department_id)
    _require_contribute(db, actor, department, dest)

    source = live_subtree(db, folder)
    contents = {
        f.id: db.query(Document)
        .filter(Document.folder_id == f.id, Document.deleted_at.is_(None))
        .order_by(Document.id)
        .all()
        for f in source
    }

    clones = {}
    for original in source:
        if original.id == folder.id:
            parent_id = dest.id if dest is not None else None
        else:
            parent_id = clones[original.parent_id].id
        clone = Folder(
            name=original.name,
            description=original.description,
            parent_id=parent_id,
            department_id=department.id,
            owner_id=actor.id,
        )
        db.add(clone)
        db.flush()
        clones[original.id] = clone
        for doc in contents[original.id]:
            _clone_document(db, actor, doc, department.id, clone.id)

    root = clones[folder.id]
    activity.record(db, root, "created", f"Folder copied from: {folder.name}", actor=actor)
    touch_parent(db, root.parent_id, f"Copied subfolder into this folder: {root.name}", actor)
    db.commit()

    logger.info("Folder %s copied to %s by user %s (%d folders)", folder.id, root.id, actor.id, len(clones))
    return root


def folder_archive(db: Session, storage: FileStorage, actor: User, folder: Folder) -> tuple[io.BytesIO, str]:
    """Zip every live document under ``folder``; returns (buffer, download name)."""
    require_view(db, actor, folder)
    entries = archive_entries(db, folder)
    if not entries:
        raise NotFound("No files in this folder")

    buffer = io.BytesIO()
    added = 0
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for arcname, doc in entries:
            if not storage.exists(doc.file_path):
                logger.warning("Skipping document %s in folder archive, file missing: %s", doc.id, doc.file_path)
                continue
            archive.write(storage.path(doc.file_path), arcname)
            added += 1
    if added == 0:
        raise NotFound("No accessible files found")

    buffer.seek(0)
    safe = re.sub(r"[^A-Za-z0-9_-]", "_", folder.name)
    logger.info("Folder %s archived for user %s (%d files)", folder.id, actor.id, added)
    return buffer, f"{safe}_{utcnow().strftime('%Y%m%d_%H%M%S')}.zip"


# ----------------- TRASH -----------------
def trash_document(db: Session, actor: User, doc: Document) -> Document:
    require_modify(db, actor, doc)
    doc.deleted_at = utcnow()
    activity.record(db, doc, "deleted", "Document moved to trash", actor=actor)
    touch_parent(db, doc.folder_id, f"Deleted document: {doc.title}", actor)
    db.commit()
    return doc


def restore_document(db: Session, actor: User, doc: Document) -> Document:
    if doc.deleted_at is None:
        return doc
    require_modify(db, actor, doc)
    if doc.folder_id is not None:
        folder = db.get(Folder, doc.folder_id)
        if folder is None or folder.deleted_at is not None:
            doc.folder_id = None
    doc.deleted_at = None
    activity.record(db, doc, "restored", "Document restored from trash", actor=actor)
    touch_parent(db, doc.folder_id, f"Restored document: {doc.title}", actor)
    db.commit()
    return doc


# ----------------- LISTINGS -----------------
def visible_documents_query(db: Session, user: User):
    query = db.query(Document).filter(Document.deleted_at.is_(None))
    if user.is_super_admin:
        return query
    conds = [Document.owner_id == user.id]
    if user.department_id is not None:
        conds.append(Document.department_id == user.department_id)
    shared_docs = [
        did
        for (did,) in db.query(Share.document_id)
        .filter(Share.target_user_id == user.id, Share.document_id.isnot(None))
        .all()
    ]
    if shared_docs:
        conds.append(Document.id.in_(shared_docs))
    shared_folders = shared_folder_ids(db, user.id)
    if shared_folders:
        conds.append(Document.folder_id.in_(shared_folders))
    return query.filter(or_(*conds))


def list_documents(
    db: Session,
    user: User,
    *,
    department_id: Optional[int] = None,
    folder_id: Optional[int] = None,
    search: Optional[str] = None,
    sort_by: str = "uploaded_at",
    sort_order: str = "desc",
    page: int = 1,
    per_page: int = 15,
):
    query = visible_documents_query(db, user)
    if department_id is not None:
        query = query.filter(Document.department_id == department_id)
    if folder_id is not None:
        query = query.filter(Document.folder_id == folder_id)
    if search:
        like = f"%{search}%"
        query = query.filter(
            or_(
                Document.title.ilike(like),
                Document.description.ilike(like),
                Document.original_filename.ilike(like),
            )
        )

    total = query.count()
    column = SORT_FIELDS.get(sort_by, Document.uploaded_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()
    items = (
        query.order_by(ordering, Document.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return items, total


def statistics(db: Session) -> dict:
    live = db.query(Document).filter(Document.deleted_at.is_(None))
    by_type = (
        db.query(Document.mime_type, func.count(Document.id))
        .filter(Document.deleted_at.is_(None))
        .group_by(Document.mime_type)
        .all()
    )
    by_status = (
        db.query(Document.status, func.count(Document.id))
        .filter(Document.deleted_at.is_(None))
        .group_by(Document.status)
        .all()
    )
    recent = live.order_by(Document.created_at.desc(), Document.id.desc()).limit(5).all()
    return {
        "total_documents": live.count(),
        "total_size": int(
            db.query(func.coalesce(func.sum(Document.size_bytes), 0))
            .filter(Document.deleted_at.is_(None))
            .scalar()
        ),
        "documents_by_type": [{"mime_type": m, "count": c} for m, c in by_type],
        "documents_by_status": {s: c for s, c in by_status},
        "recent_uploads": recent,
    }


# ----------------- QA REVIEW -----------------
def is_reviewer(user: User) -> bool:
    return user.is_admin or bool(user.department is not None and user.department.is_qa)


def qa_reviewers(db: Session) -> list[User]:
    return (
        db.query(User)
        .join(Department, User.department_id == Department.id)
        .filter(
            Department.is_qa.is_(True),
            Department.deleted_at.is_(None),
            User.deleted_at.is_(None),
            User.status == "active",
        )
        .all()
    )


def _transition(doc: Document, new_status: str) -> None:
    if new_status not in TRANSITIONS.get(doc.status, set()):
        raise InvalidTransition(f"Cannot change document status from {doc.status} to {new_status}")
    doc.status = new_status
    doc.updated_at = utcnow()


def submit_document(
    db: Session,
    actor: User,
    doc: Document,
    notifier: Optional[Notifier] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Document:
    require_modify(db, actor, doc)
    _transition(doc, "submitted")
    doc.approved_by = None
    doc.approved_at = None
    activity.record(db, doc, "submitted", "Submitted for QA review", actor=actor)
    db.commit()

    if notifier is not None:
        rendered = render_item_updated(
            "document", item_title(doc), SUBMITTED_FOR_REVIEW, actor.name, item_id=doc.id
        )
        for reviewer in qa_reviewers(db):
            if reviewer.id != actor.id:
                notifier.notify(db, reviewer, rendered, background_tasks)
    return doc


def _require_reviewer(user: User) -> None:
    if not is_reviewer(user):
        raise Forbidden("Only QA reviewers can review documents")


def approve_document(
    db: Session,
    actor: User,
    doc: Document,
    notifier: Optional[Notifier] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Document:
    _require_reviewer(actor)
    _transition(doc, "approved")
    doc.approved_by = actor.id
    doc.approved_at = utcnow()
    activity.record(db, doc, "approved", "Approved in QA review", actor=actor)
    db.commit()

    notify_owner(db, notifier, doc, actor, "approved", background_tasks)
    return doc


def reject_document(
    db: Session,
    actor: User,
    doc: Document,
    reason: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Document:
    _require_reviewer(actor)
    _transition(doc, "rejected")
    doc.approved_by = None
    doc.approved_at = None
    reason = (reason or "").strip()
    details = f"Rejected in QA review: {reason}" if reason else "Rejected in QA review"
    activity.record(db, doc, "rejected", details, actor=actor)
    db.commit()

    change_type = f"{REJECTED_WITH_REASON}{reason}" if reason else "rejected"
    notify_owner(db, notifier, doc, actor, change_type, background_tasks)
    return doc


def qa_approvals(db: Session, user: User) -> list[Document]:
    _require_reviewer(user)
    return (
        db.query(Document)
        .filter(Document.status == "submitted", Document.deleted_at.is_(None))
        .order_by(Document.updated_at.asc(), Document.id.asc())
        .all()
    )
