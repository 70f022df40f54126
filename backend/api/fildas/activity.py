"""Append-only audit trail: who did what to which entity.

Subjects are stored as a ``(kind, id)`` pair. The kind tag comes from
``SUBJECT_KINDS`` so rows stay readable after a model is renamed, and a
subject may be gone (trashed or deleted) by the time its history is read.
"""
import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import Activity, Department, Document, Folder, Share, User

logger = logging.getLogger(__name__)

SUBJECT_KINDS = {
    "user": User,
    "department": Department,
    "folder": Folder,
    "document": Document,
    "share": Share,
}
_KIND_BY_MODEL = {model: kind for kind, model in SUBJECT_KINDS.items()}


def subject_ref(subject) -> tuple[str, int]:
    kind = _KIND_BY_MODEL.get(type(subject))
    if kind is None:
        raise ValueError(f"{type(subject).__name__} is not a loggable subject")
    return kind, subject.id


def resolve_subject(db: Session, kind: str, subject_id: int):
    """Load the subject of an activity row, or None if it no longer exists."""
    model = SUBJECT_KINDS.get(kind)
    if model is None:
        return None
    return db.get(model, subject_id)


def _subject_department(subject) -> Optional[int]:
    if isinstance(subject, Department):
        return subject.id
    return getattr(subject, "department_id", None)


def record(
    db: Session,
    subject,
    action: str,
    details: Optional[str] = None,
    actor: Optional[User] = None,
) -> Optional[Activity]:
    """Append an activity row. Never raises: a failed log must not fail the caller."""
    try:
        kind, subject_id = subject_ref(subject)
        with db.begin_nested():
            entry = Activity(
                user_id=actor.id if actor is not None else None,
                department_id=_subject_department(subject),
                subject_type=kind,
                subject_id=subject_id,
                action=action,
                details=details,
            )
            db.add(entry)
        return entry
    except (SQLAlchemyError, ValueError):
        logger.exception("Failed to record activity %r on %r", action, subject)
        return None


def _page(query, page: int, per_page: int):
    total = query.order_by(None).with_entities(func.count(Activity.id)).scalar()
    items = (
        query.order_by(Activity.created_at.desc(), Activity.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return items, total


def activity_for(db: Session, kind: str, subject_id: int, page: int = 1, per_page: int = 20):
    query = db.query(Activity).filter(
        Activity.subject_type == kind, Activity.subject_id == subject_id
    )
    return _page(query, page, per_page)


def activity_by_actor(db: Session, actor_id: int, page: int = 1, per_page: int = 20):
    query = db.query(Activity).filter(Activity.user_id == actor_id)
    return _page(query, page, per_page)


def search_activity(
    db: Session,
    *,
    action: Optional[str] = None,
    subject_type: Optional[str] = None,
    user_id: Optional[int] = None,
    department_id: Optional[int] = None,
    page: int = 1,
    per_page: int = 20,
):
    query = db.query(Activity)
    if action:
        query = query.filter(Activity.action == action)
    if subject_type:
        query = query.filter(Activity.subject_type == subject_type)
    if user_id is not None:
        query = query.filter(Activity.user_id == user_id)
    if department_id is not None:
        query = query.filter(Activity.department_id == department_id)
    return _page(query, page, per_page)
