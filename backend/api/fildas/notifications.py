"""Notification rendering and delivery.

A domain event is rendered once into a ``RenderedNotification`` and then handed
to two independent channels: a persisted in-app record and an email. Either
channel may fail without affecting the other or the operation that fired it.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .mailer import Mailer, get_mailer
from .models import Document, Folder, Notification, User, utcnow
from .settings import settings

logger = logging.getLogger(__name__)

REJECTED_WITH_REASON = "rejected_with_reason:"
SUBMITTED_FOR_REVIEW = "submitted for QA review"

TYPE_ITEM_SHARED = "item_shared"
TYPE_ITEM_UPDATED = "item_updated"


@dataclass
class RenderedNotification:
    type: str
    subject: str
    message: str
    data: dict = field(default_factory=dict)


# change_type -> verb phrase for notifications about a user account
ACCOUNT_CHANGES = {
    "role_changed": "changed the role on",
    "department_changed": "changed the department on",
    "status_changed": "changed the status of",
    "password_changed": "changed the password on",
}


def _type_label(item_type: str) -> str:
    if item_type == "user":
        return "account"
    return "folder" if item_type == "folder" else "document"


def parse_change_type(change_type: str) -> tuple[str, Optional[str]]:
    """``rejected_with_reason:too long`` -> ``("rejected", "too long")``."""
    if change_type.startswith(REJECTED_WITH_REASON):
        reason = change_type[len(REJECTED_WITH_REASON):].strip()
        return "rejected", reason or None
    return change_type, None


def render_item_updated(
    item_type: str,
    item_name: str,
    change_type: str,
    updated_by: str,
    item_id: Optional[int] = None,
) -> RenderedNotification:
    label, reason = parse_change_type(change_type)
    type_label = _type_label(item_type)

    if item_type == "user":
        message = f'{updated_by} {ACCOUNT_CHANGES.get(label, label)} your account "{item_name}".'
    elif label == SUBMITTED_FOR_REVIEW:
        message = f'{updated_by} submitted the {type_label} "{item_name}" for QA review.'
    else:
        message = f'{updated_by} {label} your {type_label} "{item_name}".'
    if reason:
        message = f"{message} Reason: {reason}"

    data = {
        "item_type": item_type,
        "item_id": item_id,
        "item_name": item_name,
        "change_type": label,
        "updated_by": updated_by,
    }
    if reason:
        data["reason"] = reason

    return RenderedNotification(
        type=TYPE_ITEM_UPDATED,
        subject=f"{type_label.capitalize()} {label[:1].upper()}{label[1:].replace('_', ' ')} in FilDAS",
        message=message,
        data=data,
    )


def render_item_shared(
    item_type: str,
    item_name: str,
    permission: str,
    shared_by: str,
    item_id: Optional[int] = None,
) -> RenderedNotification:
    type_label = _type_label(item_type)
    return RenderedNotification(
        type=TYPE_ITEM_SHARED,
        subject=f"{type_label.capitalize()} shared with you in FilDAS",
        message=(
            f'{shared_by} shared the {type_label} "{item_name}" '
            f"with you as {permission.capitalize()}."
        ),
        data={
            "item_type": item_type,
            "item_id": item_id,
            "item_name": item_name,
            "permission": permission,
            "shared_by": shared_by,
        },
    )


def item_title(item) -> str:
    if isinstance(item, Folder):
        return item.name
    return item.title or item.original_filename


def item_kind(item) -> str:
    return "document" if isinstance(item, Document) else "folder"


def mail_body(recipient_name: str, rendered: RenderedNotification, app_url: str) -> str:
    if rendered.type == TYPE_ITEM_SHARED:
        closing = "You can manage your shared files and folders inside FilDAS."
    else:
        closing = "You can review the latest changes to your files and folders in FilDAS."
    return (
        f"Hello {recipient_name},\n\n"
        f"{rendered.message}\n\n"
        f"Open FilDAS: {app_url}\n\n"
        f"{closing}\n"
    )


class Notifier:
    def __init__(self, mailer: Mailer, app_url: str = ""):
        self.mailer = mailer
        self.app_url = app_url

    def notify(
        self,
        db: Session,
        recipient: User,
        rendered: RenderedNotification,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> None:
        """Deliver on both channels. Call after the triggering change is committed."""
        self.store(db, recipient, rendered)
        if background_tasks is not None:
            background_tasks.add_task(self.send_mail, recipient.email, recipient.name, rendered)
        else:
            self.send_mail(recipient.email, recipient.name, rendered)

    def store(self, db: Session, recipient: User, rendered: RenderedNotification):
        try:
            record = Notification(user_id=recipient.id, type=rendered.type, data=rendered.data)
            db.add(record)
            db.commit()
            return record
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to store %s notification for user %s", rendered.type, recipient.id)
            return None

    def send_mail(self, to_email: str, recipient_name: str, rendered: RenderedNotification) -> None:
        if not to_email:
            return
        try:
            self.mailer.send(to_email, rendered.subject, mail_body(recipient_name, rendered, self.app_url))
        except Exception:
            logger.exception("Failed to mail %s notification to %s", rendered.type, to_email)


def notify_owner(
    db: Session,
    notifier: Optional[Notifier],
    item,
    actor: User,
    change_type: str,
    background_tasks: Optional[BackgroundTasks] = None,
) -> None:
    """Tell the item's owner that someone else changed it."""
    if notifier is None or item.owner_id == actor.id:
        return
    owner = db.get(User, item.owner_id)
    if owner is None or owner.deleted_at is not None:
        return
    rendered = render_item_updated(
        item_kind(item), item_title(item), change_type, actor.name, item_id=item.id
    )
    notifier.notify(db, owner, rendered, background_tasks)


def get_notifier() -> Notifier:
    return Notifier(get_mailer(), settings.APP_URL)


# ----------------- IN-APP INBOX -----------------
def list_notifications(db: Session, user: User, limit: int = 20):
    items = (
        db.query(Notification)
        .filter(Notification.user_id == user.id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
        .all()
    )
    unread = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.read_at.is_(None))
        .count()
    )
    return items, unread


def mark_read(db: Session, user: User, notification_id: str) -> bool:
    record = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .first()
    )
    if record is None:
        return False
    if record.read_at is None:
        record.read_at = utcnow()
        db.commit()
    return True


def mark_all_read(db: Session, user: User) -> int:
    count = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.read_at.is_(None))
        .update({Notification.read_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return count
