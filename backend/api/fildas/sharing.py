"""Per-user shares on documents and folders.

A share is keyed by (owner, target user, item); granting again updates the
permission in place. Folder shares cover the whole subtree below the folder.
"""
import logging
from typing import Optional

from fastapi import BackgroundTasks
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import activity
from .errors import Forbidden, InvalidParent, NotFound, NotOwner
from .hierarchy import get_document, get_folder, shared_folder_ids
from .models import SHARE_PERMISSIONS, Document, Folder, Share, User, utcnow
from .notifications import Notifier, item_title, render_item_shared
from .permissions import share_permission

logger = logging.getLogger(__name__)

ITEM_TYPES = ("document", "folder")


def get_item(db: Session, item_type: str, item_id: int):
    if item_type == "document":
        return get_document(db, item_id)
    if item_type == "folder":
        return get_folder(db, item_id)
    raise InvalidParent(f"Unknown item type: {item_type}")


def get_share(db: Session, share_id: int) -> Share:
    share = db.query(Share).filter(Share.id == share_id).first()
    if share is None:
        raise NotFound("Share not found")
    return share


def _check_permission(permission: str) -> None:
    if permission not in SHARE_PERMISSIONS:
        raise ValueError(f"permission must be one of {', '.join(SHARE_PERMISSIONS)}")


def _find_share(db: Session, owner_id: int, target_id: int, item_type: str, item_id: int):
    query = db.query(Share).filter(Share.owner_id == owner_id, Share.target_user_id == target_id)
    if item_type == "document":
        query = query.filter(Share.document_id == item_id)
    else:
        query = query.filter(Share.folder_id == item_id)
    return query.first()


def _upsert(db: Session, owner: User, target: User, item_type: str, item_id: int, permission: str) -> Share:
    share = _find_share(db, owner.id, target.id, item_type, item_id)
    if share is not None:
        share.permission = permission
        share.updated_at = utcnow()
        db.flush()
        return share
    with db.begin_nested():
        share = Share(
            owner_id=owner.id,
            target_user_id=target.id,
            document_id=item_id if item_type == "document" else None,
            folder_id=item_id if item_type == "folder" else None,
            permission=permission,
        )
        db.add(share)
    return share


def grant(
    db: Session,
    owner: User,
    target: User,
    item_type: str,
    item_id: int,
    permission: str,
    notifier: Optional[Notifier] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Share:
    _check_permission(permission)
    item = get_item(db, item_type, item_id)
    if target is None or target.deleted_at is not None:
        raise NotFound("Target user not found")
    if item.owner_id != owner.id:
        raise NotOwner("Only the owner can share this item")
    if target.id == owner.id:
        raise Forbidden("Cannot share an item with yourself")

    try:
        share = _upsert(db, owner, target, item_type, item_id, permission)
    except IntegrityError:
        # a concurrent grant inserted the same key first
        logger.info("Share insert raced for %s %s -> user %s, updating", item_type, item_id, target.id)
        share = _upsert(db, owner, target, item_type, item_id, permission)

    activity.record(
        db, item, "shared", f"Shared with {target.email} as {permission}", actor=owner
    )
    db.commit()

    if notifier is not None:
        rendered = render_item_shared(item_type, item_title(item), permission, owner.name, item_id=item.id)
        notifier.notify(db, target, rendered, background_tasks)
    return share


def update_share(db: Session, share: Share, permission: str, user: User) -> Share:
    _check_permission(permission)
    if share.owner_id != user.id:
        raise NotOwner("Only the share owner can change its permission")
    share.permission = permission
    share.updated_at = utcnow()
    activity.record(db, share, "updated", f"Permission changed to {permission}", actor=user)
    db.commit()
    return share


def revoke(db: Session, share_id: int, user: User) -> None:
    share = get_share(db, share_id)
    if share.owner_id != user.id and not user.is_admin:
        raise Forbidden("Only the share owner or an admin can remove this share")

    item = db.get(Document, share.document_id) if share.document_id else db.get(Folder, share.folder_id)
    target = db.get(User, share.target_user_id)
    db.delete(share)
    if item is not None:
        who = target.email if target is not None else f"user {share.target_user_id}"
        activity.record(db, item, "unshared", f"Share removed for {who}", actor=user)
    db.commit()


# ----------------- LISTINGS -----------------
def incoming_shares(db: Session, user: User) -> list[Share]:
    return (
        db.query(Share)
        .filter(Share.target_user_id == user.id)
        .order_by(Share.created_at.desc(), Share.id.desc())
        .all()
    )


def outgoing_shares(db: Session, user: User) -> list[Share]:
    return (
        db.query(Share)
        .filter(Share.owner_id == user.id)
        .order_by(Share.created_at.desc(), Share.id.desc())
        .all()
    )


def item_shares(db: Session, item_type: str, item_id: int) -> list[Share]:
    if item_type not in ITEM_TYPES:
        raise InvalidParent(f"Unknown item type: {item_type}")
    column = Share.document_id if item_type == "document" else Share.folder_id
    return db.query(Share).filter(column == item_id).order_by(Share.id).all()


def shared_documents(db: Session, user: User, folder_id: Optional[int] = None):
    """Documents shared directly or inside a shared folder subtree, with the user's permission."""
    direct_ids = [
        did
        for (did,) in db.query(Share.document_id)
        .filter(Share.target_user_id == user.id, Share.document_id.isnot(None))
        .all()
    ]
    folder_ids = shared_folder_ids(db, user.id)
    if not direct_ids and not folder_ids:
        return []

    conds = []
    if direct_ids:
        conds.append(Document.id.in_(direct_ids))
    if folder_ids:
        conds.append(Document.folder_id.in_(folder_ids))
    query = db.query(Document).filter(Document.deleted_at.is_(None), or_(*conds))
    if folder_id is not None:
        query = query.filter(Document.folder_id == folder_id)
    docs = query.order_by(Document.title).all()
    return [(doc, share_permission(db, user.id, doc)) for doc in docs]


def shared_folders(db: Session, user: User, parent_id: Optional[int] = None):
    """Top-level shared folders, or the children of a folder inside a shared subtree."""
    if parent_id is None:
        root_ids = [
            fid
            for (fid,) in db.query(Share.folder_id)
            .filter(Share.target_user_id == user.id, Share.folder_id.isnot(None))
            .all()
        ]
        if not root_ids:
            return []
        query = db.query(Folder).filter(Folder.id.in_(root_ids))
    else:
        if parent_id not in shared_folder_ids(db, user.id):
            return []
        query = db.query(Folder).filter(Folder.parent_id == parent_id)
    folders = query.filter(Folder.deleted_at.is_(None)).order_by(Folder.name).all()
    return [(folder, share_permission(db, user.id, folder)) for folder in folders]
