from typing import Optional, Union

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .errors import Forbidden
from .models import Department, Document, Folder, Share, User

PERMISSION_ORDER = {"none": 0, "viewer": 1, "contributor": 2, "editor": 3}

Item = Union[Document, Folder]


def max_permission(a: Optional[str], b: Optional[str]) -> Optional[str]:
    if a is None:
        return b
    if b is None:
        return a
    return a if PERMISSION_ORDER[a] >= PERMISSION_ORDER[b] else b


def at_least(permission: Optional[str], needed: str) -> bool:
    return PERMISSION_ORDER[permission or "none"] >= PERMISSION_ORDER[needed]


def folder_chain(db: Session, folder_id: Optional[int]) -> list[int]:
    """Ids from ``folder_id`` up to the department root, nearest first."""
    chain: list[int] = []
    seen = set()
    cur_id = folder_id
    while cur_id is not None and cur_id not in seen:
        seen.add(cur_id)
        chain.append(cur_id)
        cur_id = db.query(Folder.parent_id).filter(Folder.id == cur_id).scalar()
    return chain


def share_permission(db: Session, user_id: int, item: Item) -> Optional[str]:
    """Best permission granted to ``user_id`` by shares on the item or any ancestor folder."""
    if isinstance(item, Document):
        folder_ids = folder_chain(db, item.folder_id)
        conds = [Share.document_id == item.id]
    else:
        folder_ids = folder_chain(db, item.id)
        conds = []
    if folder_ids:
        conds.append(Share.folder_id.in_(folder_ids))

    perms = (
        db.query(Share.permission)
        .filter(Share.target_user_id == user_id, or_(*conds))
        .all()
    )
    best = None
    for (perm,) in perms:
        best = max_permission(best, perm)
    return best


def department_permission(user: User, department_id: Optional[int]) -> Optional[str]:
    """What a user gets from role and membership alone, without any share."""
    if user.is_super_admin:
        return "editor"
    if department_id is not None and user.department_id == department_id:
        return "editor" if user.is_admin else "contributor"
    return None


def resolve_access(db: Session, user: User, item: Item) -> Optional[str]:
    if item.owner_id == user.id:
        return "editor"
    role = department_permission(user, item.department_id)
    return max_permission(role, share_permission(db, user.id, item))


def can_modify(db: Session, user: User, item: Item) -> bool:
    perm = resolve_access(db, user, item)
    if perm == "editor":
        return True
    if perm == "contributor":
        return item.owner_id == user.id
    return False


def can_contribute_to(
    db: Session, user: User, department: Department, folder: Optional[Folder]
) -> bool:
    """May ``user`` add new folders/documents under ``folder`` (or the department root)?"""
    if folder is None:
        return at_least(department_permission(user, department.id), "contributor")
    return at_least(resolve_access(db, user, folder), "contributor")


def require_view(db: Session, user: User, item: Item) -> str:
    perm = resolve_access(db, user, item)
    if not at_least(perm, "viewer"):
        raise Forbidden("No permission to view this item")
    return perm


def require_modify(db: Session, user: User, item: Item) -> None:
    if not can_modify(db, user, item):
        raise Forbidden("No permission to modify this item")
