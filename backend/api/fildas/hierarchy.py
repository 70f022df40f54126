"""Department -> folder tree -> document containment.

Folders form a tree through ``parent_id`` only; every walk over it goes
through the helpers here, which guard against revisiting a node.
Trashing is a cascading soft delete: the folder and everything below it get
the same ``deleted_at`` stamp, and restoring clears exactly that stamp.
"""
import logging
from typing import Iterable, Optional

from fastapi import BackgroundTasks
from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import activity
from .errors import CrossDepartment, CycleDetected, DocumentNotFound, Forbidden, InvalidParent, NotFound
from .models import Department, Document, Folder, Share, User, utcnow
from .notifications import Notifier, notify_owner
from .permissions import can_contribute_to, require_modify

logger = logging.getLogger(__name__)


# ----------------- LOOKUPS -----------------
def get_department(db: Session, department_id: int) -> Department:
    dept = db.query(Department).filter(Department.id == department_id).first()
    if dept is None or dept.deleted_at is not None:
        raise NotFound("Department not found")
    return dept


def get_folder(db: Session, folder_id: int, include_deleted: bool = False) -> Folder:
    folder = db.query(Folder).filter(Folder.id == folder_id).first()
    if folder is None or (folder.deleted_at is not None and not include_deleted):
        raise NotFound("Folder not found")
    return folder


def get_document(db: Session, document_id: int, include_deleted: bool = False) -> Document:
    doc = db.query(Document).filter(Document.id == document_id).first()
    if doc is None or (doc.deleted_at is not None and not include_deleted):
        raise DocumentNotFound(document_id)
    return doc


# ----------------- TREE WALKS -----------------
def is_descendant(db: Session, child_id: int, root_id: int) -> bool:
    """True if child_id is root_id OR inside root_id (walk parent chain)."""
    seen = set()
    cur_id = child_id
    while cur_id is not None and cur_id not in seen:
        if cur_id == root_id:
            return True
        seen.add(cur_id)
        cur_id = db.query(Folder.parent_id).filter(Folder.id == cur_id).scalar()
    return False


def descendant_folder_ids(db: Session, root_ids: Iterable[int]) -> list[int]:
    """Root ids plus every folder below them, deleted or not (breadth first)."""
    all_ids = list(dict.fromkeys(root_ids))
    seen = set(all_ids)
    queue = list(all_ids)
    while queue:
        child_ids = [
            fid
            for (fid,) in db.query(Folder.id).filter(Folder.parent_id.in_(queue)).all()
            if fid not in seen
        ]
        seen.update(child_ids)
        all_ids.extend(child_ids)
        queue = child_ids
    return all_ids


def shared_folder_ids(db: Session, user_id: int) -> list[int]:
    """Folders shared with the user directly or through an ancestor."""
    roots = [
        fid
        for (fid,) in db.query(Share.folder_id)
        .filter(Share.target_user_id == user_id, Share.folder_id.isnot(None))
        .all()
    ]
    return descendant_folder_ids(db, roots) if roots else []


def live_subtree(db: Session, root: Folder) -> list[Folder]:
    """The folder and its non-trashed descendants, parents before children."""
    folders = [root]
    seen = {root.id}
    queue = [root.id]
    while queue:
        children = [
            f
            for f in db.query(Folder)
            .filter(Folder.parent_id.in_(queue), Folder.deleted_at.is_(None))
            .order_by(Folder.name)
            .all()
            if f.id not in seen
        ]
        seen.update(f.id for f in children)
        folders.extend(children)
        queue = [f.id for f in children]
    return folders


def archive_entries(db: Session, root: Folder) -> list[tuple[str, Document]]:
    """(path inside the archive, document) for every live document under ``root``.

    Paths are relative to ``root``; clashing names get a " (n)" suffix.
    """
    prefixes = {root.id: ""}
    for folder in live_subtree(db, root)[1:]:
        prefixes[folder.id] = f"{prefixes[folder.parent_id]}{_safe_name(folder.name)}/"

    entries = []
    taken = set()
    docs = (
        db.query(Document)
        .filter(Document.folder_id.in_(list(prefixes)), Document.deleted_at.is_(None))
        .order_by(Document.folder_id, Document.title, Document.id)
        .all()
    )
    for doc in docs:
        arcname = f"{prefixes[doc.folder_id]}{_safe_name(doc.original_filename or doc.title)}"
        stem, dot, ext = arcname.rpartition(".")
        if not dot or "/" in ext:
            stem, dot, ext = arcname, "", ""
        n = 2
        while arcname in taken:
            arcname = f"{stem} ({n}){dot}{ext}"
            n += 1
        taken.add(arcname)
        entries.append((arcname, doc))
    return entries


def _safe_name(name: str) -> str:
    return (name or "untitled").replace("/", "_").replace("\\", "_").strip() or "untitled"


def list_children(db: Session, department_id: int, folder_id: Optional[int] = None):
    """Live folders and documents directly under a folder (None = department root)."""
    folders = (
        db.query(Folder)
        .filter(
            Folder.department_id == department_id,
            Folder.parent_id == folder_id if folder_id is not None else Folder.parent_id.is_(None),
            Folder.deleted_at.is_(None),
        )
        .order_by(Folder.name)
        .all()
    )
    documents = (
        db.query(Document)
        .filter(
            Document.department_id == department_id,
            Document.folder_id == folder_id if folder_id is not None else Document.folder_id.is_(None),
            Document.deleted_at.is_(None),
        )
        .order_by(Document.title)
        .all()
    )
    return folders, documents


def visible_folders(
    db: Session,
    user: User,
    department_id: Optional[int] = None,
    parent_id: Optional[int] = None,
    filter_parent: bool = False,
) -> list[Folder]:
    query = db.query(Folder).filter(Folder.deleted_at.is_(None))
    if department_id is not None:
        query = query.filter(Folder.department_id == department_id)
    if filter_parent:
        query = query.filter(
            Folder.parent_id == parent_id if parent_id is not None else Folder.parent_id.is_(None)
        )
    if not user.is_super_admin:
        conds = [Folder.owner_id == user.id]
        if user.department_id is not None:
            conds.append(Folder.department_id == user.department_id)
        shared = shared_folder_ids(db, user.id)
        if shared:
            conds.append(Folder.id.in_(shared))
        query = query.filter(or_(*conds))
    return query.order_by(Folder.name).all()


# ----------------- DESTINATIONS -----------------
def resolve_destination(
    db: Session,
    current_department_id: Optional[int],
    folder_id: Optional[int],
    department_id: Optional[int],
):
    """Pick (parent folder, department) for a create or move request."""
    if folder_id is not None:
        parent = get_folder(db, folder_id)
        if department_id is not None and department_id != parent.department_id:
            raise InvalidParent("Parent folder belongs to a different department")
        return parent, get_department(db, parent.department_id)
    target = department_id if department_id is not None else current_department_id
    if target is None:
        raise InvalidParent("A department is required for items at the department root")
    return None, get_department(db, target)


def check_department_change(actor: User, old_department_id: int, new_department_id: int) -> None:
    if old_department_id != new_department_id and not actor.is_super_admin:
        raise CrossDepartment("Items can only be moved across departments by a super admin")


def _require_contribute(db: Session, actor: User, department: Department, parent: Optional[Folder]):
    if not can_contribute_to(db, actor, department, parent):
        raise Forbidden("No permission to add items here")


def touch_parent(db: Session, folder_id: Optional[int], details: str, actor: User) -> None:
    """Record an ``updated`` entry on the folder that gained or lost a child."""
    if folder_id is None:
        return
    parent = db.get(Folder, folder_id)
    if parent is not None:
        activity.record(db, parent, "updated", details, actor=actor)


# ----------------- FOLDERS -----------------
def create_folder(
    db: Session,
    actor: User,
    name: str,
    department_id: Optional[int] = None,
    parent_id: Optional[int] = None,
    description: Optional[str] = None,
) -> Folder:
    parent, department = resolve_destination(
        db, actor.department_id, parent_id, department_id
    )
    _require_contribute(db, actor, department, parent)

    folder = Folder(
        name=name,
        description=description,
        parent_id=parent.id if parent else None,
        department_id=department.id,
        owner_id=actor.id,
    )
    db.add(folder)
    db.flush()

    activity.record(db, folder, "created", "Folder created", actor=actor)
    touch_parent(db, folder.parent_id, f"Created subfolder: {folder.name}", actor)
    db.commit()
    return folder


def ensure_folder_path(
    db: Session,
    actor: User,
    department: Department,
    parent: Optional[Folder],
    relative_path: str,
) -> Optional[Folder]:
    """Find or create each ``a/b/c`` segment below ``parent``. Does not commit."""
    current = parent
    for segment in [s.strip() for s in relative_path.replace("\\", "/").split("/")]:
        if not segment or segment in (".", ".."):
            continue
        parent_cond = (
            Folder.parent_id == current.id if current is not None else Folder.parent_id.is_(None)
        )
        existing = (
            db.query(Folder)
            .filter(
                Folder.name == segment,
                Folder.department_id == department.id,
                parent_cond,
                Folder.deleted_at.is_(None),
            )
            .first()
        )
        if existing is None:
            existing = Folder(
                name=segment,
                parent_id=current.id if current is not None else None,
                department_id=department.id,
                owner_id=actor.id,
            )
            db.add(existing)
            db.flush()
            activity.record(db, existing, "created", "Folder created by upload", actor=actor)
        current = existing
    return current


def update_folder(
    db: Session,
    actor: User,
    folder: Folder,
    name: Optional[str] = None,
    description: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Folder:
    require_modify(db, actor, folder)
    renamed = name is not None and name != folder.name
    if name is not None:
        folder.name = name
    if description is not None:
        folder.description = description
    folder.updated_at = utcnow()

    activity.record(db, folder, "updated", "Name or description changed", actor=actor)
    if renamed:
        touch_parent(db, folder.parent_id, f"Renamed subfolder: {folder.name}", actor)
    db.commit()

    if renamed:
        notify_owner(db, notifier, folder, actor, "renamed", background_tasks)
    return folder


def move_folder(
    db: Session,
    actor: User,
    folder: Folder,
    target_folder_id: Optional[int],
    target_department_id: Optional[int] = None,
    notifier: Optional[Notifier] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Folder:
    require_modify(db, actor, folder)
    dest, department = resolve_destination(
        db, folder.department_id, target_folder_id, target_department_id
    )

    if dest is not None and is_descendant(db, dest.id, folder.id):
        raise CycleDetected("Cannot move a folder into itself or one of its subfolders")
    check_department_change(actor, folder.department_id, department.id)
    _require_contribute(db, actor, department, dest)

    old_parent_id = folder.parent_id
    old_department_id = folder.department_id

    folder.parent_id = dest.id if dest is not None else None
    folder.updated_at = utcnow()
    if department.id != old_department_id:
        subtree = descendant_folder_ids(db, [folder.id])
        db.query(Folder).filter(Folder.id.in_(subtree)).update(
            {Folder.department_id: department.id}, synchronize_session="fetch"
        )
        db.query(Document).filter(Document.folder_id.in_(subtree)).update(
            {Document.department_id: department.id}, synchronize_session="fetch"
        )

    details = f"Moved to folder: {dest.name}" if dest is not None else "Moved to department root"
    activity.record(db, folder, "moved", details, actor=actor)
    touch_parent(db, old_parent_id, f"Folder moved out: {folder.name}", actor)
    touch_parent(db, folder.parent_id, f"Folder moved here: {folder.name}", actor)
    db.commit()

    logger.info(
        "Folder %s moved from parent %s to %s (department %s -> %s)",
        folder.id, old_parent_id, folder.parent_id, old_department_id, department.id,
    )
    notify_owner(db, notifier, folder, actor, "moved", background_tasks)
    return folder


def trash_folder(db: Session, actor: User, folder: Folder) -> Folder:
    require_modify(db, actor, folder)
    stamp = utcnow()
    subtree = descendant_folder_ids(db, [folder.id])

    db.query(Folder).filter(Folder.id.in_(subtree), Folder.deleted_at.is_(None)).update(
        {Folder.deleted_at: stamp}, synchronize_session="fetch"
    )
    db.query(Document).filter(Document.folder_id.in_(subtree), Document.deleted_at.is_(None)).update(
        {Document.deleted_at: stamp}, synchronize_session="fetch"
    )

    activity.record(db, folder, "deleted", "Folder moved to trash", actor=actor)
    touch_parent(db, folder.parent_id, f"Deleted subfolder: {folder.name}", actor)
    db.commit()
    return folder


def restore_folder(db: Session, actor: User, folder: Folder) -> Folder:
    if folder.deleted_at is None:
        return folder
    require_modify(db, actor, folder)
    stamp = folder.deleted_at
    subtree = descendant_folder_ids(db, [folder.id])

    if folder.parent_id is not None:
        parent = db.get(Folder, folder.parent_id)
        if parent is None or parent.deleted_at is not None:
            folder.parent_id = None

    db.query(Folder).filter(Folder.id.in_(subtree), Folder.deleted_at == stamp).update(
        {Folder.deleted_at: None}, synchronize_session="fetch"
    )
    db.query(Document).filter(Document.folder_id.in_(subtree), Document.deleted_at == stamp).update(
        {Document.deleted_at: None}, synchronize_session="fetch"
    )

    activity.record(db, folder, "restored", "Folder restored from trash", actor=actor)
    touch_parent(db, folder.parent_id, f"Restored subfolder: {folder.name}", actor)
    db.commit()
    return folder


def _scope_filter(model, user: User):
    if user.is_super_admin:
        return None
    conds = [model.owner_id == user.id]
    if user.department_id is not None:
        conds.append(model.department_id == user.department_id)
    return or_(*conds)


def trashed_folders(db: Session, user: User) -> list[Folder]:
    """Top-level trashed folders (not those trashed along with a parent)."""
    query = db.query(Folder).filter(Folder.deleted_at.isnot(None))
    scope = _scope_filter(Folder, user)
    if scope is not None:
        query = query.filter(scope)
    result = []
    for folder in query.order_by(Folder.deleted_at.desc()).all():
        parent = db.get(Folder, folder.parent_id) if folder.parent_id else None
        if parent is not None and parent.deleted_at == folder.deleted_at:
            continue
        result.append(folder)
    return result


def trashed_documents(db: Session, user: User) -> list[Document]:
    query = db.query(Document).filter(Document.deleted_at.isnot(None))
    scope = _scope_filter(Document, user)
    if scope is not None:
        query = query.filter(scope)
    result = []
    for doc in query.order_by(Document.deleted_at.desc()).all():
        folder = db.get(Folder, doc.folder_id) if doc.folder_id else None
        if folder is not None and folder.deleted_at == doc.deleted_at:
            continue
        result.append(doc)
    return result


def folder_contents(db: Session, folder: Folder, include_deleted: bool = False):
    """Direct children of a folder, optionally including trashed ones (trash browser)."""
    folders = db.query(Folder).filter(Folder.parent_id == folder.id)
    documents = db.query(Document).filter(Document.folder_id == folder.id)
    if not include_deleted:
        folders = folders.filter(Folder.deleted_at.is_(None))
        documents = documents.filter(Document.deleted_at.is_(None))
    return folders.order_by(Folder.name).all(), documents.order_by(Document.title).all()
