"""Users, roles and departments."""
import logging
from typing import Optional

from fastapi import BackgroundTasks
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import activity
from .auth import hash_password
from .errors import AlreadyExists, InvalidInput, NotFound
from .models import Department, Role, User, utcnow
from .notifications import Notifier, render_item_updated

logger = logging.getLogger(__name__)

USER_REQUIRED = ("name", "email", "status")
DEPARTMENT_REQUIRED = ("name", "is_active", "is_qa")

# field -> change_type, highest priority first
USER_CHANGE_TYPES = (
    ("role_id", "role_changed"),
    ("department_id", "department_changed"),
    ("status", "status_changed"),
    ("password", "password_changed"),
)
TRACKED_USER_FIELDS = ("name", "email", "role_id", "department_id", "status")


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None or user.deleted_at is not None:
        raise NotFound("User not found")
    return user


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    return (
        db.query(User)
        .filter(User.email == email.strip().lower(), User.deleted_at.is_(None))
        .first()
    )


def list_users(db: Session, actor: User, department_id: Optional[int] = None) -> list[User]:
    """Super admins see everyone; an admin sees their own department only."""
    query = db.query(User).filter(User.deleted_at.is_(None))
    if not actor.is_super_admin:
        if actor.department_id is None:
            return []
        if department_id is not None and department_id != actor.department_id:
            return []
        department_id = actor.department_id
    if department_id is not None:
        query = query.filter(User.department_id == department_id)
    return query.order_by(User.name).all()


def _check_refs(db: Session, role_id: Optional[int], department_id: Optional[int]) -> None:
    if role_id is not None and db.get(Role, role_id) is None:
        raise NotFound("Role not found")
    if department_id is not None:
        dept = db.get(Department, department_id)
        if dept is None or dept.deleted_at is not None:
            raise NotFound("Department not found")


def _check_owner(db: Session, owner_id: Optional[int]) -> None:
    if owner_id is not None:
        owner = db.get(User, owner_id)
        if owner is None or owner.deleted_at is not None:
            raise NotFound("Department owner not found")


def _reject_nulls(changes: dict, required: tuple) -> None:
    nulls = [f for f in required if f in changes and changes[f] is None]
    if nulls:
        raise InvalidInput(f"{', '.join(nulls)} may not be null")


def _is_unique_violation(exc: IntegrityError) -> bool:
    if getattr(exc.orig, "pgcode", None) == "23505":
        return True
    return "unique" in str(exc.orig).lower()


def _flush_unique(db: Session, message: str) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        if _is_unique_violation(exc):
            raise AlreadyExists(message)
        raise


def create_user(
    db: Session,
    actor: User,
    *,
    name: str,
    email: str,
    password: str,
    role_id: Optional[int] = None,
    department_id: Optional[int] = None,
    status: str = "active",
) -> User:
    _check_refs(db, role_id, department_id)
    user = User(
        name=name,
        email=email.strip().lower(),
        password_hash=hash_password(password),
        role_id=role_id,
        department_id=department_id,
        status=status,
    )
    db.add(user)
    _flush_unique(db, "Email is already registered")
    activity.record(db, user, "created", f"User created: {user.email}", actor=actor)
    db.commit()
    return user


def user_change_type(changed: list[str]) -> str:
    return next((kind for field, kind in USER_CHANGE_TYPES if field in changed), "updated")


def update_user(
    db: Session,
    actor: User,
    user: User,
    changes: dict,
    notifier: Optional[Notifier] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> User:
    _reject_nulls(changes, USER_REQUIRED)
    _check_refs(db, changes.get("role_id"), changes.get("department_id"))
    password = changes.pop("password", None)
    if changes.get("email"):
        changes["email"] = changes["email"].strip().lower()

    before = {f: getattr(user, f) for f in TRACKED_USER_FIELDS}
    if password:
        user.password_hash = hash_password(password)
    for field, value in changes.items():
        setattr(user, field, value)
    changed = [f for f in TRACKED_USER_FIELDS if getattr(user, f) != before[f]]
    if password:
        changed.append("password")

    user.updated_at = utcnow()
    _flush_unique(db, "Email is already registered")
    details = f"User updated: {user.email}"
    if changed:
        details = f"{details} ({', '.join(changed)})"
    activity.record(db, user, "updated", details, actor=actor)
    db.commit()

    if changed and notifier is not None:
        change_type = user_change_type(changed)
        logger.info("User %s updated by %s (%s)", user.id, actor.id, change_type)
        rendered = render_item_updated(
            "user", user.name or user.email, change_type, actor.name, item_id=user.id
        )
        notifier.notify(db, user, rendered, background_tasks)
    return user


def delete_user(db: Session, actor: User, user: User) -> None:
    user.deleted_at = utcnow()
    user.status = "inactive"
    activity.record(db, user, "deleted", f"User deleted: {user.email}", actor=actor)
    db.commit()


def list_departments(db: Session) -> list[Department]:
    return (
        db.query(Department)
        .filter(Department.deleted_at.is_(None))
        .order_by(Department.name)
        .all()
    )


def create_department(db: Session, actor: User, fields: dict) -> Department:
    _reject_nulls(fields, DEPARTMENT_REQUIRED)
    _check_owner(db, fields.get("owner_id"))
    dept = Department(**fields)
    db.add(dept)
    _flush_unique(db, "Department name or code already exists")
    activity.record(db, dept, "created", f"Department created: {dept.name}", actor=actor)
    db.commit()
    return dept


def update_department(db: Session, actor: User, dept: Department, changes: dict) -> Department:
    _reject_nulls(changes, DEPARTMENT_REQUIRED)
    _check_owner(db, changes.get("owner_id"))
    for field, value in changes.items():
        setattr(dept, field, value)
    dept.updated_at = utcnow()
    _flush_unique(db, "Department name or code already exists")
    activity.record(db, dept, "updated", "Department updated", actor=actor)
    db.commit()
    return dept


def delete_department(db: Session, actor: User, dept: Department) -> None:
    dept.deleted_at = utcnow()
    dept.is_active = False
    activity.record(db, dept, "deleted", f"Department deleted: {dept.name}", actor=actor)
    db.commit()
