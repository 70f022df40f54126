import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from .db import Base


def utcnow() -> datetime:
    # Naive UTC so values compare cleanly after a round trip through SQLite
    return datetime.now(timezone.utc).replace(tzinfo=None)


ROLE_SUPER_ADMIN = "Super Admin"
ROLE_ADMIN = "Admin"
ROLE_STAFF = "Staff"


class Role(Base):
    __tablename__ = "roles"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(String, nullable=True)


class Department(Base):
    __tablename__ = "departments"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    code = Column(String, nullable=True, unique=True)
    description = Column(Text, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id", use_alter=True), nullable=True)
    theme_color = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_qa = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    owner = relationship("User", foreign_keys=[owner_id])


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    status = Column(String, nullable=False, default="active")  # active | inactive

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    role = relationship("Role")
    department = relationship("Department", foreign_keys=[department_id])

    @property
    def role_name(self):
        return self.role.name if self.role else None

    @property
    def is_super_admin(self) -> bool:
        return self.role_name == ROLE_SUPER_ADMIN

    @property
    def is_admin(self) -> bool:
        return self.role_name in (ROLE_ADMIN, ROLE_SUPER_ADMIN)


class Folder(Base):
    __tablename__ = "folders"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    parent_id = Column(Integer, ForeignKey("folders.id"), nullable=True, index=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    department = relationship("Department")
    owner = relationship("User")


DOCUMENT_STATUSES = ("pending", "submitted", "approved", "rejected")


class Document(Base):
    __tablename__ = "documents"
    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    file_path = Column(String, nullable=False)
    preview_path = Column(String, nullable=True)
    original_filename = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    size_bytes = Column(BigInteger, nullable=False, default=0)

    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False, index=True)
    document_type_id = Column(Integer, nullable=True)
    folder_id = Column(Integer, ForeignKey("folders.id"), nullable=True, index=True)

    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    original_owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    uploaded_at = Column(DateTime, default=utcnow)

    status = Column(String, nullable=False, default="pending")
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    department = relationship("Department")
    folder = relationship("Folder")
    owner = relationship("User", foreign_keys=[owner_id])
    uploader = relationship("User", foreign_keys=[uploaded_by])

    @property
    def file_size_formatted(self) -> str:
        return format_size(self.size_bytes or 0)


def format_size(size_bytes) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(size_bytes)
    i = 0
    while value > 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    rounded = round(value, 2)
    if rounded == int(rounded):
        rounded = int(rounded)
    return f"{rounded} {units[i]}"


class DocumentVersion(Base):
    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version_number", name="uq_document_versions_number"),
    )
    id = Column(Integer, primary_key=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)

    file_path = Column(String, nullable=False)
    original_filename = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime, default=utcnow)

    uploader = relationship("User")


SHARE_PERMISSIONS = ("viewer", "contributor", "editor")


class Share(Base):
    __tablename__ = "shares"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    target_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=True, index=True)
    folder_id = Column(Integer, ForeignKey("folders.id"), nullable=True, index=True)
    permission = Column(String, nullable=False, default="viewer")  # viewer/contributor/editor

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("User", foreign_keys=[owner_id])
    target_user = relationship("User", foreign_keys=[target_user_id])
    document = relationship("Document")
    folder = relationship("Folder")

    __table_args__ = (
        CheckConstraint(
            "(document_id IS NULL) <> (folder_id IS NULL)",
            name="ck_shares_one_item",
        ),
        Index(
            "uq_shares_document",
            "owner_id",
            "target_user_id",
            "document_id",
            unique=True,
            sqlite_where=text("document_id IS NOT NULL"),
            postgresql_where=text("document_id IS NOT NULL"),
        ),
        Index(
            "uq_shares_folder",
            "owner_id",
            "target_user_id",
            "folder_id",
            unique=True,
            sqlite_where=text("folder_id IS NOT NULL"),
            postgresql_where=text("folder_id IS NOT NULL"),
        ),
    )

    @property
    def item_type(self) -> str:
        return "document" if self.document_id is not None else "folder"

    @property
    def item_id(self) -> int:
        return self.document_id if self.document_id is not None else self.folder_id


class Activity(Base):
    __tablename__ = "activities"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    department_id = Column(Integer, nullable=True)
    subject_type = Column(String, nullable=False)  # tag from activity.SUBJECT_KINDS
    subject_id = Column(Integer, nullable=False)
    action = Column(String, nullable=False)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    user = relationship("User")

    __table_args__ = (Index("ix_activities_subject", "subject_type", "subject_id"),)


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # item_shared | item_updated
    data = Column(JSON, nullable=False, default=dict)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Comment(Base):
    __tablename__ = "comments"
    id = Column(Integer, primary_key=True)
    commentable_type = Column(String, nullable=False)  # document | folder
    commentable_id = Column(Integer, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    body = Column(Text, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User")

    __table_args__ = (Index("ix_comments_commentable", "commentable_type", "commentable_id"),)
