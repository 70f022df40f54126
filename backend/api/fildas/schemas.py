from datetime import datetime
from pydantic import BaseModel, Field
from typing import Literal, Optional

Permission = Literal["viewer", "contributor", "editor"]
ItemType = Literal["document", "folder"]


# ----------------- AUTH / USERS -----------------
class LoginIn(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role_id: Optional[int] = None
    role_name: Optional[str] = None
    department_id: Optional[int] = None
    status: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class UserCreateIn(BaseModel):
    name: str
    email: str
    password: str
    role_id: Optional[int] = None
    department_id: Optional[int] = None
    status: Literal["active", "inactive"] = "active"


class UserUpdateIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role_id: Optional[int] = None
    department_id: Optional[int] = None
    status: Optional[Literal["active", "inactive"]] = None


# ----------------- DEPARTMENTS -----------------
class DepartmentOut(BaseModel):
    id: int
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    owner_id: Optional[int] = None
    theme_color: Optional[str] = None
    is_active: bool = True
    is_qa: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DepartmentCreateIn(BaseModel):
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    owner_id: Optional[int] = None
    theme_color: Optional[str] = None
    is_active: bool = True
    is_qa: bool = False


class DepartmentUpdateIn(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    owner_id: Optional[int] = None
    theme_color: Optional[str] = None
    is_active: Optional[bool] = None
    is_qa: Optional[bool] = None


# ----------------- FOLDERS -----------------
class FolderOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    parent_id: Optional[int] = None
    department_id: int
    owner_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SharedFolderOut(FolderOut):
    permission: Optional[str] = None


class CreateFolderIn(BaseModel):
    name: str
    description: Optional[str] = None
    department_id: Optional[int] = None
    parent_id: Optional[int] = None


class FolderUpdateIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class MoveIn(BaseModel):
    new_parent_id: Optional[int] = None
    department_id: Optional[int] = None


# ----------------- DOCUMENTS -----------------
class DocumentOut(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    original_filename: str
    mime_type: Optional[str] = None
    size_bytes: int = 0
    file_size_formatted: str
    department_id: int
    document_type_id: Optional[int] = None
    folder_id: Optional[int] = None
    uploaded_by: int
    owner_id: int
    original_owner_id: Optional[int] = None
    uploaded_at: Optional[datetime] = None
    status: str
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SharedDocumentOut(DocumentOut):
    permission: Optional[str] = None


class DocumentPage(BaseModel):
    items: list[DocumentOut]
    total: int
    page: int
    per_page: int


class DocumentUpdateIn(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class CopyIn(BaseModel):
    target_folder_id: Optional[int] = None


class RejectIn(BaseModel):
    reason: Optional[str] = None


class CommentIn(BaseModel):
    body: str = Field(min_length=1, max_length=5000)


class CommentAuthorOut(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class CommentOut(BaseModel):
    id: int
    body: str
    user: CommentAuthorOut
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VersionOut(BaseModel):
    id: int
    document_id: int
    version_number: int
    original_filename: str
    mime_type: Optional[str] = None
    size_bytes: int = 0
    uploaded_by: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContentsOut(BaseModel):
    folders: list[FolderOut]
    documents: list[DocumentOut]


class TypeCount(BaseModel):
    mime_type: Optional[str] = None
    count: int


class StatisticsOut(BaseModel):
    total_documents: int
    total_size: int
    documents_by_type: list[TypeCount]
    documents_by_status: dict[str, int]
    recent_uploads: list[DocumentOut]


class PreviewOut(BaseModel):
    id: int
    title: str
    original_filename: str
    mime_type: Optional[str] = None
    size: str
    previewable: bool
    stream_url: str


# ----------------- SHARES -----------------
class ShareOut(BaseModel):
    id: int
    owner_id: int
    target_user_id: int
    document_id: Optional[int] = None
    folder_id: Optional[int] = None
    item_type: str
    item_id: int
    permission: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreateShareIn(BaseModel):
    type: ItemType
    item_id: int
    permission: Permission = "viewer"
    target_user_id: Optional[int] = None
    email: Optional[str] = None     # alternative to target_user_id


class UpdateShareIn(BaseModel):
    permission: Permission


# ----------------- ACTIVITY / NOTIFICATIONS -----------------
class ActivityOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    department_id: Optional[int] = None
    subject_type: str
    subject_id: int
    action: str
    details: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ActivityPage(BaseModel):
    items: list[ActivityOut]
    total: int
    page: int
    per_page: int


class NotificationOut(BaseModel):
    id: str
    type: str
    data: dict
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationListOut(BaseModel):
    notifications: list[NotificationOut]
    unread_count: int
