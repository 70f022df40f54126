from fastapi import FastAPI, Depends, HTTPException, UploadFile, File, Form, Query, BackgroundTasks, Request
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from contextlib import asynccontextmanager
import logging
import os
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from . import accounts, activity, comments, documents, hierarchy, notifications, sharing, versions
from .auth import authenticate, create_access_token, get_current_user, require_admin
from .conversion import DocumentConverter, get_converter
from .db import Base, engine, get_db
from .errors import (
    AlreadyExists,
    ConversionFailed,
    CrossDepartment,
    CycleDetected,
    DuplicateVersion,
    FildasError,
    Forbidden,
    InvalidInput,
    InvalidParent,
    InvalidTransition,
    NotFound,
)
from .models import Document, User
from .notifications import Notifier, get_notifier
from .permissions import at_least, require_modify, require_view, resolve_access
from .schemas import (
    ActivityPage,
    CommentIn,
    CommentOut,
    ContentsOut,
    CopyIn,
    CreateFolderIn,
    CreateShareIn,
    DepartmentCreateIn,
    DepartmentOut,
    DepartmentUpdateIn,
    DocumentOut,
    DocumentPage,
    DocumentUpdateIn,
    FolderOut,
    FolderUpdateIn,
    LoginIn,
    MoveIn,
    NotificationListOut,
    PreviewOut,
    RejectIn,
    SharedDocumentOut,
    SharedFolderOut,
    ShareOut,
    StatisticsOut,
    TokenOut,
    UpdateShareIn,
    UserCreateIn,
    UserOut,
    UserUpdateIn,
    VersionOut,
)
from .settings import settings
from .storage import FileStorage, get_storage

from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    os.makedirs(settings.STORAGE_DIR, exist_ok=True)
    Base.metadata.create_all(bind=engine)
    logger.info("FilDAS API started (database %s)", engine.url.render_as_string(hide_password=True))
    yield


app = FastAPI(title="FilDAS API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    NotFound: 404,
    Forbidden: 403,
    InvalidParent: 400,
    CycleDetected: 409,
    CrossDepartment: 409,
    DuplicateVersion: 409,
    InvalidTransition: 409,
    AlreadyExists: 409,
    InvalidInput: 422,
    ConversionFailed: 502,
}


@app.exception_handler(FildasError)
async def fildas_error_handler(request: Request, exc: FildasError):
    status_code = next(
        (ERROR_STATUS[cls] for cls in type(exc).__mro__ if cls in ERROR_STATUS), 400
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "error": exc.code})


# ----------------- HELPERS -----------------
def page_params(page: int = Query(1, ge=1), per_page: int = Query(20, ge=1, le=100)):
    return page, per_page


def read_upload(file: UploadFile) -> bytes:
    contents = file.file.read()
    if len(contents) > settings.MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(413, f"File exceeds {settings.MAX_UPLOAD_MB} MB")
    return contents


def activity_page(result, page: int, per_page: int) -> dict:
    items, total = result
    return {"items": items, "total": total, "page": page, "per_page": per_page}


def viewable(db: Session, user: User, items):
    return [it for it in items if at_least(resolve_access(db, user, it), "viewer")]


def inline_name(doc: Document, suffix: Optional[str] = None) -> str:
    name = doc.original_filename or doc.title
    return f"{Path(name).stem}{suffix}" if suffix else name


# ----------------- BASICS -----------------
@app.get("/health")
def health():
    return {"ok": True}


@app.post("/login", response_model=TokenOut)
def login(body: LoginIn, db: Session = Depends(get_db)):
    user = authenticate(db, body.email, body.password)
    if user is None:
        raise HTTPException(401, "Invalid email or password")
    if user.status != "active":
        raise HTTPException(403, "Account is inactive")
    token = create_access_token({"sub": str(user.id)})
    return TokenOut(access_token=token, user=UserOut.model_validate(user))


@app.get("/me", response_model=UserOut)
def me(current: User = Depends(get_current_user)):
    return current


# ----------------- USERS -----------------
@app.get("/users", response_model=list[UserOut])
def list_users(
    department_id: Optional[int] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return accounts.list_users(db, admin, department_id)


@app.post("/users", response_model=UserOut, status_code=201)
def create_user(body: UserCreateIn, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return accounts.create_user(db, admin, **body.model_dump())


@app.get("/users/{user_id}", response_model=UserOut)
def show_user(user_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return accounts.get_user(db, user_id)


@app.patch("/users/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    body: UserUpdateIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    notifier: Notifier = Depends(get_notifier),
):
    user = accounts.get_user(db, user_id)
    return accounts.update_user(
        db, admin, user, body.model_dump(exclude_unset=True),
        notifier=notifier, background_tasks=background_tasks,
    )


@app.delete("/users/{user_id}")
def delete_user(user_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    user = accounts.get_user(db, user_id)
    if user.id == admin.id:
        raise HTTPException(400, "You cannot delete your own account")
    accounts.delete_user(db, admin, user)
    return {"ok": True}


@app.get("/users/{user_id}/activity", response_model=ActivityPage)
def user_activity(
    user_id: int,
    paging: tuple = Depends(page_params),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    if user_id != current.id and not current.is_admin:
        raise HTTPException(403, "No permission to view this user's activity")
    page, per_page = paging
    return activity_page(activity.activity_by_actor(db, user_id, page, per_page), page, per_page)


# ----------------- DEPARTMENTS -----------------
@app.get("/departments", response_model=list[DepartmentOut])
def list_departments(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return accounts.list_departments(db)


@app.post("/departments", response_model=DepartmentOut, status_code=201)
def create_department(
    body: DepartmentCreateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return accounts.create_department(db, admin, body.model_dump())


@app.get("/departments/{department_id}", response_model=DepartmentOut)
def show_department(department_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return hierarchy.get_department(db, department_id)


@app.patch("/departments/{department_id}", response_model=DepartmentOut)
def update_department(
    department_id: int,
    body: DepartmentUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    dept = hierarchy.get_department(db, department_id)
    return accounts.update_department(db, admin, dept, body.model_dump(exclude_unset=True))


@app.delete("/departments/{department_id}")
def delete_department(department_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    dept = hierarchy.get_department(db, department_id)
    accounts.delete_department(db, admin, dept)
    return {"ok": True}


@app.get("/departments/{department_id}/activity", response_model=ActivityPage)
def department_activity(
    department_id: int,
    paging: tuple = Depends(page_params),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    hierarchy.get_department(db, department_id)
    if not current.is_admin and current.department_id != department_id:
        raise HTTPException(403, "No permission to view this department's activity")
    page, per_page = paging
    return activity_page(activity.activity_for(db, "department", department_id, page, per_page), page, per_page)


@app.get("/departments/{department_id}/contents", response_model=ContentsOut)
def department_contents(
    department_id: int,
    folder_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    hierarchy.get_department(db, department_id)
    if folder_id is not None:
        folder = hierarchy.get_folder(db, folder_id)
        if folder.department_id != department_id:
            raise InvalidParent("Folder belongs to a different department")
        require_view(db, current, folder)
    folders, docs = hierarchy.list_children(db, department_id, folder_id)
    return {"folders": viewable(db, current, folders), "documents": viewable(db, current, docs)}


# ----------------- FOLDERS -----------------
@app.get("/folders", response_model=list[FolderOut])
def list_folders(
    department_id: Optional[int] = None,
    parent_id: Optional[int] = None,
    root: bool = False,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return hierarchy.visible_folders(
        db, current, department_id, parent_id, filter_parent=root or parent_id is not None
    )


@app.post("/folders", response_model=FolderOut, status_code=201)
def create_folder(body: CreateFolderIn, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return hierarchy.create_folder(
        db,
        current,
        body.name,
        department_id=body.department_id,
        parent_id=body.parent_id,
        description=body.description,
    )


@app.get("/folders/shared", response_model=list[SharedFolderOut])
def shared_folders(
    parent_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return [
        SharedFolderOut.model_validate(folder).model_copy(update={"permission": perm})
        for folder, perm in sharing.shared_folders(db, current, parent_id)
    ]


@app.get("/folders/{folder_id}", response_model=FolderOut)
def show_folder(folder_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    folder = hierarchy.get_folder(db, folder_id)
    require_view(db, current, folder)
    return folder


@app.patch("/folders/{folder_id}", response_model=FolderOut)
def update_folder(
    folder_id: int,
    body: FolderUpdateIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    folder = hierarchy.get_folder(db, folder_id)
    return hierarchy.update_folder(
        db, current, folder, name=body.name, description=body.description,
        notifier=notifier, background_tasks=background_tasks,
    )


@app.delete("/folders/{folder_id}")
def delete_folder(folder_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    folder = hierarchy.get_folder(db, folder_id)
    hierarchy.trash_folder(db, current, folder)
    return {"ok": True}


@app.post("/folders/{folder_id}/move", response_model=FolderOut)
def move_folder(
    folder_id: int,
    body: MoveIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    folder = hierarchy.get_folder(db, folder_id)
    return hierarchy.move_folder(
        db, current, folder, body.new_parent_id, body.department_id,
        notifier=notifier, background_tasks=background_tasks,
    )


@app.post("/folders/{folder_id}/copy", response_model=FolderOut, status_code=201)
def copy_folder(
    folder_id: int,
    body: CopyIn,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    folder = hierarchy.get_folder(db, folder_id)
    return documents.copy_folder(db, current, folder, body.target_folder_id)


@app.get("/folders/{folder_id}/download")
def download_folder(
    folder_id: int,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_storage),
):
    folder = hierarchy.get_folder(db, folder_id)
    buffer, zip_name = documents.folder_archive(db, storage, current, folder)
    return StreamingResponse(
        buffer,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{zip_name}"'},
    )


@app.post("/folders/{folder_id}/restore", response_model=FolderOut)
def restore_folder(folder_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    folder = hierarchy.get_folder(db, folder_id, include_deleted=True)
    return hierarchy.restore_folder(db, current, folder)


@app.get("/folders/{folder_id}/activity", response_model=ActivityPage)
def folder_activity(
    folder_id: int,
    paging: tuple = Depends(page_params),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    folder = hierarchy.get_folder(db, folder_id, include_deleted=True)
    require_view(db, current, folder)
    page, per_page = paging
    return activity_page(activity.activity_for(db, "folder", folder_id, page, per_page), page, per_page)


@app.get("/trash/folders", response_model=list[FolderOut])
def trashed_folders(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return hierarchy.trashed_folders(db, current)


@app.get("/trash/folders/{folder_id}/contents", response_model=ContentsOut)
def trashed_folder_contents(folder_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    folder = hierarchy.get_folder(db, folder_id, include_deleted=True)
    require_view(db, current, folder)
    folders, docs = hierarchy.folder_contents(db, folder, include_deleted=True)
    return {"folders": folders, "documents": docs}


# ----------------- DOCUMENTS -----------------
@app.get("/documents", response_model=DocumentPage)
def list_documents(
    department_id: Optional[int] = None,
    folder_id: Optional[int] = None,
    search: Optional[str] = None,
    sort_by: str = "uploaded_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    items, total = documents.list_documents(
        db,
        current,
        department_id=department_id,
        folder_id=folder_id,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        per_page=per_page,
    )
    return {"items": items, "total": total, "page": page, "per_page": per_page}


@app.post("/documents", response_model=DocumentOut, status_code=201)
def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    department_id: Optional[int] = Form(None),
    folder_id: Optional[int] = Form(None),
    relative_path: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_storage),
):
    contents = read_upload(file)
    return documents.upload_document(
        db,
        storage,
        current,
        filename=file.filename,
        content_type=file.content_type,
        contents=contents,
        title=title,
        description=description,
        department_id=department_id,
        folder_id=folder_id,
        relative_path=relative_path,
    )


@app.get("/documents/shared", response_model=list[SharedDocumentOut])
def shared_documents(
    folder_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return [
        SharedDocumentOut.model_validate(doc).model_copy(update={"permission": perm})
        for doc, perm in sharing.shared_documents(db, current, folder_id)
    ]


@app.get("/documents/statistics/summary", response_model=StatisticsOut)
def document_statistics(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return documents.statistics(db)


@app.get("/documents/{document_id}", response_model=DocumentOut)
def show_document(document_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    doc = hierarchy.get_document(db, document_id)
    require_view(db, current, doc)
    return doc


@app.patch("/documents/{document_id}", response_model=DocumentOut)
def update_document(
    document_id: int,
    body: DocumentUpdateIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    doc = hierarchy.get_document(db, document_id)
    return documents.update_document(
        db, current, doc, title=body.title, description=body.description,
        notifier=notifier, background_tasks=background_tasks,
    )


@app.delete("/documents/{document_id}")
def delete_document(document_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    doc = hierarchy.get_document(db, document_id)
    documents.trash_document(db, current, doc)
    return {"ok": True}


@app.get("/documents/{document_id}/download")
def download_document(
    document_id: int,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_storage),
):
    doc = hierarchy.get_document(db, document_id)
    require_view(db, current, doc)
    return FileResponse(
        path=storage.open_path(doc.file_path),
        filename=doc.original_filename,
        media_type=doc.mime_type or "application/octet-stream",
    )


@app.get("/documents/{document_id}/stream")
def stream_document(
    document_id: int,
    db: Session = Depends(get_db),
    storage: FileStorage = Depends(get_storage),
    converter: DocumentConverter = Depends(get_converter),
):
    doc = hierarchy.get_document(db, document_id)
    full_path = storage.open_path(doc.file_path)
    mime = doc.mime_type or "application/octet-stream"

    if mime.startswith("image/") or mime == "application/pdf":
        return FileResponse(full_path, media_type=mime, filename=inline_name(doc), content_disposition_type="inline")

    if converter.should_convert(mime):
        if not (doc.preview_path and storage.exists(doc.preview_path)):
            pdf_path = converter.convert_to_pdf(doc.file_path)
            if pdf_path is not None:
                doc.preview_path = pdf_path
                db.commit()
        if doc.preview_path and storage.exists(doc.preview_path):
            return FileResponse(
                storage.path(doc.preview_path),
                media_type="application/pdf",
                filename=inline_name(doc, ".pdf"),
                content_disposition_type="inline",
            )
        logger.warning("Serving original file for document %s, no PDF preview available", doc.id)

    return FileResponse(full_path, media_type=mime, filename=inline_name(doc))


@app.get("/documents/{document_id}/preview", response_model=PreviewOut)
def preview_document(
    document_id: int,
    db: Session = Depends(get_db),
    converter: DocumentConverter = Depends(get_converter),
):
    doc = hierarchy.get_document(db, document_id)
    mime = doc.mime_type or ""
    return PreviewOut(
        id=doc.id,
        title=doc.title,
        original_filename=doc.original_filename,
        mime_type=doc.mime_type,
        size=doc.file_size_formatted,
        previewable=mime.startswith("image/") or mime == "application/pdf" or converter.should_convert(mime),
        stream_url=f"/documents/{doc.id}/stream",
    )


@app.post("/documents/{document_id}/move", response_model=DocumentOut)
def move_document(
    document_id: int,
    body: MoveIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    doc = hierarchy.get_document(db, document_id)
    return documents.move_document(
        db, current, doc, body.new_parent_id, body.department_id,
        notifier=notifier, background_tasks=background_tasks,
    )


@app.post("/documents/{document_id}/copy", response_model=DocumentOut, status_code=201)
def copy_document(
    document_id: int,
    body: CopyIn,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    doc = hierarchy.get_document(db, document_id)
    return documents.copy_document(db, current, doc, body.target_folder_id)


@app.post("/documents/{document_id}/restore", response_model=DocumentOut)
def restore_document(document_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    doc = hierarchy.get_document(db, document_id, include_deleted=True)
    return documents.restore_document(db, current, doc)


@app.post("/documents/{document_id}/submit", response_model=DocumentOut)
def submit_document(
    document_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    doc = hierarchy.get_document(db, document_id)
    return documents.submit_document(db, current, doc, notifier=notifier, background_tasks=background_tasks)


@app.post("/documents/{document_id}/approve", response_model=DocumentOut)
def approve_document(
    document_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    doc = hierarchy.get_document(db, document_id)
    return documents.approve_document(db, current, doc, notifier=notifier, background_tasks=background_tasks)


@app.post("/documents/{document_id}/reject", response_model=DocumentOut)
def reject_document(
    document_id: int,
    body: RejectIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    doc = hierarchy.get_document(db, document_id)
    return documents.reject_document(
        db, current, doc, reason=body.reason, notifier=notifier, background_tasks=background_tasks
    )


@app.get("/documents/{document_id}/activity", response_model=ActivityPage)
def document_activity(
    document_id: int,
    paging: tuple = Depends(page_params),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    doc = hierarchy.get_document(db, document_id, include_deleted=True)
    require_view(db, current, doc)
    page, per_page = paging
    return activity_page(activity.activity_for(db, "document", document_id, page, per_page), page, per_page)


@app.get("/documents/{document_id}/comments", response_model=list[CommentOut])
def list_comments(document_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    doc = hierarchy.get_document(db, document_id)
    return comments.list_comments(db, current, doc)


@app.post("/documents/{document_id}/comments", response_model=CommentOut, status_code=201)
def add_comment(
    document_id: int,
    body: CommentIn,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    doc = hierarchy.get_document(db, document_id)
    return comments.add_comment(db, current, doc, body.body)


@app.get("/documents/{document_id}/versions", response_model=list[VersionOut])
def list_versions(document_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    doc = hierarchy.get_document(db, document_id)
    require_view(db, current, doc)
    return versions.list_versions(db, doc.id)


@app.post("/documents/{document_id}/versions", response_model=VersionOut, status_code=201)
def upload_version(
    document_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_storage),
):
    doc = hierarchy.get_document(db, document_id)
    require_modify(db, current, doc)
    contents = read_upload(file)
    return versions.add_version(
        db,
        storage,
        doc.id,
        filename=file.filename,
        content_type=file.content_type,
        contents=contents,
        uploader=current,
    )


@app.get("/documents/{document_id}/versions/{version_number}/download")
def download_version(
    document_id: int,
    version_number: int,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    storage: FileStorage = Depends(get_storage),
):
    doc = hierarchy.get_document(db, document_id)
    require_view(db, current, doc)
    version = versions.get_version(db, doc.id, version_number)
    return FileResponse(
        path=storage.open_path(version.file_path),
        filename=version.original_filename,
        media_type=version.mime_type or "application/octet-stream",
    )


@app.post("/documents/{document_id}/versions/{version_number}/restore", response_model=VersionOut)
def restore_version(
    document_id: int,
    version_number: int,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    doc = hierarchy.get_document(db, document_id)
    require_modify(db, current, doc)
    return versions.restore_version(db, doc.id, version_number, current)


@app.get("/trash/documents", response_model=list[DocumentOut])
def trashed_documents(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return hierarchy.trashed_documents(db, current)


@app.get("/qa/approvals", response_model=list[DocumentOut])
def qa_approvals(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return documents.qa_approvals(db, current)


# ----------------- SHARES -----------------
@app.get("/shares", response_model=list[ShareOut])
def incoming_shares(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return sharing.incoming_shares(db, current)


@app.get("/shares/outgoing", response_model=list[ShareOut])
def outgoing_shares(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return sharing.outgoing_shares(db, current)


@app.get("/items/{item_type}/{item_id}/shares", response_model=list[ShareOut])
def item_shares(
    item_type: str,
    item_id: int,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    item = sharing.get_item(db, item_type, item_id)
    require_view(db, current, item)
    return sharing.item_shares(db, item_type, item_id)


@app.post("/shares", response_model=ShareOut, status_code=201)
def create_share(
    body: CreateShareIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    if body.target_user_id is not None:
        target = accounts.get_user(db, body.target_user_id)
    elif body.email:
        target = accounts.find_user_by_email(db, body.email)
        if target is None:
            raise NotFound("User not found")
    else:
        raise HTTPException(422, "target_user_id or email is required")
    return sharing.grant(
        db, current, target, body.type, body.item_id, body.permission,
        notifier=notifier, background_tasks=background_tasks,
    )


@app.patch("/shares/{share_id}", response_model=ShareOut)
def update_share(
    share_id: int,
    body: UpdateShareIn,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    share = sharing.get_share(db, share_id)
    return sharing.update_share(db, share, body.permission, current)


@app.delete("/shares/{share_id}")
def delete_share(share_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    sharing.revoke(db, share_id, current)
    return {"message": "Share removed"}


# ----------------- NOTIFICATIONS -----------------
@app.get("/notifications", response_model=NotificationListOut)
def list_notifications(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    items, unread = notifications.list_notifications(db, current)
    return {"notifications": items, "unread_count": unread}


@app.post("/notifications/read-all")
def mark_all_notifications_read(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return {"updated": notifications.mark_all_read(db, current)}


@app.post("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    if not notifications.mark_read(db, current, notification_id):
        raise HTTPException(404, "Notification not found")
    return {"ok": True}


# ----------------- ACTIVITY LOG (ADMIN) -----------------
@app.get("/activity-logs", response_model=ActivityPage)
def activity_logs(
    action: Optional[str] = None,
    subject_type: Optional[str] = None,
    user_id: Optional[int] = None,
    department_id: Optional[int] = None,
    paging: tuple = Depends(page_params),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    page, per_page = paging
    result = activity.search_activity(
        db,
        action=action,
        subject_type=subject_type,
        user_id=user_id,
        department_id=department_id,
        page=page,
        per_page=per_page,
    )
    return activity_page(result, page, per_page)
