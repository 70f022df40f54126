import logging
import os
import uuid
from pathlib import Path

from .errors import NotFound
from .settings import settings

logger = logging.getLogger(__name__)


class FileStorage:
    """Document disk. Rows keep paths relative to ``root``."""

    def __init__(self, root):
        self.root = Path(root).resolve()

    def save(self, filename: str, contents: bytes) -> str:
        ext = os.path.splitext(filename or "")[1].lower()
        rel_path = f"{uuid.uuid4().hex}{ext}"
        full_path = self.root / rel_path
        full_path.parent.mkdir(parents=True, exist_ok=True)
        with open(full_path, "wb") as f:
            f.write(contents)
        return rel_path

    def path(self, rel_path: str) -> Path:
        if not rel_path:
            raise NotFound("Document file not found")
        full_path = (self.root / rel_path).resolve()
        if full_path != self.root and self.root not in full_path.parents:
            raise NotFound("Document file not found")
        return full_path

    def exists(self, rel_path) -> bool:
        try:
            return self.path(rel_path).is_file()
        except NotFound:
            return False

    def open_path(self, rel_path: str) -> Path:
        """Like ``path`` but the file must exist."""
        full_path = self.path(rel_path)
        if not full_path.is_file():
            raise NotFound("Document file not found")
        return full_path

    def delete(self, rel_path: str) -> None:
        try:
            self.path(rel_path).unlink(missing_ok=True)
        except (NotFound, OSError):
            logger.warning("Could not delete stored file %s", rel_path)


def preview_path_for(rel_path: str) -> str:
    """``reports/q1.docx`` -> ``reports/q1.pdf``."""
    return Path(rel_path).with_suffix(".pdf").as_posix()


def get_storage() -> FileStorage:
    return FileStorage(settings.STORAGE_DIR)
