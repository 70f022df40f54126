import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from fastapi import Depends

from .errors import ConversionFailed, NotFound
from .settings import settings
from .storage import FileStorage, get_storage, preview_path_for

logger = logging.getLogger(__name__)

CONVERTIBLE_TYPES = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",  # DOCX
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",  # XLSX
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",  # PPTX
    "application/msword",  # DOC
    "application/vnd.ms-excel",  # XLS
    "application/vnd.ms-powerpoint",  # PPT
}


class DocumentConverter:
    """Office -> PDF through a headless LibreOffice process."""

    def __init__(self, storage: FileStorage, soffice_path: str = "soffice", timeout: int = 120):
        self.storage = storage
        self.soffice_path = soffice_path
        self.timeout = timeout

    def should_convert(self, mime_type: Optional[str]) -> bool:
        return mime_type in CONVERTIBLE_TYPES

    def is_available(self) -> bool:
        return shutil.which(self.soffice_path) is not None or Path(self.soffice_path).is_file()

    def convert_to_pdf(self, input_path: str) -> Optional[str]:
        """Convert a stored file; returns the relative PDF path or None on failure."""
        try:
            return self._convert(input_path)
        except ConversionFailed as e:
            logger.error(
                "Document conversion failed for %s: %s\nstdout: %s\nstderr: %s",
                input_path,
                e.message,
                e.stdout,
                e.stderr,
            )
            return None

    def _convert(self, input_path: str) -> str:
        try:
            input_full = self.storage.open_path(input_path)
        except NotFound:
            raise ConversionFailed(f"Input file does not exist: {input_path}")

        output_path = preview_path_for(input_path)
        output_full = self.storage.path(output_path)
        output_dir = output_full.parent
        output_dir.mkdir(parents=True, exist_ok=True)

        command = [
            self.soffice_path,
            "--headless",
            "--convert-to",
            "pdf",
            "--outdir",
            str(output_dir),
            str(input_full),
        ]
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ConversionFailed(
                f"Conversion timed out after {self.timeout}s",
                stdout=_text(e.stdout),
                stderr=_text(e.stderr),
            )
        except OSError as e:
            raise ConversionFailed(f"Could not start {self.soffice_path}: {e}")

        if result.returncode != 0:
            raise ConversionFailed(
                f"Converter exited with code {result.returncode}",
                stdout=result.stdout,
                stderr=result.stderr,
            )

        # LibreOffice names the output after the input stem
        produced = output_dir / f"{input_full.stem}.pdf"
        if produced.exists() and produced != output_full:
            produced.replace(output_full)

        if not output_full.exists():
            raise ConversionFailed(
                f"Converted PDF not found at {output_path}",
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return output_path


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def get_converter(storage: FileStorage = Depends(get_storage)) -> DocumentConverter:
    return DocumentConverter(
        storage,
        soffice_path=settings.LIBREOFFICE_PATH,
        timeout=settings.CONVERSION_TIMEOUT,
    )
