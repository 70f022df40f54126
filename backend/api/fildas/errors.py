"""Domain errors raised by the service modules.

Every error carries a human-readable ``message`` and a ``code`` that the API
returns as the error classification. ``main.py`` maps them to HTTP statuses.
"""


class FildasError(Exception):
    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(FildasError):
    code = "not_found"


class DocumentNotFound(NotFound):
    code = "document_not_found"

    def __init__(self, document_id: int) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class Forbidden(FildasError):
    code = "forbidden"


class NotOwner(Forbidden):
    code = "not_owner"


class InvalidParent(FildasError):
    code = "invalid_parent"


class CycleDetected(FildasError):
    code = "cycle_detected"


class CrossDepartment(FildasError):
    code = "cross_department"


class DuplicateVersion(FildasError):
    code = "duplicate_version"


class InvalidTransition(FildasError):
    code = "invalid_transition"


class ConversionFailed(FildasError):
    code = "conversion_failed"

    def __init__(self, message: str, *, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class AlreadyExists(FildasError):
    code = "already_exists"


class InvalidInput(FildasError):
    code = "invalid_input"
