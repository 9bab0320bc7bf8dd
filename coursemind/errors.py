"""Exception classes for material processing and retrieval."""


class CourseMindError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class MaterialNotFoundError(CourseMindError, LookupError):
    """Raised when a material id does not exist."""

    def __init__(self, material_id: str):
        self.material_id = material_id
        super().__init__(f"Material not found: {material_id}")


class ChapterNotFoundError(CourseMindError, LookupError):
    """Raised when a chapter id does not exist."""

    def __init__(self, chapter_id: str):
        self.chapter_id = chapter_id
        super().__init__(f"Chapter not found: {chapter_id}")


class InvalidStateError(CourseMindError):
    """Raised when a material is not in a state that allows the operation."""

    def __init__(self, material_id: str, status: str, operation: str):
        self.material_id = material_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} material {material_id} while it is {status}",
            detail="Use reset first to reprocess a completed material."
            if operation == "process" and status == "completed"
            else None,
        )


class ExtractionError(CourseMindError):
    """Raised when text cannot be extracted from a document. Fatal."""


class StructuringError(CourseMindError):
    """Raised when AI structuring fails. Recoverable."""


class EmbeddingError(CourseMindError):
    """Raised when chunk embedding or storage fails. Recoverable."""
