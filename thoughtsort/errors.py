from __future__ import annotations


class ThoughtsortError(Exception):
    """Base class for every error raised by thoughtsort."""


class ClassificationError(ThoughtsortError):
    pass


class EmbeddingError(ThoughtsortError):
    pass


class TranscriptionError(ThoughtsortError):
    pass


class IngestionValidationError(ThoughtsortError):
    """Raised when an ingestion request is rejected before any AI call."""


class NoSpeechDetectedError(IngestionValidationError):
    def __init__(self) -> None:
        super().__init__("No speech detected")


class TranscriptTooLongError(IngestionValidationError):
    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"Transcript too long ({length} > {limit} characters)")
        self.length = length
        self.limit = limit


class CategoryNotFoundError(IngestionValidationError):
    def __init__(self, category_id: str) -> None:
        super().__init__(f"Category not found: {category_id}")
        self.category_id = category_id


class DuplicateRecordError(ThoughtsortError):
    pass


class RecordNotFoundError(ThoughtsortError):
    pass


class RemoteAPIError(ThoughtsortError):
    def __init__(self, message: str, *, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status = status
        self.code = code

    @property
    def is_duplicate(self) -> bool:
        if self.status == 409 or self.code == "duplicate":
            return True
        return "duplicate" in str(self).lower()

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class SyncCancelledError(ThoughtsortError):
    """Raised inside a sync cycle when cancel() was requested."""
