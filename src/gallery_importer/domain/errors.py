"""Domain exceptions for import and deletion jobs."""


class ImportJobError(Exception):
    """Base class for job errors."""


class JobNotFoundError(ImportJobError):
    """Raised when a job cannot be found."""

    code = "not_found"


class JobConflictError(ImportJobError):
    """Raised when a control command conflicts with the job status."""

    def __init__(self, message: str, code: str = "conflict") -> None:
        super().__init__(message)
        self.code = code


class JobValidationError(ImportJobError):
    """Raised when request validation fails."""

    code = "invalid"


class JobForbiddenError(ImportJobError):
    """Raised when the caller may not inspect or control jobs."""

    code = "forbidden"


class JobPayloadError(ImportJobError):
    """Raised when a job payload cannot be read; fails the whole job."""


class ImportExecutionError(ImportJobError):
    """Raised when an inline import stops for a reason other than its payload."""

    code = "import_failed"


class GalleryNotFoundError(ImportJobError):
    """Raised when a gallery record cannot be found."""

    code = "not_found"


class GalleryStoreError(ImportJobError):
    """Raised when the record store rejects a write."""


class ImageFetchError(ImportJobError):
    """Raised when a remote image cannot be downloaded."""


__all__ = [
    "GalleryNotFoundError",
    "GalleryStoreError",
    "ImageFetchError",
    "ImportExecutionError",
    "ImportJobError",
    "JobConflictError",
    "JobForbiddenError",
    "JobNotFoundError",
    "JobPayloadError",
    "JobValidationError",
]
