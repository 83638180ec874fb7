"""Exception taxonomy shared by the import/export pipeline."""

from __future__ import annotations

from dataclasses import dataclass


class CatalogIOError(Exception):
    """Base class for pipeline errors."""


class FileRejectedError(CatalogIOError):
    """Upload failed a structural check before any job was created."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class ParseError(CatalogIOError, ValueError):
    """File could not be turned into rows (malformed structure or violated limit)."""


class ParseTimeoutError(ParseError):
    """Parsing exceeded its wall-clock budget."""


class JobNotFoundError(CatalogIOError):
    """Job does not exist or belongs to another owner."""


class TemplateNotFoundError(CatalogIOError):
    """Saved template does not exist or belongs to another owner."""


class JobStateError(CatalogIOError):
    """Requested transition is not allowed by the job state machine."""


class ConcurrentUpdateError(CatalogIOError):
    """Job row was modified by another writer since it was loaded."""


class JobFatalError(CatalogIOError):
    """Infrastructure failure that terminated a job."""

    def __init__(self, message: str, job_id: str | None = None):
        super().__init__(message)
        self.job_id = job_id


class StorageError(CatalogIOError):
    """Object storage read/write failure."""


class SignatureError(CatalogIOError):
    """Signed URL is invalid or expired."""


@dataclass
class RateLimitExceeded(CatalogIOError):
    retry_after_seconds: int
    message: str = "Too many requests, please try again later"

    def __str__(self) -> str:
        return self.message
