"""
Error taxonomy surfaced by the shorty core.

Classes:
    ShortyError:
        Generic base class for every error raised by the core.

    NotFoundError:
        The short code was never stored.

    GoneError:
        The short code exists but was soft-deleted (tombstoned).

    ConflictError:
        The short code (or long URL) is already mapped. Carries the existing
        code when one is known so callers can treat it as a soft success.

    UnavailableError:
        The storage backend cannot be reached or opened.

    InternalError / StorageCorruptedError:
        Unclassified backend failure; corrupted persisted data.

    ExhaustedError:
        Short-code generation ran out of collision retries.

    UnknownSessionError:
        A session token that the owner registry never issued.

    PipelineFullError / PipelineClosedError:
        The deletion pipeline cannot accept more work right now / anymore.

Example:
    >>> from shorty.storage.errors import GoneError
    >>> raise GoneError("abc123")
    Traceback (most recent call last):
        ...
    shorty.storage.errors.GoneError: short URL abc123 is deleted
"""

from typing import Optional


class ShortyError(Exception):
    """Generic base class for shorty core exceptions."""

    pass


class NotFoundError(ShortyError, KeyError):
    """Exception raised when a short code was never stored."""

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(short_code)

    def __str__(self) -> str:
        return f"short URL {self.short_code} not exist"


class GoneError(ShortyError):
    """Exception raised when a short code resolves to a tombstoned record."""

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(f"short URL {short_code} is deleted")


class ConflictError(ShortyError):
    """Exception raised when a code or long URL is already mapped."""

    def __init__(self, message: str = "short URL already exist", short_code: Optional[str] = None):
        self.short_code = short_code
        super().__init__(message)


class UnavailableError(ShortyError):
    """Exception raised when the storage backend is not ready."""

    pass


class InternalError(ShortyError):
    """Exception raised for unclassified I/O or backend failures."""

    pass


class StorageCorruptedError(InternalError):
    """Exception raised when a persisted record cannot be decoded."""

    pass


class ExhaustedError(ShortyError):
    """Exception raised when every generated candidate code collided."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"could not allocate a free short code after {attempts} attempts")


class UnknownSessionError(ShortyError, KeyError):
    """Exception raised for a session token the registry never issued."""

    def __str__(self) -> str:
        return "unknown session token"


class PipelineFullError(ShortyError):
    """Exception raised when the deletion queue is full. Safe to retry later."""

    def __init__(self, enqueued: int = 0):
        self.enqueued = enqueued
        super().__init__(f"deletion queue is full ({enqueued} item(s) accepted before rejection)")


class PipelineClosedError(ShortyError):
    """Exception raised when submitting to a stopped deletion pipeline."""

    pass
