"""Application exceptions.

Every error carries the HTTP status it maps to. Business-logic failures keep
the historical convention of a 200 response with ``success: false``; access
failures use 401/403/404 and storage failures surface as a generic 500.
"""

from __future__ import annotations


class PawError(Exception):
    """Base application exception."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


# =============================================================================
# Registration / Authentication
# =============================================================================


class DuplicateEmail(PawError):
    status_code = 200

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("Email already exists")


class DuplicateDomain(PawError):
    status_code = 200

    def __init__(self, domain: str) -> None:
        self.domain = domain
        super().__init__("Domain taken")


class InvalidDomain(PawError):
    status_code = 200


class InvalidCredentials(PawError):
    status_code = 200

    def __init__(self) -> None:
        super().__init__("Invalid credentials")


class MissingField(PawError):
    status_code = 400

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} is required")


class Unauthorized(PawError):
    status_code = 401

    def __init__(self, message: str = "Login required") -> None:
        super().__init__(message)


class Forbidden(PawError):
    status_code = 403

    def __init__(self, message: str = "Not your site") -> None:
        super().__init__(message)


# =============================================================================
# Lookup
# =============================================================================


class NotFound(PawError):
    status_code = 404


class FileNotFound(NotFound):
    def __init__(self, message: str = "File not found") -> None:
        super().__init__(message)


# =============================================================================
# Uploads / Storage
# =============================================================================


class MalformedArchive(PawError):
    """Corrupt archive or an upload entry with an unsafe path."""

    status_code = 400


class StorageError(PawError):
    """Disk failure. The message is logged, never returned to clients."""

    status_code = 500


class AllocationError(StorageError):
    pass


class WriteError(StorageError):
    pass
