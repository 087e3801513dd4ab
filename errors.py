"""Exceptions shared by the record store, the lending service and the API."""


class LibraryError(Exception):
    """Base class for every domain failure."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(LibraryError):
    """Malformed create/update input."""

    status_code = 400


class NotFoundError(LibraryError):
    status_code = 404


class ConflictError(LibraryError):
    """A uniqueness rule rejected the write."""

    status_code = 400


class InvalidOperationError(LibraryError):
    """The lending state machine refused the transition."""

    status_code = 400


class StorageError(LibraryError):
    """The underlying database failed or is unreachable."""

    status_code = 500
