"""
Error taxonomy for the catalog engine.

Each class carries the code and HTTP status the API adapter renders, so
callers can tell validation, not-found, invariant and storage failures apart.
"""

from typing import Optional


class CatalogError(Exception):
    """Base exception for catalog errors."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        detail: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class ValidationError(CatalogError):
    """Malformed or missing input, rejected before any store access."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message=message, code="VALIDATION_ERROR", status_code=400, detail=detail)


class DuplicateBookError(ValidationError):
    def __init__(self, isbn13: str):
        super().__init__(f"A book with ISBN {isbn13} already exists")
        self.code = "DUPLICATE_BOOK"
        self.status_code = 409


class BookNotFoundError(CatalogError):
    def __init__(self, identifier: str, detail: Optional[str] = None):
        super().__init__(
            message="Book not found",
            code="NOT_FOUND",
            status_code=404,
            detail=detail or f"No book with identifier '{identifier}' exists",
        )
        self.identifier = identifier


class NegativeRatingError(CatalogError):
    """A rating change would leave a bucket counter below zero."""

    def __init__(self, isbn13: str, bucket: int, value: int):
        super().__init__(
            message="Rating count cannot be negative",
            code="NEGATIVE_RATING",
            status_code=409,
            detail=f"rating_{bucket}_star of {isbn13} would become {value}",
        )
        self.bucket = bucket
        self.value = value


class StorageError(CatalogError):
    """Connection, timeout or constraint failure reported by the store."""

    def __init__(self, message: str = "Storage unavailable", detail: Optional[str] = None):
        super().__init__(message=message, code="STORAGE_ERROR", status_code=503, detail=detail)


class MigrationError(CatalogError):
    """Fatal bootstrap failure; the process must not serve traffic."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message=message, code="MIGRATION_ERROR", status_code=500, detail=detail)


class SchemaVersionError(MigrationError):
    def __init__(self, installed: int, latest: int):
        super().__init__(
            f"Invalid database schema version: {installed}",
            detail=f"installed version {installed} is newer than latest known version {latest}",
        )
        self.installed = installed
        self.latest = latest
