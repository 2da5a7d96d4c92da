"""Error taxonomy. Each error carries the HTTP status used in the response envelope."""
from typing import Optional


class ConverterError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ConverterError):
    """Bad file size, type, count, form field or download filename."""

    status_code = 400


class ConversionError(ConverterError):
    """The codec could not decode, resize or encode an image."""

    status_code = 500


class ArchiveError(ConverterError):
    """The batch archive could not be written."""

    status_code = 500


class NotFoundError(ConverterError):
    """A requested artifact is missing or already expired."""

    status_code = 404


class StorageError(ConverterError):
    """Storage introspection failed."""

    status_code = 500
