from __future__ import annotations

from typing import Any


class ChatIndexError(Exception):
    """Base class for errors surfaced to callers of chatindex."""

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreError(ChatIndexError):
    """The store file could not be opened, read, or written."""


class SchemaMigrationError(StoreError):
    """A legacy layout was detected but could not be migrated.

    The store file is left exactly as it was found.
    """


class StoreUnavailableError(ChatIndexError):
    """Store-backed features are disabled for this run."""


class SourceNotFoundError(ChatIndexError):
    """The configured root of a source does not exist."""


class ScanInProgressError(ChatIndexError):
    """A scan for this source is already running."""


class UnitParseError(ChatIndexError):
    """A single source unit is malformed; recovered by the scan loop."""


class UnknownSourceError(ChatIndexError):
    pass


__all__ = [
    "ChatIndexError",
    "ScanInProgressError",
    "SchemaMigrationError",
    "SourceNotFoundError",
    "StoreError",
    "StoreUnavailableError",
    "UnitParseError",
    "UnknownSourceError",
]
