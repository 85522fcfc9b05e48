from __future__ import annotations

from ._store import ChatStore
from .types import (
    CorpusEstimate,
    Message,
    MessageMatch,
    Page,
    ScanEvent,
    ScanSummary,
    SearchHit,
    Session,
    SessionQuery,
    UpsertResult,
)

__all__ = [
    "ChatStore",
    "CorpusEstimate",
    "Message",
    "MessageMatch",
    "Page",
    "ScanEvent",
    "ScanSummary",
    "SearchHit",
    "Session",
    "SessionQuery",
    "UpsertResult",
]
