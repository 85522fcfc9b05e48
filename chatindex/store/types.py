from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any

from ..utils import ROLES, to_datetime
from .tags import normalize_tag, normalize_tags

MAX_PAGE_SIZE = 200
SNIPPETS_PER_HIT = 3


@dataclass
class Message:
    id: str
    role: str
    content: str
    timestamp: str
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Session:
    id: str
    title: str
    source: str
    created_at: str
    updated_at: str
    messages: list[Message] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    message_count: int = 0
    source_path: str | None = None
    source_mtime: float | None = None

    def __post_init__(self) -> None:
        if self.messages:
            self.message_count = len(self.messages)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["messages"] = [m.to_dict() for m in self.messages]
        return data


class UpsertResult(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class SessionQuery:
    keyword: str | None = None
    date_from: str | None = None
    date_to: str | None = None
    sources: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    min_messages: int | None = None
    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def normalized(self) -> SessionQuery:
        keyword = (self.keyword or "").strip() or None
        sources = list(dict.fromkeys(s.strip() for s in self.sources if s and s.strip()))
        roles = list(dict.fromkeys(r.strip().lower() for r in self.roles if r and r.strip().lower() in ROLES))
        min_messages = self.min_messages if self.min_messages and self.min_messages > 0 else None
        return replace(
            self,
            keyword=keyword,
            date_from=_normalize_bound(self.date_from, end_of_day=False),
            date_to=_normalize_bound(self.date_to, end_of_day=True),
            sources=sources,
            tags=_requested_tags(self.tags),
            roles=roles,
            min_messages=min_messages,
            page=max(1, int(self.page or 1)),
            page_size=min(MAX_PAGE_SIZE, max(1, int(self.page_size or 1))),
        )


def _requested_tags(values: list[str]) -> list[str]:
    # A tag with no valid characters is kept verbatim so the filter matches nothing.
    tags = normalize_tags(values)
    for value in values:
        if isinstance(value, str) and value.strip() and not normalize_tag(value):
            if value.strip() not in tags:
                tags.append(value.strip())
    return tags


def _normalize_bound(value: str | None, *, end_of_day: bool) -> str | None:
    if not value:
        return None
    text = str(value).strip()
    parsed = to_datetime(text)
    if parsed is None:
        return None
    # A bare date covers the whole day when used as an upper bound.
    if end_of_day and len(text) == 10 and text[4] == "-":
        parsed = parsed.replace(hour=23, minute=59, second=59, microsecond=999999)
    return parsed.isoformat()


@dataclass
class MessageMatch:
    message_id: str
    role: str
    snippet: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SearchHit:
    session: Session
    match_count: int
    matches: list[MessageMatch] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = self.session.to_dict()
        data.pop("messages", None)
        data["match_count"] = self.match_count
        data["matches"] = [m.to_dict() for m in self.matches]
        return data


@dataclass
class Page:
    items: list[Any]
    total: int
    page: int
    page_size: int
    has_more: bool
    elapsed_ms: float
    error: str | None = None

    @classmethod
    def empty(cls, query: SessionQuery, *, error: str | None = None) -> Page:
        return cls(
            items=[],
            total=0,
            page=query.page,
            page_size=query.page_size,
            has_more=False,
            elapsed_ms=math.inf if error else 0.0,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        items = []
        for item in self.items:
            if isinstance(item, Session):
                data = item.to_dict()
                data.pop("messages", None)
                items.append(data)
            else:
                items.append(item.to_dict())
        return {
            "items": items,
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "has_more": self.has_more,
            "elapsed_ms": None if math.isinf(self.elapsed_ms) else round(self.elapsed_ms, 3),
            "error": self.error,
        }


@dataclass
class ScanSummary:
    source: str
    sessions_found: int = 0
    messages_imported: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    total_processed: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: float = 0.0
    pruned: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScanEvent:
    kind: str
    source: str
    unit: str | None = None
    processed: int = 0
    total: int = 0
    error: str | None = None
    summary: ScanSummary | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["summary"] = self.summary.to_dict() if self.summary else None
        return data


@dataclass
class CorpusEstimate:
    source: str
    total_units: int = 0
    sampled_units: int = 0
    failed_units: int = 0
    sampled_messages: int = 0
    estimated_messages: int = 0
    estimated_by_role: dict[str, int] = field(default_factory=dict)
    scale: float = 0.0
    exact: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
