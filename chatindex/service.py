from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .config import ChatIndexConfig, load_config
from .errors import SchemaMigrationError, StoreUnavailableError, UnknownSourceError
from .scheduler import AutoScanner
from .sources import SourceAdapter, adapter_class, build_adapters
from .sources.claude_tasks import ClaudeTasksAdapter
from .store import ChatStore, Page, SessionQuery
from .store.stats import empty_stats

logger = logging.getLogger(__name__)

FILTER_KEYS = ("date_from", "date_to", "sources", "tags", "roles", "min_messages")


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, Iterable):
        return [str(part).strip() for part in value if str(part).strip()]
    return [str(value)]


def build_query(
    filters: dict[str, Any] | None = None,
    *,
    keyword: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> SessionQuery:
    filters = filters or {}
    min_messages = filters.get("min_messages")
    try:
        min_messages = int(min_messages) if min_messages not in (None, "") else None
    except (TypeError, ValueError):
        min_messages = None
    return SessionQuery(
        keyword=keyword,
        date_from=filters.get("date_from") or None,
        date_to=filters.get("date_to") or None,
        sources=_as_list(filters.get("sources")),
        tags=_as_list(filters.get("tags")),
        roles=_as_list(filters.get("roles")),
        min_messages=min_messages,
        page=page,
        page_size=page_size,
    ).normalized()


class ChatHistory:
    """Facade over the store and the source adapters. Every call returns plain data."""

    def __init__(
        self,
        config: ChatIndexConfig,
        store: ChatStore | None,
        adapters: dict[str, SourceAdapter] | None = None,
        *,
        degraded_reason: str | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.adapters = adapters or {}
        self.degraded_reason = degraded_reason

    @classmethod
    def open(cls, config: ChatIndexConfig | None = None) -> ChatHistory:
        config = config or load_config()
        try:
            store = ChatStore(config.db_path)
        except SchemaMigrationError as exc:
            logger.error(
                "store migration failed, serving in degraded mode",
                extra={"db_path": config.db_path, "detail": exc.detail},
            )
            return cls(config, None, degraded_reason=exc.message)
        return cls(config, store, build_adapters(store))

    @property
    def degraded(self) -> bool:
        return self.store is None

    def _require_store(self) -> ChatStore:
        if self.store is None:
            raise StoreUnavailableError(
                f"store unavailable: {self.degraded_reason}",
                {"db_path": self.config.db_path},
            )
        return self.store

    def _adapter(self, source_name: str) -> SourceAdapter:
        self._require_store()
        adapter_class(source_name)
        return self.adapters[source_name]

    def _unavailable_page(self, query: SessionQuery) -> dict[str, Any]:
        return Page.empty(query, error=f"store unavailable: {self.degraded_reason}").to_dict()

    def list_sessions(
        self,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        query = build_query(filters, page=page, page_size=page_size)
        if self.store is None:
            return self._unavailable_page(query)
        return self.store.get_sessions(query).to_dict()

    def search_messages(
        self,
        keyword: str,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        query = build_query(filters, keyword=keyword, page=page, page_size=page_size)
        if self.store is None:
            return self._unavailable_page(query)
        return self.store.query(query).to_dict()

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        if self.store is None:
            return None
        return self.store.get_session(session_id)

    def get_stats(self, window_days: int = 30, top_tags: int = 10) -> dict[str, Any]:
        if self.store is None:
            stats = empty_stats(self.config.db_path, window_days=window_days)
            stats["error"] = f"store unavailable: {self.degraded_reason}"
            return stats
        return self.store.get_stats(window_days=window_days, top_tags=top_tags)

    def scan(self, source_name: str, **overrides: Any) -> dict[str, Any]:
        adapter = self._adapter(source_name)
        source_config = self.config.source_config(source_name, **overrides)
        return adapter.scan(source_config).to_dict()

    def delete_session(self, session_id: str) -> dict[str, Any]:
        store = self._require_store()
        return {"id": session_id, "deleted": store.remove_session(session_id)}

    def estimate(self, source_name: str = ClaudeTasksAdapter.name, **overrides: Any) -> dict[str, Any]:
        adapter = self._adapter(source_name)
        if not isinstance(adapter, ClaudeTasksAdapter):
            raise UnknownSourceError(
                f"corpus estimates are not available for {source_name}",
                {"source": source_name},
            )
        source_config = self.config.source_config(source_name, **overrides)
        return adapter.estimate_corpus(source_config).to_dict()

    def auto_scanner(
        self,
        source_name: str,
        interval_s: float | None = None,
        *,
        run_immediately: bool = False,
        **overrides: Any,
    ) -> AutoScanner:
        adapter = self._adapter(source_name)
        return AutoScanner(
            adapter,
            self.config.source_config(source_name, **overrides),
            interval_s if interval_s is not None else self.config.auto_scan_interval_s,
            run_immediately=run_immediately,
        )

    def rebuild_index(self) -> dict[str, Any]:
        return {"indexed": self._require_store().rebuild_index()}

    def check(self) -> dict[str, Any]:
        store = self._require_store()
        return {**store.index_consistency(), "migrated_tables": list(store.migrated_tables)}

    def prune(self, max_sessions: int | None = None) -> dict[str, Any]:
        limit = self.config.max_sessions if max_sessions is None else max_sessions
        return {"max_sessions": limit, "removed": self._require_store().prune_sessions(limit)}

    def close(self) -> None:
        if self.store is not None:
            self.store.close()

    def __enter__(self) -> ChatHistory:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


__all__ = ["FILTER_KEYS", "ChatHistory", "build_query"]
