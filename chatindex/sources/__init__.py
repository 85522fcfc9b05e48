from __future__ import annotations

from ..errors import UnknownSourceError
from ..store import ChatStore
from .base import ParsedSession, ScanObserver, SourceAdapter
from .claude_tasks import ClaudeTasksAdapter
from .cursor_workspace import CursorWorkspaceAdapter
from .legacy_json import LegacyJsonAdapter
from .uploads import UploadAdapter

ADAPTERS: dict[str, type[SourceAdapter]] = {
    CursorWorkspaceAdapter.name: CursorWorkspaceAdapter,
    ClaudeTasksAdapter.name: ClaudeTasksAdapter,
    UploadAdapter.name: UploadAdapter,
    LegacyJsonAdapter.name: LegacyJsonAdapter,
}


def adapter_class(name: str) -> type[SourceAdapter]:
    try:
        return ADAPTERS[name]
    except KeyError:
        raise UnknownSourceError(f"unknown source: {name}", {"known": sorted(ADAPTERS)}) from None


def build_adapters(store: ChatStore) -> dict[str, SourceAdapter]:
    return {name: cls(store) for name, cls in ADAPTERS.items()}


__all__ = [
    "ADAPTERS",
    "ClaudeTasksAdapter",
    "CursorWorkspaceAdapter",
    "LegacyJsonAdapter",
    "ParsedSession",
    "ScanObserver",
    "SourceAdapter",
    "UploadAdapter",
    "adapter_class",
    "build_adapters",
]
