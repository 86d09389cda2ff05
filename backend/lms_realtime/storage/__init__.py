"""Chat message persistence backends."""

from lms_realtime.config import StorageConfig

from .base import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ChatMessageStore
from .duckdb_store import DuckDBChatMessageStore
from .memory import InMemoryChatMessageStore


def build_store(config: StorageConfig) -> ChatMessageStore:
    """Create the store selected by ``storage.backend``."""
    if config.backend == "duckdb":
        return DuckDBChatMessageStore(db_path=config.db_path)
    return InMemoryChatMessageStore()


__all__ = [
    "ChatMessageStore",
    "DuckDBChatMessageStore",
    "InMemoryChatMessageStore",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "build_store",
]
