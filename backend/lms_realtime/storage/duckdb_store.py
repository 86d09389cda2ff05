"""DuckDB-based chat message storage.

Persists course chat messages in a local DuckDB file so history survives
restarts.

Database Schema:
    chat_messages table:
        - id: Auto-incrementing primary key (durable message id)
        - course_id: Course the message was posted to
        - author_user_id: Author user id
        - body: Message text
        - created_at: When the message was stored (UTC)

Thread Safety:
    A DuckDB connection is NOT safe for concurrent use. All statements run
    in FastAPI's threadpool, serialized by a per-store lock, so the event
    loop never blocks on disk I/O.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional

import duckdb
from fastapi.concurrency import run_in_threadpool

from lms_realtime.realtime.errors import PersistenceError
from lms_realtime.realtime.schemas import ChatMessage, ChatMessageCreate

from .base import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ChatMessageStore

logger = logging.getLogger(__name__)


class DuckDBChatMessageStore(ChatMessageStore):
    """Chat message store backed by a DuckDB database file.

    Attributes:
        db_path: Path to the DuckDB file, or ":memory:".
    """

    def __init__(self, db_path: str = "chat_messages.duckdb") -> None:
        self.db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._initialize_db()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self.db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the sequence and table if they don't exist (idempotent)."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE SEQUENCE IF NOT EXISTS chat_messages_seq START 1;
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chat_messages (
                    id BIGINT DEFAULT nextval('chat_messages_seq') PRIMARY KEY,
                    course_id BIGINT NOT NULL,
                    author_user_id BIGINT NOT NULL,
                    body VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)

    def _insert(self, message: ChatMessageCreate) -> ChatMessage:
        # Stored naive, read back as UTC
        created_at = datetime.now(timezone.utc).replace(tzinfo=None)
        with self._lock:
            try:
                row = self._get_connection().execute(
                    """
                    INSERT INTO chat_messages (course_id, author_user_id, body, created_at)
                    VALUES (?, ?, ?, ?)
                    RETURNING id
                    """,
                    [message.courseId, message.authorUserId, message.body, created_at],
                ).fetchone()
            except duckdb.Error as e:
                raise PersistenceError(f"could not store chat message: {e}") from e

        return ChatMessage(
            id=row[0],
            courseId=message.courseId,
            authorUserId=message.authorUserId,
            body=message.body,
            timestamp=created_at.replace(tzinfo=timezone.utc),
        )

    def _select(self, course_id: int, before_id: Optional[int], limit: int) -> List[ChatMessage]:
        query = """
            SELECT id, course_id, author_user_id, body, created_at
            FROM chat_messages
            WHERE course_id = ?
        """
        params: list = [course_id]
        if before_id is not None:
            query += " AND id < ?"
            params.append(before_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            try:
                rows = self._get_connection().execute(query, params).fetchall()
            except duckdb.Error as e:
                raise PersistenceError(f"could not read chat messages: {e}") from e

        return [
            ChatMessage(
                id=row[0],
                courseId=row[1],
                authorUserId=row[2],
                body=row[3],
                timestamp=row[4].replace(tzinfo=timezone.utc),
            )
            for row in reversed(rows)
        ]

    async def create_chat_message(self, message: ChatMessageCreate) -> ChatMessage:
        return await run_in_threadpool(self._insert, message)

    async def list_chat_messages(
        self,
        course_id: int,
        before_id: Optional[int] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[ChatMessage]:
        return await run_in_threadpool(
            self._select, course_id, before_id, min(limit, MAX_PAGE_SIZE)
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                logger.info(f"Closed chat message store at {self.db_path}")
