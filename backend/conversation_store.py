"""Conversation store: durable message lists, replace-whole-list contract.

The streaming pipeline reads a conversation's full message list and writes
the full list back.  There is no append primitive: callers always submit
the complete list.

Backends:
  - PostgresConversationStore  psycopg2 connection pool (persistent)
  - InMemoryConversationStore  dict-backed fallback (non-persistent)

:func:`open_store` picks Postgres when reachable, memory otherwise.
All store methods are coroutines; blocking driver calls run in a worker
thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ═══════════════════════════════════════════════════════════════════════════
#  MESSAGE
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Message:
    """One role-tagged entry of a conversation."""

    role: str                              # user | assistant
    content: str
    timestamp: str = field(default_factory=_now_iso)
    attachment: dict | None = None         # {"type": "image", "mime_type", "size", "preview"}
    search_data: dict | None = None        # {"status", "query", "results"}

    @property
    def image(self) -> bool:
        return bool(self.attachment) and self.attachment.get("type") == "image"

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "attachment": self.attachment,
            "search_data": self.search_data,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> Message:
        data = data or {}
        # Older rows used "sender" instead of "role".
        role = data.get("role") or data.get("sender") or "user"
        return cls(
            role="user" if role == "user" else "assistant",
            content=data.get("content") or "",
            timestamp=data.get("timestamp") or _now_iso(),
            attachment=data.get("attachment"),
            search_data=data.get("search_data") or data.get("searchData"),
        )


# ═══════════════════════════════════════════════════════════════════════════
#  STORE INTERFACE
# ═══════════════════════════════════════════════════════════════════════════

class ConversationStore(ABC):
    """Durable store the pipeline reads from and writes to."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def load_conversation(self, chat_id: str, owner: str) -> list[Message] | None:
        """Full message list, or None if the chat is missing or not *owner*'s."""
        ...

    @abstractmethod
    async def replace_conversation(self, chat_id: str, owner: str, messages: list[Message]) -> bool:
        """Overwrite the chat's messages with *messages*.  True on success."""
        ...

    @abstractmethod
    async def create_conversation(self, owner: str, title: str = "New Chat") -> str:
        """Create an empty chat owned by *owner*.  Returns its id."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
#  IN-MEMORY BACKEND
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryConversationStore(ConversationStore):
    """Dict-backed store.  Lists are deep-copied on the way in and out."""

    def __init__(self):
        self._chats: dict[str, dict] = {}

    @property
    def name(self) -> str:
        return "memory"

    async def create_conversation(self, owner: str, title: str = "New Chat") -> str:
        chat_id = str(uuid.uuid4())
        self._chats[chat_id] = {"owner": owner, "title": title, "messages": []}
        return chat_id

    async def load_conversation(self, chat_id: str, owner: str) -> list[Message] | None:
        chat = self._chats.get(str(chat_id))
        if chat is None or chat["owner"] != owner:
            return None
        return copy.deepcopy(chat["messages"])

    async def replace_conversation(self, chat_id: str, owner: str, messages: list[Message]) -> bool:
        chat = self._chats.get(str(chat_id))
        if chat is None or chat["owner"] != owner:
            return False
        chat["messages"] = copy.deepcopy(list(messages))
        return True


# ═══════════════════════════════════════════════════════════════════════════
#  POSTGRES BACKEND
# ═══════════════════════════════════════════════════════════════════════════

def _db_config() -> dict:
    """DATABASE_URL takes priority, falls back to POSTGRES_* settings."""
    from settings import settings

    if settings.DATABASE_URL:
        p = urlparse(settings.DATABASE_URL)
        return {
            "host": p.hostname or "localhost",
            "port": p.port or 5432,
            "database": (p.path or "/chatapp").lstrip("/"),
            "user": p.username or "root",
            "password": p.password or "password",
        }
    return {
        "host": settings.POSTGRES_HOST,
        "port": settings.POSTGRES_PORT,
        "database": settings.POSTGRES_DB,
        "user": settings.POSTGRES_USER,
        "password": settings.POSTGRES_PASSWORD,
    }


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS chats (
        id          TEXT PRIMARY KEY,
        user_id     TEXT NOT NULL,
        name        TEXT NOT NULL DEFAULT 'New Chat',
        created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id          SERIAL PRIMARY KEY,
        chat_id     TEXT NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
        position    INTEGER NOT NULL,
        role        TEXT NOT NULL,
        content     TEXT NOT NULL DEFAULT '',
        attachment  JSONB,
        search_data JSONB,
        timestamp   TEXT
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages (chat_id, position);",
)


class PostgresConversationStore(ConversationStore):
    """psycopg2-backed store with a SimpleConnectionPool."""

    def __init__(self, config: dict | None = None):
        from psycopg2 import pool
        from settings import settings

        self._config = config or _db_config()
        self._pool = pool.SimpleConnectionPool(
            minconn=settings.DB_POOL_MIN,
            maxconn=settings.DB_POOL_MAX,
            **self._config,
        )

    @property
    def name(self) -> str:
        return "postgres"

    @staticmethod
    def init_db(config: dict | None = None) -> bool:
        """Create tables.  Returns False when the database is unreachable."""
        import psycopg2

        conn = None
        try:
            conn = psycopg2.connect(**(config or _db_config()))
            conn.autocommit = True
            cur = conn.cursor()
            for stmt in _SCHEMA:
                cur.execute(stmt)
            cur.close()
            return True
        except Exception as e:
            logger.warning(f"PostgreSQL not available: {e}")
            return False
        finally:
            if conn is not None:
                conn.close()

    def close(self) -> None:
        self._pool.closeall()

    def _put(self, conn) -> None:
        """Return a connection, rolling back any dirty transaction first."""
        try:
            if conn.status != 1:  # 1 = STATUS_READY
                conn.rollback()
        except Exception:
            logger.debug("Rollback on recycled connection failed", exc_info=True)
        self._pool.putconn(conn)

    # ── sync implementations (run in a worker thread) ─────────────────────

    def _create(self, owner: str, title: str) -> str:
        chat_id = str(uuid.uuid4())
        conn = self._pool.getconn()
        try:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO chats (id, user_id, name) VALUES (%s, %s, %s);",
                (chat_id, owner, title),
            )
            conn.commit()
            cur.close()
            return chat_id
        finally:
            self._put(conn)

    def _load(self, chat_id: str, owner: str) -> list[Message] | None:
        conn = self._pool.getconn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT 1 FROM chats WHERE id = %s AND user_id = %s;", (chat_id, owner))
            if cur.fetchone() is None:
                cur.close()
                return None
            cur.execute("""
                SELECT role, content, timestamp, attachment, search_data
                FROM messages WHERE chat_id = %s ORDER BY position ASC;
            """, (chat_id,))
            rows = cur.fetchall()
            cur.close()
            return [
                Message(role=r[0], content=r[1], timestamp=r[2] or _now_iso(),
                        attachment=r[3], search_data=r[4])
                for r in rows
            ]
        finally:
            self._put(conn)

    def _replace(self, chat_id: str, owner: str, messages: list[Message]) -> bool:
        from psycopg2.extras import Json

        conn = self._pool.getconn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT 1 FROM chats WHERE id = %s AND user_id = %s FOR UPDATE;",
                (chat_id, owner),
            )
            if cur.fetchone() is None:
                conn.rollback()
                cur.close()
                return False
            cur.execute("DELETE FROM messages WHERE chat_id = %s;", (chat_id,))
            cur.executemany("""
                INSERT INTO messages (chat_id, position, role, content, attachment, search_data, timestamp)
                VALUES (%s, %s, %s, %s, %s, %s, %s);
            """, [
                (chat_id, i, m.role, m.content,
                 Json(m.attachment) if m.attachment is not None else None,
                 Json(m.search_data) if m.search_data is not None else None,
                 m.timestamp)
                for i, m in enumerate(messages)
            ])
            cur.execute("UPDATE chats SET updated_at = CURRENT_TIMESTAMP WHERE id = %s;", (chat_id,))
            conn.commit()
            cur.close()
            return True
        except Exception as e:
            logger.error(f"Error replacing conversation {chat_id}: {e}")
            return False
        finally:
            self._put(conn)

    # ── async interface ───────────────────────────────────────────────────

    async def create_conversation(self, owner: str, title: str = "New Chat") -> str:
        return await asyncio.to_thread(self._create, owner, title)

    async def load_conversation(self, chat_id: str, owner: str) -> list[Message] | None:
        return await asyncio.to_thread(self._load, str(chat_id), owner)

    async def replace_conversation(self, chat_id: str, owner: str, messages: list[Message]) -> bool:
        return await asyncio.to_thread(self._replace, str(chat_id), owner, list(messages))


def open_store() -> ConversationStore:
    """Postgres when reachable (and not disabled), in-memory otherwise."""
    from settings import settings

    if not settings.USE_MEMORY_STORE and PostgresConversationStore.init_db():
        logger.info("PostgreSQL connected, conversations are persistent")
        return PostgresConversationStore()
    logger.warning("Conversation store: in-memory fallback (non-persistent)")
    return InMemoryConversationStore()
