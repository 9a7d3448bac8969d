"""
Persistence — rooms, the append-only chat log, user quota, and staged drafts.

ChatStore is the contract the engine talks to. SqliteChatStore backs it with
a single SQLite file; every connection uses WAL mode and a 5-second busy
timeout so concurrent dispatch branches can append without SQLITE_BUSY.
Each operation touches one row and commits on its own.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from models import ChatKind, ChatRecord, ConversationRoom, Draft, UserInfo, now_ms

logger = logging.getLogger(__name__)

DB_PATH = Path(__file__).parent / "roundtable.db"


class StoreError(Exception):
    """A write or read against the store failed."""


class ChatStore(ABC):
    """Storage contract consumed by the engine."""

    # ── Chats ──

    @abstractmethod
    async def add_chat(self, record: ChatRecord) -> str:
        """Append a record, returning its chat_id."""
        ...

    @abstractmethod
    async def update_chat(self, chat_id: str, **fields) -> None:
        ...

    @abstractmethod
    async def get_chat(self, chat_id: str) -> Optional[ChatRecord]:
        ...

    @abstractmethod
    async def latest_chats(self, room_id: str, limit: int) -> list[ChatRecord]:
        """Newest-first records, stopping before the most recent clear record."""
        ...

    # ── Rooms ──

    @abstractmethod
    async def get_room(self, room_id: str) -> Optional[ConversationRoom]:
        ...

    @abstractmethod
    async def save_room(self, room: ConversationRoom) -> None:
        ...

    # ── Users ──

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserInfo]:
        ...

    @abstractmethod
    async def save_user(self, user: UserInfo) -> None:
        ...

    @abstractmethod
    async def add_quota(self, user_id: str, amount: int = 1) -> int:
        """Increment used_times and return the new count."""
        ...

    # ── Drafts ──

    @abstractmethod
    async def add_draft(self, draft: Draft) -> str:
        ...

    @abstractmethod
    async def list_drafts(self, user_id: str, kind: Optional[str] = None,
                          status: Optional[str] = None,
                          since: Optional[int] = None,
                          until: Optional[int] = None,
                          limit: int = 10) -> list[Draft]:
        ...


class SqliteChatStore(ChatStore):
    """ChatStore over a local SQLite database."""

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = Path(db_path)
        self._wal_initialized = False
        self.init_db()

    def _configure_connection(self, conn: sqlite3.Connection):
        conn.execute("PRAGMA busy_timeout = 5000")
        if not self._wal_initialized:
            conn.execute("PRAGMA journal_mode = WAL")
            self._wal_initialized = True

    @contextmanager
    def connection(self):
        """Context manager for SQLite connections, Row factory enabled."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        self._configure_connection(conn)
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self):
        with self.connection() as conn:
            c = conn.cursor()
            c.execute('''CREATE TABLE IF NOT EXISTS chats (
                chat_id TEXT PRIMARY KEY,
                room_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                sort_stamp INTEGER NOT NULL,
                data TEXT NOT NULL
            )''')
            c.execute('CREATE INDEX IF NOT EXISTS idx_chats_room ON chats(room_id, sort_stamp)')
            c.execute('''CREATE TABLE IF NOT EXISTS rooms (
                room_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                data TEXT NOT NULL
            )''')
            c.execute('''CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )''')
            c.execute('''CREATE TABLE IF NOT EXISTS drafts (
                draft_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                when_stamp INTEGER,
                created_at INTEGER NOT NULL,
                data TEXT NOT NULL
            )''')
            c.execute('CREATE INDEX IF NOT EXISTS idx_drafts_user ON drafts(user_id, kind, status)')
            conn.commit()

    # ── Chats ──

    async def add_chat(self, record: ChatRecord) -> str:
        try:
            with self.connection() as conn:
                conn.execute(
                    "INSERT INTO chats (chat_id, room_id, kind, sort_stamp, data) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (record.chat_id, record.room_id, record.kind.value,
                     record.sort_stamp, record.model_dump_json()),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"add_chat failed: {e}") from e
        return record.chat_id

    async def update_chat(self, chat_id: str, **fields) -> None:
        record = await self.get_chat(chat_id)
        if record is None:
            raise StoreError(f"chat {chat_id} not found")
        updated = ChatRecord.model_validate({**record.model_dump(), **fields})
        try:
            with self.connection() as conn:
                conn.execute(
                    "UPDATE chats SET sort_stamp = ?, data = ? WHERE chat_id = ?",
                    (updated.sort_stamp, updated.model_dump_json(), chat_id),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"update_chat failed: {e}") from e

    async def get_chat(self, chat_id: str) -> Optional[ChatRecord]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT data FROM chats WHERE chat_id = ?", (chat_id,)
            ).fetchone()
        if not row:
            return None
        return ChatRecord.model_validate_json(row["data"])

    async def latest_chats(self, room_id: str, limit: int) -> list[ChatRecord]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT data FROM chats WHERE room_id = ? "
                "ORDER BY sort_stamp DESC, rowid DESC LIMIT ?",
                (room_id, limit),
            ).fetchall()
        records = []
        for row in rows:
            record = ChatRecord.model_validate_json(row["data"])
            if record.kind == ChatKind.CLEAR:
                break
            records.append(record)
        return records

    # ── Rooms ──

    async def get_room(self, room_id: str) -> Optional[ConversationRoom]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT data FROM rooms WHERE room_id = ?", (room_id,)
            ).fetchone()
        if not row:
            return None
        return ConversationRoom.model_validate_json(row["data"])

    async def save_room(self, room: ConversationRoom) -> None:
        room.updated_at = now_ms()
        try:
            with self.connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO rooms (room_id, owner_id, data) VALUES (?, ?, ?)",
                    (room.room_id, room.owner_id, room.model_dump_json()),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"save_room failed: {e}") from e

    # ── Users ──

    async def get_user(self, user_id: str) -> Optional[UserInfo]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT data FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
        if not row:
            return None
        return UserInfo.model_validate_json(row["data"])

    async def save_user(self, user: UserInfo) -> None:
        try:
            with self.connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO users (user_id, data) VALUES (?, ?)",
                    (user.user_id, user.model_dump_json()),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"save_user failed: {e}") from e

    async def add_quota(self, user_id: str, amount: int = 1) -> int:
        user = await self.get_user(user_id) or UserInfo(user_id=user_id)
        user.used_times += amount
        await self.save_user(user)
        return user.used_times

    # ── Drafts ──

    async def add_draft(self, draft: Draft) -> str:
        try:
            with self.connection() as conn:
                conn.execute(
                    "INSERT INTO drafts (draft_id, user_id, kind, status, when_stamp, created_at, data) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (draft.draft_id, draft.user_id, draft.kind.value, draft.status,
                     draft.when_stamp, draft.created_at, draft.model_dump_json()),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"add_draft failed: {e}") from e
        return draft.draft_id

    async def list_drafts(self, user_id: str, kind: Optional[str] = None,
                          status: Optional[str] = None,
                          since: Optional[int] = None,
                          until: Optional[int] = None,
                          limit: int = 10) -> list[Draft]:
        sql = "SELECT data FROM drafts WHERE user_id = ?"
        params: list = [user_id]
        if kind:
            sql += " AND kind = ?"
            params.append(kind)
        if status:
            sql += " AND status = ?"
            params.append(status)
        if since is not None:
            sql += " AND when_stamp >= ?"
            params.append(since)
        if until is not None:
            sql += " AND when_stamp <= ?"
            params.append(until)
        if since is not None or until is not None:
            sql += " ORDER BY when_stamp ASC"
        else:
            sql += " ORDER BY created_at DESC"
        sql += " LIMIT ?"
        params.append(limit)
        with self.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Draft.model_validate_json(r["data"]) for r in rows]
