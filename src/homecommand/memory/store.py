"""
Encrypted conversation storage scoped to the owning identity subject.

``ConversationStore`` is the only place that sees both plaintext and the
persisted envelopes: titles and message bodies are sealed with
``ConversationCrypto`` before they reach the repository and opened again on
the way out.

The persistence collaborator is any ``ConversationRepository``;
``SQLiteConversationRepository`` implements it on the standard ``sqlite3``
module with the schema::

    conversations(id, owner_sub, title, created_at, updated_at)
    conversation_messages(id, conversation_id, role, content, is_voice, created_at)

Known gap: ``append_turn`` reads the title and writes it in separate steps,
so two concurrent first turns on one conversation race on the auto-title
(last writer wins).
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from homecommand.memory.crypto import ConversationCrypto

logger = logging.getLogger(__name__)

TITLE_LENGTH = 50


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationNotFoundError(LookupError):
    """The conversation does not exist or belongs to another subject."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation {conversation_id!r} not found")
        self.conversation_id = conversation_id


# ---------------------------------------------------------------------------
# Plaintext domain types
# ---------------------------------------------------------------------------


@dataclass
class ConversationMessage:
    role: str
    content: str
    is_voice: bool = False
    created_at: datetime | None = None

    def as_chat_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class Conversation:
    id: str
    owner_sub: str
    title: str | None
    created_at: datetime
    updated_at: datetime


@dataclass
class ConversationSummary(Conversation):
    message_count: int = 0


@dataclass
class ConversationDetail(Conversation):
    messages: list[ConversationMessage] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Persistence collaborator
# ---------------------------------------------------------------------------


@dataclass
class ConversationRecord:
    """A stored conversation row; ``title`` is an envelope or ``None``."""

    id: str
    owner_sub: str
    title: str | None
    created_at: datetime
    updated_at: datetime
    message_count: int = 0


@dataclass
class MessageRecord:
    """A stored message row; ``content`` is an envelope."""

    id: str
    conversation_id: str
    role: str
    content: str
    is_voice: bool
    created_at: datetime


class ConversationRepository(Protocol):
    """Row-level storage for conversations. Never sees plaintext."""

    def insert_conversation(self, record: ConversationRecord) -> None: ...

    def get_conversation(self, conversation_id: str, owner_sub: str) -> ConversationRecord | None: ...

    def conversation_exists(self, conversation_id: str) -> bool: ...

    def list_conversations(self, owner_sub: str) -> list[ConversationRecord]: ...

    def update_title(
        self, conversation_id: str, owner_sub: str, title: str, updated_at: datetime
    ) -> bool: ...

    def delete_conversation(self, conversation_id: str, owner_sub: str) -> bool: ...

    def add_turn(
        self,
        conversation_id: str,
        messages: list[MessageRecord],
        updated_at: datetime,
        title: str | None = None,
    ) -> None: ...

    def list_messages(self, conversation_id: str) -> list[MessageRecord]: ...


_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    owner_sub TEXT NOT NULL,
    title TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_conversations_owner
    ON conversations (owner_sub, updated_at DESC);

CREATE TABLE IF NOT EXISTS conversation_messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    is_voice INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON conversation_messages (conversation_id, created_at);
"""


def _conversation_from_row(row: sqlite3.Row) -> ConversationRecord:
    return ConversationRecord(
        id=row["id"],
        owner_sub=row["owner_sub"],
        title=row["title"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        message_count=row["message_count"] if "message_count" in row.keys() else 0,
    )


class SQLiteConversationRepository:
    """``ConversationRepository`` on a single ``sqlite3`` connection.

    Args:
        db_path: Database file path, or ``":memory:"``.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON;")
        with self._conn:
            self._conn.executescript(_SCHEMA)
        logger.info("Conversation database ready at %s", db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def insert_conversation(self, record: ConversationRecord) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO conversations (id, owner_sub, title, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.owner_sub,
                    record.title,
                    record.created_at.isoformat(),
                    record.updated_at.isoformat(),
                ),
            )

    def get_conversation(self, conversation_id: str, owner_sub: str) -> ConversationRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM conversations WHERE id = ? AND owner_sub = ?",
                (conversation_id, owner_sub),
            ).fetchone()
        return _conversation_from_row(row) if row is not None else None

    def conversation_exists(self, conversation_id: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return row is not None

    def list_conversations(self, owner_sub: str) -> list[ConversationRecord]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT c.*, (
                    SELECT COUNT(*) FROM conversation_messages m
                    WHERE m.conversation_id = c.id
                ) AS message_count
                FROM conversations c
                WHERE c.owner_sub = ?
                ORDER BY c.updated_at DESC, c.rowid DESC
                """,
                (owner_sub,),
            ).fetchall()
        return [_conversation_from_row(row) for row in rows]

    def update_title(
        self, conversation_id: str, owner_sub: str, title: str, updated_at: datetime
    ) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute(
                "UPDATE conversations SET title = ?, updated_at = ? "
                "WHERE id = ? AND owner_sub = ?",
                (title, updated_at.isoformat(), conversation_id, owner_sub),
            )
        return cur.rowcount > 0

    def delete_conversation(self, conversation_id: str, owner_sub: str) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute(
                "DELETE FROM conversations WHERE id = ? AND owner_sub = ?",
                (conversation_id, owner_sub),
            )
        return cur.rowcount > 0

    def add_turn(
        self,
        conversation_id: str,
        messages: list[MessageRecord],
        updated_at: datetime,
        title: str | None = None,
    ) -> None:
        with self._lock, self._conn:
            self._conn.executemany(
                "INSERT INTO conversation_messages "
                "(id, conversation_id, role, content, is_voice, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (
                        m.id,
                        m.conversation_id,
                        m.role,
                        m.content,
                        int(m.is_voice),
                        m.created_at.isoformat(),
                    )
                    for m in messages
                ],
            )
            if title is not None:
                self._conn.execute(
                    "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
                    (title, updated_at.isoformat(), conversation_id),
                )
            else:
                self._conn.execute(
                    "UPDATE conversations SET updated_at = ? WHERE id = ?",
                    (updated_at.isoformat(), conversation_id),
                )

    def list_messages(self, conversation_id: str) -> list[MessageRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM conversation_messages WHERE conversation_id = ? "
                "ORDER BY created_at, rowid",
                (conversation_id,),
            ).fetchall()
        return [
            MessageRecord(
                id=row["id"],
                conversation_id=row["conversation_id"],
                role=row["role"],
                content=row["content"],
                is_voice=bool(row["is_voice"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ConversationStore:
    """Owner-scoped CRUD over encrypted conversations.

    Attributes:
        repository: Row storage.
        crypto: Envelope encryption keyed per owner.
    """

    def __init__(self, repository: ConversationRepository, crypto: ConversationCrypto) -> None:
        self.repository = repository
        self.crypto = crypto

    def _open_title(self, record: ConversationRecord) -> str | None:
        if record.title is None:
            return None
        return self.crypto.decrypt(record.title, record.owner_sub)

    def _require(self, conversation_id: str, owner_sub: str) -> ConversationRecord:
        record = self.repository.get_conversation(conversation_id, owner_sub)
        if record is None:
            raise ConversationNotFoundError(conversation_id)
        return record

    def _to_conversation(self, record: ConversationRecord) -> Conversation:
        return Conversation(
            id=record.id,
            owner_sub=record.owner_sub,
            title=self._open_title(record),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def create(
        self,
        owner_sub: str,
        title: str | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        """Create a conversation for *owner_sub*.

        Raises:
            ConversationNotFoundError: If *conversation_id* is already taken
                by another owner.
        """
        conversation_id = conversation_id or str(uuid.uuid4())
        if self.repository.conversation_exists(conversation_id):
            raise ConversationNotFoundError(conversation_id)
        now = utc_now()
        record = ConversationRecord(
            id=conversation_id,
            owner_sub=owner_sub,
            title=self.crypto.encrypt(title, owner_sub) if title else None,
            created_at=now,
            updated_at=now,
        )
        self.repository.insert_conversation(record)
        logger.info("Created conversation %s", conversation_id)
        return self._to_conversation(record)

    def exists(self, conversation_id: str) -> bool:
        """Whether any subject owns *conversation_id*."""
        return self.repository.conversation_exists(conversation_id)

    def ensure(self, conversation_id: str, owner_sub: str) -> Conversation:
        """Return the owner's conversation, creating it on first use of the id."""
        record = self.repository.get_conversation(conversation_id, owner_sub)
        if record is not None:
            return self._to_conversation(record)
        return self.create(owner_sub, conversation_id=conversation_id)

    def list(self, owner_sub: str) -> list[ConversationSummary]:
        """Return the owner's conversations, most recently updated first."""
        return [
            ConversationSummary(
                id=record.id,
                owner_sub=record.owner_sub,
                title=self._open_title(record),
                created_at=record.created_at,
                updated_at=record.updated_at,
                message_count=record.message_count,
            )
            for record in self.repository.list_conversations(owner_sub)
        ]

    def get(self, conversation_id: str, owner_sub: str) -> ConversationDetail:
        """Return the conversation with its decrypted messages."""
        record = self._require(conversation_id, owner_sub)
        return ConversationDetail(
            id=record.id,
            owner_sub=record.owner_sub,
            title=self._open_title(record),
            created_at=record.created_at,
            updated_at=record.updated_at,
            messages=self.history(conversation_id, owner_sub),
        )

    def history(self, conversation_id: str, owner_sub: str) -> list[ConversationMessage]:
        """Return the decrypted messages of a conversation, oldest first."""
        self._require(conversation_id, owner_sub)
        return [
            ConversationMessage(
                role=m.role,
                content=self.crypto.decrypt(m.content, owner_sub),
                is_voice=m.is_voice,
                created_at=m.created_at,
            )
            for m in self.repository.list_messages(conversation_id)
        ]

    def rename(self, conversation_id: str, owner_sub: str, title: str) -> Conversation:
        envelope = self.crypto.encrypt(title, owner_sub)
        if not self.repository.update_title(conversation_id, owner_sub, envelope, utc_now()):
            raise ConversationNotFoundError(conversation_id)
        return self._to_conversation(self._require(conversation_id, owner_sub))

    def delete(self, conversation_id: str, owner_sub: str) -> None:
        if not self.repository.delete_conversation(conversation_id, owner_sub):
            raise ConversationNotFoundError(conversation_id)
        logger.info("Deleted conversation %s", conversation_id)

    def append_turn(
        self,
        conversation_id: str,
        owner_sub: str,
        user_text: str,
        assistant_text: str,
        is_voice: bool = False,
    ) -> None:
        """Store one user/assistant exchange.

        Sets the title from the first 50 characters of *user_text* only
        when the conversation has none yet and *user_text* is not blank.
        """
        record = self._require(conversation_id, owner_sub)
        now = utc_now()
        messages = [
            MessageRecord(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                role=role,
                content=self.crypto.encrypt(text, owner_sub),
                is_voice=is_voice,
                created_at=now,
            )
            for role, text in (("user", user_text), ("assistant", assistant_text))
        ]
        title = None
        if record.title is None and user_text.strip():
            title = self.crypto.encrypt(user_text[:TITLE_LENGTH], owner_sub)
        self.repository.add_turn(conversation_id, messages, updated_at=now, title=title)
        logger.debug("Appended turn to conversation %s", conversation_id)
