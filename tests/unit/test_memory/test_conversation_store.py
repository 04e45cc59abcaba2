"""Unit tests for homecommand.memory.store."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from pathlib import Path

import pytest
from conftest import TEST_MASTER_KEY_HEX

from homecommand.memory.crypto import ConversationCrypto
from homecommand.memory.store import (
    ConversationNotFoundError,
    ConversationStore,
    SQLiteConversationRepository,
)


@pytest.fixture
def repository() -> Iterator[SQLiteConversationRepository]:
    repo = SQLiteConversationRepository(":memory:")
    yield repo
    repo.close()


@pytest.fixture
def store(repository: SQLiteConversationRepository) -> ConversationStore:
    return ConversationStore(repository, ConversationCrypto.from_hex(TEST_MASTER_KEY_HEX))


# ---------------------------------------------------------------------------
# Create / get / list
# ---------------------------------------------------------------------------


class TestCreateAndRead:
    def test_create_without_title(self, store: ConversationStore) -> None:
        conversation = store.create("alice")
        assert conversation.owner_sub == "alice"
        assert conversation.title is None
        assert conversation.created_at == conversation.updated_at

    def test_create_with_title_and_id(self, store: ConversationStore) -> None:
        conversation = store.create("alice", title="Garage", conversation_id="conv-1")
        assert conversation.id == "conv-1"
        assert store.get("conv-1", "alice").title == "Garage"

    def test_create_with_taken_id_raises(self, store: ConversationStore) -> None:
        store.create("alice", conversation_id="conv-1")
        with pytest.raises(ConversationNotFoundError):
            store.create("bob", conversation_id="conv-1")

    def test_get_unknown_raises(self, store: ConversationStore) -> None:
        with pytest.raises(ConversationNotFoundError) as info:
            store.get("missing", "alice")
        assert info.value.conversation_id == "missing"

    def test_list_is_owner_scoped(self, store: ConversationStore) -> None:
        store.create("alice", title="Mine")
        store.create("bob", title="Theirs")
        assert [c.title for c in store.list("alice")] == ["Mine"]
        assert [c.title for c in store.list("bob")] == ["Theirs"]

    def test_list_most_recent_first_with_counts(self, store: ConversationStore) -> None:
        first = store.create("alice", title="first")
        second = store.create("alice", title="second")
        assert [c.id for c in store.list("alice")] == [second.id, first.id]

        store.append_turn(first.id, "alice", "Lock the car", "Done, car locked.")

        summaries = store.list("alice")
        assert [c.id for c in summaries] == [first.id, second.id]
        assert [c.message_count for c in summaries] == [2, 0]

    def test_ensure_creates_on_first_use(self, store: ConversationStore) -> None:
        created = store.ensure("conv-new", "alice")
        again = store.ensure("conv-new", "alice")
        assert created.id == again.id == "conv-new"
        assert len(store.list("alice")) == 1

    def test_ensure_does_not_hand_out_another_owners_id(self, store: ConversationStore) -> None:
        store.create("alice", conversation_id="conv-1")
        with pytest.raises(ConversationNotFoundError):
            store.ensure("conv-1", "bob")

    def test_exists_ignores_owner(self, store: ConversationStore) -> None:
        assert not store.exists("conv-1")
        store.create("alice", conversation_id="conv-1")
        assert store.exists("conv-1")


# ---------------------------------------------------------------------------
# Turns and titles
# ---------------------------------------------------------------------------


class TestTurns:
    def test_history_is_chronological(self, store: ConversationStore) -> None:
        conversation = store.create("alice")
        store.append_turn(conversation.id, "alice", "Turn on the lights", "Lights on.")
        store.append_turn(conversation.id, "alice", "Lock the car", "Locked.", is_voice=True)

        history = store.history(conversation.id, "alice")

        assert [(m.role, m.content) for m in history] == [
            ("user", "Turn on the lights"),
            ("assistant", "Lights on."),
            ("user", "Lock the car"),
            ("assistant", "Locked."),
        ]
        assert [m.is_voice for m in history] == [False, False, True, True]
        assert history[0].as_chat_message() == {"role": "user", "content": "Turn on the lights"}

    def test_first_turn_sets_title(self, store: ConversationStore) -> None:
        conversation = store.create("alice")
        store.append_turn(conversation.id, "alice", "Turn on the lights please", "Done.")
        assert store.get(conversation.id, "alice").title == "Turn on the lights please"

        store.append_turn(conversation.id, "alice", "Now lock the car", "Done.")
        assert store.get(conversation.id, "alice").title == "Turn on the lights please"

    def test_auto_title_is_truncated(self, store: ConversationStore) -> None:
        conversation = store.create("alice")
        long_text = "x" * 80
        store.append_turn(conversation.id, "alice", long_text, "ok")
        assert store.get(conversation.id, "alice").title == "x" * 50

    def test_existing_title_is_kept(self, store: ConversationStore) -> None:
        conversation = store.create("alice", title="Car stuff")
        store.append_turn(conversation.id, "alice", "Lock the car", "Locked.")
        assert store.get(conversation.id, "alice").title == "Car stuff"

    def test_blank_first_turn_leaves_title_unset(self, store: ConversationStore) -> None:
        conversation = store.create("alice")
        store.append_turn(conversation.id, "alice", "", "Sorry, I did not catch that.")
        store.append_turn(conversation.id, "alice", "   ", "Still nothing.")
        assert store.get(conversation.id, "alice").title is None

        store.append_turn(conversation.id, "alice", "Lock the car", "Locked.")
        assert store.get(conversation.id, "alice").title == "Lock the car"

    def test_append_to_other_owner_raises(self, store: ConversationStore) -> None:
        conversation = store.create("alice")
        with pytest.raises(ConversationNotFoundError):
            store.append_turn(conversation.id, "bob", "hi", "hello")

    def test_detail_includes_messages(self, store: ConversationStore) -> None:
        conversation = store.create("alice")
        store.append_turn(conversation.id, "alice", "Status?", "All good.")
        detail = store.get(conversation.id, "alice")
        assert [m.content for m in detail.messages] == ["Status?", "All good."]


# ---------------------------------------------------------------------------
# Rename / delete
# ---------------------------------------------------------------------------


class TestRenameAndDelete:
    def test_rename(self, store: ConversationStore) -> None:
        conversation = store.create("alice", title="old")
        renamed = store.rename(conversation.id, "alice", "new")
        assert renamed.title == "new"
        assert renamed.updated_at >= conversation.updated_at

    def test_rename_other_owner_raises(self, store: ConversationStore) -> None:
        conversation = store.create("alice")
        with pytest.raises(ConversationNotFoundError):
            store.rename(conversation.id, "bob", "mine now")

    def test_delete_removes_messages(
        self, store: ConversationStore, repository: SQLiteConversationRepository
    ) -> None:
        conversation = store.create("alice")
        store.append_turn(conversation.id, "alice", "hi", "hello")

        store.delete(conversation.id, "alice")

        assert store.list("alice") == []
        assert repository.list_messages(conversation.id) == []
        with pytest.raises(ConversationNotFoundError):
            store.get(conversation.id, "alice")

    def test_delete_other_owner_raises(self, store: ConversationStore) -> None:
        conversation = store.create("alice")
        with pytest.raises(ConversationNotFoundError):
            store.delete(conversation.id, "bob")
        assert len(store.list("alice")) == 1


# ---------------------------------------------------------------------------
# At rest
# ---------------------------------------------------------------------------


def test_plaintext_never_reaches_the_database(tmp_path: Path) -> None:
    db_path = tmp_path / "conversations.db"
    repo = SQLiteConversationRepository(str(db_path))
    store = ConversationStore(repo, ConversationCrypto.from_hex(TEST_MASTER_KEY_HEX))
    conversation = store.create("alice", title="Garage door")
    store.append_turn(conversation.id, "alice", "Open the garage", "Garage opening.")
    repo.close()

    conn = sqlite3.connect(db_path)
    try:
        titles = [row[0] for row in conn.execute("SELECT title FROM conversations")]
        contents = [row[0] for row in conn.execute("SELECT content FROM conversation_messages")]
    finally:
        conn.close()

    assert "Garage door" not in titles
    assert all(value.count(":") == 2 for value in titles + contents)
    assert not any("garage" in value.lower() for value in contents)


def test_data_survives_reopen(tmp_path: Path) -> None:
    db_path = str(tmp_path / "conversations.db")
    crypto = ConversationCrypto.from_hex(TEST_MASTER_KEY_HEX)

    repo = SQLiteConversationRepository(db_path)
    conversation = ConversationStore(repo, crypto).create("alice", title="Persisted")
    repo.close()

    reopened = SQLiteConversationRepository(db_path)
    try:
        assert ConversationStore(reopened, crypto).get(conversation.id, "alice").title == "Persisted"
    finally:
        reopened.close()
