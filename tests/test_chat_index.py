"""
Tests for the chat index projector
"""

import logging
import warnings

import pytest

from infrastructure.storage import InMemoryDocumentStore
from services.chat_service.chat_index import (
    CLIENT_INDEX_VIEW,
    CONVERSATION_VIEW,
    THERAPIST_INDEX_VIEW,
    ChatIndexProjector,
)
from services.chat_service.errors import InconsistencyWarning, NotFoundError
from services.chat_service.models import Message, Participants, Sender
from services.chat_service.paths import StorePaths


CONVERSATION = "5550001_t1"


def make_message(message_id, sender, timestamp, text=None, **flags):
    read_by_user = flags.get("read_by_user", sender == "user")
    read_by_therapist = flags.get("read_by_therapist", sender == "therapist")
    return Message(
        id=message_id,
        text=text or f"message {message_id}",
        sender=sender,
        timestamp=timestamp,
        read_by_user=read_by_user,
        read_by_therapist=read_by_therapist
    )


class TestChatIndexProjector:
    """Test projection of messages onto the three views"""

    def setup_method(self):
        self.store = InMemoryDocumentStore()
        self.paths = StorePaths("App")
        self.projector = ChatIndexProjector(self.store, self.paths)
        self.participants = Participants(
            client_id="5550001", therapist_id="t1", client_name="Sam", therapist_name="Dr. Ada"
        )

    def test_project_user_message(self):
        self.projector.project(CONVERSATION, make_message("m1", "user", 100, "I feel anxious today"), self.participants)

        record = self.projector.get_conversation(CONVERSATION)
        assert record.participants.user_id == "5550001"
        assert record.participants.therapist_id == "t1"
        assert record.last_message == "I feel anxious today"
        assert record.last_message_time == 100
        assert record.last_message_sender is Sender.USER

        client_entry = self.projector.get_client_chat("5550001", CONVERSATION)
        assert client_entry.therapist_id == "t1"
        assert client_entry.therapist_name == "Dr. Ada"
        assert client_entry.unread is False

        therapist_entry = self.projector.get_therapist_chat("t1", CONVERSATION)
        assert therapist_entry.user_id == "5550001"
        assert therapist_entry.user_name == "Sam"
        assert therapist_entry.unread is True

    def test_project_therapist_message(self):
        self.projector.project(CONVERSATION, make_message("m1", "therapist", 100), self.participants)

        assert self.projector.get_client_chat("5550001", CONVERSATION).unread is True
        assert self.projector.get_therapist_chat("t1", CONVERSATION).unread is False

    def test_project_message_read_by_both(self):
        welcome = make_message("m1", "therapist", 100, read_by_user=True, read_by_therapist=True)
        self.projector.project(CONVERSATION, welcome, self.participants)

        assert self.projector.get_client_chat("5550001", CONVERSATION).unread is False
        assert self.projector.get_therapist_chat("t1", CONVERSATION).unread is False

    def test_older_message_does_not_regress_views(self):
        self.projector.project(CONVERSATION, make_message("m2", "therapist", 200, "newer"), self.participants)
        self.projector.project(CONVERSATION, make_message("m1", "user", 100, "older"), self.participants)

        assert self.projector.get_conversation(CONVERSATION).last_message == "newer"
        therapist_entry = self.projector.get_therapist_chat("t1", CONVERSATION)
        assert therapist_entry.last_message == "newer"
        assert therapist_entry.last_message_time == 200
        assert therapist_entry.unread is True

    def test_projection_preserves_notes(self):
        self.projector.project(CONVERSATION, make_message("m1", "user", 100), self.participants)
        self.projector.save_notes("t1", CONVERSATION, "Prefers evening sessions")
        self.projector.project(CONVERSATION, make_message("m2", "user", 200), self.participants)

        assert self.projector.get_notes("t1", CONVERSATION) == "Prefers evening sessions"

    def test_save_notes_requires_entry(self):
        with pytest.raises(NotFoundError):
            self.projector.save_notes("t1", CONVERSATION, "notes")

    def test_empty_notes_remove_field(self):
        self.projector.project(CONVERSATION, make_message("m1", "user", 100), self.participants)
        self.projector.save_notes("t1", CONVERSATION, "temporary")
        self.projector.save_notes("t1", CONVERSATION, "")

        assert self.projector.get_notes("t1", CONVERSATION) == ""
        assert "notes" not in self.store.read(self.paths.therapist_chat("t1", CONVERSATION))

    def test_clear_unread_for_reader(self):
        self.projector.project(CONVERSATION, make_message("m1", "user", 100), self.participants)

        assert self.projector.clear_unread(CONVERSATION, self.participants, Sender.THERAPIST) is True
        assert self.projector.get_therapist_chat("t1", CONVERSATION).unread is False

    def test_clear_unread_missing_entry_writes_nothing(self):
        assert self.projector.clear_unread(CONVERSATION, self.participants, Sender.USER) is False
        assert self.store.read(self.paths.client_chat("5550001", CONVERSATION)) is None

    def test_rebuild_uses_latest_message_and_read_flags(self):
        messages = [
            make_message("m1", "user", 100),
            make_message("m3", "therapist", 300, "latest"),
            make_message("m2", "user", 200, read_by_therapist=True),
        ]

        assert self.projector.rebuild(CONVERSATION, messages, self.participants) is True

        for entry in (
            self.projector.get_conversation(CONVERSATION),
            self.projector.get_client_chat("5550001", CONVERSATION),
            self.projector.get_therapist_chat("t1", CONVERSATION),
        ):
            assert entry.last_message == "latest"
            assert entry.last_message_time == max(m.timestamp for m in messages)

        assert self.projector.get_client_chat("5550001", CONVERSATION).unread is True
        assert self.projector.get_therapist_chat("t1", CONVERSATION).unread is True

    def test_rebuild_breaks_timestamp_ties_by_id(self):
        messages = [make_message("mB", "user", 100, "second"), make_message("mA", "user", 100, "first")]
        self.projector.rebuild(CONVERSATION, messages, self.participants)

        assert self.projector.get_conversation(CONVERSATION).last_message == "second"

    def test_rebuild_empty_log(self):
        assert self.projector.rebuild(CONVERSATION, [], self.participants) is False
        assert self.store.snapshot() == {}

    def test_find_stale_views(self, caplog):
        self.projector.project(CONVERSATION, make_message("m1", "user", 100), self.participants)
        self.store.update(self.paths.therapist_chat("t1", CONVERSATION), {"lastMessageTime": 50})
        self.store.write(self.paths.client_chat("5550001", CONVERSATION), None)
        messages = [make_message("m1", "user", 100)]

        with caplog.at_level(logging.WARNING, logger="services.chat_service.chat_index"):
            stale = self.projector.find_stale_views(CONVERSATION, messages, self.participants)

        assert set(stale) == {CLIENT_INDEX_VIEW, THERAPIST_INDEX_VIEW}
        assert CONVERSATION_VIEW not in stale
        assert {record.view for record in caplog.records} == set(stale)
        assert all(record.warning_type == InconsistencyWarning.__name__ for record in caplog.records)

    def test_find_stale_views_never_raises_warnings(self):
        self.projector.project(CONVERSATION, make_message("m1", "user", 100), self.participants)
        self.store.update(self.paths.therapist_chat("t1", CONVERSATION), {"lastMessageTime": 50})

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            stale = self.projector.find_stale_views(
                CONVERSATION, [make_message("m1", "user", 100)], self.participants
            )

        assert stale == [THERAPIST_INDEX_VIEW]

    def test_find_stale_views_consistent(self):
        message = make_message("m1", "user", 100)
        self.projector.project(CONVERSATION, message, self.participants)

        assert self.projector.find_stale_views(CONVERSATION, [message], self.participants) == []

    def test_equal_timestamps_project_in_id_order(self):
        later = make_message("mB", "therapist", 100, "from therapist")
        earlier = make_message("mA", "user", 100, "from client")

        self.projector.project(CONVERSATION, later, self.participants)
        self.projector.project(CONVERSATION, earlier, self.participants)

        record = self.projector.get_conversation(CONVERSATION)
        assert record.last_message == "from therapist"
        assert record.last_message_id == "mB"
        assert self.projector.get_therapist_chat("t1", CONVERSATION).unread is True
        assert self.projector.find_stale_views(CONVERSATION, [earlier, later], self.participants) == []

    def test_equal_timestamp_drift_is_detected(self):
        earlier = make_message("mA", "user", 100, "from client")
        later = make_message("mB", "therapist", 100, "from therapist")
        self.projector.project(CONVERSATION, earlier, self.participants)

        stale = self.projector.find_stale_views(CONVERSATION, [earlier, later], self.participants)

        assert set(stale) == {CONVERSATION_VIEW, CLIENT_INDEX_VIEW, THERAPIST_INDEX_VIEW}
        self.projector.rebuild(CONVERSATION, [earlier, later], self.participants)
        assert self.projector.get_client_chat("5550001", CONVERSATION).last_message == "from therapist"

    def test_list_chats_newest_first_and_skip_malformed(self):
        other = Participants(client_id="5550002", therapist_id="t1", client_name="Kim", therapist_name="Dr. Ada")
        self.projector.project(CONVERSATION, make_message("m1", "user", 100), self.participants)
        self.projector.project("5550002_t1", make_message("m2", "user", 200), other)
        self.store.write(self.paths.therapist_chat("t1", "broken_t1"), {"lastMessageTime": 5})

        entries = self.projector.list_therapist_chats("t1")

        assert [entry.conversation_id for entry in entries] == ["5550002_t1", CONVERSATION]
        assert self.projector.list_client_chats("5550001")[0].therapist_id == "t1"
