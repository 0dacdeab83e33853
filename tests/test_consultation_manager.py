"""
Tests for the consultation manager
"""

import gc
import random
import threading
import warnings
from unittest.mock import Mock, patch

import pytest

from infrastructure.config.settings import ConsultationConfig
from infrastructure.storage import InMemoryDocumentStore
from infrastructure.storage.errors import TransportError
from infrastructure.storage.push_ids import PushIdGenerator
from services.chat_service.consultation_manager import ConsultationManager
from services.chat_service.errors import InconsistencyWarning, NotFoundError, ValidationError
from services.chat_service.models import Sender
from services.chat_service.paths import StorePaths

DAY_MS = 24 * 60 * 60 * 1000


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1000):
        self.now += ms


class TestConsultationManager:
    """Test the messaging entry points end to end on an in-memory store"""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryDocumentStore(id_generator=PushIdGenerator(clock=self.clock, rng=random.Random(11)))
        self.paths = StorePaths("App")
        self.manager = ConsultationManager(
            store=self.store, paths=self.paths, config=ConsultationConfig(), clock=self.clock
        )

        self.store.write(self.paths.therapist("t1"), {"name": "Dr. Ada", "status": "online", "phone": "5559000"})
        self.store.write(self.paths.user("5550001"), {"username": "Sam"})
        self.conversation = "5550001_t1"

    def test_first_selection_creates_welcome(self):
        conversation_id = self.manager.select_therapist("5550001", "t1")

        assert conversation_id == self.conversation
        messages = self.manager.message_log.list(conversation_id)
        assert len(messages) == 1
        welcome = messages[0]
        assert welcome.sender is Sender.THERAPIST
        assert "Hello! I'm" in welcome.text
        assert welcome.text == "Hello! I'm Dr. Ada. How can I help you today?"
        assert welcome.read_by_user is True
        assert welcome.read_by_therapist is True

        client_entry = self.manager.projector.get_client_chat("5550001", conversation_id)
        therapist_entry = self.manager.projector.get_therapist_chat("t1", conversation_id)
        assert client_entry.last_message == welcome.text
        assert therapist_entry.last_message == welcome.text
        assert therapist_entry.unread is False
        assert client_entry.unread is False

    def test_select_twice_creates_one_welcome(self):
        self.manager.select_therapist("5550001", "t1")
        self.manager.select_therapist("5550001", "t1")

        assert len(self.manager.message_log.list(self.conversation)) == 1

    def test_concurrent_selection_creates_one_welcome(self):
        threads = [
            threading.Thread(target=self.manager.select_therapist, args=("5550001", "t1"))
            for _ in range(6)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(self.manager.message_log.list(self.conversation)) == 1

    def test_conversation_locks_are_released(self):
        self.store.write(self.paths.user("5550002"), {"username": "Kim"})
        self.manager.select_therapist("5550001", "t1")
        self.manager.select_therapist("5550002", "t1")
        gc.collect()

        assert len(self.manager._conversation_locks) == 0

    def test_select_existing_conversation_adds_nothing(self):
        self.manager.select_therapist("5550001", "t1")
        self.manager.send_message(self.conversation, "user", "hi")

        self.manager.select_therapist("5550001", "t1")

        assert len(self.manager.message_log.list(self.conversation)) == 2

    def test_select_unknown_therapist(self):
        with pytest.raises(NotFoundError):
            self.manager.select_therapist("5550001", "ghost")
        assert self.manager.message_log.list("5550001_ghost") == []

    def test_client_message_updates_all_views(self):
        self.manager.select_therapist("5550001", "t1")
        self.clock.advance()

        message = self.manager.send_message(self.conversation, "user", "I feel anxious today")

        assert message.sender_name == "Sam"
        assert len(self.manager.message_log.list(self.conversation)) == 2
        client_entry = self.manager.projector.get_client_chat("5550001", self.conversation)
        therapist_entry = self.manager.projector.get_therapist_chat("t1", self.conversation)
        assert client_entry.last_message == "I feel anxious today"
        assert therapist_entry.last_message == "I feel anxious today"
        assert therapist_entry.unread is True

    def test_index_matches_appended_message(self):
        self.manager.select_therapist("5550001", "t1")
        self.clock.advance()
        message = self.manager.send_message(self.conversation, Sender.THERAPIST, "How are you?")

        client_entry = self.manager.projector.get_client_chat("5550001", self.conversation)
        assert client_entry.last_message == message.text
        assert client_entry.last_message_time == message.timestamp
        assert client_entry.unread is True
        assert message.sender_name == "Dr. Ada"

    def test_therapist_marks_client_messages_read(self):
        self.manager.select_therapist("5550001", "t1")
        self.manager.send_message(self.conversation, "user", "one")
        self.manager.send_message(self.conversation, "user", "two")

        assert self.manager.mark_conversation_read(self.conversation, "therapist") == 2

        therapist_entry = self.manager.projector.get_therapist_chat("t1", self.conversation)
        assert therapist_entry.unread is False
        messages = self.manager.message_log.list(self.conversation)
        assert all(m.read_by_therapist for m in messages if m.sender is Sender.USER)

        before = [(m.id, m.read_by_user, m.read_by_therapist) for m in messages]
        assert self.manager.mark_conversation_read(self.conversation, "therapist") == 0
        after = [(m.id, m.read_by_user, m.read_by_therapist) for m in self.manager.message_log.list(self.conversation)]
        assert after == before

    def test_mark_read_empty_conversation_is_noop(self):
        assert self.manager.mark_conversation_read(self.conversation, "user") == 0
        assert self.store.read(self.paths.client_chat("5550001", self.conversation)) is None

    def test_dashboard_counts_recent_conversations_as_active(self):
        for client_id in ("5550001", "5550002", "5550003"):
            self.manager.select_therapist(client_id, "t1")

        self.clock.advance(10 * DAY_MS)
        self.clock.now -= 2 * DAY_MS
        self.manager.send_message(self.conversation, "user", "checking in")
        self.clock.now += 2 * DAY_MS

        stats = self.manager.get_therapist_dashboard_stats("t1")

        assert stats.active_conversations == 1
        assert stats.total_clients == 3
        assert stats.unread_messages == 1
        assert stats.weekly_volume == 1

    def test_equal_timestamps_are_stably_ordered(self):
        self.manager.select_therapist("5550001", "t1")
        first = self.manager.send_message(self.conversation, "user", "same millisecond one")
        second = self.manager.send_message(self.conversation, "user", "same millisecond two")

        assert first.timestamp == second.timestamp
        listings = [[m.id for m in self.manager.message_log.list(self.conversation)] for _ in range(3)]
        assert listings[0] == listings[1] == listings[2]
        assert listings[0][-2:] == [first.id, second.id]

    def test_send_rejects_empty_text_before_store_access(self):
        store = Mock()
        manager = ConsultationManager(store=store, paths=self.paths, config=ConsultationConfig(), clock=self.clock)

        with pytest.raises(ValidationError):
            manager.send_message(self.conversation, "user", "   ")
        assert store.method_calls == []

    def test_send_rejects_malformed_conversation_id(self):
        with pytest.raises(ValidationError):
            self.manager.send_message("nounderscore", "user", "hello")

    def test_send_transport_error_is_tracked_and_raised(self):
        self.manager.select_therapist("5550001", "t1")
        self.manager.error_tracker = Mock()

        with patch.object(self.store, "write", side_effect=TransportError("store down")):
            with pytest.raises(TransportError):
                self.manager.send_message(self.conversation, "user", "hello")

        self.manager.error_tracker.track_error.assert_called_once()
        args, kwargs = self.manager.error_tracker.track_error.call_args
        assert isinstance(args[0], TransportError)
        assert args[1] == "send_message"
        assert kwargs["conversation_id"] == self.conversation

    def test_retry_with_same_key_after_failed_projection(self):
        self.manager.select_therapist("5550001", "t1")
        original_update = self.store.update
        calls = {"count": 0}

        def flaky_update(path, fields):
            calls["count"] += 1
            if calls["count"] == 1:
                raise TransportError("lost connection", path)
            return original_update(path, fields)

        with patch.object(self.store, "update", side_effect=flaky_update):
            with pytest.raises(TransportError):
                self.manager.send_message(self.conversation, "user", "hello", idempotency_key="draft-1")

        message = self.manager.send_message(self.conversation, "user", "hello", idempotency_key="draft-1")

        texts = [m.text for m in self.manager.message_log.list(self.conversation)]
        assert texts.count("hello") == 1
        assert self.manager.projector.get_therapist_chat("t1", self.conversation).last_message_time == message.timestamp

    def test_subscribe_to_conversation(self):
        self.manager.select_therapist("5550001", "t1")
        received = []

        unsubscribe = self.manager.subscribe_to_conversation(self.conversation, received.append)
        self.manager.send_message(self.conversation, "therapist", "new message")
        unsubscribe()

        assert len(received[0]) == 1
        assert received[-1][-1].text == "new message"

    def test_open_conversation_marks_read(self):
        self.manager.select_therapist("5550001", "t1")
        self.manager.send_message(self.conversation, "therapist", "are you there?")

        messages = self.manager.open_conversation(self.conversation, "user")

        assert all(m.read_by_user for m in messages)
        assert self.manager.projector.get_client_chat("5550001", self.conversation).unread is False

    def test_set_presence(self):
        assert self.manager.set_presence("t1", False) is True
        assert self.manager.presence.get_therapist("t1").is_online is False
        assert self.manager.set_presence("ghost", True) is False

    def test_reconcile_conversation(self):
        self.manager.select_therapist("5550001", "t1")
        self.clock.advance()
        message = self.manager.send_message(self.conversation, "user", "hello")
        self.store.update(self.paths.client_chat("5550001", self.conversation), {"lastMessageTime": 1})

        with warnings.catch_warnings():
            warnings.simplefilter("error", InconsistencyWarning)
            repaired = self.manager.reconcile_conversation(self.conversation)

        assert repaired == ["client_index"]
        assert self.manager.projector.get_client_chat("5550001", self.conversation).last_message_time == message.timestamp
        assert self.manager.reconcile_conversation(self.conversation) == []

    def test_reconcile_detects_same_millisecond_drift(self):
        self.manager.select_therapist("5550001", "t1")
        self.clock.advance()
        first = self.manager.send_message(self.conversation, "user", "first")
        second = self.manager.send_message(self.conversation, "therapist", "second")
        assert first.timestamp == second.timestamp

        participants = self.manager.presence.resolve_participants("5550001", "t1")
        self.manager.projector.rebuild(self.conversation, [first], participants)

        repaired = self.manager.reconcile_conversation(self.conversation)

        assert set(repaired) == {"conversation", "client_index", "therapist_index"}
        assert self.manager.projector.get_conversation(self.conversation).last_message == "second"

    def test_client_notes(self):
        assert self.manager.save_client_notes("t1", "5550001", "notes") is False

        self.manager.select_therapist("5550001", "t1")
        assert self.manager.save_client_notes("t1", "5550001", "Prefers mornings") is True
        self.manager.send_message(self.conversation, "user", "hello")

        assert self.manager.get_client_notes("t1", "5550001") == "Prefers mornings"
        assert self.manager.list_clients("t1")[0].notes == "Prefers mornings"

    def test_listing_passthroughs(self):
        self.manager.select_therapist("5550001", "t1")
        profile = self.manager.ensure_therapist_profile("5559000")

        assert profile.id == "t1"
        assert [p.id for p in self.manager.list_therapists()] == ["t1"]
        assert self.manager.get_active_therapist_id("5550001") == "t1"
        assert self.manager.get_client_inbox("5550001")[0].unread_count == 0
