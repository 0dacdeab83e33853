"""
Chat index projector - keeps the canonical conversation metadata and the
client/therapist chat indexes in step with the message log.

The three views are written independently (the store has no multi-path
transaction). They are caches of the log: a view never moves its
(lastMessageTime, lastMessageId) position backwards, and ``rebuild`` recomputes all of them from the
log when they drift.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError as RecordValidationError

from services.chat_service.errors import InconsistencyWarning, NotFoundError
from services.chat_service.models import (
    ClientChatEntry,
    ConversationRecord,
    Message,
    Participants,
    Sender,
    TherapistChatEntry,
)
from services.chat_service.paths import StorePaths
from infrastructure.storage.document_store import DocumentStore
from infrastructure.monitoring.logging_service import get_logger

CONVERSATION_VIEW = "conversation"
CLIENT_INDEX_VIEW = "client_index"
THERAPIST_INDEX_VIEW = "therapist_index"


class ChatIndexProjector:
    """
    Projects appended messages onto the three denormalized conversation views.
    """

    def __init__(self, store: DocumentStore, paths: Optional[StorePaths] = None):
        self.logger = get_logger(__name__)
        self.store = store
        self.paths = paths or StorePaths()

    def _view_paths(self, conversation_id: str, participants: Participants) -> Dict[str, str]:
        return {
            CONVERSATION_VIEW: self.paths.conversation(conversation_id),
            CLIENT_INDEX_VIEW: self.paths.client_chat(participants.client_id, conversation_id),
            THERAPIST_INDEX_VIEW: self.paths.therapist_chat(participants.therapist_id, conversation_id),
        }

    def _view_position(self, view_path: str) -> Optional[Tuple[int, str]]:
        """(lastMessageTime, lastMessageId) of a view, None when it holds no message"""
        view = self.store.read(view_path)
        if not isinstance(view, dict) or not isinstance(view.get("lastMessageTime"), (int, float)):
            return None
        last_id = view.get("lastMessageId")
        return int(view["lastMessageTime"]), last_id if isinstance(last_id, str) else ""

    def project(self, conversation_id: str, message: Message, participants: Participants) -> None:
        """
        Fan a just-appended message out to the three views

        Each view takes the message's text, time and sender unless it already
        holds a message that sorts at or after it by (timestamp, id). Unread
        flags follow the message's read state: a client message marks the
        therapist entry unread, a therapist message marks the client entry
        unread unless it was created as already read.

        Args:
            conversation_id: Conversation the message belongs to
            message: The stored message (with its id)
            participants: Both parties and their display names
        """
        views = self._view_paths(conversation_id, participants)
        client_unread = not message.read_by_user
        therapist_unread = not message.read_by_therapist

        for view, path in views.items():
            current = self._view_position(path)
            if current is not None and message.sort_key() <= current:
                # Older message arriving late: keep the newer preview, only raise unread
                self.logger.debug(
                    f"Skipping stale projection on {view} for {conversation_id}: "
                    f"{message.sort_key()} <= {current}"
                )
                if view == CLIENT_INDEX_VIEW and client_unread:
                    self.store.update(path, {"unread": True})
                elif view == THERAPIST_INDEX_VIEW and therapist_unread:
                    self.store.update(path, {"unread": True})
                continue

            self.store.update(path, self._view_fields(
                view, message, participants, client_unread, therapist_unread
            ))

    def _view_fields(self, view: str, latest: Message, participants: Participants,
                     client_unread: bool, therapist_unread: bool) -> Dict[str, Any]:
        if view == CONVERSATION_VIEW:
            return {
                "participants": {
                    "userId": participants.client_id,
                    "therapistId": participants.therapist_id
                },
                "lastMessage": latest.text,
                "lastMessageTime": latest.timestamp,
                "lastMessageId": latest.id,
                "lastMessageSender": latest.sender.value
            }
        if view == CLIENT_INDEX_VIEW:
            return {
                "therapistId": participants.therapist_id,
                "therapistName": participants.therapist_name,
                "lastMessage": latest.text,
                "lastMessageTime": latest.timestamp,
                "lastMessageId": latest.id,
                "unread": client_unread
            }
        return {
            "userId": participants.client_id,
            "userName": participants.client_name,
            "lastMessage": latest.text,
            "lastMessageTime": latest.timestamp,
            "lastMessageId": latest.id,
            "unread": therapist_unread
        }

    def clear_unread(self, conversation_id: str, participants: Participants, reader_role: Sender) -> bool:
        """
        Clear the coarse unread flag on the reader's own index entry

        Returns:
            True if an entry existed and was cleared
        """
        if reader_role is Sender.THERAPIST:
            path = self.paths.therapist_chat(participants.therapist_id, conversation_id)
        else:
            path = self.paths.client_chat(participants.client_id, conversation_id)

        # Updating a missing entry would create a partial record
        if self.store.read(path) is None:
            return False

        self.store.update(path, {"unread": False})
        return True

    def rebuild(self, conversation_id: str, messages: Sequence[Message], participants: Participants) -> bool:
        """
        Recompute all three views from the message log

        The log is the source of truth: the views take the message with the
        greatest (timestamp, id), and unread flags are derived from the
        per-message read flags.

        Returns:
            False when the log is empty and there is nothing to rebuild
        """
        if not messages:
            return False

        latest = max(messages, key=lambda m: m.sort_key())
        client_unread = any(m.sender is Sender.THERAPIST and not m.read_by_user for m in messages)
        therapist_unread = any(m.sender is Sender.USER and not m.read_by_therapist for m in messages)

        for view, path in self._view_paths(conversation_id, participants).items():
            self.store.update(path, self._view_fields(
                view, latest, participants, client_unread, therapist_unread
            ))

        self.logger.info(f"Rebuilt chat indexes for {conversation_id} from {len(messages)} messages")
        return True

    def find_stale_views(self, conversation_id: str, messages: Sequence[Message],
                         participants: Participants) -> List[str]:
        """
        Compare each view's (lastMessageTime, lastMessageId) with a fresh scan of the log

        Every lagging (or missing) view is logged as an InconsistencyWarning;
        detection never interrupts the caller, which repairs through ``rebuild``.

        Returns:
            Names of the views that lag behind the log
        """
        if not messages:
            return []

        log_position = max(m.sort_key() for m in messages)
        stale = []

        for view, path in self._view_paths(conversation_id, participants).items():
            view_position = self._view_position(path)
            if view_position is None or view_position < log_position:
                stale.append(view)
                self.logger.warning(
                    f"{view} for {conversation_id} lags the message log ({view_position} < {log_position})",
                    extra={
                        "warning_type": InconsistencyWarning.__name__,
                        "conversation_id": conversation_id,
                        "view": view,
                        "view_position": view_position,
                        "log_position": log_position
                    }
                )

        return stale

    def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        data = self.store.read(self.paths.conversation(conversation_id))
        if not isinstance(data, dict) or "participants" not in data:
            return None
        try:
            return ConversationRecord.from_store(conversation_id, data)
        except RecordValidationError as e:
            self.logger.warning(f"Malformed conversation record {conversation_id}: {e}")
            return None

    def get_client_chat(self, client_id: str, conversation_id: str) -> Optional[ClientChatEntry]:
        data = self.store.read(self.paths.client_chat(client_id, conversation_id))
        if not isinstance(data, dict):
            return None
        try:
            return ClientChatEntry.from_store(conversation_id, data)
        except RecordValidationError as e:
            self.logger.warning(f"Malformed client chat entry {conversation_id}: {e}")
            return None

    def get_therapist_chat(self, therapist_id: str, conversation_id: str) -> Optional[TherapistChatEntry]:
        data = self.store.read(self.paths.therapist_chat(therapist_id, conversation_id))
        if not isinstance(data, dict):
            return None
        try:
            return TherapistChatEntry.from_store(conversation_id, data)
        except RecordValidationError as e:
            self.logger.warning(f"Malformed therapist chat entry {conversation_id}: {e}")
            return None

    def list_client_chats(self, client_id: str) -> List[ClientChatEntry]:
        """Client's chat index, most recent conversation first"""
        data = self.store.read(self.paths.client_chats(client_id)) or {}
        entries = []
        for conversation_id, raw in data.items():
            if not isinstance(raw, dict):
                continue
            try:
                entries.append(ClientChatEntry.from_store(conversation_id, raw))
            except RecordValidationError as e:
                self.logger.warning(f"Skipping malformed client chat entry {conversation_id}: {e}")
        entries.sort(key=lambda entry: entry.last_message_time, reverse=True)
        return entries

    def list_therapist_chats(self, therapist_id: str) -> List[TherapistChatEntry]:
        """Therapist's chat index, most recent conversation first"""
        data = self.store.read(self.paths.therapist_chats(therapist_id)) or {}
        entries = []
        for conversation_id, raw in data.items():
            if not isinstance(raw, dict):
                continue
            try:
                entries.append(TherapistChatEntry.from_store(conversation_id, raw))
            except RecordValidationError as e:
                self.logger.warning(f"Skipping malformed therapist chat entry {conversation_id}: {e}")
        entries.sort(key=lambda entry: entry.last_message_time, reverse=True)
        return entries

    def get_notes(self, therapist_id: str, conversation_id: str) -> str:
        notes = self.store.read(f"{self.paths.therapist_chat(therapist_id, conversation_id)}/notes")
        return notes if isinstance(notes, str) else ""

    def save_notes(self, therapist_id: str, conversation_id: str, notes: str) -> None:
        """
        Store the therapist's private notes on a client conversation

        Raises:
            NotFoundError: If the therapist has no index entry for the conversation
        """
        path = self.paths.therapist_chat(therapist_id, conversation_id)
        if self.store.read(path) is None:
            raise NotFoundError(f"No chat {conversation_id} for therapist {therapist_id}", path)
        # An empty string removes the notes field
        self.store.update(path, {"notes": notes or None})
