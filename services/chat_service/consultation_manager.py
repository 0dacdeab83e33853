"""
Consultation manager service - the entry point for therapist-client messaging.
Coordinates the message log, chat index projection, presence and dashboards.
"""

import threading
import weakref
from typing import Callable, List, Optional, Union

from services.chat_service.chat_index import ChatIndexProjector
from services.chat_service.dashboard import DashboardService
from services.chat_service.errors import NotFoundError, TransportError, ValidationError
from services.chat_service.identity import conversation_id as make_conversation_id, parse_conversation_id
from services.chat_service.message_log import MessageLog, coerce_sender
from services.chat_service.models import (
    ClientInboxSummary,
    ClientRosterEntry,
    DashboardStats,
    Message,
    Participants,
    Sender,
    TherapistProfile,
    now_millis,
)
from services.chat_service.paths import StorePaths
from services.chat_service.presence import PresenceTracker
from infrastructure.config.settings import ConsultationConfig, get_config
from infrastructure.storage import get_document_store
from infrastructure.storage.document_store import DocumentStore, Unsubscribe
from infrastructure.monitoring.logging_service import (
    get_error_tracker,
    get_logger,
    log_conversation_event,
    log_execution_time,
)


class ConsultationManager:
    """
    Service for consultation conversations between clients and therapists.
    Handles conversation bootstrap, sending, read state, presence and the
    therapist dashboard.
    """

    def __init__(self, store: Optional[DocumentStore] = None, paths: Optional[StorePaths] = None,
                 config: Optional[ConsultationConfig] = None, clock: Callable[[], int] = now_millis):
        self.logger = get_logger(__name__)
        self.error_tracker = get_error_tracker()
        self.config = config or get_config().consultation

        self.store = store or get_document_store()
        self.paths = paths or StorePaths()
        self.projector = ChatIndexProjector(self.store, self.paths)
        self.message_log = MessageLog(self.store, self.projector, self.paths, clock=clock)
        self.presence = PresenceTracker(self.store, self.paths, self.config, clock=clock)
        self.dashboard = DashboardService(self.message_log, self.projector, self.presence, self.config, clock=clock)

        self._locks_guard = threading.Lock()
        # Entries disappear once no caller holds the lock
        self._conversation_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()

    def _conversation_lock(self, conversation_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._conversation_locks.get(conversation_id)
            if lock is None:
                lock = threading.Lock()
                self._conversation_locks[conversation_id] = lock
            return lock

    def _bare_participants(self, conversation_id: str) -> Participants:
        client_id, therapist_id = parse_conversation_id(conversation_id)
        return Participants(client_id=client_id, therapist_id=therapist_id)

    def select_therapist(self, client_id: str, therapist_id: str) -> str:
        """
        Open the conversation between a client and a therapist

        When the conversation has no messages yet, the therapist greets the
        client with a welcome message created already read by both sides, so
        neither party sees it as unread. The check and the append happen under
        a per-conversation lock: repeated selection creates one welcome.

        Args:
            client_id: Client selecting the therapist
            therapist_id: Selected therapist

        Returns:
            Conversation identifier

        Raises:
            ValidationError: If either id is invalid
            NotFoundError: If the therapist has no profile
        """
        conversation_id = make_conversation_id(client_id=client_id, therapist_id=therapist_id)
        participants = self.presence.resolve_participants(client_id.strip(), therapist_id.strip())

        with self._conversation_lock(conversation_id):
            if self.message_log.has_messages(conversation_id):
                self.logger.debug(f"Conversation {conversation_id} already started")
                return conversation_id

            welcome = self.message_log.append(
                conversation_id,
                Sender.THERAPIST,
                self.config.format_welcome(participants.therapist_name),
                participants.therapist_name,
                participants,
                read_by_both=True
            )

        log_conversation_event(self.logger, "bootstrapped", conversation_id, message_id=welcome.id)
        return conversation_id

    def send_message(self, conversation_id: str, sender: Union[Sender, str], text: str,
                     idempotency_key: Optional[str] = None) -> Message:
        """
        Send a message in a conversation

        Args:
            conversation_id: Target conversation
            sender: "user" or "therapist"
            text: Message text
            idempotency_key: Retry token; retrying a failed send with the same
                key never stores the message twice

        Returns:
            The stored message

        Raises:
            ValidationError: Empty text, unknown sender or malformed conversation id
            NotFoundError: If the therapist has no profile
            TransportError: The store could not be reached; safe to retry
        """
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message text must not be empty")
        role = coerce_sender(sender)
        client_id, therapist_id = parse_conversation_id(conversation_id)

        try:
            participants = self.presence.resolve_participants(client_id, therapist_id)
            sender_name = participants.client_name if role is Sender.USER else participants.therapist_name

            message = self.message_log.append(
                conversation_id, role, text, sender_name, participants,
                idempotency_key=idempotency_key
            )
        except TransportError as e:
            self.error_tracker.track_error(e, "send_message", conversation_id=conversation_id, sender=role.value)
            raise

        log_conversation_event(self.logger, "message_sent", conversation_id, message_id=message.id, sender=role.value)
        return message

    def mark_conversation_read(self, conversation_id: str, role: Union[Sender, str]) -> int:
        """
        Mark a conversation as read by one side

        Flips the reader's flag on every counterpart message and clears the
        reader's unread marker on their own index entry.

        Returns:
            Number of messages newly marked read, 0 for an empty conversation
        """
        reader = coerce_sender(role)
        participants = self._bare_participants(conversation_id)

        try:
            flipped = self.message_log.mark_read(conversation_id, reader)
        except NotFoundError:
            self.logger.debug(f"Nothing to mark read in {conversation_id}")
            return 0

        self.projector.clear_unread(conversation_id, participants, reader)
        if flipped:
            log_conversation_event(self.logger, "marked_read", conversation_id, reader=reader.value, count=flipped)
        return flipped

    def subscribe_to_conversation(self, conversation_id: str,
                                  callback: Callable[[List[Message]], None]) -> Unsubscribe:
        """Receive the ordered message list now and on every change"""
        return self.message_log.subscribe(conversation_id, callback)

    def open_conversation(self, conversation_id: str, role: Union[Sender, str]) -> List[Message]:
        """Mark a conversation read for the opening side and return its messages"""
        self.mark_conversation_read(conversation_id, role)
        return self.message_log.list(conversation_id)

    def get_therapist_dashboard_stats(self, therapist_id: str) -> DashboardStats:
        with log_execution_time(self.logger, "dashboard stats", therapist_id=therapist_id):
            return self.dashboard.get_therapist_dashboard_stats(therapist_id)

    def reconcile_conversation(self, conversation_id: str) -> List[str]:
        """
        Rebuild the views of one conversation that lag its message log

        Returns:
            Names of the views that were repaired
        """
        bare = self._bare_participants(conversation_id)
        messages = self.message_log.list(conversation_id)

        stale = self.projector.find_stale_views(conversation_id, messages, bare)
        if not stale:
            return []

        try:
            participants = self.presence.resolve_participants(bare.client_id, bare.therapist_id)
        except NotFoundError as e:
            self.logger.warning(f"Cannot reconcile {conversation_id}: {e}")
            return []

        self.projector.rebuild(conversation_id, messages, participants)
        log_conversation_event(self.logger, "reconciled", conversation_id, views=stale)
        return stale

    def set_presence(self, therapist_id: str, online: bool) -> bool:
        """
        Set a therapist online or offline

        Returns:
            False when the therapist has no profile
        """
        try:
            self.presence.set_online(therapist_id, online)
        except NotFoundError as e:
            self.logger.warning(str(e))
            return False
        return True

    def ensure_therapist_profile(self, phone: str) -> TherapistProfile:
        return self.presence.ensure_therapist_profile(phone)

    def list_therapists(self) -> List[TherapistProfile]:
        return self.presence.list_therapists()

    def list_clients(self, therapist_id: str) -> List[ClientRosterEntry]:
        return self.dashboard.list_clients(therapist_id)

    def get_client_inbox(self, client_id: str) -> List[ClientInboxSummary]:
        return self.dashboard.get_client_inbox(client_id)

    def get_active_therapist_id(self, client_id: str) -> Optional[str]:
        return self.dashboard.get_active_therapist_id(client_id)

    def get_client_notes(self, therapist_id: str, client_id: str) -> str:
        conversation_id = make_conversation_id(client_id=client_id, therapist_id=therapist_id)
        return self.projector.get_notes(therapist_id, conversation_id)

    def save_client_notes(self, therapist_id: str, client_id: str, notes: str) -> bool:
        """
        Save a therapist's private notes about a client

        Returns:
            False when the therapist has no conversation with the client
        """
        conversation_id = make_conversation_id(client_id=client_id, therapist_id=therapist_id)
        try:
            self.projector.save_notes(therapist_id, conversation_id, notes or "")
        except NotFoundError as e:
            self.logger.warning(str(e))
            return False
        return True


# Global consultation manager instance
_consultation_manager: Optional[ConsultationManager] = None


def get_consultation_manager() -> ConsultationManager:
    """Get the global consultation manager instance"""
    global _consultation_manager
    if _consultation_manager is None:
        _consultation_manager = ConsultationManager()
    return _consultation_manager
