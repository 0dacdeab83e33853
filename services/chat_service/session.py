"""
Consultation session - the client-side state of one consultation screen.

Tracks which therapist the client is talking to, the locally held message
list and the pending draft. Messages only enter the local list once the store
has confirmed them, either as the result of a send or through the
conversation subscription.
"""

import threading
from enum import Enum
from typing import Callable, List, Optional

from services.chat_service.consultation_manager import ConsultationManager
from services.chat_service.errors import SessionStateError, TransportError
from services.chat_service.message_log import make_idempotency_key, merge_messages
from services.chat_service.models import Message, Sender, TherapistProfile, now_millis
from infrastructure.storage.document_store import Unsubscribe
from infrastructure.monitoring.logging_service import get_logger


class SessionState(Enum):
    NO_SELECTION = "no_selection"
    THERAPIST_BROWSING = "therapist_browsing"
    ACTIVE_CONVERSATION = "active_conversation"


class ConsultationSession:
    """
    State machine for a client's consultation screen

    NO_SELECTION -> THERAPIST_BROWSING (start) -> ACTIVE_CONVERSATION (select),
    then back to THERAPIST_BROWSING (change) or NO_SELECTION (leave, from any state).
    """

    def __init__(self, manager: ConsultationManager, client_id: str, clock: Callable[[], int] = now_millis):
        self.logger = get_logger(__name__)
        self.manager = manager
        self.client_id = client_id
        self.clock = clock

        self.state = SessionState.NO_SELECTION
        self.therapist_id: Optional[str] = None
        self.conversation_id: Optional[str] = None
        self.messages: List[Message] = []
        self.input_text = ""

        self._draft_text: Optional[str] = None
        self._draft_key: Optional[str] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._lock = threading.RLock()

    def _require(self, *states: SessionState):
        if self.state not in states:
            allowed = ", ".join(s.name for s in states)
            raise SessionStateError(f"Invalid in state {self.state.name} (expected {allowed})")

    def _close_conversation(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        with self._lock:
            self.therapist_id = None
            self.conversation_id = None
            self.messages = []
            self.input_text = ""
            self._draft_text = None
            self._draft_key = None

    def start_consultation(self) -> List[TherapistProfile]:
        """Begin browsing therapists"""
        self._require(SessionState.NO_SELECTION)
        therapists = self.manager.list_therapists()
        self.state = SessionState.THERAPIST_BROWSING
        return therapists

    def select_therapist(self, therapist_id: str) -> List[Message]:
        """
        Open the conversation with a therapist

        Bootstraps the conversation when it is new, marks it read by the
        client and subscribes to its messages.

        Returns:
            The conversation's messages
        """
        self._require(SessionState.THERAPIST_BROWSING)

        conversation_id = self.manager.select_therapist(self.client_id, therapist_id)
        messages = self.manager.open_conversation(conversation_id, Sender.USER)

        with self._lock:
            self.therapist_id = therapist_id
            self.conversation_id = conversation_id
            self.messages = messages
            self.state = SessionState.ACTIVE_CONVERSATION

        self._unsubscribe = self.manager.subscribe_to_conversation(conversation_id, self.receive)
        self.logger.info(f"Client {self.client_id} opened conversation {conversation_id}")
        return self.messages

    def send(self, text: Optional[str] = None) -> Message:
        """
        Send the current draft

        The draft stays in ``input_text`` until the store confirms the write,
        and keeps its idempotency key across retries, so re-sending after a
        failure cannot store the message twice.

        Args:
            text: New draft text; when omitted the held ``input_text`` is sent

        Returns:
            The stored message

        Raises:
            SessionStateError: If no conversation is open
            ValidationError: If the draft is empty
            TransportError: If the store could not be reached
        """
        self._require(SessionState.ACTIVE_CONVERSATION)
        if text is not None:
            self.input_text = text

        draft = self.input_text
        if draft != self._draft_text:
            self._draft_text = draft
            self._draft_key = make_idempotency_key(self.conversation_id, Sender.USER, draft, self.clock())

        try:
            message = self.manager.send_message(
                self.conversation_id, Sender.USER, draft, idempotency_key=self._draft_key
            )
        except TransportError:
            self.logger.warning(f"Send failed in {self.conversation_id}, draft kept for retry")
            raise

        with self._lock:
            self.messages = merge_messages(self.messages, [message])
            self.input_text = ""
            self._draft_text = None
            self._draft_key = None
        return message

    def receive(self, incoming: List[Message]):
        """Merge messages pushed by the conversation subscription"""
        with self._lock:
            if self.state is not SessionState.ACTIVE_CONVERSATION:
                return
            self.messages = merge_messages(self.messages, incoming)

    def change_therapist(self) -> List[TherapistProfile]:
        """Leave the open conversation and go back to the therapist list"""
        self._require(SessionState.ACTIVE_CONVERSATION)
        self._close_conversation()
        self.state = SessionState.THERAPIST_BROWSING
        return self.manager.list_therapists()

    def leave(self):
        """Close the consultation screen; allowed from any state"""
        if self.state is SessionState.NO_SELECTION:
            return
        self._close_conversation()
        self.state = SessionState.NO_SELECTION
