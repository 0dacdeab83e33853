"""
Message log - the append-only, per-conversation ordered sequence of messages.
"""

import hashlib
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as RecordValidationError

from services.chat_service.chat_index import ChatIndexProjector
from services.chat_service.errors import NotFoundError, ValidationError
from services.chat_service.identity import conversation_id as make_conversation_id, parse_conversation_id
from services.chat_service.models import (
    ConversationParticipants,
    ConversationRecord,
    Message,
    Participants,
    Sender,
    now_millis,
)
from services.chat_service.paths import StorePaths
from infrastructure.storage.document_store import DocumentStore, Unsubscribe
from infrastructure.monitoring.logging_service import get_logger


def make_idempotency_key(conversation_id: str, sender: Union[Sender, str], text: str, intended_timestamp: int) -> str:
    """
    Derive a retry-stable token for an outgoing message

    The same draft retried after a failed write yields the same token, so the
    log can recognise a message that was in fact stored the first time.
    """
    sender_value = sender.value if isinstance(sender, Sender) else str(sender)
    payload = "\x1f".join([conversation_id, sender_value, text.strip(), str(intended_timestamp)])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


def merge_messages(existing: Iterable[Message], incoming: Iterable[Message]) -> List[Message]:
    """
    Merge a pushed batch into a locally held list

    Messages are keyed by id (an incoming copy replaces the held one, which
    carries read-flag changes), and the result is ordered by timestamp then id.
    """
    by_id: Dict[str, Message] = {message.id: message for message in existing}
    for message in incoming:
        by_id[message.id] = message
    return sorted(by_id.values(), key=lambda m: m.sort_key())


def coerce_sender(value: Union[Sender, str]) -> Sender:
    try:
        return value if isinstance(value, Sender) else Sender(value)
    except ValueError:
        raise ValidationError(f"Unknown sender role '{value}'") from None


class MessageLog:
    """
    Repository for the canonical message log of every conversation.

    Appending a message also projects it onto the chat indexes in the same
    call, so the log and the indexes only drift for the duration of a write.
    """

    def __init__(self, store: DocumentStore, projector: ChatIndexProjector,
                 paths: Optional[StorePaths] = None, clock: Callable[[], int] = now_millis):
        """
        Initialize the message log

        Args:
            store: Document store adapter
            projector: Chat index projector run after every append
            paths: Store path builder (defaults to the configured namespace)
            clock: Millisecond clock used to stamp new messages
        """
        self.logger = get_logger(__name__)
        self.store = store
        self.projector = projector
        self.paths = paths or projector.paths
        self.clock = clock

    def append(
        self,
        conversation_id: str,
        sender: Union[Sender, str],
        text: str,
        sender_name: str,
        participants: Participants,
        *,
        idempotency_key: Optional[str] = None,
        read_by_both: bool = False
    ) -> Message:
        """
        Append a message and project it onto the chat indexes

        Args:
            conversation_id: Target conversation
            sender: "user" or "therapist"
            text: Message text, stripped before storing
            sender_name: Display label of the sender
            participants: Both parties, used to reach their index entries
            idempotency_key: Optional retry token; a stored message with the
                same token is returned instead of appending a duplicate
            read_by_both: Create the message already read by both sides

        Returns:
            The stored message with its store-assigned id

        Raises:
            ValidationError: Empty text, unknown sender or mismatched participants
            TransportError: The store could not be reached
        """
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message text must not be empty")
        role = coerce_sender(sender)

        expected = make_conversation_id(client_id=participants.client_id, therapist_id=participants.therapist_id)
        if expected != conversation_id:
            raise ValidationError(f"Participants {expected} do not belong to conversation {conversation_id}")

        if idempotency_key:
            existing = self.find_by_token(conversation_id, idempotency_key)
            if existing is not None:
                self.logger.info(f"Message {existing.id} already stored for token {idempotency_key}, not appending again")
                # The first attempt may have failed between the log write and the projection
                self.projector.project(conversation_id, existing, participants)
                return existing

        message_id = self.store.push(self.paths.message_log(conversation_id))
        message = Message(
            id=message_id,
            text=text.strip(),
            sender=role,
            sender_name=sender_name or "",
            timestamp=self.clock(),
            read_by_user=read_by_both or role is Sender.USER,
            read_by_therapist=read_by_both or role is Sender.THERAPIST,
            client_token=idempotency_key
        )

        self.store.write(self.paths.message(conversation_id, message_id), message.to_store())
        self.logger.debug(f"Appended message {message_id} to {conversation_id}")

        self.projector.project(conversation_id, message, participants)
        return message

    def mark_read(self, conversation_id: str, reader_role: Union[Sender, str]) -> int:
        """
        Mark every counterpart message as read by the reader

        Only flags that are still false are written, so repeating the call
        changes nothing. Text and timestamps are never touched.

        Args:
            conversation_id: Conversation being opened
            reader_role: Role of the reader ("user" or "therapist")

        Returns:
            Number of messages whose read flag flipped

        Raises:
            NotFoundError: If the conversation has no messages
        """
        reader = coerce_sender(reader_role)
        messages = self.list(conversation_id)
        if not messages:
            raise NotFoundError(
                f"No messages in conversation {conversation_id}",
                self.paths.message_log(conversation_id)
            )

        flipped = 0
        for message in messages:
            if message.sender is reader.counterpart and not message.is_read_by(reader):
                self.store.update(self.paths.message(conversation_id, message.id), {reader.read_flag: True})
                flipped += 1

        return flipped

    def list(self, conversation_id: str) -> List[Message]:
        """All messages of a conversation, ascending by timestamp then id"""
        raw = self.store.read(self.paths.message_log(conversation_id))
        return self._parse_messages(conversation_id, raw)

    def has_messages(self, conversation_id: str) -> bool:
        return self.store.read(self.paths.message_log(conversation_id)) is not None

    def find_by_token(self, conversation_id: str, token: str) -> Optional[Message]:
        for message in self.list(conversation_id):
            if message.client_token == token:
                return message
        return None

    def subscribe(self, conversation_id: str, callback: Callable[[List[Message]], None]) -> Unsubscribe:
        """
        Receive the ordered message list now and after every change

        Returns:
            Function that cancels the subscription
        """
        def on_change(raw: Optional[Any]):
            callback(self._parse_messages(conversation_id, raw))

        return self.store.subscribe(self.paths.message_log(conversation_id), on_change)

    def scan(self) -> List[Tuple[ConversationRecord, List[Message]]]:
        """
        Read every conversation with its messages in one pass

        Conversations whose metadata record is missing or damaged get their
        participants from the conversation id so they are still counted.
        """
        root = self.store.read(self.paths.messages_root()) or {}
        results = []

        for conversation_id, raw in root.items():
            if not isinstance(raw, dict):
                continue

            record = self._parse_record(conversation_id, raw)
            if record is None:
                continue

            messages = self._parse_messages(conversation_id, raw.get("messages"))
            results.append((record, messages))

        return results

    def _parse_record(self, conversation_id: str, raw: Dict[str, Any]) -> Optional[ConversationRecord]:
        try:
            return ConversationRecord.from_store(conversation_id, raw)
        except RecordValidationError:
            pass

        try:
            client_id, therapist_id = parse_conversation_id(conversation_id)
        except ValidationError:
            self.logger.warning(f"Skipping conversation with unusable id '{conversation_id}'")
            return None

        self.logger.warning(f"Conversation {conversation_id} has no valid metadata, using its id")
        return ConversationRecord(
            conversation_id=conversation_id,
            participants=ConversationParticipants(user_id=client_id, therapist_id=therapist_id)
        )

    def _parse_messages(self, conversation_id: str, raw: Optional[Any]) -> List[Message]:
        if not isinstance(raw, dict):
            return []

        messages = []
        for message_id, data in raw.items():
            if not isinstance(data, dict):
                continue
            try:
                messages.append(Message.from_store(message_id, data))
            except RecordValidationError as e:
                self.logger.warning(f"Skipping malformed message {message_id} in {conversation_id}: {e}")

        messages.sort(key=lambda m: m.sort_key())
        return messages
