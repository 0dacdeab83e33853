"""
Chat service - therapist-client consultation messaging.
"""

from .errors import (
    ChatServiceError,
    ValidationError,
    NotFoundError,
    SessionStateError,
    InconsistencyWarning,
    TransportError,
    StoreUnavailableError
)
from .identity import conversation_id, parse_conversation_id
from .models import (
    Sender,
    PresenceStatus,
    Message,
    ConversationRecord,
    ClientChatEntry,
    TherapistChatEntry,
    TherapistProfile,
    Participants,
    DashboardStats,
    ClientRosterEntry,
    ClientInboxSummary
)
from .message_log import MessageLog, merge_messages, make_idempotency_key
from .chat_index import ChatIndexProjector
from .presence import PresenceTracker
from .consultation_manager import ConsultationManager, get_consultation_manager
from .session import ConsultationSession, SessionState

__all__ = [
    'ChatServiceError',
    'ValidationError',
    'NotFoundError',
    'SessionStateError',
    'InconsistencyWarning',
    'TransportError',
    'StoreUnavailableError',
    'conversation_id',
    'parse_conversation_id',
    'Sender',
    'PresenceStatus',
    'Message',
    'ConversationRecord',
    'ClientChatEntry',
    'TherapistChatEntry',
    'TherapistProfile',
    'Participants',
    'DashboardStats',
    'ClientRosterEntry',
    'ClientInboxSummary',
    'MessageLog',
    'merge_messages',
    'make_idempotency_key',
    'ChatIndexProjector',
    'PresenceTracker',
    'ConsultationManager',
    'get_consultation_manager',
    'ConsultationSession',
    'SessionState'
]
