"""
Chat service data models for consultations, messages and chat indexes.

Store records are pydantic models validated where data enters from the
document store; their store field names are the camelCase aliases. Derived
views that are never stored are plain dataclasses.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field


def now_millis() -> int:
    """Current wall-clock time in milliseconds since the epoch"""
    return int(time.time() * 1000)


class Sender(str, Enum):
    """Author role of a chat message"""
    USER = "user"
    THERAPIST = "therapist"

    @property
    def counterpart(self) -> "Sender":
        return Sender.THERAPIST if self is Sender.USER else Sender.USER

    @property
    def read_flag(self) -> str:
        """Store field holding this role's read state"""
        return "readByUser" if self is Sender.USER else "readByTherapist"


class PresenceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class StoreRecord(BaseModel):
    """Base for records persisted in the document store"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Fields that live in the store path rather than in the stored value
    store_excluded: ClassVar[Set[str]] = set()

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude=self.store_excluded)


class Message(StoreRecord):
    """Individual chat turn in a consultation"""
    id: str = ""
    text: str = Field(min_length=1)
    sender: Sender
    sender_name: str = Field(default="", alias="senderName")
    timestamp: int = Field(ge=0)
    read_by_user: bool = Field(default=False, alias="readByUser")
    read_by_therapist: bool = Field(default=False, alias="readByTherapist")
    client_token: Optional[str] = Field(default=None, alias="clientToken")

    store_excluded: ClassVar[Set[str]] = {"id"}

    @classmethod
    def from_store(cls, message_id: str, data: Dict[str, Any]) -> "Message":
        return cls.model_validate({**data, "id": message_id})

    def sort_key(self):
        # Equal millisecond timestamps fall back to the push id, which sorts by creation
        return (self.timestamp, self.id)

    def is_read_by(self, role: Sender) -> bool:
        return self.read_by_user if role is Sender.USER else self.read_by_therapist


class ConversationParticipants(StoreRecord):
    user_id: str = Field(alias="userId", min_length=1)
    therapist_id: str = Field(alias="therapistId", min_length=1)


class ConversationRecord(StoreRecord):
    """Canonical conversation metadata stored next to the message log"""
    conversation_id: str = ""
    participants: ConversationParticipants
    last_message: Optional[str] = Field(default=None, alias="lastMessage")
    last_message_time: int = Field(default=0, alias="lastMessageTime")
    last_message_id: str = Field(default="", alias="lastMessageId")
    last_message_sender: Optional[Sender] = Field(default=None, alias="lastMessageSender")

    store_excluded: ClassVar[Set[str]] = {"conversation_id"}

    @classmethod
    def from_store(cls, conversation_id: str, data: Dict[str, Any]) -> "ConversationRecord":
        return cls.model_validate({**data, "conversation_id": conversation_id})


class ClientChatEntry(StoreRecord):
    """Client-side index entry: one per therapist the client talks to"""
    conversation_id: str = ""
    therapist_id: str = Field(alias="therapistId")
    therapist_name: str = Field(default="", alias="therapistName")
    last_message: Optional[str] = Field(default=None, alias="lastMessage")
    last_message_time: int = Field(default=0, alias="lastMessageTime")
    last_message_id: str = Field(default="", alias="lastMessageId")
    unread: bool = False

    store_excluded: ClassVar[Set[str]] = {"conversation_id"}

    @classmethod
    def from_store(cls, conversation_id: str, data: Dict[str, Any]) -> "ClientChatEntry":
        return cls.model_validate({**data, "conversation_id": conversation_id})


class TherapistChatEntry(StoreRecord):
    """Therapist-side index entry: one per client, plus the therapist's notes"""
    conversation_id: str = ""
    user_id: str = Field(alias="userId")
    user_name: str = Field(default="", alias="userName")
    last_message: Optional[str] = Field(default=None, alias="lastMessage")
    last_message_time: int = Field(default=0, alias="lastMessageTime")
    last_message_id: str = Field(default="", alias="lastMessageId")
    unread: bool = False
    notes: str = ""

    store_excluded: ClassVar[Set[str]] = {"conversation_id"}

    @classmethod
    def from_store(cls, conversation_id: str, data: Dict[str, Any]) -> "TherapistChatEntry":
        return cls.model_validate({**data, "conversation_id": conversation_id})


class TherapistProfile(StoreRecord):
    id: str = ""
    name: str = Field(min_length=1)
    phone: str = ""
    status: PresenceStatus = PresenceStatus.OFFLINE
    specialty: str = ""
    bio: str = ""
    rating: float = 5.0
    created_at: int = Field(default=0, alias="createdAt")

    store_excluded: ClassVar[Set[str]] = {"id"}

    @classmethod
    def from_store(cls, therapist_id: str, data: Dict[str, Any]) -> "TherapistProfile":
        return cls.model_validate({**data, "id": therapist_id})

    @property
    def is_online(self) -> bool:
        return self.status is PresenceStatus.ONLINE


class ClientProfile(StoreRecord):
    """Read-only view of a client's profile"""
    id: str = ""
    username: Optional[str] = None

    store_excluded: ClassVar[Set[str]] = {"id"}

    @classmethod
    def from_store(cls, client_id: str, data: Dict[str, Any]) -> "ClientProfile":
        return cls.model_validate({**data, "id": client_id})


@dataclass
class Participants:
    """Both parties of a conversation with their display names"""
    client_id: str
    therapist_id: str
    client_name: str = "User"
    therapist_name: str = ""


@dataclass
class DashboardStats:
    """Derived therapist statistics, recomputed from the message log on demand"""
    total_clients: int = 0
    active_conversations: int = 0
    unread_messages: int = 0
    weekly_volume: int = 0
    repaired_conversations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalClients": self.total_clients,
            "activeConversations": self.active_conversations,
            "unreadMessages": self.unread_messages,
            "weeklyVolume": self.weekly_volume
        }


@dataclass
class ClientRosterEntry:
    """A client as listed on a therapist's dashboard"""
    user_id: str
    conversation_id: str
    name: str
    last_message: Optional[str]
    last_message_time: int
    unread: bool = False
    notes: str = ""


@dataclass
class ClientInboxSummary:
    """Per-therapist unread state as seen by a client"""
    therapist_id: str
    conversation_id: str
    unread_count: int = 0
    last_message_time: int = 0
