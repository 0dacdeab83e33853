"""
Dashboard service - derived statistics and listings for both sides of a
consultation.

Nothing here is stored: every figure is recomputed from the message log on
demand, so it is always consistent with the log at the cost of a full scan.
"""

from typing import Callable, List, Optional

from services.chat_service.chat_index import ChatIndexProjector
from services.chat_service.errors import NotFoundError
from services.chat_service.message_log import MessageLog
from services.chat_service.models import (
    ClientInboxSummary,
    ClientRosterEntry,
    DashboardStats,
    Participants,
    Sender,
    now_millis,
)
from services.chat_service.presence import PresenceTracker
from infrastructure.config.settings import ConsultationConfig, get_config
from infrastructure.monitoring.logging_service import get_logger


class DashboardService:
    """
    Computes therapist dashboard statistics, the therapist's client roster and
    the client's per-therapist inbox.
    """

    def __init__(self, message_log: MessageLog, projector: ChatIndexProjector, presence: PresenceTracker,
                 config: Optional[ConsultationConfig] = None, clock: Callable[[], int] = now_millis):
        self.logger = get_logger(__name__)
        self.message_log = message_log
        self.projector = projector
        self.presence = presence
        self.config = config or get_config().consultation
        self.clock = clock

    def get_therapist_dashboard_stats(self, therapist_id: str) -> DashboardStats:
        """
        Scan every conversation of a therapist and accumulate statistics

        A conversation is active when its latest message falls inside the
        activity window (7 days by default). While scanning, therapist-side
        views that lag the log are detected and rebuilt.

        Args:
            therapist_id: Therapist whose dashboard is shown

        Returns:
            DashboardStats for the therapist
        """
        window_start = self.clock() - self.config.activity_window_ms
        stats = DashboardStats()
        clients = set()

        for record, messages in self.message_log.scan():
            if record.participants.therapist_id != therapist_id:
                continue

            clients.add(record.participants.user_id)
            if not messages:
                continue

            latest = max(message.timestamp for message in messages)
            if latest > window_start:
                stats.active_conversations += 1

            for message in messages:
                if message.sender is Sender.USER and not message.read_by_therapist:
                    stats.unread_messages += 1
                if message.timestamp > window_start:
                    stats.weekly_volume += 1

            if self.config.repair_stale_indexes:
                if self._repair_if_stale(record.conversation_id, record.participants.user_id,
                                         therapist_id, messages):
                    stats.repaired_conversations.append(record.conversation_id)

        stats.total_clients = len(clients)
        return stats

    def _repair_if_stale(self, conversation_id: str, client_id: str, therapist_id: str, messages) -> bool:
        bare = Participants(client_id=client_id, therapist_id=therapist_id)
        if not self.projector.find_stale_views(conversation_id, messages, bare):
            return False

        try:
            participants = self.presence.resolve_participants(client_id, therapist_id)
        except NotFoundError as e:
            self.logger.warning(f"Cannot repair {conversation_id}: {e}")
            return False

        return self.projector.rebuild(conversation_id, messages, participants)

    def list_clients(self, therapist_id: str) -> List[ClientRosterEntry]:
        """
        Clients of a therapist, most recent conversation first

        Names come from the client profile, falling back to the name stored
        on the index entry.
        """
        roster = []
        for entry in self.projector.list_therapist_chats(therapist_id):
            name = self.presence.get_client_name(entry.user_id)
            if name == self.config.default_client_name and entry.user_name:
                name = entry.user_name

            roster.append(ClientRosterEntry(
                user_id=entry.user_id,
                conversation_id=entry.conversation_id,
                name=name,
                last_message=entry.last_message,
                last_message_time=entry.last_message_time,
                unread=entry.unread,
                notes=entry.notes
            ))
        return roster

    def get_client_inbox(self, client_id: str) -> List[ClientInboxSummary]:
        """Per-therapist unread counts for a client, most recent first"""
        summaries = []
        for record, messages in self.message_log.scan():
            if record.participants.user_id != client_id:
                continue

            summaries.append(ClientInboxSummary(
                therapist_id=record.participants.therapist_id,
                conversation_id=record.conversation_id,
                unread_count=sum(
                    1 for message in messages
                    if message.sender is Sender.THERAPIST and not message.read_by_user
                ),
                last_message_time=max((message.timestamp for message in messages), default=0)
            ))

        summaries.sort(key=lambda summary: summary.last_message_time, reverse=True)
        return summaries

    def get_active_therapist_id(self, client_id: str) -> Optional[str]:
        """
        Therapist of the client's most recently active conversation

        Used to restore the selection when a client returns to the app.
        """
        entries = self.projector.list_client_chats(client_id)
        if not entries:
            return None
        return entries[0].therapist_id
