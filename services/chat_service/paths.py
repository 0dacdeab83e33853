"""
Store paths used by the messaging core, rooted under the application namespace.
"""

from typing import Optional

from infrastructure.config.settings import get_config


class StorePaths:
    """Builds every document store path the messaging core touches"""

    def __init__(self, namespace: Optional[str] = None):
        self.namespace = namespace or get_config().store.namespace

    def _rooted(self, *parts: str) -> str:
        return "/".join((self.namespace,) + parts)

    def messages_root(self) -> str:
        return self._rooted("messages")

    def conversation(self, conversation_id: str) -> str:
        return self._rooted("messages", conversation_id)

    def message_log(self, conversation_id: str) -> str:
        return self._rooted("messages", conversation_id, "messages")

    def message(self, conversation_id: str, message_id: str) -> str:
        return self._rooted("messages", conversation_id, "messages", message_id)

    def client_chats(self, client_id: str) -> str:
        return self._rooted("userChats", client_id)

    def client_chat(self, client_id: str, conversation_id: str) -> str:
        return self._rooted("userChats", client_id, conversation_id)

    def therapist_chats(self, therapist_id: str) -> str:
        return self._rooted("therapistChats", therapist_id)

    def therapist_chat(self, therapist_id: str, conversation_id: str) -> str:
        return self._rooted("therapistChats", therapist_id, conversation_id)

    def therapists(self) -> str:
        return self._rooted("therapists")

    def therapist(self, therapist_id: str) -> str:
        return self._rooted("therapists", therapist_id)

    def user(self, client_id: str) -> str:
        return self._rooted("users", client_id)
