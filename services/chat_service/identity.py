"""
Conversation identity: one stable key per (client, therapist) pair.
"""

from typing import Tuple

from services.chat_service.errors import ValidationError

SEPARATOR = "_"
_PATH_RESERVED = set("/.#$[]")


def _validate_party_id(value: str, label: str, reserved: set) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    value = value.strip()
    if reserved.intersection(value):
        raise ValidationError(f"{label} '{value}' contains a reserved character")
    return value


def conversation_id(*, client_id: str, therapist_id: str) -> str:
    """
    Build the conversation key for a client and a therapist

    The roles are keyword-only: the client always comes first and the
    therapist second, so the same pair always resolves to the same key.
    Client ids may not contain the separator; therapist ids (store push ids)
    may, since the key is split on the first separator.

    Args:
        client_id: Client identifier (phone number)
        therapist_id: Therapist identifier

    Returns:
        Conversation identifier "{client_id}_{therapist_id}"

    Raises:
        ValidationError: If either id is missing or contains a reserved character
    """
    client = _validate_party_id(client_id, "client_id", _PATH_RESERVED | {SEPARATOR})
    therapist = _validate_party_id(therapist_id, "therapist_id", _PATH_RESERVED)
    return f"{client}{SEPARATOR}{therapist}"


def parse_conversation_id(value: str) -> Tuple[str, str]:
    """Split a conversation key back into (client_id, therapist_id)"""
    if not isinstance(value, str) or SEPARATOR not in value:
        raise ValidationError(f"Malformed conversation id '{value}'")
    client_id, therapist_id = value.split(SEPARATOR, 1)
    if not client_id or not therapist_id:
        raise ValidationError(f"Malformed conversation id '{value}'")
    return client_id, therapist_id
