"""
Presence tracker - therapist online/offline status and therapist profiles.
"""

import threading
import weakref
from typing import Callable, List, Optional

from pydantic import ValidationError as RecordValidationError

from services.chat_service.errors import NotFoundError, ValidationError
from services.chat_service.models import (
    ClientProfile,
    Participants,
    PresenceStatus,
    TherapistProfile,
    now_millis,
)
from services.chat_service.paths import StorePaths
from infrastructure.config.settings import ConsultationConfig, get_config
from infrastructure.storage.document_store import DocumentStore
from infrastructure.monitoring.logging_service import get_logger


class PresenceTracker:
    """
    Maintains therapist profiles and their presence flag.

    Presence is independent of any conversation: changing it never touches
    messages or chat indexes.
    """

    def __init__(self, store: DocumentStore, paths: Optional[StorePaths] = None,
                 config: Optional[ConsultationConfig] = None, clock: Callable[[], int] = now_millis):
        self.logger = get_logger(__name__)
        self.store = store
        self.paths = paths or StorePaths()
        self.config = config or get_config().consultation
        self.clock = clock

        self._locks_guard = threading.Lock()
        # Entries disappear once no caller holds the lock
        self._phone_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()

    def _phone_lock(self, phone: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._phone_locks.get(phone)
            if lock is None:
                lock = threading.Lock()
                self._phone_locks[phone] = lock
            return lock

    def set_online(self, therapist_id: str, online: bool) -> PresenceStatus:
        """
        Set a therapist's presence flag

        Args:
            therapist_id: Therapist identifier
            online: True for online, False for offline

        Returns:
            The status written

        Raises:
            NotFoundError: If the therapist has no profile
        """
        path = self.paths.therapist(therapist_id)
        if self.store.read(f"{path}/name") is None:
            raise NotFoundError(f"No therapist profile for {therapist_id}", path)

        status = PresenceStatus.ONLINE if online else PresenceStatus.OFFLINE
        self.store.update(path, {"status": status.value})
        self.logger.info(f"Therapist {therapist_id} is now {status.value}")
        return status

    def get_therapist(self, therapist_id: str) -> Optional[TherapistProfile]:
        data = self.store.read(self.paths.therapist(therapist_id))
        if not isinstance(data, dict):
            return None
        try:
            return TherapistProfile.from_store(therapist_id, data)
        except RecordValidationError as e:
            self.logger.warning(f"Malformed therapist profile {therapist_id}: {e}")
            return None

    def list_therapists(self) -> List[TherapistProfile]:
        """All therapists, online ones first, then by name"""
        data = self.store.read(self.paths.therapists()) or {}
        profiles = []
        for therapist_id, raw in data.items():
            if not isinstance(raw, dict):
                continue
            try:
                profiles.append(TherapistProfile.from_store(therapist_id, raw))
            except RecordValidationError as e:
                self.logger.warning(f"Skipping malformed therapist profile {therapist_id}: {e}")

        profiles.sort(key=lambda p: (not p.is_online, p.name.lower(), p.id))
        return profiles

    def find_by_phone(self, phone: str) -> Optional[TherapistProfile]:
        """
        Look up a therapist profile by phone number

        If an earlier race left several profiles for one phone, the oldest one
        wins so every device settles on the same profile.
        """
        matches = [profile for profile in self.list_therapists() if profile.phone == phone]
        if not matches:
            return None
        return min(matches, key=lambda p: (p.created_at, p.id))

    def ensure_therapist_profile(self, phone: str) -> TherapistProfile:
        """
        Return the therapist profile for a phone number, creating it if absent

        A new profile is seeded from the client profile at ``users/{phone}``;
        without a username the name falls back to "Dr. " plus the first four
        digits of the phone. The phone is the dedup key checked under a lock,
        so concurrent calls in one process create a single profile.

        Args:
            phone: Phone number the therapist signed in with

        Returns:
            The existing or newly created profile
        """
        if not isinstance(phone, str) or not phone.strip():
            raise ValidationError("phone is required")
        phone = phone.strip()

        with self._phone_lock(phone):
            existing = self.find_by_phone(phone)
            if existing is not None:
                return existing

            user_data = self.store.read(self.paths.user(phone))
            username = user_data.get("username") if isinstance(user_data, dict) else None

            therapist_id = self.store.push(self.paths.therapists())
            profile = TherapistProfile(
                id=therapist_id,
                name=username or f"Dr. {phone[:4]}",
                phone=phone,
                status=PresenceStatus.ONLINE,
                specialty=self.config.default_specialty,
                bio=self.config.default_bio,
                rating=self.config.default_rating,
                created_at=self.clock()
            )
            self.store.write(self.paths.therapist(therapist_id), profile.to_store())

        self.logger.info(f"Created therapist profile {therapist_id} for phone {phone}")
        return profile

    def get_client_name(self, client_id: str) -> str:
        """Display name of a client, from the read-only client profile"""
        data = self.store.read(self.paths.user(client_id))
        if isinstance(data, dict):
            try:
                profile = ClientProfile.from_store(client_id, data)
            except RecordValidationError as e:
                self.logger.warning(f"Malformed client profile {client_id}: {e}")
            else:
                if profile.username:
                    return profile.username
        return self.config.default_client_name

    def resolve_participants(self, client_id: str, therapist_id: str) -> Participants:
        """
        Look up both display names for a conversation

        Raises:
            NotFoundError: If the therapist has no profile
        """
        therapist = self.get_therapist(therapist_id)
        if therapist is None:
            raise NotFoundError(f"No therapist profile for {therapist_id}", self.paths.therapist(therapist_id))

        return Participants(
            client_id=client_id,
            therapist_id=therapist_id,
            client_name=self.get_client_name(client_id),
            therapist_name=therapist.name
        )
