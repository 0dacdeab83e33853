"""
Hierarchical document store contract and the shared tree behaviour of the
bundled adapters.

Values are JSON-like trees: dicts of str keys whose leaves are str, int,
float or bool. Writing ``None`` removes a node, and empty dicts are never
stored, so a path is either absent, a leaf, or a non-empty subtree.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from infrastructure.storage.errors import InvalidPathError
from infrastructure.storage.push_ids import PushIdGenerator
from infrastructure.monitoring.logging_service import get_logger

ChangeCallback = Callable[[Optional[Any]], None]
Unsubscribe = Callable[[], None]

FORBIDDEN_KEY_CHARS = set(".#$[]")


def split_path(path: str) -> Tuple[str, ...]:
    """
    Split a slash-separated store path into validated segments

    Args:
        path: Path such as "App/messages/abc"

    Returns:
        Tuple of path segments

    Raises:
        InvalidPathError: If the path is empty or a segment is invalid
    """
    if not isinstance(path, str):
        raise InvalidPathError(f"Store path must be a string, got {type(path).__name__}")

    segments = tuple(segment for segment in path.strip("/").split("/"))
    if segments == ("",):
        raise InvalidPathError("Store path must not be empty")

    for segment in segments:
        if not segment:
            raise InvalidPathError(f"Empty segment in store path '{path}'")
        if FORBIDDEN_KEY_CHARS.intersection(segment):
            raise InvalidPathError(f"Forbidden character in store path segment '{segment}'")

    return segments


def join_path(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part)


def normalize_value(value: Any) -> Optional[Any]:
    """
    Normalize a value before storing it: drop None entries and empty subtrees

    Returns:
        The normalized value, or None when nothing remains to store
    """
    if value is None:
        return None

    if isinstance(value, dict):
        normalized = {}
        for key, child in value.items():
            if not isinstance(key, str) or not key or "/" in key or FORBIDDEN_KEY_CHARS.intersection(key):
                raise InvalidPathError(f"Invalid key in stored value: {key!r}")
            child_value = normalize_value(child)
            if child_value is not None:
                normalized[key] = child_value
        return normalized or None

    if isinstance(value, (str, bool, int, float)):
        return value

    raise TypeError(f"Unsupported value type for document store: {type(value).__name__}")


def _is_related(a: Tuple[str, ...], b: Tuple[str, ...]) -> bool:
    """True when one path is an ancestor of (or equal to) the other"""
    shortest = min(len(a), len(b))
    return a[:shortest] == b[:shortest]


class DocumentStore(ABC):
    """
    Contract consumed by the messaging core.

    Implementations must be safe to call from several threads.
    """

    @abstractmethod
    def read(self, path: str) -> Optional[Any]:
        """Return the value at path, or None when absent"""

    @abstractmethod
    def write(self, path: str, value: Any) -> None:
        """Replace the value at path (None removes it)"""

    @abstractmethod
    def update(self, path: str, fields: Dict[str, Any]) -> None:
        """Merge the given children into the node at path"""

    @abstractmethod
    def push(self, path: str) -> str:
        """Return a new unique child id under path, ordered by creation time"""

    @abstractmethod
    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        """Call callback with the current value now and after every related change"""


class TreeDocumentStore(DocumentStore):
    """
    Base class for adapters that keep the whole tree themselves.

    Subclasses implement ``_read`` and ``_write`` on validated segment tuples;
    locking, normalization and change notification live here.
    """

    def __init__(self, id_generator: Optional[PushIdGenerator] = None):
        self.logger = get_logger(__name__)
        self._lock = threading.RLock()
        self._id_generator = id_generator or PushIdGenerator()
        self._listeners: Dict[int, Tuple[Tuple[str, ...], ChangeCallback]] = {}
        self._listener_ids = itertools.count(1)

    @abstractmethod
    def _read(self, segments: Tuple[str, ...]) -> Optional[Any]:
        ...

    @abstractmethod
    def _write(self, segments: Tuple[str, ...], value: Optional[Any]) -> None:
        ...

    def read(self, path: str) -> Optional[Any]:
        segments = split_path(path)
        with self._lock:
            return self._read(segments)

    def write(self, path: str, value: Any) -> None:
        segments = split_path(path)
        normalized = normalize_value(value)
        with self._lock:
            self._write(segments, normalized)
        self._notify(segments)

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        segments = split_path(path)
        if not fields:
            return

        # Keys may be nested relative paths, as in "meta/lastMessage"
        changes = [
            (segments + split_path(key), normalize_value(value))
            for key, value in fields.items()
        ]
        with self._lock:
            for child_segments, value in changes:
                self._write(child_segments, value)
        self._notify(segments)

    def push(self, path: str) -> str:
        split_path(path)
        return self._id_generator.next_id()

    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        segments = split_path(path)
        with self._lock:
            listener_id = next(self._listener_ids)
            self._listeners[listener_id] = (segments, callback)

        self._deliver(segments, callback)

        def unsubscribe():
            with self._lock:
                self._listeners.pop(listener_id, None)

        return unsubscribe

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _notify(self, changed: Tuple[str, ...]):
        with self._lock:
            affected: List[Tuple[Tuple[str, ...], ChangeCallback]] = [
                (segments, callback)
                for segments, callback in self._listeners.values()
                if _is_related(segments, changed)
            ]

        for segments, callback in affected:
            self._deliver(segments, callback)

    def _deliver(self, segments: Tuple[str, ...], callback: ChangeCallback):
        with self._lock:
            value = self._read(segments)
        try:
            callback(value)
        except Exception:
            # A failing subscriber must not fail the writer
            self.logger.exception(f"Subscriber for '{'/'.join(segments)}' raised")
