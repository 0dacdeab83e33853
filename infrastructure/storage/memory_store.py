"""
In-process document store backed by a nested dict tree.
"""

import copy
from typing import Any, Dict, Optional, Tuple

from infrastructure.storage.document_store import TreeDocumentStore
from infrastructure.storage.push_ids import PushIdGenerator


class InMemoryDocumentStore(TreeDocumentStore):
    """
    Document store kept entirely in memory.

    Used for local development and tests; contents are lost with the process.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None, id_generator: Optional[PushIdGenerator] = None):
        super().__init__(id_generator=id_generator)
        self._root: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def _read(self, segments: Tuple[str, ...]) -> Optional[Any]:
        node: Any = self._root
        for segment in segments:
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return copy.deepcopy(node)

    def _write(self, segments: Tuple[str, ...], value: Optional[Any]) -> None:
        if value is None:
            self._remove(segments)
            return

        node = self._root
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                # A leaf on the way down is replaced by a subtree
                child = {}
                node[segment] = child
            node = child
        node[segments[-1]] = copy.deepcopy(value)

    def _remove(self, segments: Tuple[str, ...]):
        trail = []
        node: Any = self._root
        for segment in segments[:-1]:
            if not isinstance(node, dict) or segment not in node:
                return
            trail.append((node, segment))
            node = node[segment]

        if not isinstance(node, dict) or segments[-1] not in node:
            return
        del node[segments[-1]]

        # Prune parents left empty
        for parent, segment in reversed(trail):
            if parent[segment]:
                break
            del parent[segment]

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the whole tree"""
        with self._lock:
            return copy.deepcopy(self._root)
