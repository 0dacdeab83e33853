"""
Circuit-breaker wrapper around any document store adapter.
"""

from typing import Any, Dict, Optional

from infrastructure.storage.document_store import DocumentStore, ChangeCallback, Unsubscribe
from infrastructure.resilience.retry_service import CircuitBreaker, get_store_circuit_breaker


class ResilientDocumentStore(DocumentStore):
    """
    Routes reads and writes through a circuit breaker so that a store which
    keeps failing is reported as unavailable immediately instead of on every
    call. ``push`` and ``subscribe`` are local operations and pass through.
    """

    def __init__(self, inner: DocumentStore, circuit_breaker: Optional[CircuitBreaker] = None):
        self.inner = inner
        self.circuit_breaker = circuit_breaker or get_store_circuit_breaker()

    def read(self, path: str) -> Optional[Any]:
        return self.circuit_breaker.execute(lambda: self.inner.read(path))

    def write(self, path: str, value: Any) -> None:
        self.circuit_breaker.execute(lambda: self.inner.write(path, value))

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        self.circuit_breaker.execute(lambda: self.inner.update(path, fields))

    def push(self, path: str) -> str:
        return self.inner.push(path)

    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        return self.inner.subscribe(path, callback)
