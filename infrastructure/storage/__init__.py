"""
Storage infrastructure - hierarchical document store adapters.
"""

from typing import Optional

from .errors import TransportError, StoreUnavailableError, InvalidPathError
from .push_ids import PushIdGenerator
from .document_store import DocumentStore, TreeDocumentStore, split_path, join_path
from .memory_store import InMemoryDocumentStore
from .sqlite_store import SqliteDocumentStore

from infrastructure.config.settings import get_config
from infrastructure.monitoring.logging_service import get_logger


def create_document_store() -> DocumentStore:
    """
    Build the document store described by the current configuration

    Returns:
        DocumentStore: configured adapter, wrapped in a circuit breaker when enabled
    """
    config = get_config().store
    logger = get_logger(__name__)

    if config.backend == "sqlite":
        store: DocumentStore = SqliteDocumentStore(db_path=config.db_path)
    elif config.backend == "memory":
        store = InMemoryDocumentStore()
    else:
        raise ValueError(f"Unknown store backend '{config.backend}'")

    logger.info(f"Document store backend: {config.backend}")

    if config.enable_circuit_breaker:
        from .resilient_store import ResilientDocumentStore
        store = ResilientDocumentStore(store)
    return store


# Global store instance
_document_store: Optional[DocumentStore] = None


def get_document_store() -> DocumentStore:
    """Get the global document store instance"""
    global _document_store
    if _document_store is None:
        _document_store = create_document_store()
    return _document_store


__all__ = [
    'TransportError',
    'StoreUnavailableError',
    'InvalidPathError',
    'PushIdGenerator',
    'DocumentStore',
    'TreeDocumentStore',
    'InMemoryDocumentStore',
    'SqliteDocumentStore',
    'split_path',
    'join_path',
    'create_document_store',
    'get_document_store'
]
