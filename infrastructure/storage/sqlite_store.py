"""
SQLite-backed document store.

Every leaf of the tree is one row keyed by its full slash-joined path, with
the leaf value stored as JSON. Subtree reads are range scans over the key.
"""

import json
import os
import sqlite3
from typing import Any, Dict, Iterator, List, Optional, Tuple

from infrastructure.storage.document_store import TreeDocumentStore
from infrastructure.storage.errors import TransportError
from infrastructure.storage.push_ids import PushIdGenerator


def _flatten(prefix: str, value: Any) -> Iterator[Tuple[str, Any]]:
    if isinstance(value, dict):
        for key, child in value.items():
            yield from _flatten(f"{prefix}/{key}", child)
    else:
        yield prefix, value


def _subtree_bounds(key: str) -> Tuple[str, str]:
    # "0" is the character right after "/", so this range holds exactly key's descendants
    return key + "/", key + "0"


class SqliteDocumentStore(TreeDocumentStore):
    """
    Document store persisted in a single SQLite table
    """

    def __init__(self, db_path: str = "infrastructure/database/store/documents.db",
                 id_generator: Optional[PushIdGenerator] = None):
        """
        Initialize the SQLite store

        Args:
            db_path: Path to the SQLite database file
            id_generator: Optional push id generator (tests inject a fixed clock)
        """
        super().__init__(id_generator=id_generator)
        self.db_path = db_path
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise TransportError(f"Cannot open document database: {e}", self.db_path) from e

    def _init_database(self):
        """Create the nodes table if needed"""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS nodes (
                    path TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            ''')
            conn.commit()
            self.logger.info(f"Document database initialized at {self.db_path}")
        except sqlite3.Error as e:
            raise TransportError(f"Error initializing document database: {e}", self.db_path) from e
        finally:
            conn.close()

    def _read(self, segments: Tuple[str, ...]) -> Optional[Any]:
        key = "/".join(segments)
        low, high = _subtree_bounds(key)

        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM nodes WHERE path = ?", (key,))
            row = cursor.fetchone()
            if row is not None:
                return json.loads(row[0])

            cursor.execute(
                "SELECT path, value FROM nodes WHERE path >= ? AND path < ? ORDER BY path",
                (low, high)
            )
            rows: List[Tuple[str, str]] = cursor.fetchall()
        except sqlite3.Error as e:
            raise TransportError(f"Error reading '{key}': {e}", key) from e
        finally:
            conn.close()

        if not rows:
            return None

        tree: Dict[str, Any] = {}
        for path, raw in rows:
            relative = path[len(low):].split("/")
            node = tree
            for segment in relative[:-1]:
                node = node.setdefault(segment, {})
            node[relative[-1]] = json.loads(raw)
        return tree

    def _write(self, segments: Tuple[str, ...], value: Optional[Any]) -> None:
        key = "/".join(segments)
        low, high = _subtree_bounds(key)

        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM nodes WHERE path = ?", (key,))
            cursor.execute("DELETE FROM nodes WHERE path >= ? AND path < ?", (low, high))

            if value is not None:
                # An ancestor stored as a leaf becomes a subtree
                for depth in range(1, len(segments)):
                    cursor.execute("DELETE FROM nodes WHERE path = ?", ("/".join(segments[:depth]),))
                cursor.executemany(
                    "INSERT INTO nodes (path, value) VALUES (?, ?)",
                    [(path, json.dumps(leaf)) for path, leaf in _flatten(key, value)]
                )

            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise TransportError(f"Error writing '{key}': {e}", key) from e
        finally:
            conn.close()
