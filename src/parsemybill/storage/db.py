from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from ..logging import get_logger


LOG = get_logger("storage-db")


SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

-- 1) Schema-flexible documents, addressed by collection + id
CREATE TABLE IF NOT EXISTS documents (
  collection   TEXT NOT NULL,
  doc_id       TEXT NOT NULL,
  owner_id     TEXT,
  created_at   TEXT NOT NULL,          -- ISO-8601 UTC, copied from the body for ordering
  body         TEXT NOT NULL,          -- JSON object
  PRIMARY KEY (collection, doc_id)
);

-- 2) Local identity provider
CREATE TABLE IF NOT EXISTS users (
  user_id        TEXT PRIMARY KEY,
  email          TEXT NOT NULL UNIQUE,  -- lower-cased
  password_hash  TEXT NOT NULL,         -- bcrypt
  created_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_owner_created ON documents(collection, owner_id, created_at);
"""


class DocumentDatabase:
    """SQLite-backed document database.

    - One JSON document per row; the owner and creation time are mirrored
      into columns so per-owner listings can be ordered in SQL.
    - Ensures schema on first use.
    - Provides a context-managed connection method.
    """

    def __init__(self, db_path: str) -> None:
        folder = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(folder, exist_ok=True)
        self.db_path = os.path.abspath(db_path)
        LOG.info(f"Document DB path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.DatabaseError:
                # Non-fatal; continue with schema creation
                LOG.debug("WAL journal mode unavailable for %s", self.db_path)
            cur.executescript(SCHEMA_SQL)
            conn.commit()
            LOG.debug("Document DB schema ensured.")

    # ---------- documents ----------
    def insert(self, collection: str, doc_id: str, body: Dict[str, Any], *, owner_id: Optional[str], created_at: str) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO documents (collection, doc_id, owner_id, created_at, body) VALUES (?, ?, ?, ?, ?);",
                (collection, doc_id, owner_id, created_at, json.dumps(body, ensure_ascii=False)),
            )
            conn.commit()

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND doc_id = ?;",
                (collection, doc_id),
            ).fetchone()
        return json.loads(row["body"]) if row else None

    def update(
        self,
        collection: str,
        doc_id: str,
        mutate: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> Optional[Dict[str, Any]]:
        """Read, mutate and write one document inside a single write transaction.

        Returns the stored document, or None when ``doc_id`` does not exist.
        """
        with self.connect() as conn:
            conn.isolation_level = None
            conn.execute("BEGIN IMMEDIATE;")
            try:
                row = conn.execute(
                    "SELECT body FROM documents WHERE collection = ? AND doc_id = ?;",
                    (collection, doc_id),
                ).fetchone()
                if row is None:
                    conn.execute("ROLLBACK;")
                    return None
                body = mutate(json.loads(row["body"]))
                conn.execute(
                    "UPDATE documents SET body = ? WHERE collection = ? AND doc_id = ?;",
                    (json.dumps(body, ensure_ascii=False), collection, doc_id),
                )
                conn.execute("COMMIT;")
                return body
            except BaseException:
                conn.execute("ROLLBACK;")
                raise

    def delete(self, collection: str, doc_id: str) -> bool:
        with self.connect() as conn:
            cur = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?;",
                (collection, doc_id),
            )
            conn.commit()
            return cur.rowcount > 0

    def query_by_owner(self, collection: str, owner_id: str) -> List[Tuple[str, Dict[str, Any]]]:
        """(doc_id, body) pairs of one owner, newest first."""
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT doc_id, body FROM documents
                WHERE collection = ? AND owner_id = ?
                ORDER BY created_at DESC, rowid DESC;
                """,
                (collection, owner_id),
            ).fetchall()
        return [(row["doc_id"], json.loads(row["body"])) for row in rows]

    def count(self, collection: str) -> int:
        with self.connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM documents WHERE collection = ?;", (collection,)).fetchone()
        return int(row[0]) if row else 0
