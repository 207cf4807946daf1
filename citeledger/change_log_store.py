"""Change Log Store Module.

SQLite-backed persistence for change records. Records round-trip exactly:
metadata is stored as JSON and insertion order is kept in a sequence column.
"""

import sqlite3
import json
from pathlib import Path
from typing import List, Optional
from loguru import logger

from .change_log import ChangeLog, ChangeRecord, ChangeType
from .config import config
from .errors import ExternalCollaboratorError


class ChangeLogStore:
    """
    Persists per-document change logs.
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS change_records (
        id TEXT PRIMARY KEY,
        document_id TEXT NOT NULL,
        seq INTEGER NOT NULL,
        change_type TEXT NOT NULL,
        before_text TEXT NOT NULL,
        after_text TEXT NOT NULL,
        reference_id TEXT,
        marker_id TEXT,
        revoked INTEGER DEFAULT 0,
        timestamp TEXT NOT NULL,
        metadata TEXT DEFAULT '{}'
    );

    CREATE INDEX IF NOT EXISTS idx_change_records_document ON change_records(document_id, seq);
    """

    def __init__(self, db_path: str = None):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file. Defaults to config.CHANGE_LOG_DB_PATH
        """
        if db_path is None:
            db_path = config.CHANGE_LOG_DB_PATH
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path
        self._memory_conn = sqlite3.connect(db_path, check_same_thread=False) if db_path == ":memory:" else None
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_conn()
        try:
            conn.executescript(self.SCHEMA)
            conn.commit()
        finally:
            self._release(conn)

    def _get_conn(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = self._memory_conn or sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _release(self, conn: sqlite3.Connection):
        if conn is not self._memory_conn:
            conn.close()

    def save(self, log: ChangeLog):
        """Write every record of the log, updating revocation flags in place."""
        rows = [
            (
                record.id, log.document_id, seq, record.change_type.value,
                record.before_text, record.after_text, record.reference_id,
                record.marker_id, int(record.revoked), record.timestamp,
                json.dumps(record.metadata, sort_keys=True),
            )
            for seq, record in enumerate(log.records(include_revoked=True))
        ]
        conn = self._get_conn()
        try:
            with conn:
                conn.executemany("""
                    INSERT INTO change_records (
                        id, document_id, seq, change_type, before_text, after_text,
                        reference_id, marker_id, revoked, timestamp, metadata
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        seq = excluded.seq,
                        revoked = excluded.revoked
                """, rows)
        except sqlite3.Error as e:
            logger.error(f"Failed to persist change log for {log.document_id}: {e}")
            raise ExternalCollaboratorError(
                f"Could not persist change log for {log.document_id}", cause=e, collaborator="change_log_store"
            )
        finally:
            self._release(conn)
        logger.debug(f"Persisted {len(rows)} change records for {log.document_id}")

    def load(self, document_id: str) -> ChangeLog:
        """Load a document's log in insertion order (empty if unknown)."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM change_records WHERE document_id = ? ORDER BY seq",
                (document_id,),
            ).fetchall()
        finally:
            self._release(conn)
        return ChangeLog(document_id, [self._row_to_record(row) for row in rows])

    def document_ids(self) -> List[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT DISTINCT document_id FROM change_records ORDER BY document_id").fetchall()
        finally:
            self._release(conn)
        return [row['document_id'] for row in rows]

    def delete_document(self, document_id: str) -> int:
        conn = self._get_conn()
        try:
            with conn:
                cursor = conn.execute("DELETE FROM change_records WHERE document_id = ?", (document_id,))
                return cursor.rowcount
        finally:
            self._release(conn)

    def get_record(self, record_id: str) -> Optional[ChangeRecord]:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM change_records WHERE id = ?", (record_id,)).fetchone()
        finally:
            self._release(conn)
        return self._row_to_record(row) if row else None

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ChangeRecord:
        try:
            metadata = json.loads(row['metadata']) if row['metadata'] else {}
        except json.JSONDecodeError:
            logger.warning(f"Unreadable metadata on change record {row['id']}")
            metadata = {}
        return ChangeRecord(
            id=row['id'],
            change_type=ChangeType(row['change_type']),
            before_text=row['before_text'],
            after_text=row['after_text'],
            reference_id=row['reference_id'],
            marker_id=row['marker_id'],
            revoked=bool(row['revoked']),
            timestamp=row['timestamp'],
            metadata=metadata,
        )

    def close(self):
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None


__all__ = ['ChangeLogStore']
