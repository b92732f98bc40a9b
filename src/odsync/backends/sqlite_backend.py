"""SQLite-based sync state repository."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from ..exceptions import RepositoryError
from ..models import (
    DeltaToken, LocalFile, RemoteItem, SyncState, TransferLog, TransferStatus, TransferType,
)
from .base import SyncRepository

logger = logging.getLogger(__name__)

# Local states that mean the mirror already holds the remote content
_SYNCED_STATES = (SyncState.DOWNLOADED.value, SyncState.UPLOADED.value)

_REMOTE_COLUMNS = "id, relative_path, etag, ctag, size, last_modified, is_folder, is_deleted"
_LOCAL_COLUMNS = "id, relative_path, hash, size, last_write, sync_state"
_TRANSFER_COLUMNS = (
    "id, transfer_type, item_id, started, completed, status, bytes_transferred, error"
)


def _to_epoch(value: Optional[datetime]) -> Optional[float]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_epoch(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class SqliteSyncRepository(SyncRepository):
    """SQLite database-based sync state.

    One connection is shared by every transfer worker; a lock serialises
    access so each statement group runs as one transaction. Timestamps are
    stored as UTC epoch seconds so pending downloads sort numerically.

    Each entity has an explicit row mapping (``_remote_item_row`` and
    ``_row_to_remote_item`` and so on); adding a field means touching the
    schema, the column list and both mapping functions.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path):
        """Initialize SQLite repository.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._ensure_connection()
        self._init_schema()

    def _ensure_connection(self) -> None:
        """Ensure database connection is established."""
        if self.conn is not None:
            return

        in_memory = str(self.db_path) == ':memory:'
        if not in_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

        if not in_memory:
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self.conn.execute("PRAGMA temp_store=MEMORY")

        logger.info(f"SQLite repository connected: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            result = self.conn.execute(
                "SELECT value FROM metadata WHERE key = 'schema_version'"
            ).fetchone()
            if result and int(result[0]) >= self.SCHEMA_VERSION:
                return
        except sqlite3.OperationalError:
            pass  # Tables don't exist yet

        logger.info("Initializing SQLite schema...")

        with self.conn:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS remote_items (
                    id TEXT PRIMARY KEY,
                    relative_path TEXT NOT NULL,
                    etag TEXT,
                    ctag TEXT,
                    size INTEGER NOT NULL DEFAULT 0,
                    last_modified REAL NOT NULL,
                    is_folder INTEGER NOT NULL DEFAULT 0,
                    is_deleted INTEGER NOT NULL DEFAULT 0
                )
            """)
            self.conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_remote_items_path
                ON remote_items(relative_path)
            """)
            self.conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_remote_items_modified
                ON remote_items(last_modified)
            """)

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS local_files (
                    id TEXT PRIMARY KEY,
                    relative_path TEXT NOT NULL,
                    hash TEXT,
                    size INTEGER NOT NULL DEFAULT 0,
                    last_write REAL NOT NULL,
                    sync_state TEXT NOT NULL
                )
            """)
            self.conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_local_files_path
                ON local_files(relative_path)
            """)
            self.conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_local_files_state
                ON local_files(sync_state)
            """)

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS delta_tokens (
                    id TEXT PRIMARY KEY,
                    token TEXT NOT NULL,
                    last_synced REAL NOT NULL
                )
            """)

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS transfer_logs (
                    id TEXT PRIMARY KEY,
                    transfer_type TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    started REAL NOT NULL,
                    completed REAL,
                    status TEXT NOT NULL,
                    bytes_transferred INTEGER NOT NULL DEFAULT 0,
                    error TEXT
                )
            """)
            self.conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_transfer_logs_status
                ON transfer_logs(status)
            """)

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            self.conn.execute("""
                INSERT OR REPLACE INTO metadata (key, value)
                VALUES ('schema_version', ?)
            """, (str(self.SCHEMA_VERSION),))

        logger.info("SQLite schema initialized")

    @contextmanager
    def _transaction(self, description: str) -> Iterator[sqlite3.Connection]:
        """Run a block as one transaction, mapping sqlite errors."""
        with self._lock:
            if self.conn is None:
                raise RepositoryError(f"Repository is closed ({description})")
            try:
                with self.conn:
                    yield self.conn
            except sqlite3.Error as e:
                logger.error(f"SQLite error during {description}: {e}")
                raise RepositoryError(f"Failed to {description}: {e}") from e

    def _fetch(self, sql: str, params: Tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            if self.conn is None:
                raise RepositoryError("Repository is closed")
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise RepositoryError(f"Query failed: {e}") from e

    def _fetch_one(self, sql: str, params: Tuple = ()) -> Optional[sqlite3.Row]:
        rows = self._fetch(sql, params)
        return rows[0] if rows else None

    # Delta token

    def get_delta_token(self) -> Optional[DeltaToken]:
        row = self._fetch_one(
            "SELECT id, token, last_synced FROM delta_tokens ORDER BY last_synced DESC LIMIT 1"
        )
        if row is None:
            return None
        return DeltaToken(id=row['id'], token=row['token'], last_synced=_from_epoch(row['last_synced']))

    def save_or_update_token(self, token: DeltaToken) -> None:
        with self._transaction("save delta token") as conn:
            conn.execute("""
                INSERT INTO delta_tokens (id, token, last_synced) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    token = excluded.token,
                    last_synced = excluded.last_synced
            """, (token.id, token.token, _to_epoch(token.last_synced)))

    # Remote items

    def apply_remote_items(self, items: List[RemoteItem]) -> None:
        with self._transaction(f"apply {len(items)} remote items") as conn:
            conn.executemany(f"""
                INSERT OR REPLACE INTO remote_items ({_REMOTE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, [self._remote_item_row(item) for item in items])

    def get_remote_item(self, item_id: str) -> Optional[RemoteItem]:
        row = self._fetch_one(f"SELECT {_REMOTE_COLUMNS} FROM remote_items WHERE id = ?", (item_id,))
        return self._row_to_remote_item(row) if row else None

    def get_remote_item_by_path(self, relative_path: str) -> Optional[RemoteItem]:
        row = self._fetch_one(f"""
            SELECT {_REMOTE_COLUMNS} FROM remote_items
            WHERE relative_path = ? AND is_deleted = 0
            ORDER BY last_modified DESC
            LIMIT 1
        """, (relative_path,))
        return self._row_to_remote_item(row) if row else None

    _PENDING_DOWNLOADS_WHERE = """
        FROM remote_items r
        LEFT JOIN local_files l ON l.id = r.id
        WHERE r.is_folder = 0
          AND r.is_deleted = 0
          AND (l.id IS NULL OR l.sync_state NOT IN (?, ?))
    """

    def get_pending_downloads(self, page_size: int, offset: int) -> List[RemoteItem]:
        columns = ', '.join(f"r.{name.strip()}" for name in _REMOTE_COLUMNS.split(','))
        rows = self._fetch(f"""
            SELECT {columns}
            {self._PENDING_DOWNLOADS_WHERE}
            ORDER BY r.last_modified ASC, r.id ASC
            LIMIT ? OFFSET ?
        """, (*_SYNCED_STATES, page_size, offset * page_size))
        return [self._row_to_remote_item(row) for row in rows]

    def get_pending_download_count(self) -> int:
        row = self._fetch_one(f"SELECT COUNT(*) {self._PENDING_DOWNLOADS_WHERE}", _SYNCED_STATES)
        return int(row[0])

    # Local files

    def mark_local_file_state(self, remote_id: str, state: SyncState) -> None:
        with self._transaction(f"mark {remote_id} as {state.value}") as conn:
            remote = conn.execute(
                f"SELECT {_REMOTE_COLUMNS} FROM remote_items WHERE id = ?", (remote_id,)
            ).fetchone()
            if remote is None:
                logger.debug(f"No remote item {remote_id}, local state not changed")
                return

            item = self._row_to_remote_item(remote)
            # A path maps to one local record; the remote id takes it over
            conn.execute(
                "DELETE FROM local_files WHERE relative_path = ? AND id != ?",
                (item.relative_path, item.id),
            )
            conn.execute(f"""
                INSERT INTO local_files ({_LOCAL_COLUMNS}) VALUES (?, ?, NULL, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    relative_path = excluded.relative_path,
                    size = excluded.size,
                    last_write = excluded.last_write,
                    sync_state = excluded.sync_state
            """, (item.id, item.relative_path, item.size, _to_epoch(item.last_modified), state.value))

    def add_or_update_local_file(self, record: LocalFile) -> None:
        with self._transaction(f"save local file {record.relative_path}") as conn:
            conn.execute(f"""
                INSERT OR REPLACE INTO local_files ({_LOCAL_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?)
            """, self._local_file_row(record))

    def get_local_file(self, file_id: str) -> Optional[LocalFile]:
        row = self._fetch_one(f"SELECT {_LOCAL_COLUMNS} FROM local_files WHERE id = ?", (file_id,))
        return self._row_to_local_file(row) if row else None

    def get_local_file_by_path(self, relative_path: str) -> Optional[LocalFile]:
        row = self._fetch_one(
            f"SELECT {_LOCAL_COLUMNS} FROM local_files WHERE relative_path = ? LIMIT 1",
            (relative_path,),
        )
        return self._row_to_local_file(row) if row else None

    def get_pending_uploads(self, limit: int, offset: int = 0) -> List[LocalFile]:
        rows = self._fetch(f"""
            SELECT {_LOCAL_COLUMNS} FROM local_files
            WHERE sync_state = ?
            ORDER BY last_write ASC, id ASC
            LIMIT ? OFFSET ?
        """, (SyncState.PENDING_UPLOAD.value, limit, offset * limit))
        return [self._row_to_local_file(row) for row in rows]

    def get_pending_upload_count(self) -> int:
        row = self._fetch_one(
            "SELECT COUNT(*) FROM local_files WHERE sync_state = ?",
            (SyncState.PENDING_UPLOAD.value,),
        )
        return int(row[0])

    _PENDING_DELETES_WHERE = """
        FROM local_files l
        JOIN remote_items r ON r.id = l.id
        WHERE r.is_deleted = 1 AND l.sync_state IN (?, ?)
    """

    def get_pending_local_deletes(self, limit: int, offset: int = 0) -> List[LocalFile]:
        columns = ', '.join(f"l.{name.strip()}" for name in _LOCAL_COLUMNS.split(','))
        rows = self._fetch(f"""
            SELECT {columns}
            {self._PENDING_DELETES_WHERE}
            ORDER BY l.relative_path ASC
            LIMIT ? OFFSET ?
        """, (*_SYNCED_STATES, limit, offset * limit))
        return [self._row_to_local_file(row) for row in rows]

    def get_pending_local_delete_count(self) -> int:
        row = self._fetch_one(f"SELECT COUNT(*) {self._PENDING_DELETES_WHERE}", _SYNCED_STATES)
        return int(row[0])

    # Transfer logs

    def log_transfer(self, log: TransferLog) -> None:
        with self._transaction(f"log transfer {log.id}") as conn:
            conn.execute(f"""
                INSERT OR REPLACE INTO transfer_logs ({_TRANSFER_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, self._transfer_log_row(log))

    def get_transfer_log(self, log_id: str) -> Optional[TransferLog]:
        row = self._fetch_one(f"SELECT {_TRANSFER_COLUMNS} FROM transfer_logs WHERE id = ?", (log_id,))
        return self._row_to_transfer_log(row) if row else None

    def get_transfer_logs(self, item_id: str) -> List[TransferLog]:
        """Get every transfer log for an item, oldest first."""
        rows = self._fetch(
            f"SELECT {_TRANSFER_COLUMNS} FROM transfer_logs WHERE item_id = ? ORDER BY started ASC",
            (item_id,),
        )
        return [self._row_to_transfer_log(row) for row in rows]

    def count_transfer_logs(self, status: Optional[TransferStatus] = None) -> int:
        if status is None:
            row = self._fetch_one("SELECT COUNT(*) FROM transfer_logs")
        else:
            row = self._fetch_one("SELECT COUNT(*) FROM transfer_logs WHERE status = ?", (status.value,))
        return int(row[0])

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
                logger.info("SQLite repository closed")

    # Row mapping

    @staticmethod
    def _remote_item_row(item: RemoteItem) -> Tuple:
        return (
            item.id,
            item.relative_path,
            item.etag,
            item.ctag,
            item.size,
            _to_epoch(item.last_modified),
            1 if item.is_folder else 0,
            1 if item.is_deleted else 0,
        )

    @staticmethod
    def _row_to_remote_item(row: sqlite3.Row) -> RemoteItem:
        return RemoteItem(
            id=row['id'],
            relative_path=row['relative_path'],
            etag=row['etag'],
            ctag=row['ctag'],
            size=row['size'],
            last_modified=_from_epoch(row['last_modified']),
            is_folder=bool(row['is_folder']),
            is_deleted=bool(row['is_deleted']),
        )

    @staticmethod
    def _local_file_row(record: LocalFile) -> Tuple:
        return (
            record.id,
            record.relative_path,
            record.hash,
            record.size,
            _to_epoch(record.last_write),
            record.sync_state.value,
        )

    @staticmethod
    def _row_to_local_file(row: sqlite3.Row) -> LocalFile:
        return LocalFile(
            id=row['id'],
            relative_path=row['relative_path'],
            hash=row['hash'],
            size=row['size'],
            last_write=_from_epoch(row['last_write']),
            sync_state=SyncState(row['sync_state']),
        )

    @staticmethod
    def _transfer_log_row(log: TransferLog) -> Tuple:
        return (
            log.id,
            log.transfer_type.value,
            log.item_id,
            _to_epoch(log.started),
            _to_epoch(log.completed),
            log.status.value,
            log.bytes_transferred,
            log.error,
        )

    @staticmethod
    def _row_to_transfer_log(row: sqlite3.Row) -> TransferLog:
        return TransferLog(
            id=row['id'],
            transfer_type=TransferType(row['transfer_type']),
            item_id=row['item_id'],
            started=_from_epoch(row['started']),
            completed=_from_epoch(row['completed']),
            status=TransferStatus(row['status']),
            bytes_transferred=row['bytes_transferred'],
            error=row['error'],
        )
