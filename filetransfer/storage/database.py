"""
SQLite Transfer History

Design Decision: Why SQLite?
============================

Options Considered:
1. SQLite - Embedded, no server, ACID compliant
2. JSON lines file - Simple, but no querying
3. PostgreSQL/MySQL - Overkill, requires server

Decision: SQLite with aiosqlite
- Zero configuration
- Single file next to the rest of the application data
- Async support via aiosqlite, so recording never blocks a transfer

The history is an explicitly constructed object handed to whatever
records completed transfers. The transfer classes never touch it.

Tables:
- file_transfers: one row per completed transfer
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

import aiosqlite

from ..transfer.progress import TransferDirection

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

DB_FILENAME = "transfers.db"


@dataclass(frozen=True)
class FileTransferRecord:
    """A completed transfer as stored in the history."""
    filename: str
    filesize: int
    direction: TransferDirection
    timestamp: datetime
    peer_host: str
    peer_port: int
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'filename': self.filename,
            'filesize': self.filesize,
            'direction': self.direction.value,
            'timestamp': self.timestamp.isoformat(),
            'peer_host': self.peer_host,
            'peer_port': self.peer_port,
        }


class TransferHistory:
    """
    SQLite log of completed transfers.

    Usage:
        history = TransferHistory(Path('data/transfers.db'))
        await history.connect()
        await history.record_sent('report.pdf', 10, '127.0.0.1', 9000)
        records = await history.get_all_transfers()
        await history.close()
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self):
        """Open database connection."""
        if self._connection is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._init_schema()

        logger.info(f"Transfer history opened: {self.db_path}")

    async def close(self):
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> 'TransferHistory':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _init_schema(self):
        """Initialize database schema."""
        await self._connection.executescript("""
            CREATE TABLE IF NOT EXISTS file_transfers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                filename TEXT NOT NULL,
                filesize INTEGER NOT NULL,
                transfer_direction TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                peer_host TEXT NOT NULL,
                peer_port INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_transfers_direction
                ON file_transfers(transfer_direction);
        """)
        await self._connection.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        await self._connection.commit()

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Transfer history is not connected")
        return self._connection

    # === Recording ===

    async def record_transfer(self, filename: str, filesize: int,
                              direction: TransferDirection,
                              peer_host: str, peer_port: int,
                              timestamp: Optional[datetime] = None
                              ) -> FileTransferRecord:
        """Insert a completed transfer and return the stored record."""
        conn = self._require_connection()
        timestamp = timestamp or datetime.now(timezone.utc)

        cursor = await conn.execute(
            """INSERT INTO file_transfers
                   (filename, filesize, transfer_direction, timestamp, peer_host, peer_port)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (filename, filesize, direction.value, timestamp.isoformat(),
             peer_host, peer_port)
        )
        await conn.commit()
        record_id = cursor.lastrowid
        await cursor.close()

        logger.debug(f"Recorded {direction.value} transfer #{record_id}: {filename}")

        return FileTransferRecord(
            id=record_id,
            filename=filename,
            filesize=filesize,
            direction=direction,
            timestamp=timestamp,
            peer_host=peer_host,
            peer_port=peer_port,
        )

    async def record_sent(self, filename: str, filesize: int,
                          peer_host: str, peer_port: int) -> FileTransferRecord:
        """Record a file we sent."""
        return await self.record_transfer(
            filename, filesize, TransferDirection.SENT, peer_host, peer_port
        )

    async def record_received(self, filename: str, filesize: int,
                              peer_host: str, peer_port: int) -> FileTransferRecord:
        """Record a file we received."""
        return await self.record_transfer(
            filename, filesize, TransferDirection.RECEIVED, peer_host, peer_port
        )

    # === Queries ===

    async def get_all_transfers(self, direction: Optional[TransferDirection] = None,
                                limit: Optional[int] = None
                                ) -> List[FileTransferRecord]:
        """
        Get recorded transfers, oldest first.

        Args:
            direction: Only return sent or received transfers
            limit: Only return the most recent `limit` records
        """
        conn = self._require_connection()

        query = "SELECT * FROM file_transfers"
        params: list = []
        if direction is not None:
            query += " WHERE transfer_direction = ?"
            params.append(direction.value)

        if limit is not None:
            # Newest `limit` rows, re-ordered oldest first
            query = f"SELECT * FROM ({query} ORDER BY id DESC LIMIT ?) ORDER BY id"
            params.append(limit)
        else:
            query += " ORDER BY id"

        async with conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_record(row) for row in rows]

    async def count(self) -> int:
        """Number of recorded transfers."""
        conn = self._require_connection()
        async with conn.execute("SELECT COUNT(*) AS n FROM file_transfers") as cursor:
            row = await cursor.fetchone()
            return row['n']

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> FileTransferRecord:
        return FileTransferRecord(
            id=row['id'],
            filename=row['filename'],
            filesize=row['filesize'],
            direction=TransferDirection(row['transfer_direction']),
            timestamp=datetime.fromisoformat(row['timestamp']),
            peer_host=row['peer_host'],
            peer_port=row['peer_port'],
        )


async def init_history(data_dir: Union[str, Path]) -> TransferHistory:
    """Open (creating if needed) the history database in data_dir."""
    history = TransferHistory(Path(data_dir) / DB_FILENAME)
    await history.connect()
    return history
