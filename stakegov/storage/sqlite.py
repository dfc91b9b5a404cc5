"""
SQLite governance store backed by aiosqlite.

Poll and vote rows carry their serialized record as JSON next to the
columns used for lookups and pagination.
"""

import json
import os
from typing import List, Optional

import aiosqlite

from ..exceptions import StorageError
from ..governance.config import GovernanceConfig, GovernanceState
from ..governance.polls import Poll, PollStatus
from ..governance.voting import Vote
from ..logger import get_logger
from .base import GovernanceStore

logger = get_logger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS polls (
    poll_id INTEGER PRIMARY KEY,
    status INTEGER NOT NULL,
    creator TEXT NOT NULL,
    end_height INTEGER NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS votes (
    poll_id INTEGER NOT NULL,
    voter TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (poll_id, voter),
    FOREIGN KEY (poll_id) REFERENCES polls(poll_id)
);

CREATE INDEX IF NOT EXISTS idx_polls_status ON polls(status);
CREATE INDEX IF NOT EXISTS idx_votes_voter ON votes(voter);
"""


class SQLiteStore(GovernanceStore):
    """Durable store; state survives restarts of the host."""

    def __init__(self, db_path: str):
        super().__init__()
        self.db_path = db_path
        self.connection: Optional[aiosqlite.Connection] = None

    @staticmethod
    async def create(db_path: str, wal_mode: bool = True) -> "SQLiteStore":
        """Open (creating if needed) the database at *db_path*."""
        self = SQLiteStore(db_path)

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        try:
            # Autocommit mode; transactions are driven explicitly
            self.connection = await aiosqlite.connect(db_path, isolation_level=None)
            self.connection.row_factory = aiosqlite.Row
            if wal_mode:
                await self.connection.execute("PRAGMA journal_mode=WAL")
                await self.connection.execute("PRAGMA synchronous=NORMAL")
            await self.connection.executescript(SCHEMA)
        except aiosqlite.Error as e:
            raise StorageError(f"Cannot open governance database {db_path}: {e}") from e

        logger.info(f"SQLite governance store initialized: {db_path}")
        return self

    async def close(self):
        if self.connection:
            await self.connection.close()
            self.connection = None
            logger.info(f"SQLite governance store closed: {self.db_path}")

    # ── Transactions ──────────────────────────────────────────────────

    async def _begin(self):
        await self._execute("BEGIN")

    async def _commit(self):
        await self._execute("COMMIT")

    async def _rollback(self):
        await self._execute("ROLLBACK")
        logger.debug("SQLite store transaction rolled back")

    async def _execute(self, query: str, *args):
        if self.connection is None:
            raise StorageError("SQLite governance store is closed")
        try:
            return await self.connection.execute(query, args)
        except aiosqlite.Error as e:
            raise StorageError(f"SQLite error: {e}") from e

    async def _fetchone(self, query: str, *args):
        cursor = await self._execute(query, *args)
        return await cursor.fetchone()

    async def _fetchall(self, query: str, *args):
        cursor = await self._execute(query, *args)
        return await cursor.fetchall()

    # ── Config / State ────────────────────────────────────────────────

    async def get_config(self) -> Optional[GovernanceConfig]:
        row = await self._fetchone("SELECT data FROM config WHERE key = 'config'")
        return GovernanceConfig.from_dict(json.loads(row["data"])) if row else None

    async def save_config(self, config: GovernanceConfig):
        await self._execute(
            "INSERT OR REPLACE INTO config (key, data) VALUES ('config', ?)",
            json.dumps(config.to_dict()),
        )

    async def load_state(self) -> GovernanceState:
        row = await self._fetchone("SELECT data FROM config WHERE key = 'state'")
        return GovernanceState.from_dict(json.loads(row["data"]) if row else None)

    async def save_state(self, state: GovernanceState):
        await self._execute(
            "INSERT OR REPLACE INTO config (key, data) VALUES ('state', ?)",
            json.dumps(state.to_dict()),
        )

    # ── Polls ─────────────────────────────────────────────────────────

    async def get_poll(self, poll_id: int) -> Optional[Poll]:
        row = await self._fetchone("SELECT data FROM polls WHERE poll_id = ?", poll_id)
        return Poll.from_dict(json.loads(row["data"])) if row else None

    async def put_poll(self, poll: Poll):
        await self._execute(
            """
            INSERT OR REPLACE INTO polls (poll_id, status, creator, end_height, data)
            VALUES (?, ?, ?, ?, ?)
            """,
            poll.id, int(poll.status), poll.creator, poll.end_height,
            json.dumps(poll.to_dict()),
        )

    async def list_polls(
        self,
        status: Optional[PollStatus] = None,
        start_after: Optional[int] = None,
        limit: int = 10,
        descending: bool = False,
    ) -> List[Poll]:
        clauses, args = [], []
        if status is not None:
            clauses.append("status = ?")
            args.append(int(status))
        if start_after is not None:
            clauses.append("poll_id < ?" if descending else "poll_id > ?")
            args.append(start_after)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order = "DESC" if descending else "ASC"
        rows = await self._fetchall(
            f"SELECT data FROM polls {where} ORDER BY poll_id {order} LIMIT ?",
            *args, limit,
        )
        return [Poll.from_dict(json.loads(r["data"])) for r in rows]

    # ── Votes ─────────────────────────────────────────────────────────

    async def get_vote(self, poll_id: int, voter: str) -> Optional[Vote]:
        row = await self._fetchone(
            "SELECT data FROM votes WHERE poll_id = ? AND voter = ?", poll_id, voter
        )
        return Vote.from_dict(json.loads(row["data"])) if row else None

    async def put_vote(self, vote: Vote):
        await self._execute(
            "INSERT INTO votes (poll_id, voter, data) VALUES (?, ?, ?)",
            vote.poll_id, vote.voter, json.dumps(vote.to_dict()),
        )

    async def list_votes(
        self,
        poll_id: int,
        start_after: Optional[str] = None,
        limit: int = 10,
        descending: bool = False,
    ) -> List[Vote]:
        args = [poll_id]
        cursor_clause = ""
        if start_after is not None:
            cursor_clause = "AND voter < ?" if descending else "AND voter > ?"
            args.append(start_after)
        order = "DESC" if descending else "ASC"
        rows = await self._fetchall(
            f"SELECT data FROM votes WHERE poll_id = ? {cursor_clause} "
            f"ORDER BY voter {order} LIMIT ?",
            *args, limit,
        )
        return [Vote.from_dict(json.loads(r["data"])) for r in rows]

    async def list_votes_by_voter(self, voter: str) -> List[Vote]:
        rows = await self._fetchall(
            "SELECT data FROM votes WHERE voter = ? ORDER BY poll_id ASC", voter
        )
        return [Vote.from_dict(json.loads(r["data"])) for r in rows]
