"""PostgreSQL voter store."""
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import asyncpg

from services.shared import Ballot, StoreUnavailableError, Voter, VoterStatus

from .store import VoterChange, VoterSnapshot, VoterStore

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS voters (
    id TEXT PRIMARY KEY,
    institutional_email TEXT NOT NULL,
    personal_email TEXT NOT NULL,
    matric_number TEXT NOT NULL,
    full_name TEXT NOT NULL,
    signals JSONB NOT NULL DEFAULT '{}',
    session_token TEXT,
    session_expiry TIMESTAMPTZ,
    session_signal TEXT,
    voted_positions TEXT[] NOT NULL DEFAULT '{}',
    votes JSONB NOT NULL DEFAULT '[]',
    total_votes INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    version INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_vote_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    CONSTRAINT voters_institutional_email_key UNIQUE (institutional_email),
    CONSTRAINT voters_personal_email_key UNIQUE (personal_email)
);

ALTER TABLE voters ADD COLUMN IF NOT EXISTS session_signal TEXT;

CREATE TABLE IF NOT EXISTS fingerprint_bindings (
    kind TEXT NOT NULL,
    value TEXT NOT NULL,
    voter_id TEXT NOT NULL REFERENCES voters(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (kind, value)
);

CREATE TABLE IF NOT EXISTS ballots (
    id TEXT PRIMARY KEY,
    voter_id TEXT NOT NULL REFERENCES voters(id),
    candidate_id TEXT NOT NULL,
    position TEXT NOT NULL,
    cast_at TIMESTAMPTZ NOT NULL,
    valid BOOLEAN NOT NULL DEFAULT TRUE,
    metadata JSONB
);

CREATE UNIQUE INDEX IF NOT EXISTS ballots_one_valid_per_position
    ON ballots (voter_id, position) WHERE valid;

CREATE TABLE IF NOT EXISTS completion_records (
    kind TEXT NOT NULL,
    value TEXT NOT NULL,
    voter_id TEXT NOT NULL REFERENCES voters(id),
    completed_at TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (kind, value)
);
"""

_VOTER_COLUMNS = """
    id, institutional_email, personal_email, matric_number, full_name, signals,
    session_token, session_expiry, session_signal, voted_positions, votes, total_votes, status,
    version, created_at, last_vote_at, completed_at
"""


def _row_to_voter(row) -> Voter:
    return Voter(
        id=row["id"],
        institutional_email=row["institutional_email"],
        personal_email=row["personal_email"],
        matric_number=row["matric_number"],
        full_name=row["full_name"],
        signals=json.loads(row["signals"]),
        session_token=row["session_token"],
        session_expiry=row["session_expiry"],
        session_signal=row["session_signal"],
        voted_positions=list(row["voted_positions"]),
        votes=[tuple(v) for v in json.loads(row["votes"])],
        total_votes=row["total_votes"],
        status=VoterStatus(row["status"]),
        created_at=row["created_at"],
        last_vote_at=row["last_vote_at"],
        completed_at=row["completed_at"],
    )


class PostgresStore(VoterStore):
    """
    asyncpg-backed store.

    Uniqueness lives in constraints: both emails, (kind, value) for
    bindings and completion records, and one valid ballot per
    (voter, position). Voter writes are compare-and-swap on ``version``.
    """

    def __init__(self, dsn: str, min_size: int = 10, max_size: int = 20):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize database connection pool and schema."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=60
            )
            logger.info("PostgreSQL connection pool initialized successfully")

            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA)
                logger.info("PostgreSQL schema verified")

        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            raise StoreUnavailableError(f"Database unavailable: {e}")

    @asynccontextmanager
    async def _connection(self):
        """Acquire a pooled connection, surfacing connectivity failures as StoreUnavailableError."""
        if self.pool is None:
            raise StoreUnavailableError("Database pool not initialized")
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except (OSError, asyncpg.InterfaceError, asyncpg.PostgresError) as e:
            logger.error(f"Database connection error: {e}")
            raise StoreUnavailableError(f"Database unavailable: {e}")

    async def check_health(self) -> bool:
        try:
            async with self._connection() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except StoreUnavailableError:
            return False

    async def close(self):
        """Close database connection pool."""
        try:
            if self.pool:
                await self.pool.close()
                logger.info("PostgreSQL connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing PostgreSQL connection pool: {e}")

    async def _fetch_voter(self, where: str, *args) -> Optional[Voter]:
        async with self._connection() as conn:
            row = await conn.fetchrow(f"SELECT {_VOTER_COLUMNS} FROM voters WHERE {where}", *args)
            return _row_to_voter(row) if row else None

    async def get_voter(self, voter_id: str) -> Optional[Voter]:
        return await self._fetch_voter("id = $1", voter_id)

    async def find_voter_by_email(self, institutional_email: str) -> Optional[Voter]:
        return await self._fetch_voter("institutional_email = $1", institutional_email)

    async def find_voter_by_personal_email(self, personal_email: str) -> Optional[Voter]:
        return await self._fetch_voter("personal_email = $1", personal_email)

    async def find_active_session(
        self, institutional_email: str, token: str, now: datetime
    ) -> Optional[Voter]:
        return await self._fetch_voter(
            "institutional_email = $1 AND session_token = $2 AND session_expiry > $3",
            institutional_email, token, now,
        )

    async def find_binding_owner(self, kind: str, value: str) -> Optional[str]:
        async with self._connection() as conn:
            return await conn.fetchval(
                "SELECT voter_id FROM fingerprint_bindings WHERE kind = $1 AND value = $2",
                kind, value,
            )

    async def find_completion_owner(self, kind: str, value: str) -> Optional[str]:
        async with self._connection() as conn:
            return await conn.fetchval(
                "SELECT voter_id FROM completion_records WHERE kind = $1 AND value = $2",
                kind, value,
            )

    async def register_voter(self, voter: Voter) -> Optional[str]:
        async with self._connection() as conn:
            tr = conn.transaction()
            await tr.start()
            try:
                inserted = await conn.fetchval(
                    """
                    INSERT INTO voters (
                        id, institutional_email, personal_email, matric_number,
                        full_name, signals, status, created_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    ON CONFLICT DO NOTHING
                    RETURNING id
                    """,
                    voter.id, voter.institutional_email, voter.personal_email,
                    voter.matric_number, voter.full_name, json.dumps(voter.signals),
                    voter.status.value, voter.created_at,
                )
                if inserted is None:
                    rejected = await self._conflicting_email(conn, voter)
                else:
                    rejected = await self._claim_bindings(conn, voter.id, voter.signals)
            except BaseException:
                await tr.rollback()
                raise

            if rejected is not None:
                await tr.rollback()
                return rejected
            await tr.commit()
            return None

    async def _conflicting_email(self, conn, voter: Voter) -> str:
        taken = await conn.fetchval(
            "SELECT 1 FROM voters WHERE institutional_email = $1", voter.institutional_email
        )
        return "institutional_email" if taken else "personal_email"

    async def _claim_bindings(self, conn, voter_id: str, signals: Dict[str, str]) -> Optional[str]:
        """Insert-if-absent each binding; report the first one held by another voter."""
        for kind, value in signals.items():
            owner = await conn.fetchval(
                """
                INSERT INTO fingerprint_bindings (kind, value, voter_id)
                VALUES ($1, $2, $3)
                ON CONFLICT (kind, value) DO UPDATE SET kind = EXCLUDED.kind
                RETURNING voter_id
                """,
                kind, value, voter_id,
            )
            if owner != voter_id:
                return kind
        return None

    async def bind_signals(self, voter_id: str, signals: Dict[str, str]) -> Optional[str]:
        async with self._connection() as conn:
            tr = conn.transaction()
            await tr.start()
            try:
                rejected = await self._claim_bindings(conn, voter_id, signals)
                if rejected is None:
                    await conn.execute(
                        """
                        UPDATE voters
                        SET signals = signals || $2::jsonb, version = version + 1
                        WHERE id = $1
                        """,
                        voter_id, json.dumps(signals),
                    )
            except BaseException:
                await tr.rollback()
                raise

            if rejected is not None:
                await tr.rollback()
                return rejected
            await tr.commit()
            return None

    async def set_session(
        self, voter_id: str, token: str, expiry: datetime, signal: Optional[str] = None
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                UPDATE voters
                SET session_token = $2, session_expiry = $3, session_signal = $4,
                    version = version + 1
                WHERE id = $1
                """,
                voter_id, token, expiry, signal,
            )

    async def load_voter(self, voter_id: str) -> Optional[VoterSnapshot]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_VOTER_COLUMNS} FROM voters WHERE id = $1", voter_id
            )
            if row is None:
                return None
            return VoterSnapshot(voter=_row_to_voter(row), version=row["version"])

    async def commit(self, snapshot: VoterSnapshot, change: VoterChange) -> bool:
        voter = change.voter
        async with self._connection() as conn:
            tr = conn.transaction()
            await tr.start()
            try:
                committed = await self._apply(conn, snapshot, change, voter)
            except asyncpg.UniqueViolationError as e:
                logger.info(f"Commit for voter {voter.id} rejected by {e.constraint_name}")
                committed = False
            except BaseException:
                await tr.rollback()
                raise

            if not committed:
                await tr.rollback()
                return False
            await tr.commit()
            return True

    async def _apply(self, conn, snapshot: VoterSnapshot, change: VoterChange, voter: Voter) -> bool:
        status = await conn.execute(
            """
            UPDATE voters SET
                voted_positions = $3,
                votes = $4,
                total_votes = $5,
                status = $6,
                last_vote_at = $7,
                completed_at = $8,
                version = version + 1
            WHERE id = $1 AND version = $2
            """,
            voter.id, snapshot.version, voter.voted_positions,
            json.dumps([list(v) for v in voter.votes]), voter.total_votes,
            voter.status.value, voter.last_vote_at, voter.completed_at,
        )
        if status != "UPDATE 1":
            return False

        if change.invalidate_ballots:
            await conn.execute(
                "UPDATE ballots SET valid = FALSE WHERE voter_id = $1 AND valid", voter.id
            )
        for ballot in change.new_ballots:
            await conn.execute(
                """
                INSERT INTO ballots (id, voter_id, candidate_id, position, cast_at, valid, metadata)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                ballot.id, ballot.voter_id, ballot.candidate_id, ballot.position,
                ballot.cast_at, ballot.valid, json.dumps(ballot.metadata),
            )
        for record in change.completion_records:
            owner = await conn.fetchval(
                """
                INSERT INTO completion_records (kind, value, voter_id, completed_at)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (kind, value) DO UPDATE SET completed_at = EXCLUDED.completed_at
                WHERE completion_records.voter_id = EXCLUDED.voter_id
                RETURNING voter_id
                """,
                record.kind, record.value, record.voter_id, record.completed_at,
            )
            if owner is None:
                return False
        return True

    async def list_ballots(self, voter_id: str) -> List[Ballot]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT id, voter_id, candidate_id, position, cast_at, valid, metadata
                FROM ballots WHERE voter_id = $1 ORDER BY cast_at
                """,
                voter_id,
            )
            return [
                Ballot(
                    id=row["id"],
                    voter_id=row["voter_id"],
                    candidate_id=row["candidate_id"],
                    position=row["position"],
                    cast_at=row["cast_at"],
                    valid=row["valid"],
                    metadata=json.loads(row["metadata"]) if row["metadata"] else {},
                )
                for row in rows
            ]

    async def count_valid_ballots(self) -> Dict[Tuple[str, str], int]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT position, candidate_id, COUNT(*) AS votes
                FROM ballots
                WHERE valid
                GROUP BY position, candidate_id
                """
            )
            return {(row["position"], row["candidate_id"]): row["votes"] for row in rows}
