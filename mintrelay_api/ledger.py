"""
Idempotency ledger for processed payment transactions.

A payment hash is marked immediately before its mint is submitted. Marking
is a set-if-absent: only the caller that wins the mark may mint.

Backends:
- UpstashLedgerBackend: Upstash Redis REST API (SET ... EX ttl NX)
- SqlLedgerBackend: SQLite (local development) or PostgreSQL via SQLAlchemy
- NullLedgerBackend: no store configured

The IdempotencyLedger facade falls back to an in-process claim table when the
backend is absent or failing. That table does not survive restarts and is not
shared between server instances, so minting is at-least-once in that mode.

Entries are `in_flight` from mark until the mint is confirmed, then
`minted`. Only `in_flight` entries can be retracted.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlparse

import httpx
import structlog
from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    and_,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .exceptions import LedgerBackendError

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 86400

STATE_IN_FLIGHT = "in_flight"
STATE_MINTED = "minted"


class LedgerBackend:
    """Process-external store for processed payment hashes."""

    name = "base"
    # False when the backend keeps nothing; the facade's process set is then authoritative.
    shared = True

    async def is_marked(self, tx_hash: str) -> bool:
        raise NotImplementedError

    async def mark(self, tx_hash: str, ttl_seconds: int) -> bool:
        """Atomically create an in-flight entry; False if one already exists."""
        raise NotImplementedError

    async def unmark(self, tx_hash: str) -> None:
        """Remove an in-flight entry."""
        raise NotImplementedError

    async def complete(self, tx_hash: str, mint_tx_hash: str, ttl_seconds: int) -> None:
        """Move an entry to minted."""
        raise NotImplementedError

    async def status(self, tx_hash: str) -> Optional[str]:
        """Stored state, or None when absent."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class NullLedgerBackend(LedgerBackend):
    """No store configured: never marked, marks trivially succeed."""

    name = "none"
    shared = False

    async def is_marked(self, tx_hash: str) -> bool:
        return False

    async def mark(self, tx_hash: str, ttl_seconds: int) -> bool:
        return True

    async def unmark(self, tx_hash: str) -> None:
        return None

    async def complete(self, tx_hash: str, mint_tx_hash: str, ttl_seconds: int) -> None:
        return None

    async def status(self, tx_hash: str) -> Optional[str]:
        return None


class MemoryLedgerBackend(LedgerBackend):
    """Shared in-memory store with expiry (single process, tests)."""

    name = "memory"

    def __init__(self, clock: Any = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def _live(self, tx_hash: str) -> Optional[str]:
        entry = self._entries.get(tx_hash)
        if entry is None:
            return None
        state, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[tx_hash]
            return None
        return state

    async def is_marked(self, tx_hash: str) -> bool:
        return self._live(tx_hash) is not None

    async def mark(self, tx_hash: str, ttl_seconds: int) -> bool:
        if self._live(tx_hash) is not None:
            return False
        self._entries[tx_hash] = (STATE_IN_FLIGHT, self._clock() + ttl_seconds)
        return True

    async def unmark(self, tx_hash: str) -> None:
        if self._live(tx_hash) == STATE_IN_FLIGHT:
            del self._entries[tx_hash]

    async def complete(self, tx_hash: str, mint_tx_hash: str, ttl_seconds: int) -> None:
        self._entries[tx_hash] = (STATE_MINTED, self._clock() + ttl_seconds)

    async def status(self, tx_hash: str) -> Optional[str]:
        return self._live(tx_hash)


# Deletes the key only while it still holds the in-flight marker.
UNMARK_IN_FLIGHT_SCRIPT = (
    "if redis.call('GET', KEYS[1]) == ARGV[1] then "
    "return redis.call('DEL', KEYS[1]) end return 0"
)


class UpstashLedgerBackend(LedgerBackend):
    """
    Upstash Redis over its REST API.

    Keys are `processed:<txHash>` holding `in_flight` or `minted:<mintTxHash>`.
    """

    name = "upstash"

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def key(tx_hash: str) -> str:
        return f"processed:{tx_hash}"

    async def command(self, *args: Any) -> Any:
        """Run one Redis command and return its `result`."""
        client = await self._get_client()
        try:
            response = await client.post(
                self.url,
                json=[str(a) for a in args],
                headers={"Authorization": f"Bearer {self.token}"},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerBackendError(f"Upstash request failed: {e}") from e

        if isinstance(payload, dict) and payload.get("error"):
            raise LedgerBackendError(f"Upstash error: {payload['error']}")
        if not isinstance(payload, dict):
            raise LedgerBackendError("Unexpected Upstash response")
        return payload.get("result")

    async def is_marked(self, tx_hash: str) -> bool:
        result = await self.command("EXISTS", self.key(tx_hash))
        return result in (1, "1")

    async def mark(self, tx_hash: str, ttl_seconds: int) -> bool:
        result = await self.command(
            "SET", self.key(tx_hash), STATE_IN_FLIGHT, "EX", ttl_seconds, "NX"
        )
        return result == "OK"

    async def unmark(self, tx_hash: str) -> None:
        await self.command("EVAL", UNMARK_IN_FLIGHT_SCRIPT, 1, self.key(tx_hash), STATE_IN_FLIGHT)

    async def complete(self, tx_hash: str, mint_tx_hash: str, ttl_seconds: int) -> None:
        await self.command(
            "SET", self.key(tx_hash), f"{STATE_MINTED}:{mint_tx_hash}", "EX", ttl_seconds, "XX"
        )

    async def status(self, tx_hash: str) -> Optional[str]:
        value = await self.command("GET", self.key(tx_hash))
        if value is None:
            return None
        return str(value).split(":", 1)[0]


# SQLAlchemy metadata
metadata = MetaData()

processed_payments = Table(
    "processed_payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tx_hash", String(66), nullable=False),
    Column("state", String(16), nullable=False, default=STATE_IN_FLIGHT),
    Column("marked_at", DateTime, nullable=False),
    Column("expires_at", DateTime, nullable=False),
    Column("mint_tx_hash", String(66), nullable=True),
    UniqueConstraint("tx_hash", name="uq_processed_tx_hash"),
    Index("idx_processed_state", "state"),
)


def parse_database_url(url: str) -> str:
    """
    Normalize database URL.

    postgres://... (Heroku/Railway format) is converted to postgresql://.
    """
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def _mask_url(url: str) -> str:
    """Mask password in URL for logging."""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(parsed.password, "***")
    return url


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqlLedgerBackend(LedgerBackend):
    """
    Ledger table in SQLite or PostgreSQL.

    The unique constraint on tx_hash provides the set-if-absent. Blocking
    database calls run in a worker thread.
    """

    name = "sql"

    def __init__(self, database_url: str = "sqlite:///./ledger.db"):
        self.database_url = parse_database_url(database_url)
        self._engine: Optional[Engine] = None
        self._init_db()

    def _get_engine(self) -> Engine:
        """Get or create database engine."""
        if self._engine is None:
            connect_args = {}
            if self.database_url.startswith("sqlite://"):
                connect_args["check_same_thread"] = False

            self._engine = create_engine(
                self.database_url,
                connect_args=connect_args,
                pool_pre_ping=True,
            )
        return self._engine

    def _init_db(self) -> None:
        """Initialize database schema."""
        metadata.create_all(self._get_engine())
        logger.info(
            "ledger.database_initialized",
            url=_mask_url(self.database_url),
            backend="postgresql" if self.database_url.startswith("postgresql") else "sqlite",
        )

    async def close(self) -> None:
        if self._engine:
            self._engine.dispose()
            self._engine = None

    async def _run(self, fn: Any, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as e:
            raise LedgerBackendError(f"Ledger database error: {e}") from e

    def _is_marked_sync(self, tx_hash: str) -> bool:
        with self._get_engine().connect() as conn:
            stmt = select(processed_payments.c.id).where(
                processed_payments.c.tx_hash == tx_hash,
                processed_payments.c.expires_at > _utcnow(),
            )
            return conn.execute(stmt).fetchone() is not None

    def _mark_sync(self, tx_hash: str, ttl_seconds: int) -> bool:
        now = _utcnow()
        try:
            with self._get_engine().begin() as conn:
                conn.execute(
                    delete(processed_payments).where(
                        processed_payments.c.tx_hash == tx_hash,
                        processed_payments.c.expires_at <= now,
                    )
                )
                conn.execute(
                    processed_payments.insert().values(
                        tx_hash=tx_hash,
                        state=STATE_IN_FLIGHT,
                        marked_at=now,
                        expires_at=now + timedelta(seconds=ttl_seconds),
                    )
                )
        except IntegrityError:
            return False
        return True

    def _unmark_sync(self, tx_hash: str) -> None:
        with self._get_engine().begin() as conn:
            conn.execute(
                delete(processed_payments).where(
                    and_(
                        processed_payments.c.tx_hash == tx_hash,
                        processed_payments.c.state == STATE_IN_FLIGHT,
                    )
                )
            )

    def _complete_sync(self, tx_hash: str, mint_tx_hash: str, ttl_seconds: int) -> None:
        with self._get_engine().begin() as conn:
            conn.execute(
                update(processed_payments)
                .where(processed_payments.c.tx_hash == tx_hash)
                .values(
                    state=STATE_MINTED,
                    mint_tx_hash=mint_tx_hash,
                    expires_at=_utcnow() + timedelta(seconds=ttl_seconds),
                )
            )

    def _status_sync(self, tx_hash: str) -> Optional[str]:
        with self._get_engine().connect() as conn:
            stmt = select(processed_payments.c.state).where(
                processed_payments.c.tx_hash == tx_hash,
                processed_payments.c.expires_at > _utcnow(),
            )
            row = conn.execute(stmt).fetchone()
            return row.state if row else None

    async def is_marked(self, tx_hash: str) -> bool:
        return await self._run(self._is_marked_sync, tx_hash)

    async def mark(self, tx_hash: str, ttl_seconds: int) -> bool:
        return await self._run(self._mark_sync, tx_hash, ttl_seconds)

    async def unmark(self, tx_hash: str) -> None:
        await self._run(self._unmark_sync, tx_hash)

    async def complete(self, tx_hash: str, mint_tx_hash: str, ttl_seconds: int) -> None:
        await self._run(self._complete_sync, tx_hash, mint_tx_hash, ttl_seconds)

    async def status(self, tx_hash: str) -> Optional[str]:
        return await self._run(self._status_sync, tx_hash)


class IdempotencyLedger:
    """
    Advisory record of payment hashes that already triggered a mint.

    Wraps a backend with an in-process claim table. A claim is held only
    while its backend mark is pending, or for the TTL when the backend could
    not record it (or keeps nothing). Otherwise the backend is the source of
    truth, so an entry retracted elsewhere is visible here immediately.
    Hashes are keyed lowercase.
    """

    def __init__(
        self,
        backend: Optional[LedgerBackend] = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Any = time.monotonic,
    ):
        self.backend = backend or NullLedgerBackend()
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # hash -> expiry; None while the backend mark is pending
        self._local: dict[str, Optional[float]] = {}

    @property
    def backend_name(self) -> str:
        return self.backend.name

    def _claimed(self, key: str) -> bool:
        if key not in self._local:
            return False
        expires_at = self._local[key]
        if expires_at is not None and expires_at <= self._clock():
            del self._local[key]
            return False
        return True

    def _hold(self, key: str) -> None:
        self._local[key] = self._clock() + self.ttl_seconds

    async def is_marked(self, tx_hash: str) -> bool:
        key = tx_hash.lower()
        if self._claimed(key):
            return True
        try:
            return await self.backend.is_marked(key)
        except LedgerBackendError as e:
            logger.warning("ledger.backend_unavailable", op="is_marked", tx_hash=key, error=str(e))
            return False

    async def mark(self, tx_hash: str) -> bool:
        """
        Set-if-absent. True only for the caller that newly marked the hash.

        The local claim is taken before the first await, so concurrent
        callers in this process are serialized here. If the backend fails,
        the claim is held for the TTL and the mark degrades to process scope.
        """
        key = tx_hash.lower()
        if self._claimed(key):
            return False
        self._local[key] = None

        try:
            newly = await self.backend.mark(key, self.ttl_seconds)
        except LedgerBackendError as e:
            logger.warning("ledger.fallback", op="mark", tx_hash=key, error=str(e))
            self._hold(key)
            return True

        if newly and not self.backend.shared:
            self._hold(key)
        else:
            self._local.pop(key, None)
        return newly

    async def unmark(self, tx_hash: str) -> bool:
        """
        Retract an in-flight mark so the payer can retry.

        Returns False when the backend could not be updated; the entry then
        stays marked until its TTL expires or an operator removes it.
        """
        key = tx_hash.lower()
        self._local.pop(key, None)
        try:
            await self.backend.unmark(key)
        except LedgerBackendError as e:
            logger.error(
                "ledger.compensation_failed",
                tx_hash=key,
                backend=self.backend_name,
                error=str(e),
                action="manual reconciliation required",
            )
            return False
        return True

    async def complete(self, tx_hash: str, mint_tx_hash: str) -> None:
        key = tx_hash.lower()
        try:
            await self.backend.complete(key, mint_tx_hash, self.ttl_seconds)
        except LedgerBackendError as e:
            # Entry stays in_flight; it still blocks duplicates.
            logger.warning("ledger.complete_failed", tx_hash=key, mint_tx_hash=mint_tx_hash, error=str(e))

    async def status(self, tx_hash: str) -> Optional[str]:
        key = tx_hash.lower()
        state = await self.backend.status(key)
        if state is None and self._claimed(key):
            return STATE_IN_FLIGHT
        return state

    async def close(self) -> None:
        await self.backend.close()


def build_ledger(
    upstash_url: Optional[str] = None,
    upstash_token: Optional[str] = None,
    database_url: Optional[str] = None,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
) -> IdempotencyLedger:
    """Pick the ledger backend from configuration (Upstash, then SQL)."""
    backend: LedgerBackend
    if upstash_url and upstash_token:
        backend = UpstashLedgerBackend(upstash_url, upstash_token)
    elif database_url:
        backend = SqlLedgerBackend(database_url)
    else:
        logger.warning(
            "ledger.no_backend",
            detail="Idempotency store not configured; using in-process set only",
        )
        backend = NullLedgerBackend()

    return IdempotencyLedger(backend=backend, ttl_seconds=ttl_seconds)
