"""Replay-protection ledger of redeemed assertion nonces (RP side).

Keeps, per email, the set of nonces already accepted. add_if_absent is the
single atomic primitive the verifier relies on: for two concurrent
redemptions of the same assertion exactly one sees True.

Two implementations:
- InMemoryNonceLedger for single-process deployments
- RedisNonceLedger for multi-process deployments
"""

import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

import redis.asyncio as redis

from letsauth.core.store_backend import KEY_PREFIX


class NonceLedger(ABC):
    """Per-email TTL set of consumed nonces."""

    @abstractmethod
    async def add_if_absent(self, email: str, nonce: str, ttl: timedelta) -> bool:
        """Record a nonce as used.

        Args:
            email: Identity the nonce was issued for.
            nonce: Assertion nonce.
            ttl: How long the nonce must be remembered.

        Returns:
            True if the nonce was inserted (first use), False on replay.
        """

    @abstractmethod
    async def extend_ttl(self, email: str, ttl: timedelta) -> None:
        """Refresh the record's expiry. Never shortens an existing expiry."""

    def cleanup_expired(self) -> int:
        """Drop expired nonces; returns how many were removed.

        Backends that expire keys themselves keep the default (nothing to do).
        """
        return 0

    async def close(self) -> None:  # noqa: B027
        """Release backend resources (no-op by default)."""


class InMemoryNonceLedger(NonceLedger):
    """In-memory nonce ledger with per-entry expiry.

    Each nonce carries its own expiry. Adding a nonce drops that email's
    expired entries; once the earliest recorded expiry has passed, the next
    add also sweeps every other email, and a record left empty is removed.
    """

    def __init__(self) -> None:
        self._store: dict[str, dict[str, datetime]] = {}
        self._lock = threading.Lock()
        self._next_expiry: datetime | None = None

    async def add_if_absent(self, email: str, nonce: str, ttl: timedelta) -> bool:
        now = datetime.now(UTC)
        with self._lock:
            if self._next_expiry is not None and now > self._next_expiry:
                self._sweep_locked(now)
            entries = {
                n: expires_at
                for n, expires_at in self._store.get(email, {}).items()
                if now <= expires_at
            }
            if nonce in entries:
                self._store[email] = entries
                return False
            entries[nonce] = now + ttl
            self._store[email] = entries
            if self._next_expiry is None or entries[nonce] < self._next_expiry:
                self._next_expiry = entries[nonce]
            return True

    async def extend_ttl(self, email: str, ttl: timedelta) -> None:
        horizon = datetime.now(UTC) + ttl
        with self._lock:
            entries = self._store.get(email)
            if not entries:
                return
            for nonce, expires_at in entries.items():
                if expires_at < horizon:
                    entries[nonce] = horizon

    def is_used(self, email: str, nonce: str) -> bool:
        """True if the nonce is currently recorded (for inspection and tests)."""
        expires_at = self._store.get(email, {}).get(nonce)
        return expires_at is not None and datetime.now(UTC) <= expires_at

    def entry_count(self, email: str | None = None) -> int:
        """Nonces currently held, for one email or in total."""
        if email is not None:
            return len(self._store.get(email, {}))
        return sum(len(entries) for entries in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def _sweep_locked(self, now: datetime) -> int:
        removed = 0
        next_expiry = None
        for email in list(self._store):
            entries = self._store[email]
            expired = [n for n, expires_at in entries.items() if now > expires_at]
            for nonce in expired:
                del entries[nonce]
            removed += len(expired)
            if not entries:
                del self._store[email]
                continue
            earliest = min(entries.values())
            if next_expiry is None or earliest < next_expiry:
                next_expiry = earliest
        self._next_expiry = next_expiry
        return removed

    def cleanup_expired(self) -> int:
        """Remove expired nonces and empty records.

        Returns:
            Number of nonces removed.
        """
        with self._lock:
            return self._sweep_locked(datetime.now(UTC))

    def clear(self) -> None:
        """Clear all records (for testing)."""
        with self._lock:
            self._store.clear()
            self._next_expiry = None


class RedisNonceLedger(NonceLedger):
    """Redis-backed nonce ledger.

    One set per email. SADD reports how many members it inserted, which is
    the first-writer-wins signal. The key TTL is raised with PEXPIRE NX
    (no expiry yet) followed by PEXPIRE GT (only if longer); both need
    Redis >= 7.0.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @staticmethod
    def _key(email: str) -> str:
        return f"{KEY_PREFIX}:nonces:{email}"

    async def add_if_absent(self, email: str, nonce: str, ttl: timedelta) -> bool:
        key = self._key(email)
        ttl_ms = max(int(ttl.total_seconds() * 1000), 1)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.sadd(key, nonce)
            pipe.pexpire(key, ttl_ms, nx=True)
            added, _ = await pipe.execute()
        return added == 1

    async def extend_ttl(self, email: str, ttl: timedelta) -> None:
        key = self._key(email)
        ttl_ms = max(int(ttl.total_seconds() * 1000), 1)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.pexpire(key, ttl_ms, nx=True)
            pipe.pexpire(key, ttl_ms, gt=True)
            await pipe.execute()

    async def close(self) -> None:
        await self._client.aclose()
