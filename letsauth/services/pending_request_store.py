"""TTL store for in-flight authentication requests (IdP side).

One pending request per (email, origin). Issuing again for the same pair
replaces the previous record, which invalidates the earlier confirmation
link. Confirmation consumes the record with take_and_delete, which must be
a single atomic store operation: of two racing confirmations at most one
may observe the record.

Two implementations:
- InMemoryPendingRequestStore for single-process deployments
- RedisPendingRequestStore for multi-process deployments
"""

import hashlib
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import redis.asyncio as redis

from letsauth.core.store_backend import KEY_PREFIX

# Default TTL for pending requests (15 minutes)
DEFAULT_PENDING_TTL = timedelta(minutes=15)


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a confirmation token (the form that is stored)."""
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass
class PendingAuthRequest:
    """An unconfirmed login attempt.

    Attributes:
        email: Address the user claims to control.
        origin: Canonical RP origin the login is for.
        token_hash: SHA-256 hex digest of the confirmation token.
        endpoint: Full RP callback URI to deliver the assertion to.
        created_at: When the request was issued.
        expires_at: When the request stops being confirmable.
    """

    email: str
    origin: str
    token_hash: str
    endpoint: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class PendingRequestStore(ABC):
    """Keyed TTL storage for pending authentication requests."""

    @abstractmethod
    async def put(
        self,
        email: str,
        origin: str,
        token_hash: str,
        endpoint: str,
        ttl: timedelta = DEFAULT_PENDING_TTL,
    ) -> PendingAuthRequest:
        """Insert or replace the pending request for (email, origin).

        Resets the TTL.

        Returns:
            The stored record.
        """

    @abstractmethod
    async def take_and_delete(
        self, email: str, origin: str
    ) -> PendingAuthRequest | None:
        """Atomically read and remove the pending request.

        Returns:
            The record, or None if absent or expired.
        """

    def cleanup_expired(self) -> int:
        """Drop expired records; returns how many were removed.

        Backends that expire keys themselves keep the default (nothing to do).
        """
        return 0

    async def close(self) -> None:  # noqa: B027
        """Release backend resources (no-op by default)."""


class InMemoryPendingRequestStore(PendingRequestStore):
    """In-memory store for pending requests.

    Expired records are dropped on access, by cleanup_expired(), and by any
    write made after the earliest recorded expiry has passed, so abandoned
    requests cannot accumulate.

    Mutations hold the store's lock, so the store is safe from both the
    event loop and worker threads.
    """

    def __init__(self) -> None:
        self._store: dict[tuple[str, str], PendingAuthRequest] = {}
        self._lock = threading.Lock()
        self._next_expiry: datetime | None = None

    async def put(
        self,
        email: str,
        origin: str,
        token_hash: str,
        endpoint: str,
        ttl: timedelta = DEFAULT_PENDING_TTL,
    ) -> PendingAuthRequest:
        now = datetime.now(UTC)
        record = PendingAuthRequest(
            email=email,
            origin=origin,
            token_hash=token_hash,
            endpoint=endpoint,
            created_at=now,
            expires_at=now + ttl,
        )
        with self._lock:
            if self._next_expiry is not None and now > self._next_expiry:
                self._sweep_locked(now)
            self._store[(email, origin)] = record
            if self._next_expiry is None or record.expires_at < self._next_expiry:
                self._next_expiry = record.expires_at
        return record

    async def take_and_delete(
        self, email: str, origin: str
    ) -> PendingAuthRequest | None:
        with self._lock:
            record = self._store.pop((email, origin), None)
        if record is None:
            return None
        if datetime.now(UTC) > record.expires_at:
            return None
        return record

    def _sweep_locked(self, now: datetime) -> int:
        expired = [key for key, rec in self._store.items() if now > rec.expires_at]
        for key in expired:
            del self._store[key]
        self._next_expiry = min(
            (rec.expires_at for rec in self._store.values()), default=None
        )
        return len(expired)

    def cleanup_expired(self) -> int:
        """Remove all expired records.

        Returns:
            Number of records removed.
        """
        with self._lock:
            return self._sweep_locked(datetime.now(UTC))

    def __len__(self) -> int:
        return len(self._store)

    def clear(self) -> None:
        """Clear all records (for testing)."""
        with self._lock:
            self._store.clear()
            self._next_expiry = None


class RedisPendingRequestStore(PendingRequestStore):
    """Redis-backed store for pending requests.

    Each record is a hash with a key-level TTL. Both writes and the
    take-and-delete run as MULTI/EXEC transactions so no other client can
    interleave between the read and the delete.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @staticmethod
    def _key(email: str, origin: str) -> str:
        return f"{KEY_PREFIX}:pending:{email}:{origin}"

    async def put(
        self,
        email: str,
        origin: str,
        token_hash: str,
        endpoint: str,
        ttl: timedelta = DEFAULT_PENDING_TTL,
    ) -> PendingAuthRequest:
        now = datetime.now(UTC)
        key = self._key(email, origin)
        async with self._client.pipeline(transaction=True) as pipe:
            # DEL first so stale fields from an older record never survive
            pipe.delete(key)
            pipe.hset(
                key,
                mapping={
                    "token_hash": token_hash,
                    "endpoint": endpoint,
                    "created_at": now.isoformat(),
                    "expires_at": (now + ttl).isoformat(),
                },
            )
            pipe.expire(key, ttl)
            await pipe.execute()
        return PendingAuthRequest(
            email=email,
            origin=origin,
            token_hash=token_hash,
            endpoint=endpoint,
            created_at=now,
            expires_at=now + ttl,
        )

    async def take_and_delete(
        self, email: str, origin: str
    ) -> PendingAuthRequest | None:
        key = self._key(email, origin)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hgetall(key)
            pipe.delete(key)
            values, _ = await pipe.execute()

        if not values or not {"token_hash", "endpoint", "expires_at"} <= values.keys():
            return None

        expires_at = datetime.fromisoformat(values["expires_at"])
        if datetime.now(UTC) > expires_at:
            return None

        created_at = values.get("created_at")
        return PendingAuthRequest(
            email=email,
            origin=origin,
            token_hash=values["token_hash"],
            endpoint=values["endpoint"],
            created_at=datetime.fromisoformat(created_at) if created_at else expires_at,
            expires_at=expires_at,
        )

    async def close(self) -> None:
        await self._client.aclose()
