"""Tests for the nonce ledgers.

Covers:
- add_if_absent: first use wins, replay detected, per-email isolation, expiry
- extend_ttl: raises expiries, never shortens them
- cleanup_expired / clear on the in-memory ledger
- Redis ledger: SADD + PEXPIRE NX / GT inside MULTI/EXEC
"""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from letsauth.services.nonce_ledger import InMemoryNonceLedger, RedisNonceLedger

_EMAIL = "alice@example.com"
_NONCE = "a" * 32
_TTL = timedelta(minutes=20)


def _redis_client(execute_result: list) -> tuple[MagicMock, MagicMock]:
    """Mock redis.asyncio client whose transaction returns execute_result."""
    pipe = MagicMock()
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)
    pipe.execute = AsyncMock(return_value=execute_result)

    client = MagicMock()
    client.pipeline.return_value = pipe
    client.aclose = AsyncMock()
    return client, pipe


# =============================================================================
# Tests: in-memory ledger
# =============================================================================


class TestInMemoryAddIfAbsent:
    """First-writer-wins insertion."""

    @pytest.mark.asyncio
    async def test_first_use_is_accepted(self) -> None:
        """A fresh nonce is inserted."""
        ledger = InMemoryNonceLedger()
        assert await ledger.add_if_absent(_EMAIL, _NONCE, _TTL) is True
        assert ledger.is_used(_EMAIL, _NONCE)

    @pytest.mark.asyncio
    async def test_second_use_is_replay(self) -> None:
        """The same nonce for the same email is refused."""
        ledger = InMemoryNonceLedger()
        await ledger.add_if_absent(_EMAIL, _NONCE, _TTL)
        assert await ledger.add_if_absent(_EMAIL, _NONCE, _TTL) is False

    @pytest.mark.asyncio
    async def test_nonces_are_scoped_per_email(self) -> None:
        """The same nonce string under another email is independent."""
        ledger = InMemoryNonceLedger()
        await ledger.add_if_absent(_EMAIL, _NONCE, _TTL)
        assert await ledger.add_if_absent("bob@example.com", _NONCE, _TTL) is True

    @pytest.mark.asyncio
    async def test_many_nonces_per_email(self) -> None:
        """Distinct nonces for one email all succeed."""
        ledger = InMemoryNonceLedger()
        results = [
            await ledger.add_if_absent(_EMAIL, f"{i:032x}", _TTL) for i in range(5)
        ]
        assert all(results)

    @pytest.mark.asyncio
    async def test_expired_nonce_can_be_added_again(self) -> None:
        """Once its TTL has elapsed a nonce is forgotten."""
        ledger = InMemoryNonceLedger()
        await ledger.add_if_absent(_EMAIL, _NONCE, _TTL)
        ledger._store[_EMAIL][_NONCE] = datetime.now(UTC) - timedelta(seconds=1)

        assert not ledger.is_used(_EMAIL, _NONCE)
        assert await ledger.add_if_absent(_EMAIL, _NONCE, _TTL) is True

    @pytest.mark.asyncio
    async def test_concurrent_adds_have_one_winner(self) -> None:
        """Of many racing insertions exactly one returns True."""
        ledger = InMemoryNonceLedger()
        results = await asyncio.gather(
            *(ledger.add_if_absent(_EMAIL, _NONCE, _TTL) for _ in range(20))
        )
        assert results.count(True) == 1


class TestInMemoryExtendTtl:
    """Expiry refresh."""

    @pytest.mark.asyncio
    async def test_extends_shorter_entries(self) -> None:
        """Entries expiring before the new horizon are pushed out."""
        ledger = InMemoryNonceLedger()
        await ledger.add_if_absent(_EMAIL, _NONCE, timedelta(seconds=5))
        await ledger.extend_ttl(_EMAIL, timedelta(hours=1))

        expires_at = ledger._store[_EMAIL][_NONCE]
        assert expires_at > datetime.now(UTC) + timedelta(minutes=59)

    @pytest.mark.asyncio
    async def test_never_shortens(self) -> None:
        """A shorter TTL leaves longer expiries untouched."""
        ledger = InMemoryNonceLedger()
        await ledger.add_if_absent(_EMAIL, _NONCE, timedelta(hours=1))
        before = ledger._store[_EMAIL][_NONCE]

        await ledger.extend_ttl(_EMAIL, timedelta(seconds=5))

        assert ledger._store[_EMAIL][_NONCE] == before

    @pytest.mark.asyncio
    async def test_unknown_email_is_noop(self) -> None:
        """Extending a missing record creates nothing."""
        ledger = InMemoryNonceLedger()
        await ledger.extend_ttl(_EMAIL, _TTL)
        assert _EMAIL not in ledger._store


class TestInMemoryMaintenance:
    """cleanup_expired and clear."""

    @pytest.mark.asyncio
    async def test_cleanup_drops_expired_and_empty_records(self) -> None:
        """Expired nonces go; emails left with no nonces go too."""
        ledger = InMemoryNonceLedger()
        await ledger.add_if_absent(_EMAIL, _NONCE, _TTL)
        await ledger.add_if_absent("bob@example.com", _NONCE, _TTL)
        ledger._store[_EMAIL][_NONCE] = datetime.now(UTC) - timedelta(seconds=1)

        assert ledger.cleanup_expired() == 1
        assert _EMAIL not in ledger._store
        assert ledger.is_used("bob@example.com", _NONCE)

    @pytest.mark.asyncio
    async def test_add_drops_expired_nonces_for_email(self) -> None:
        """One email's record holds only live nonces after each add."""
        ledger = InMemoryNonceLedger()
        for i in range(500):
            await ledger.add_if_absent(_EMAIL, f"{i:032x}", timedelta(milliseconds=1))
        await asyncio.sleep(0.05)

        assert await ledger.add_if_absent(_EMAIL, _NONCE, _TTL) is True

        assert ledger.entry_count(_EMAIL) == 1
        assert ledger.is_used(_EMAIL, _NONCE)

    @pytest.mark.asyncio
    async def test_add_sweeps_other_expired_emails(self) -> None:
        """Records of emails that never log in again are removed."""
        ledger = InMemoryNonceLedger()
        for i in range(500):
            await ledger.add_if_absent(
                f"user{i}@example.com", _NONCE, timedelta(milliseconds=1)
            )
        await ledger.add_if_absent("bob@example.com", _NONCE, _TTL)
        await asyncio.sleep(0.05)

        await ledger.add_if_absent(_EMAIL, _NONCE, _TTL)

        assert len(ledger) == 2
        assert ledger.entry_count() == 2
        assert ledger.is_used("bob@example.com", _NONCE)

    @pytest.mark.asyncio
    async def test_replay_still_detected_after_pruning(self) -> None:
        """Pruning expired entries keeps live nonces for replay checks."""
        ledger = InMemoryNonceLedger()
        await ledger.add_if_absent(_EMAIL, _NONCE, _TTL)
        await ledger.add_if_absent(_EMAIL, "b" * 32, timedelta(milliseconds=1))
        await asyncio.sleep(0.05)

        assert await ledger.add_if_absent(_EMAIL, _NONCE, _TTL) is False
        assert ledger.entry_count(_EMAIL) == 1

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        """clear() forgets every nonce."""
        ledger = InMemoryNonceLedger()
        await ledger.add_if_absent(_EMAIL, _NONCE, _TTL)
        ledger.clear()
        assert not ledger.is_used(_EMAIL, _NONCE)


# =============================================================================
# Tests: Redis ledger
# =============================================================================


class TestRedisNonceLedger:
    """RedisNonceLedger command sequences."""

    @pytest.mark.asyncio
    async def test_add_first_use(self) -> None:
        """SADD returning 1 means the nonce was new."""
        client, pipe = _redis_client([1, True])
        ledger = RedisNonceLedger(client)

        assert await ledger.add_if_absent(_EMAIL, _NONCE, _TTL) is True

        key = f"letsauth:nonces:{_EMAIL}"
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.sadd.assert_called_once_with(key, _NONCE)
        pipe.pexpire.assert_called_once_with(key, 20 * 60 * 1000, nx=True)

    @pytest.mark.asyncio
    async def test_add_replay(self) -> None:
        """SADD returning 0 means the nonce was already a member."""
        client, _ = _redis_client([0, False])
        ledger = RedisNonceLedger(client)
        assert await ledger.add_if_absent(_EMAIL, _NONCE, _TTL) is False

    @pytest.mark.asyncio
    async def test_extend_uses_nx_then_gt(self) -> None:
        """The key TTL is set if missing, otherwise only raised."""
        client, pipe = _redis_client([False, True])
        ledger = RedisNonceLedger(client)

        await ledger.extend_ttl(_EMAIL, timedelta(seconds=90))

        key = f"letsauth:nonces:{_EMAIL}"
        calls = pipe.pexpire.call_args_list
        assert calls[0].args == (key, 90_000)
        assert calls[0].kwargs == {"nx": True}
        assert calls[1].args == (key, 90_000)
        assert calls[1].kwargs == {"gt": True}

    @pytest.mark.asyncio
    async def test_sub_millisecond_ttl_is_clamped(self) -> None:
        """PEXPIRE never receives zero."""
        client, pipe = _redis_client([1, True])
        ledger = RedisNonceLedger(client)

        await ledger.add_if_absent(_EMAIL, _NONCE, timedelta(microseconds=10))

        assert pipe.pexpire.call_args.args[1] == 1

    @pytest.mark.asyncio
    async def test_close_closes_client(self) -> None:
        """close() releases the connection pool."""
        client, _ = _redis_client([])
        await RedisNonceLedger(client).close()
        client.aclose.assert_awaited_once()
