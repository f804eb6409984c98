"""
backend/tests/test_award_ledger.py

Purpose:
    Award ledger semantics: at-most-once grants under concurrency, store
    failures surfaced as LedgerUnavailable, admin revocation and aggregates.
"""

from __future__ import annotations

import asyncio

import pytest
from pymongo.errors import AutoReconnect

from lumilink.services.award_ledger import AwardLedger, LedgerUnavailable, award_id


def _ledger(timeout: float = 1.0) -> AwardLedger:
    return AwardLedger(timeout_seconds=timeout)


@pytest.mark.asyncio
async def test_first_grant_wins_and_repeat_is_not_error(fake_db) -> None:
    ledger = _ledger()

    first = await ledger.try_award("u1", "first-link")
    second = await ledger.try_award("u1", "first-link")

    assert first.granted is True
    assert first.record is not None and first.record.source == "evaluation"
    assert second.granted is False and second.record is None
    assert list(fake_db.badge_awards.docs) == [award_id("u1", "first-link")]


@pytest.mark.asyncio
async def test_concurrent_grants_from_independent_ledgers_yield_one_winner(fake_db) -> None:
    ledgers = [_ledger(), _ledger()]

    results = await asyncio.gather(*[
        ledgers[i % 2].try_award("u1", "viral") for i in range(20)
    ])

    assert sum(1 for r in results if r.granted) == 1
    assert len(fake_db.badge_awards.docs) == 1


@pytest.mark.asyncio
async def test_distinct_badges_are_independent(fake_db) -> None:
    ledger = _ledger()

    results = await asyncio.gather(
        ledger.try_award("u1", "first-link"),
        ledger.try_award("u1", "first-view"),
        ledger.try_award("u2", "first-link"),
    )

    assert all(r.granted for r in results)
    assert await ledger.held_badge_keys("u1") == {"first-link", "first-view"}
    assert await ledger.has_award("u2", "first-link") is True
    assert await ledger.has_award("u2", "first-view") is False


@pytest.mark.asyncio
async def test_store_error_is_unavailable(fake_db) -> None:
    fake_db.badge_awards.fail_with = AutoReconnect("connection reset")
    ledger = _ledger()

    with pytest.raises(LedgerUnavailable):
        await ledger.try_award("u1", "first-link")
    with pytest.raises(LedgerUnavailable):
        await ledger.held_badge_keys("u1")
    assert fake_db.badge_awards.docs == {}


@pytest.mark.asyncio
async def test_slow_store_is_unavailable(fake_db) -> None:
    fake_db.badge_awards.delay = 0.2

    with pytest.raises(LedgerUnavailable, match="timed out"):
        await _ledger(timeout=0.01).has_award("u1", "first-link")


@pytest.mark.asyncio
async def test_admin_grant_and_revoke(fake_db) -> None:
    ledger = _ledger()

    granted = await ledger.try_award("u1", "beta-tester", source="admin")
    awards = await ledger.list_awards("u1")

    assert granted.granted is True
    assert [(a.badge_key, a.source) for a in awards] == [("beta-tester", "admin")]
    assert await ledger.revoke("u1", "beta-tester") is True
    assert await ledger.revoke("u1", "beta-tester") is False
    assert await ledger.has_award("u1", "beta-tester") is False


@pytest.mark.asyncio
async def test_owner_counts_and_leaderboard(fake_db) -> None:
    ledger = _ledger()
    await ledger.try_award("u1", "first-link")
    await ledger.try_award("u2", "first-link")
    await ledger.try_award("u2", "first-view")
    await ledger.try_award("u3", "first-view")

    counts = await ledger.owner_counts()
    board = await ledger.leaderboard(2)

    assert counts == {"first-link": 2, "first-view": 2}
    assert [row["_id"] for row in board] == ["u2", "u1"]
    assert board[0]["badge_count"] == 2
