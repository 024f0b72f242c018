from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from politrade.domain.models import BlockReason
from politrade.state.sqlite_store import SqliteBlockedAssetStore
from politrade.state.store import InMemoryBlockedAssetStore


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 2, 14, 30, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(params=["sqlite", "memory"])
def store_factory(request: pytest.FixtureRequest, tmp_path: Path):
    def build(clock: FakeClock):
        if request.param == "sqlite":
            return SqliteBlockedAssetStore(str(tmp_path / "state.db"), cooldown_days=7, clock=clock)
        return InMemoryBlockedAssetStore(cooldown_days=7, clock=clock)

    return build


def test_block_expires_after_cooldown(store_factory) -> None:
    clock = FakeClock()
    store = store_factory(clock)

    entry = store.block("ABC", BlockReason.NOTIONAL_TOO_SMALL)
    assert entry.expires_at == clock.now + timedelta(days=7)
    assert store.is_blocked("ABC")
    assert store.blocked_symbols() == {"ABC"}

    clock.advance(days=6, hours=23)
    assert store.is_blocked("ABC")
    assert store.cleanup_expired() == 0

    clock.advance(hours=1)
    assert not store.is_blocked("ABC")
    assert store.blocked_symbols() == set()
    assert store.cleanup_expired() == 1
    assert store.cleanup_expired() == 0
    store.close()


def test_reblocking_refreshes_reason_and_expiry(store_factory) -> None:
    clock = FakeClock()
    store = store_factory(clock)

    store.block("ABC", BlockReason.NO_PRICE_DATA)
    clock.advance(days=5)
    store.block("ABC", BlockReason.NOT_FRACTIONABLE)
    clock.advance(days=5)

    entry = store.get("ABC")
    assert entry is not None
    assert entry.reason is BlockReason.NOT_FRACTIONABLE
    assert store.is_blocked("ABC")
    store.close()


def test_sqlite_blocks_survive_restart(tmp_path: Path) -> None:
    clock = FakeClock()
    db_path = tmp_path / "nested" / "state.db"
    store = SqliteBlockedAssetStore(str(db_path), clock=clock)
    store.block("ABC", BlockReason.NOT_FRACTIONABLE)
    clock.advance(minutes=5)
    store.block("XYZ", BlockReason.NO_PRICE_DATA)
    store.close()

    reopened = SqliteBlockedAssetStore(str(db_path), clock=clock)
    active = reopened.list_active()
    reopened.close()

    assert [entry.symbol for entry in active] == ["ABC", "XYZ"]
    assert active[0].reason is BlockReason.NOT_FRACTIONABLE

    connection = sqlite3.connect(db_path)
    row = connection.execute(
        "SELECT reason FROM blocked_assets WHERE symbol='XYZ'"
    ).fetchone()
    connection.close()
    assert row == ("no_price_data",)
