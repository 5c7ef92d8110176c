"""Tests for rebuild leases."""

from __future__ import annotations

from pathlib import Path

import pytest

from indexsync.core.errors import RebuildInProgressError
from indexsync.db import Database
from indexsync.sync.leases import InProcessLeases, RebuildLeases, SqlLeases, make_holder_id


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestInProcessLeases:
    def test_second_acquire_rejected(self) -> None:
        leases = InProcessLeases()
        leases.acquire("Article", "a")

        with pytest.raises(RebuildInProgressError) as exc_info:
            leases.acquire("Article", "b")

        assert exc_info.value.details["holder"] == "a"

    def test_types_are_independent(self) -> None:
        leases = InProcessLeases()
        leases.acquire("Article", "a")
        leases.acquire("Comment", "b")

        assert leases.holder("Article") == "a"
        assert leases.holder("Comment") == "b"

    def test_release_frees_lease(self) -> None:
        leases = InProcessLeases()
        leases.acquire("Article", "a")
        leases.release("Article", "a")

        leases.acquire("Article", "b")
        assert leases.holder("Article") == "b"

    def test_release_by_non_holder_ignored(self) -> None:
        leases = InProcessLeases()
        leases.acquire("Article", "a")
        leases.release("Article", "b")

        assert leases.holder("Article") == "a"

    def test_expired_lease_can_be_taken(self) -> None:
        """A crashed holder stops blocking once its TTL passes."""
        clock = FakeClock()
        leases = InProcessLeases(clock=clock)
        leases.acquire("Article", "a", ttl=10)

        clock.now += 11

        assert leases.holder("Article") is None
        leases.acquire("Article", "b", ttl=10)
        assert not leases.renew("Article", "a", ttl=10)

    def test_renew_extends_ttl(self) -> None:
        clock = FakeClock()
        leases = InProcessLeases(clock=clock)
        leases.acquire("Article", "a", ttl=10)

        clock.now += 8
        assert leases.renew("Article", "a", ttl=10)
        clock.now += 8

        assert leases.holder("Article") == "a"

    def test_satisfies_protocol(self) -> None:
        assert isinstance(InProcessLeases(), RebuildLeases)


class TestSqlLeases:
    @pytest.fixture
    def db(self, tmp_path: Path) -> Database:
        return Database(tmp_path / "indexsync.db")

    def test_lease_visible_across_instances(self, db: Database) -> None:
        """Two workers sharing the database see each other's lease."""
        first = SqlLeases(db)
        second = SqlLeases(Database(db.db_path))
        first.acquire("Article", "host-a:1:aaaa")

        with pytest.raises(RebuildInProgressError):
            second.acquire("Article", "host-b:2:bbbb")
        assert second.holder("Article") == "host-a:1:aaaa"

    def test_release_then_acquire(self, db: Database) -> None:
        leases = SqlLeases(db)
        leases.acquire("Article", "a")
        leases.release("Article", "a")

        assert leases.holder("Article") is None
        leases.acquire("Article", "b")
        assert leases.holder("Article") == "b"

    def test_expired_lease_taken_over(self, db: Database) -> None:
        leases = SqlLeases(db)
        leases.acquire("Article", "a", ttl=-1)

        leases.acquire("Article", "b")

        assert leases.holder("Article") == "b"
        assert not leases.renew("Article", "a")

    def test_renew(self, db: Database) -> None:
        leases = SqlLeases(db)
        leases.acquire("Article", "a")

        assert leases.renew("Article", "a")
        assert not leases.renew("Article", "b")
        assert not leases.renew("Comment", "a")


def test_holder_ids_are_unique() -> None:
    assert make_holder_id() != make_holder_id()
