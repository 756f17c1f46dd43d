"""Tests for recommendations.behavior_store.BehaviorStore."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from recommendations.behavior_store import BehaviorStore
from recommendations.models import BehaviorAction, UserBehavior

TS = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _play(user_id: str, n: int) -> UserBehavior:
    return UserBehavior(
        user_id=user_id,
        track_id=f"t{n}",
        action=BehaviorAction.PLAY,
        timestamp=TS + timedelta(seconds=n),
        listen_duration=30.0,
    )


class TestRecord:
    def test_appends_in_order(self) -> None:
        store = BehaviorStore()
        for n in range(3):
            store.record(_play("u1", n))
        assert [b.track_id for b in store.get_behaviors("u1")] == ["t0", "t1", "t2"]

    def test_users_are_independent(self) -> None:
        store = BehaviorStore()
        store.record(_play("u1", 0))
        store.record(_play("u2", 1))
        assert store.count("u1") == 1
        assert store.count("u2") == 1
        assert sorted(store.user_ids()) == ["u1", "u2"]

    def test_unknown_user_has_empty_log(self) -> None:
        store = BehaviorStore()
        assert store.get_behaviors("nobody") == []
        assert store.count("nobody") == 0


class TestBound:
    def test_log_is_capped_at_1000_by_default(self) -> None:
        store = BehaviorStore()
        for n in range(1005):
            store.record(_play("u1", n))
        behaviors = store.get_behaviors("u1")
        assert len(behaviors) == 1000
        assert behaviors[0].track_id == "t5"
        assert behaviors[-1].track_id == "t1004"

    def test_oldest_dropped_first(self) -> None:
        store = BehaviorStore(max_events_per_user=3)
        for n in range(5):
            store.record(_play("u1", n))
        assert [b.track_id for b in store.get_behaviors("u1")] == ["t2", "t3", "t4"]

    def test_rejects_non_positive_bound(self) -> None:
        with pytest.raises(ValueError):
            BehaviorStore(max_events_per_user=0)


class TestSnapshotsAndLocks:
    def test_get_behaviors_returns_copy(self) -> None:
        store = BehaviorStore()
        store.record(_play("u1", 0))
        store.get_behaviors("u1").clear()
        assert store.count("u1") == 1

    def test_clear_forgets_user(self) -> None:
        store = BehaviorStore()
        store.record(_play("u1", 0))
        store.clear("u1")
        assert store.get_behaviors("u1") == []

    def test_same_lock_per_user(self) -> None:
        store = BehaviorStore()
        assert store.user_lock("u1") is store.user_lock("u1")
        assert store.user_lock("u1") is not store.user_lock("u2")

    def test_concurrent_appends_are_not_lost(self) -> None:
        store = BehaviorStore(max_events_per_user=10_000)

        def worker(offset: int) -> None:
            for n in range(250):
                store.record(_play("u1", offset + n))

        threads = [threading.Thread(target=worker, args=(i * 1000,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.count("u1") == 1000
