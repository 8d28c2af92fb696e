"""Tests for conflict strategies and the in-flight guard."""

from __future__ import annotations

import pytest

from travelog.errors import SyncInProgressError
from travelog.sync import ConflictAction, ConflictResolver, ConflictStrategy, SyncGuard


def test_newest_wins_prefers_later_timestamp():
    resolver = ConflictResolver()

    assert resolver.resolve("p1", 2000, 1000).action is ConflictAction.PUSH
    assert resolver.resolve("p1", 1000, 2000).action is ConflictAction.PULL


def test_newest_wins_tie_keeps_local():
    assert ConflictResolver().resolve("p1", 1000, 1000).action is ConflictAction.PUSH


def test_missing_remote_pushes_local():
    resolution = ConflictResolver(ConflictStrategy.KEEP_SERVER).resolve("p1", 1000, None)
    assert resolution.action is ConflictAction.PUSH


def test_fixed_strategies_ignore_timestamps():
    assert ConflictResolver(ConflictStrategy.KEEP_LOCAL).resolve("p1", 1, 9).action is ConflictAction.PUSH
    assert ConflictResolver(ConflictStrategy.KEEP_SERVER).resolve("p1", 9, 1).action is ConflictAction.PULL


def test_manual_strategy_skips():
    resolution = ConflictResolver(ConflictStrategy.MANUAL).resolve("p1", 1, 2)
    assert resolution.action is ConflictAction.SKIP
    assert resolution.record_id == "p1"


@pytest.mark.parametrize(
    "choice, strategy",
    [
        ("keepLocal", ConflictStrategy.KEEP_LOCAL),
        ("keepServer", ConflictStrategy.KEEP_SERVER),
        (" KEEPSERVER ", ConflictStrategy.KEEP_SERVER),
    ],
)
def test_for_choice_accepts_user_choices(choice, strategy):
    assert ConflictResolver.for_choice(choice).strategy is strategy


def test_for_choice_rejects_unknown():
    with pytest.raises(ValueError):
        ConflictResolver.for_choice("keepBoth")


def test_guard_rejects_second_holder_and_releases():
    guard = SyncGuard()

    with guard.hold("alice"):
        assert guard.is_active("alice")
        with pytest.raises(SyncInProgressError):
            with guard.hold("alice"):
                pass
        with guard.hold("bob"):
            assert guard.active_users == {"alice", "bob"}

    assert not guard.is_active("alice")


def test_guard_releases_on_error():
    guard = SyncGuard()

    with pytest.raises(RuntimeError):
        with guard.hold("alice"):
            raise RuntimeError("boom")

    assert not guard.is_active("alice")
