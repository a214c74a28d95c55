"""Tests for log-spam suppression and its SQLite persistence."""

from __future__ import annotations

import logging
from pathlib import Path

from kiosk_engine.infra.spam_guard import SpamGuard, SpamGuardFilter, message_hash
from kiosk_engine.infra.state import StateStore


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.messages: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())


class TestSpamGuard:
    def test_first_occurrence_passes(self) -> None:
        guard = SpamGuard(clock=FakeClock())
        assert guard.should_emit("disk almost full") is True

    def test_duplicate_within_window_suppressed(self) -> None:
        clock = FakeClock()
        guard = SpamGuard(window=300, clock=clock)
        assert guard.should_emit("x")
        clock.now += 299
        assert not guard.should_emit("x")
        assert guard.suppressed_total == 1

    def test_duplicate_after_window_passes(self) -> None:
        clock = FakeClock()
        guard = SpamGuard(window=300, clock=clock)
        guard.should_emit("x")
        clock.now += 300
        assert guard.should_emit("x")

    def test_suppressed_repeat_does_not_extend_window(self) -> None:
        clock = FakeClock()
        guard = SpamGuard(window=300, clock=clock)
        guard.should_emit("x")
        clock.now += 200
        guard.should_emit("x")  # suppressed
        clock.now += 150  # 350s after first emission
        assert guard.should_emit("x")

    def test_distinct_messages_independent(self) -> None:
        guard = SpamGuard(clock=FakeClock())
        assert guard.should_emit("a")
        assert guard.should_emit("b")

    def test_prune(self) -> None:
        clock = FakeClock()
        guard = SpamGuard(clock=clock)
        guard.should_emit("old")
        clock.now += 90_000
        guard.should_emit("new")
        assert guard.prune(86_400) == 1
        assert list(guard.snapshot()) == [message_hash("new")]


class TestSpamGuardFilter:
    def test_filters_handler_output(self) -> None:
        guard = SpamGuard(clock=FakeClock())
        handler = ListHandler()
        handler.addFilter(SpamGuardFilter(guard))
        log = logging.getLogger("test.spam_guard.filter")
        log.propagate = False
        log.setLevel(logging.INFO)
        log.addHandler(handler)
        try:
            for _ in range(5):
                log.warning("Service %s is not running", "kiosk-app")
            log.warning("Something else")
        finally:
            log.removeHandler(handler)
        assert handler.messages == ["Service kiosk-app is not running", "Something else"]
        assert guard.suppressed_total == 4

    def test_one_decision_across_handlers(self) -> None:
        guard = SpamGuard(clock=FakeClock())
        first, second = ListHandler(), ListHandler()
        for h in (first, second):
            h.addFilter(SpamGuardFilter(guard))
        log = logging.getLogger("test.spam_guard.fanout")
        log.propagate = False
        log.setLevel(logging.INFO)
        log.addHandler(first)
        log.addHandler(second)
        try:
            log.info("hello")
        finally:
            log.removeHandler(first)
            log.removeHandler(second)
        assert first.messages == ["hello"]
        assert second.messages == ["hello"]


class TestPersistence:
    def test_entries_survive_runs(self, tmp_path: Path) -> None:
        clock = FakeClock()
        store = StateStore.in_dir(tmp_path)
        guard = SpamGuard(window=300, clock=clock)
        guard.should_emit("flapping")
        store.save_spam_entries(guard.snapshot())
        store.close()

        clock.now += 60
        store = StateStore.in_dir(tmp_path)
        next_run = SpamGuard(window=300, entries=store.load_spam_entries(), clock=clock)
        store.close()
        assert not next_run.should_emit("flapping")

    def test_recovery_history(self, tmp_path: Path) -> None:
        store = StateStore.in_dir(tmp_path)
        assert store.last_recovery("restart_app") is None
        store.record_recovery("restart_app", "app_server", 100.0)
        store.record_recovery("restart_app", "force-restart", 200.0)
        assert store.last_recovery("restart_app") == 200.0
        store.close()

    def test_overlapping_runs_keep_each_others_entries(self, tmp_path: Path) -> None:
        clock = FakeClock()
        sync_store = StateStore.in_dir(tmp_path)
        health_store = StateStore.in_dir(tmp_path)
        sync_guard = SpamGuard(entries=sync_store.load_spam_entries(), clock=clock)
        health_guard = SpamGuard(entries=health_store.load_spam_entries(), clock=clock)

        sync_guard.should_emit("manifest unreachable")
        health_guard.should_emit("kiosk-app not running")
        health_store.save_spam_entries(health_guard.snapshot())
        sync_store.save_spam_entries(sync_guard.snapshot())

        merged = sync_store.load_spam_entries()
        assert set(merged) == {message_hash("manifest unreachable"), message_hash("kiosk-app not running")}
        sync_store.close()
        health_store.close()

    def test_save_keeps_newest_timestamp(self, tmp_path: Path) -> None:
        store = StateStore.in_dir(tmp_path)
        store.save_spam_entries({"abc": 200.0})
        store.save_spam_entries({"abc": 100.0})
        assert store.load_spam_entries() == {"abc": 200.0}
        store.close()

    def test_prune_removes_only_stale_rows(self, tmp_path: Path) -> None:
        clock = FakeClock()
        store = StateStore.in_dir(tmp_path)
        store.save_spam_entries({
            message_hash("other process, fresh"): clock.now - 10,
            message_hash("long gone"): clock.now - 90_000,
        })
        guard = SpamGuard(clock=clock)
        guard.should_emit("this run")
        guard.prune(86_400)
        store.save_spam_entries(guard.snapshot(), prune_before=guard.pruned_before)

        assert set(store.load_spam_entries()) == {
            message_hash("other process, fresh"), message_hash("this run"),
        }
        store.close()
