"""Tests for UpdateScheduler — queueing, debounce windows, renames and rescans."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from vaultsearch.config import UpdateConfig, VaultConfig
from vaultsearch.vault.models import FileEvent, FileEventKind
from vaultsearch.vault.reader import VaultReader
from vaultsearch.vault.scheduler import UpdateScheduler

if TYPE_CHECKING:
    from pathlib import Path

LONG_NOTE = "This note has more than enough words to be worth embedding at all. " * 2


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeStore:
    """Minimal IndexStore stand-in tracking calls."""

    def __init__(self, initialized: bool = True) -> None:
        self.is_initialized = initialized
        self.is_initializing = False
        self.indexed: dict[str, str] = {}
        self.reindexed: list[str] = []
        self.removed: list[str] = []
        self.saves = 0
        self.active = 0
        self.peak = 0

    async def reindex_file(
        self, path: str, content: str, last_modified: float | None = None, *, save: bool = True
    ) -> bool:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0)
            self.reindexed.append(path)
            self.indexed[path] = content
            if save:
                self.saves += 1
            return True
        finally:
            self.active -= 1

    async def remove_note(self, path: str) -> bool:
        self.removed.append(path)
        return self.indexed.pop(path, None) is not None

    async def save_to_file(self) -> bool:
        self.saves += 1
        return True

    def get_embedded_paths(self) -> list[str]:
        return list(self.indexed)


def _write_md(vault: Path, name: str, content: str = LONG_NOTE) -> Path:
    p = vault / name
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content)
    return p


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


def _scheduler(
    vault: Path, store: FakeStore, clock: FakeClock, **updates: object
) -> UpdateScheduler:
    config = UpdateConfig(**{"frequency_seconds": 10, "min_debounce_seconds": 5, **updates})
    return UpdateScheduler(store, VaultReader(VaultConfig(path=vault)), config, clock=clock)  # type: ignore[arg-type]


@pytest.fixture
def scheduler(vault: Path, store: FakeStore, clock: FakeClock) -> UpdateScheduler:
    return _scheduler(vault, store, clock)


# ---------------------------------------------------------------------------
# Tests — timing
# ---------------------------------------------------------------------------


class TestTiming:
    def test_debounce_follows_frequency(self, scheduler: UpdateScheduler) -> None:
        assert scheduler.debounce_seconds == 10

    def test_debounce_floor(self, vault: Path, store: FakeStore, clock: FakeClock) -> None:
        scheduler = _scheduler(vault, store, clock, frequency_seconds=1)
        assert scheduler.debounce_seconds == 5

    def test_check_interval(self, vault: Path, store: FakeStore, clock: FakeClock) -> None:
        assert _scheduler(vault, store, clock, frequency_seconds=10).check_interval_seconds == 30
        assert _scheduler(vault, store, clock, frequency_seconds=60).check_interval_seconds == 120

    @pytest.mark.asyncio
    async def test_update_frequency_flushes(
        self, vault: Path, scheduler: UpdateScheduler, store: FakeStore
    ) -> None:
        _write_md(vault, "a.md")
        scheduler.queue_file("a.md")

        await scheduler.update_frequency(60)

        assert scheduler.debounce_seconds == 60
        assert store.reindexed == ["a.md"]
        assert scheduler.pending_count == 0


# ---------------------------------------------------------------------------
# Tests — queue and events
# ---------------------------------------------------------------------------


class TestQueue:
    def test_requeue_refreshes_timestamp(
        self, scheduler: UpdateScheduler, clock: FakeClock
    ) -> None:
        scheduler.queue_file("a.md")
        clock.now += 7
        scheduler.queue_file("a.md")
        assert scheduler.queued_at("a.md") == clock.now
        assert scheduler.pending_count == 1

    def test_transfer_preserves_timestamp(
        self, scheduler: UpdateScheduler, clock: FakeClock
    ) -> None:
        scheduler.queue_file("old.md")
        queued = clock.now
        clock.now += 3

        scheduler.transfer_modified_file("old.md", "new.md")

        assert not scheduler.has_modified_file("old.md")
        assert scheduler.has_modified_file("new.md")
        assert scheduler.queued_at("new.md") == queued

    def test_transfer_unqueued_uses_now(
        self, scheduler: UpdateScheduler, clock: FakeClock
    ) -> None:
        scheduler.transfer_modified_file("old.md", "new.md")
        assert scheduler.queued_at("new.md") == clock.now

    def test_non_note_files_ignored(self, scheduler: UpdateScheduler) -> None:
        scheduler.handle_event(FileEvent(FileEventKind.MODIFIED, "image.png"))
        scheduler.handle_event(FileEvent(FileEventKind.CREATED, ".obsidian/workspace.md"))
        assert scheduler.pending_count == 0

    @pytest.mark.parametrize("mode", ["none", "onLoad"])
    def test_events_ignored_outside_on_update(
        self, vault: Path, store: FakeStore, clock: FakeClock, mode: str
    ) -> None:
        scheduler = _scheduler(vault, store, clock, mode=mode)
        scheduler.handle_event(FileEvent(FileEventKind.MODIFIED, "a.md"))
        assert scheduler.pending_count == 0

    @pytest.mark.asyncio
    async def test_delete_removes_pending_and_index(
        self, scheduler: UpdateScheduler, store: FakeStore
    ) -> None:
        store.indexed["a.md"] = "old"
        scheduler.handle_event(FileEvent(FileEventKind.MODIFIED, "a.md"))
        scheduler.handle_event(FileEvent(FileEventKind.DELETED, "a.md"))
        await scheduler.flush()

        assert not scheduler.has_modified_file("a.md")
        assert store.removed == ["a.md"]
        assert store.reindexed == []
        assert "a.md" not in store.indexed

    @pytest.mark.asyncio
    async def test_rename_is_delete_plus_create(
        self, vault: Path, scheduler: UpdateScheduler, store: FakeStore, clock: FakeClock
    ) -> None:
        store.indexed["old.md"] = "old"
        scheduler.handle_event(FileEvent(FileEventKind.MODIFIED, "old.md"))
        queued = clock.now
        clock.now += 2

        scheduler.handle_event(FileEvent(FileEventKind.RENAMED, "new.md", old_path="old.md"))
        assert scheduler.queued_at("new.md") == queued
        assert not scheduler.has_modified_file("old.md")

        _write_md(vault, "new.md")
        await scheduler.flush()
        assert store.removed == ["old.md"]
        assert store.reindexed == ["new.md"]

    @pytest.mark.asyncio
    async def test_rename_to_other_extension_deletes(
        self, scheduler: UpdateScheduler, store: FakeStore
    ) -> None:
        store.indexed["a.md"] = "old"
        scheduler.handle_event(FileEvent(FileEventKind.RENAMED, "a.txt", old_path="a.md"))
        await scheduler.flush()
        assert store.removed == ["a.md"]
        assert scheduler.pending_count == 0

    def test_rename_from_other_extension_queues(self, scheduler: UpdateScheduler) -> None:
        scheduler.handle_event(FileEvent(FileEventKind.RENAMED, "a.md", old_path="a.txt"))
        assert scheduler.has_modified_file("a.md")


# ---------------------------------------------------------------------------
# Tests — processing
# ---------------------------------------------------------------------------


class TestProcessPending:
    @pytest.mark.asyncio
    async def test_only_settled_paths_processed(
        self, vault: Path, scheduler: UpdateScheduler, store: FakeStore, clock: FakeClock
    ) -> None:
        _write_md(vault, "a.md")
        _write_md(vault, "b.md")
        scheduler.queue_file("a.md")
        clock.now += 8
        scheduler.queue_file("b.md")
        clock.now += 4

        assert await scheduler.process_pending() == 1
        assert store.reindexed == ["a.md"]
        assert scheduler.has_modified_file("b.md")

    @pytest.mark.asyncio
    async def test_force_processes_everything(
        self, vault: Path, scheduler: UpdateScheduler, store: FakeStore
    ) -> None:
        _write_md(vault, "a.md")
        _write_md(vault, "b.md")
        scheduler.queue_file("a.md")
        scheduler.queue_file("b.md")

        assert await scheduler.flush() == 2
        assert sorted(store.reindexed) == ["a.md", "b.md"]
        assert scheduler.pending_count == 0

    @pytest.mark.asyncio
    async def test_vanished_file_removed(
        self, scheduler: UpdateScheduler, store: FakeStore
    ) -> None:
        store.indexed["gone.md"] = "old"
        scheduler.queue_file("gone.md")
        await scheduler.flush()

        assert store.reindexed == []
        assert store.removed == ["gone.md"]
        assert scheduler.pending_count == 0

    @pytest.mark.asyncio
    async def test_uninitialized_store_requeues(
        self, vault: Path, store: FakeStore, clock: FakeClock
    ) -> None:
        store.is_initialized = False
        scheduler = _scheduler(vault, store, clock)
        _write_md(vault, "a.md")

        assert await scheduler.reindex_file("a.md") is False
        assert scheduler.has_modified_file("a.md")
        assert store.reindexed == []

    @pytest.mark.asyncio
    async def test_mode_none_skips_unless_manual(
        self, vault: Path, store: FakeStore, clock: FakeClock
    ) -> None:
        scheduler = _scheduler(vault, store, clock, mode="none")
        _write_md(vault, "a.md")

        assert await scheduler.reindex_file("a.md") is False
        assert store.reindexed == []

        assert await scheduler.reindex_file("a.md", manual=True) is True
        assert store.reindexed == ["a.md"]

    @pytest.mark.asyncio
    async def test_traversal_rejected(self, scheduler: UpdateScheduler, store: FakeStore) -> None:
        assert await scheduler.reindex_file("../outside.md") is False
        assert store.reindexed == []

    @pytest.mark.asyncio
    async def test_debounce_timer_fires(
        self, vault: Path, store: FakeStore, clock: FakeClock
    ) -> None:
        scheduler = _scheduler(
            vault, store, clock, frequency_seconds=0, min_debounce_seconds=0.01
        )
        _write_md(vault, "a.md")
        scheduler.handle_event(FileEvent(FileEventKind.MODIFIED, "a.md"))
        clock.now += 1

        for _ in range(100):
            await asyncio.sleep(0.01)
            if store.reindexed:
                break
        assert store.reindexed == ["a.md"]
        await scheduler.aclose()


# ---------------------------------------------------------------------------
# Tests — rescan
# ---------------------------------------------------------------------------


class TestRescan:
    def test_not_started_before_initialization(
        self, vault: Path, clock: FakeClock
    ) -> None:
        scheduler = _scheduler(vault, FakeStore(initialized=False), clock)
        assert scheduler.rescan_vault_files() is None

    @pytest.mark.asyncio
    async def test_indexes_whole_vault_in_batches(
        self, vault: Path, store: FakeStore, clock: FakeClock
    ) -> None:
        for i in range(25):
            _write_md(vault, f"notes/n{i:02d}.md")
        _write_md(vault, ".obsidian/ignored.md")
        store.indexed["deleted-long-ago.md"] = "stale"
        scheduler = _scheduler(vault, store, clock, rescan_batch_size=10, rescan_batch_delay_ms=1)

        task = scheduler.rescan_vault_files()
        assert task is not None
        assert not task.done()
        assert store.reindexed == []
        assert store.peak == 0
        assert scheduler.rescan_vault_files() is task

        assert await task == 25
        assert sorted(store.reindexed) == [f"notes/n{i:02d}.md" for i in range(25)]
        assert 1 <= store.peak <= 10
        assert store.removed == ["deleted-long-ago.md"]
        assert store.saves == 1

    @pytest.mark.asyncio
    async def test_batch_size_bounds_concurrent_reindexes(
        self, vault: Path, store: FakeStore, clock: FakeClock
    ) -> None:
        for i in range(12):
            _write_md(vault, f"n{i:02d}.md")
        scheduler = _scheduler(vault, store, clock, rescan_batch_size=3, rescan_batch_delay_ms=1)

        assert await scheduler.rescan_vault_files() == 12
        assert 1 <= store.peak <= 3
        assert store.active == 0

    @pytest.mark.asyncio
    async def test_rescan_bypasses_mode_none(
        self, vault: Path, store: FakeStore, clock: FakeClock
    ) -> None:
        _write_md(vault, "a.md")
        scheduler = _scheduler(vault, store, clock, mode="none")
        task = scheduler.rescan_vault_files()
        assert await task == 1

    def test_initial_indexing_flag(self, scheduler: UpdateScheduler, store: FakeStore) -> None:
        assert scheduler.is_initial_indexing_in_progress() is False
        store.is_initializing = True
        assert scheduler.is_initial_indexing_in_progress() is True


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_aclose_flushes_queue(
        self, vault: Path, scheduler: UpdateScheduler, store: FakeStore
    ) -> None:
        _write_md(vault, "a.md")
        scheduler.start()
        scheduler.queue_file("a.md")

        await scheduler.aclose()

        assert store.reindexed == ["a.md"]
        assert scheduler.pending_count == 0

    @pytest.mark.asyncio
    async def test_aclose_leaves_no_timer_when_store_uninitialized(
        self, vault: Path, clock: FakeClock
    ) -> None:
        store = FakeStore(initialized=False)
        scheduler = _scheduler(vault, store, clock)
        _write_md(vault, "a.md")
        scheduler.queue_file("a.md")

        await scheduler.aclose()

        assert store.reindexed == []
        assert scheduler.has_modified_file("a.md")
        assert scheduler._timer is None
