"""Tests for the ledger watcher."""

import asyncio

import pytest

from irsavs.operator.watcher import TaskWatcher

from doubles import FakeLedger, make_notification


class FlakyLedger(FakeLedger):
    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    async def block_number(self):
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("rpc timeout")
        return await super().block_number()


class TestTaskWatcher:

    @pytest.mark.asyncio
    async def test_starts_at_chain_head(self):
        ledger = FakeLedger()
        ledger.head = 50
        ledger.events = [make_notification(0, 0, b"old", block=40)]
        watcher = TaskWatcher(ledger)
        queue = asyncio.Queue()

        assert await watcher.poll_once(queue) == 0
        assert watcher.next_block == 51
        assert queue.empty()
        assert ledger.event_queries == []

    @pytest.mark.asyncio
    async def test_enqueues_new_tasks_in_index_order(self):
        ledger = FakeLedger()
        watcher = TaskWatcher(ledger, start_block=10)
        ledger.head = 12
        ledger.events = [
            make_notification(2, 0, b"c", block=12),
            make_notification(0, 0, b"a", block=10),
            make_notification(1, 0, b"b", block=11),
        ]
        queue = asyncio.Queue()

        assert await watcher.poll_once(queue) == 3
        assert [queue.get_nowait().task_index for _ in range(3)] == [0, 1, 2]
        assert watcher.next_block == 13

    @pytest.mark.asyncio
    async def test_no_new_blocks(self):
        ledger = FakeLedger()
        ledger.head = 9
        watcher = TaskWatcher(ledger, start_block=10)
        assert await watcher.poll_once(asyncio.Queue()) == 0
        assert watcher.next_block == 10

    @pytest.mark.asyncio
    async def test_block_range_is_capped(self):
        ledger = FakeLedger()
        ledger.head = 2_000
        watcher = TaskWatcher(ledger, start_block=0, max_block_range=500)
        queue = asyncio.Queue()

        await watcher.poll_once(queue)
        await watcher.poll_once(queue)
        assert ledger.event_queries == [(0, 499), (500, 999)]

    @pytest.mark.asyncio
    async def test_stops_after_consecutive_errors(self, monkeypatch):
        async def no_sleep(_):
            return None

        monkeypatch.setattr(asyncio, "sleep", no_sleep)
        ledger = FlakyLedger(failures=100)
        watcher = TaskWatcher(ledger, max_consecutive_errors=3)

        await watcher.run(asyncio.Queue())
        assert ledger.failures == 97

    @pytest.mark.asyncio
    async def test_recovers_from_transient_error(self):
        ledger = FlakyLedger(failures=1)
        watcher = TaskWatcher(ledger, start_block=100, max_consecutive_errors=3)
        queue = asyncio.Queue()

        with pytest.raises(ConnectionError):
            await watcher.poll_once(queue)
        ledger.events = [make_notification(0, 0, b"a", block=100)]
        assert await watcher.poll_once(queue) == 1
