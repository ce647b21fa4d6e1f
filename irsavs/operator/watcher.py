"""Ledger watcher - feeds NewTaskCreated events into the dispatch queue.

Polls the ledger for new blocks and fetches task events range by range.
Starts at the chain head: events emitted before startup are not replayed,
and no progress is persisted across restarts.
"""

from __future__ import annotations

import asyncio

import bittensor as bt

from irsavs.chain.interface import LedgerGateway
from irsavs.operator.models import TaskNotification


class TaskWatcher:
    """Polls ``NewTaskCreated`` logs and enqueues one notification per task."""

    def __init__(
        self,
        ledger: LedgerGateway,
        poll_interval: float = 2.0,
        start_block: int | None = None,
        max_block_range: int = 500,
        max_consecutive_errors: int = 10,
    ):
        self.ledger = ledger
        self.poll_interval = poll_interval
        self.next_block = start_block
        self.max_block_range = max_block_range
        self.max_consecutive_errors = max_consecutive_errors
        self._running = False

    async def poll_once(self, queue: asyncio.Queue[TaskNotification]) -> int:
        """Fetch events for the next block range. Returns the number enqueued."""
        latest = await self.ledger.block_number()
        if self.next_block is None:
            self.next_block = latest + 1
            bt.logging.info({"task_watcher": {"status": "listening", "from_block": self.next_block}})
            return 0
        if latest < self.next_block:
            return 0

        to_block = min(latest, self.next_block + self.max_block_range - 1)
        notifications = await self.ledger.get_new_task_events(self.next_block, to_block)
        for notification in sorted(notifications, key=lambda n: n.task_index):
            await queue.put(notification)

        if notifications:
            bt.logging.debug({
                "task_watcher": {
                    "from_block": self.next_block,
                    "to_block": to_block,
                    "tasks": len(notifications),
                }
            })
        self.next_block = to_block + 1
        return len(notifications)

    async def run(self, queue: asyncio.Queue[TaskNotification]) -> None:
        """Poll until stopped or too many consecutive RPC errors."""
        self._running = True
        consecutive_errors = 0

        while self._running:
            try:
                await self.poll_once(queue)
                consecutive_errors = 0
            except asyncio.CancelledError:
                break
            except Exception as e:
                consecutive_errors += 1
                bt.logging.error({"task_watcher_error": str(e), "consecutive": consecutive_errors})
                if consecutive_errors >= self.max_consecutive_errors:
                    bt.logging.error({"task_watcher": "too_many_errors, stopping"})
                    break
                await asyncio.sleep(min(30, 5 * consecutive_errors))
                continue

            try:
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break

        self._running = False
        bt.logging.info({"task_watcher": "stopped"})

    def stop(self) -> None:
        self._running = False


__all__ = ["TaskWatcher"]
