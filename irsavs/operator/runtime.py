"""Operator runtime.

Main loop: watcher -> queue -> dispatcher, plus the optional settlement
scheduler. A single consumer processes notifications in arrival order;
the bounded queue makes backpressure on the watcher explicit.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable
from typing import Any

import bittensor as bt

from irsavs.operator.dispatcher import TaskDispatcher, TaskOutcome
from irsavs.operator.models import TaskNotification
from irsavs.operator.scheduler import SettlementScheduler
from irsavs.operator.watcher import TaskWatcher

# Why run() returned
STOP_REQUESTED = "stop_requested"
WATCHER_EXITED = "watcher_exited"


class OperatorRuntime:
    """Main operator loop."""

    def __init__(
        self,
        watcher: TaskWatcher,
        dispatcher: TaskDispatcher,
        scheduler: SettlementScheduler | None = None,
        queue_size: int = 100,
        on_outcome: Callable[[TaskOutcome], Any] | None = None,
    ):
        self.watcher = watcher
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.queue_size = queue_size
        self.on_outcome = on_outcome

        self.stats: Counter[str] = Counter()
        self.queue: asyncio.Queue[TaskNotification] | None = None
        self._running = False

    async def run(self) -> str:
        """Run until stopped or the watcher gives up. Returns the stop reason."""
        self._running = True
        self.queue = asyncio.Queue(maxsize=self.queue_size)
        bt.logging.info({
            "operator_runtime": {
                "status": "starting",
                "handlers": self.dispatcher.registry.handlers,
                "variant": self.dispatcher.context.variant.value,
                "scheduler": self.scheduler is not None,
                "queue_size": self.queue_size,
            }
        })

        watcher_task = asyncio.create_task(self.watcher.run(self.queue), name="task_watcher")
        tasks = [watcher_task, asyncio.create_task(self._consume(), name="task_consumer")]
        if self.scheduler is not None:
            tasks.append(asyncio.create_task(self.scheduler.run(), name="settlement_scheduler"))

        reason = STOP_REQUESTED
        try:
            while self._running and not watcher_task.done():
                await asyncio.sleep(0.2)
            if watcher_task.done() and self._running:
                reason = WATCHER_EXITED
                # finish what the watcher already queued
                await self.queue.join()
        except asyncio.CancelledError:
            pass
        finally:
            self.watcher.stop()
            if self.scheduler is not None:
                self.scheduler.stop()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._running = False
            bt.logging.info({
                "operator_runtime": {"status": "stopped", "reason": reason, "outcomes": dict(self.stats)}
            })
        return reason

    def stop(self) -> None:
        """Signal the runtime to stop."""
        self._running = False

    async def _consume(self) -> None:
        assert self.queue is not None
        while True:
            notification = await self.queue.get()
            try:
                outcome = await self.dispatcher.process(notification)
                self.stats[type(outcome).__name__] += 1
                if self.on_outcome is not None:
                    self.on_outcome(outcome)
            except Exception as e:
                self.stats["Error"] += 1
                bt.logging.error({
                    "task_consumer_error": {"task_index": notification.task_index, "error": str(e)}
                })
            finally:
                self.queue.task_done()


__all__ = ["STOP_REQUESTED", "WATCHER_EXITED", "OperatorRuntime"]
