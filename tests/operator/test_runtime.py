"""Tests for the operator runtime loop."""

import asyncio

import pytest

from irsavs.operator.codec import encode_payload
from irsavs.operator.dispatcher import Answered, DecodeFailed, TaskDispatcher
from irsavs.operator.handlers import OperatorContext, build_registry
from irsavs.operator.models import ProtocolVariant, SwapRequest
from irsavs.operator.runtime import STOP_REQUESTED, WATCHER_EXITED, OperatorRuntime
from irsavs.operator.watcher import TaskWatcher

from doubles import ONE_ETH, FakeLedger, FakePool, make_notification


class ScriptedWatcher:
    """Enqueues a fixed list of notifications, then exits."""

    def __init__(self, notifications):
        self.notifications = notifications
        self.stopped = False

    async def run(self, queue):
        for notification in self.notifications:
            await queue.put(notification)

    def stop(self):
        self.stopped = True


class IdleWatcher:
    def __init__(self):
        self.stopped = False

    async def run(self, queue):
        while not self.stopped:
            await asyncio.sleep(0.01)

    def stop(self):
        self.stopped = True


class UnreachableLedger(FakeLedger):
    async def block_number(self):
        raise ConnectionError("rpc down")


def _dispatcher(account, ledger):
    context = OperatorContext(
        ledger=ledger,
        variable_pool=FakePool(),
        fixed_pool=FakePool(),
        variant=ProtocolVariant.MATCH,
        verify_loans=False,
    )
    return TaskDispatcher(build_registry(ProtocolVariant.MATCH), context, account)


class TestOperatorRuntime:

    @pytest.mark.asyncio
    async def test_drains_queue_when_watcher_finishes(self, operator_account):
        payload = encode_payload(SwapRequest(
            user=operator_account.address, notional_amount=ONE_ETH, fixed_rate=500,
            is_paying_fixed=True, duration=86400, margin=0,
        ))
        ledger = FakeLedger()
        outcomes = []
        runtime = OperatorRuntime(
            watcher=ScriptedWatcher([
                make_notification(0, 0, payload),
                make_notification(1, 0, b"\x00\x01"),
                make_notification(2, 0, payload),
            ]),
            dispatcher=_dispatcher(operator_account, ledger),
            on_outcome=outcomes.append,
        )

        reason = await asyncio.wait_for(runtime.run(), timeout=5)

        assert reason == WATCHER_EXITED
        assert [type(o) for o in outcomes] == [Answered, DecodeFailed, Answered]
        assert runtime.stats["Answered"] == 2
        assert runtime.stats["DecodeFailed"] == 1
        assert [index for _, index, _ in ledger.responses] == [0, 2]

    @pytest.mark.asyncio
    async def test_stop_ends_run(self, operator_account):
        watcher = IdleWatcher()
        runtime = OperatorRuntime(watcher=watcher, dispatcher=_dispatcher(operator_account, FakeLedger()))

        task = asyncio.create_task(runtime.run())
        await asyncio.sleep(0.05)
        runtime.stop()
        reason = await asyncio.wait_for(task, timeout=5)

        assert reason == STOP_REQUESTED
        assert watcher.stopped

    @pytest.mark.asyncio
    async def test_watcher_giving_up_is_reported(self, operator_account):
        ledger = UnreachableLedger()
        runtime = OperatorRuntime(
            watcher=TaskWatcher(ledger, poll_interval=0.01, max_consecutive_errors=1),
            dispatcher=_dispatcher(operator_account, ledger),
        )

        assert await asyncio.wait_for(runtime.run(), timeout=5) == WATCHER_EXITED

    @pytest.mark.asyncio
    async def test_consumer_survives_callback_errors(self, operator_account):
        def broken_callback(outcome):
            raise RuntimeError("callback failed")

        runtime = OperatorRuntime(
            watcher=ScriptedWatcher([make_notification(0, 9, b""), make_notification(1, 9, b"")]),
            dispatcher=_dispatcher(operator_account, FakeLedger()),
            on_outcome=broken_callback,
        )
        await asyncio.wait_for(runtime.run(), timeout=5)

        assert runtime.stats["DecodeFailed"] == 2
        assert runtime.stats["Error"] == 2
