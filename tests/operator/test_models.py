"""Tests for ledger record and task models."""

import pytest
from hexbytes import HexBytes
from pydantic import ValidationError

from irsavs.operator.models import ProtocolVariant, RateTaskType, Swap, Task, TaskNotification, TaskType

OWNER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


class TestSwapFromChain:

    def test_positional_record(self):
        raw = (3, OWNER.lower(), 10, 600, True, 86400, 1, True, 4, True, 0, 1000)
        swap = Swap.from_chain(raw)
        assert swap.id == 3
        assert swap.owner == OWNER
        assert swap.matched_with == 4
        assert swap.start_time == 1000

    def test_positional_record_without_id(self):
        raw = (OWNER, 10, 600, False, 86400, 1, False, 0, True, 0, 0)
        swap = Swap.from_chain(raw, swap_id=9)
        assert swap.id == 9
        assert swap.is_paying_fixed is False

    def test_record_without_id_needs_swap_id(self):
        with pytest.raises(ValueError):
            Swap.from_chain((OWNER, 10, 600, False, 86400, 1, False, 0, True, 0, 0))

    def test_named_record(self):
        raw = {
            "owner": OWNER, "notionalAmount": 10, "fixedRate": 600, "isPayingFixed": True,
            "duration": 86400, "margin": 1, "matched": False, "matchedWith": 0,
            "isActive": True, "lastSettlement": 0, "startTime": 0,
        }
        assert Swap.from_chain(raw, swap_id=2).id == 2

    def test_unexpected_arity(self):
        with pytest.raises(ValueError):
            Swap.from_chain((1, 2, 3))


class TestTask:

    def test_bounds(self):
        with pytest.raises(ValidationError):
            Task(task_created_block=2**32, task_type=0, payload=b"")
        with pytest.raises(ValidationError):
            Task(task_created_block=1, task_type=256, payload=b"")

    def test_hex_payload(self):
        assert Task(task_created_block=1, task_type=0, payload="0xdead").payload == b"\xde\xad"

    def test_contract_arg(self):
        task = Task(task_created_block=7, task_type=2, payload=b"\x01")
        assert task.as_contract_arg() == {"taskCreatedBlock": 7, "taskType": 2, "payload": b"\x01"}
        assert task.as_contract_arg(b"\x02")["payload"] == b"\x02"

    def test_notification_from_log(self):
        log = {
            "args": {
                "taskIndex": 5,
                "task": {"taskCreatedBlock": 99, "taskType": 1, "payload": HexBytes("0xbeef")},
            },
            "blockNumber": 100,
            "transactionHash": HexBytes("0x" + "ab" * 32),
        }
        notification = TaskNotification.from_log(log)
        assert notification.task_index == 5
        assert notification.task.payload == b"\xbe\xef"
        assert notification.tx_hash == "0x" + "ab" * 32


class TestProtocolVariant:

    def test_task_type_names(self):
        assert ProtocolVariant.MATCH.task_types is TaskType
        assert ProtocolVariant.RATE.task_types is RateTaskType
        assert ProtocolVariant.MATCH.task_type_name(2) == "SETTLEMENT"
        assert ProtocolVariant.RATE.task_type_name(1) == "RATE_AND_SETTLEMENT"
        assert ProtocolVariant.RATE.task_type_name(2) == "UNKNOWN(2)"
