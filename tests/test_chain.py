import asyncio
import threading
from types import SimpleNamespace

import pytest
from substrateinterface.exceptions import SubstrateRequestException

from fakes import RecordingSleep
from notary.core.errors import LedgerBusy, TransactionFailed, TransactionTimeout
from notary.ledger.chain import Capabilities, SubstrateChain, TxStatus, _to_chain_event
from notary.ledger.connection import LedgerConnection
from notary.ledger.entries import RegistryEntryClient
from notary.ledger.keys import generate_account

KEYPAIR = generate_account(ss58_format=29).keypair


class StubSubstrate:
    """Stands in for ``SubstrateInterface``; only the methods the facade calls."""

    def __init__(self, *calls: tuple[str, str]) -> None:
        self.available = set(calls)
        self.receipt = SimpleNamespace(
            is_success=True,
            error_message=None,
            extrinsic_hash="0xextrinsic",
            block_hash="0xblock",
            triggered_events=[],
        )
        self.submit_error: Exception | None = None
        self.gate: threading.Event | None = None
        self.storage: dict[tuple[str, str], object] = {}
        self.composed: list[dict] = []
        self.runtime_loads = 0
        self.closed = False

    def init_runtime(self) -> None:
        self.runtime_loads += 1

    def get_metadata_call_function(self, module: str, call: str):
        return object() if (module, call) in self.available else None

    def compose_call(self, **kwargs):
        self.composed.append(kwargs)
        return kwargs

    def create_signed_extrinsic(self, call, keypair):
        return {"call": call, "signer": keypair.ss58_address}

    def submit_extrinsic(self, extrinsic, wait_for_inclusion, wait_for_finalization):
        if self.gate is not None:
            self.gate.wait(5)
        if self.submit_error is not None:
            raise self.submit_error
        return self.receipt

    def query(self, module: str, storage_function: str, params: list):
        value = self.storage.get((module, storage_function))
        return None if value is None else SimpleNamespace(value=value)

    def close(self) -> None:
        self.closed = True


def _event(module_id: str, event_id: str, attributes) -> SimpleNamespace:
    return SimpleNamespace(value={"module_id": module_id, "event_id": event_id, "attributes": attributes})


def test_capabilities_reflect_runtime_metadata() -> None:
    substrate = StubSubstrate(("Balances", "transfer_keep_alive"), ("Entry", "create"))

    capabilities = asyncio.run(SubstrateChain(substrate).probe_capabilities())

    assert capabilities == Capabilities(has_tx=True, has_balances=True, has_entry=True)
    assert capabilities.core_ready
    assert not capabilities.has_did
    assert substrate.runtime_loads == 1


def test_created_entry_id_is_read_from_the_event() -> None:
    substrate = StubSubstrate()
    substrate.receipt.triggered_events = [
        _event("System", "ExtrinsicSuccess", {"dispatch_info": {}}),
        _event("Entry", "RegistryEntryCreated", [KEYPAIR.ss58_address, "registry-1", "entry-9", None]),
    ]
    connection = LedgerConnection(SubstrateChain(substrate), Capabilities(), "ws://ledger.test")
    client = RegistryEntryClient(connection, sleep=RecordingSleep())

    result = asyncio.run(client.create_entry(KEYPAIR, "registry-1", {"title": "Engineer"}))

    assert result.entry_id == "entry-9"
    assert substrate.composed[0]["call_module"] == "Entry"
    assert substrate.composed[0]["call_function"] == "create"


def test_unsuccessful_receipt_is_a_failed_outcome() -> None:
    substrate = StubSubstrate()
    substrate.receipt.is_success = False
    substrate.receipt.error_message = {"name": "NotAuthorized"}
    chain = SubstrateChain(substrate)

    outcome = asyncio.run(chain.submit(KEYPAIR, "Entry", "revoke", {}, wait_for=TxStatus.FINALIZED))

    assert outcome.status == TxStatus.FAILED
    assert "NotAuthorized" in outcome.error
    assert outcome.extrinsic_hash == "0xextrinsic"

    connection = LedgerConnection(chain, Capabilities(), "ws://ledger.test")
    with pytest.raises(TransactionFailed, match="NotAuthorized"):
        asyncio.run(connection.submit_and_wait(KEYPAIR, "Entry", "revoke", {}))


def test_rejected_submission_is_a_failed_outcome() -> None:
    substrate = StubSubstrate()
    substrate.submit_error = SubstrateRequestException({"code": 1010, "message": "Invalid Transaction"})

    outcome = asyncio.run(
        SubstrateChain(substrate).submit(KEYPAIR, "Balances", "transfer_keep_alive", {}, wait_for=TxStatus.INCLUDED)
    )

    assert outcome.status == TxStatus.FAILED
    assert "Invalid Transaction" in outcome.error
    assert outcome.events == []


def test_event_attributes_of_every_shape() -> None:
    assert _to_chain_event({"module_id": "Entry", "event_id": "X", "attributes": {"a": 1, "b": 2}}).data == (1, 2)
    assert _to_chain_event({"module_id": "Entry", "event_id": "X", "attributes": [1, 2]}).data == (1, 2)
    assert _to_chain_event({"module_id": "Entry", "event_id": "X", "attributes": None}).data == ()
    assert _to_chain_event({"module_id": "Entry", "event_id": "X", "attributes": "0xabc"}).data == ("0xabc",)

    event = _to_chain_event({"module_id": "entry", "event_id": "RegistryEntryCreated"})
    assert event.matches("Entry", "RegistryEntryCreated")
    assert event.data == ()


def test_query_unwraps_storage_values() -> None:
    substrate = StubSubstrate()
    substrate.storage[("Registries", "Registries")] = {"creator": "5Abc"}
    chain = SubstrateChain(substrate)

    assert asyncio.run(chain.query("Registries", "Registries", ["registry-1"])) == {"creator": "5Abc"}
    assert asyncio.run(chain.query("Profile", "Profiles", ["5Abc"])) is None


def test_timed_out_call_blocks_session_until_it_finishes() -> None:
    substrate = StubSubstrate()
    substrate.storage[("Profile", "Profiles")] = {"profile_data": []}
    substrate.gate = threading.Event()
    chain = SubstrateChain(substrate)
    connection = LedgerConnection(chain, Capabilities(), "ws://ledger.test")

    async def scenario() -> None:
        with pytest.raises(TransactionTimeout):
            await connection.submit_and_wait(KEYPAIR, "Entry", "create", {}, timeout=0.05)

        assert chain.busy
        with pytest.raises(LedgerBusy) as caught:
            await asyncio.wait_for(connection.query("Profile", "Profiles", ["5Abc"]), timeout=1)
        assert caught.value.retryable

        substrate.gate.set()
        for _ in range(200):
            if not chain.busy:
                break
            await asyncio.sleep(0.01)

        assert not chain.busy
        assert await connection.query("Profile", "Profiles", ["5Abc"]) == {"profile_data": []}

    asyncio.run(scenario())


def test_close_is_not_held_up_by_an_abandoned_call() -> None:
    substrate = StubSubstrate()
    substrate.gate = threading.Event()
    chain = SubstrateChain(substrate)

    async def scenario() -> None:
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                chain.submit(KEYPAIR, "Entry", "create", {}, wait_for=TxStatus.FINALIZED), timeout=0.05
            )
        await asyncio.wait_for(chain.close(), timeout=1)
        substrate.gate.set()
        for _ in range(200):
            if not chain.busy:
                break
            await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert substrate.closed
