from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, TypeVar

from substrateinterface import Keypair, SubstrateInterface
from substrateinterface.exceptions import SubstrateRequestException
from websocket import WebSocketException

from notary.core.errors import LedgerBusy

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures of the transport itself, as opposed to a call the runtime rejected.
TRANSPORT_ERRORS: tuple[type[Exception], ...] = (OSError, WebSocketException, SubstrateRequestException)

# (pallet, call) pairs whose presence in runtime metadata defines each capability.
CAPABILITY_CALLS: dict[str, tuple[str, str]] = {
    "has_balances": ("Balances", "transfer_keep_alive"),
    "has_did": ("Did", "create_from_account"),
    "has_profile": ("Profile", "set_profile"),
    "has_registry": ("Registries", "create"),
    "has_entry": ("Entry", "create"),
}


class TxStatus(str, Enum):
    INCLUDED = "included"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Capabilities:
    has_tx: bool = False
    has_balances: bool = False
    has_did: bool = False
    has_profile: bool = False
    has_registry: bool = False
    has_entry: bool = False

    @property
    def core_ready(self) -> bool:
        return self.has_tx and self.has_balances

    def as_dict(self) -> dict[str, bool]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(frozen=True, slots=True)
class ChainEvent:
    section: str
    method: str
    data: tuple[Any, ...] = ()

    def matches(self, section: str, method: str) -> bool:
        return self.section.lower() == section.lower() and self.method == method


@dataclass(slots=True)
class TxOutcome:
    status: TxStatus
    extrinsic_hash: str | None = None
    block_hash: str | None = None
    events: list[ChainEvent] = field(default_factory=list)
    error: str | None = None

    def find_event(self, section: str, method: str) -> ChainEvent | None:
        return next((event for event in self.events if event.matches(section, method)), None)


class SubstrateChain:
    """Async facade over the blocking websocket client.

    Calls run in worker threads and the lock keeps one request on the socket at a time.
    When the coroutine awaiting a call is cancelled, the worker thread keeps the socket
    until the client returns; the socket timeout bounds that. In the meantime every new
    call fails fast with ``LedgerBusy``.
    """

    def __init__(self, substrate: SubstrateInterface) -> None:
        self._substrate = substrate
        self._lock = threading.Lock()
        self._abandoned: asyncio.Task[Any] | None = None

    @classmethod
    async def open(cls, url: str, *, ss58_format: int, socket_timeout: float = 30.0) -> SubstrateChain:
        substrate = await asyncio.to_thread(
            SubstrateInterface,
            url=url,
            ss58_format=ss58_format,
            ws_options={"timeout": socket_timeout},
        )
        return cls(substrate)

    @property
    def busy(self) -> bool:
        return self._abandoned is not None

    async def probe_capabilities(self) -> Capabilities:
        return await self._run(self._probe_capabilities)

    async def submit(
        self,
        keypair: Keypair,
        module: str,
        function: str,
        params: dict[str, Any],
        *,
        wait_for: TxStatus,
    ) -> TxOutcome:
        return await self._run(self._submit, keypair, module, function, params, wait_for)

    async def query(self, module: str, storage_function: str, params: list[Any]) -> Any:
        return await self._run(self._query, module, storage_function, params)

    async def close(self) -> None:
        # Not serialized: closing the socket is what unblocks an abandoned call.
        await asyncio.to_thread(self._substrate.close)

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        if self._abandoned is not None:
            raise LedgerBusy("ledger session is still finishing an abandoned call")
        task = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                self._abandoned = task
                task.add_done_callback(self._release_abandoned)
            raise

    def _release_abandoned(self, task: asyncio.Task[Any]) -> None:
        self._abandoned = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("abandoned ledger call finished with error: %s", exc)
        else:
            logger.info("abandoned ledger call finished; session available again")

    def _probe_capabilities(self) -> Capabilities:
        with self._lock:
            self._substrate.init_runtime()
            flags = {
                name: self._substrate.get_metadata_call_function(module, call) is not None
                for name, (module, call) in CAPABILITY_CALLS.items()
            }
        return Capabilities(has_tx=True, **flags)

    def _submit(
        self,
        keypair: Keypair,
        module: str,
        function: str,
        params: dict[str, Any],
        wait_for: TxStatus,
    ) -> TxOutcome:
        with self._lock:
            call = self._substrate.compose_call(call_module=module, call_function=function, call_params=params)
            extrinsic = self._substrate.create_signed_extrinsic(call=call, keypair=keypair)
            try:
                receipt = self._substrate.submit_extrinsic(
                    extrinsic,
                    wait_for_inclusion=True,
                    wait_for_finalization=wait_for == TxStatus.FINALIZED,
                )
            except (SubstrateRequestException, WebSocketException) as exc:
                return TxOutcome(status=TxStatus.FAILED, error=str(exc) or type(exc).__name__)

            if not receipt.is_success:
                return TxOutcome(
                    status=TxStatus.FAILED,
                    extrinsic_hash=receipt.extrinsic_hash,
                    block_hash=receipt.block_hash,
                    error=str(receipt.error_message),
                )
            events = [_to_chain_event(record.value) for record in receipt.triggered_events]

        return TxOutcome(
            status=wait_for,
            extrinsic_hash=receipt.extrinsic_hash,
            block_hash=receipt.block_hash,
            events=events,
        )

    def _query(self, module: str, storage_function: str, params: list[Any]) -> Any:
        with self._lock:
            result = self._substrate.query(module, storage_function, params)
        return None if result is None else result.value


def _to_chain_event(value: dict[str, Any]) -> ChainEvent:
    attributes = value.get("attributes")
    if isinstance(attributes, dict):
        data = tuple(attributes.values())
    elif isinstance(attributes, (list, tuple)):
        data = tuple(attributes)
    elif attributes is None:
        data = ()
    else:
        data = (attributes,)
    return ChainEvent(section=str(value.get("module_id", "")), method=str(value.get("event_id", "")), data=data)
