from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from substrateinterface import Keypair

from notary.ledger.chain import TxOutcome, TxStatus
from notary.ledger.connection import LedgerConnection
from notary.ledger.identifiers import compute_entry_id, digest_of_blob
from notary.ledger.retry import RETRY_POLICIES, OperationClass, Sleep, retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENTRY_PALLET = "Entry"
ENTRY_CREATED_EVENT = "RegistryEntryCreated"
# RegistryEntryCreated(creator, registry_id, registry_entry_id, creator_profile_id)
ENTRY_ID_EVENT_POSITION = 2


@dataclass(frozen=True, slots=True)
class EntryResult:
    entry_id: str
    tx_hash: str


class RegistryEntryClient:
    def __init__(
        self,
        connection: LedgerConnection,
        *,
        transaction_timeout_seconds: float = 60.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._connection = connection
        self._transaction_timeout_seconds = transaction_timeout_seconds
        self._sleep = sleep

    async def create_entry(
        self,
        keypair: Keypair,
        registry_id: str,
        blob: dict[str, Any],
        *,
        profile_id: str | None = None,
    ) -> EntryResult:
        digest = digest_of_blob(blob)

        async def dispatch() -> EntryResult:
            outcome = await self._submit(
                keypair,
                "create",
                {"registry_id": registry_id, "tx_hash": digest, "blob": None},
            )
            entry_id: str | None = None
            event = outcome.find_event(ENTRY_PALLET, ENTRY_CREATED_EVENT)
            if event is not None and len(event.data) > ENTRY_ID_EVENT_POSITION:
                raw = event.data[ENTRY_ID_EVENT_POSITION]
                entry_id = str(raw) if raw else None
            if not entry_id:
                # Event indexing can lag behind finality.
                entry_id = compute_entry_id(digest, registry_id, profile_id, address=keypair.ss58_address)
                logger.warning("entry event missing; using derived id registry_id=%s entry_id=%s", registry_id, entry_id)
            logger.info("entry created registry_id=%s entry_id=%s", registry_id, entry_id)
            return EntryResult(entry_id=entry_id, tx_hash=digest)

        return await self._retry(dispatch, "Entry creation failed")

    async def update_entry(
        self,
        keypair: Keypair,
        registry_id: str,
        entry_id: str,
        blob: dict[str, Any],
    ) -> EntryResult:
        digest = digest_of_blob(blob)

        async def dispatch() -> EntryResult:
            await self._submit(
                keypair,
                "update",
                {"registry_id": registry_id, "registry_entry_id": entry_id, "tx_hash": digest, "blob": None},
            )
            logger.info("entry updated entry_id=%s", entry_id)
            return EntryResult(entry_id=entry_id, tx_hash=digest)

        return await self._retry(dispatch, "Entry update failed")

    async def revoke_entry(self, keypair: Keypair, registry_id: str, entry_id: str) -> None:
        async def dispatch() -> None:
            await self._submit(keypair, "revoke", {"registry_id": registry_id, "registry_entry_id": entry_id})
            logger.info("entry revoked entry_id=%s", entry_id)

        await self._retry(dispatch, "Entry revocation failed")

    async def reinstate_entry(self, keypair: Keypair, registry_id: str, entry_id: str) -> None:
        async def dispatch() -> None:
            await self._submit(keypair, "reinstate", {"registry_id": registry_id, "registry_entry_id": entry_id})
            logger.info("entry reinstated entry_id=%s", entry_id)

        await self._retry(dispatch, "Entry reinstatement failed")

    async def _submit(self, keypair: Keypair, function: str, params: dict[str, Any]) -> TxOutcome:
        self._connection.require("has_entry")
        return await self._connection.submit_and_wait(
            keypair,
            ENTRY_PALLET,
            function,
            params,
            wait_for=TxStatus.FINALIZED,
            timeout=self._transaction_timeout_seconds,
        )

    async def _retry(self, operation: Callable[[], Awaitable[T]], context: str) -> T:
        return await retry_with_backoff(
            operation,
            RETRY_POLICIES[OperationClass.ENTRY],
            context=context,
            sleep=self._sleep,
        )
