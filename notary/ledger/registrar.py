from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from substrateinterface import Keypair

from notary.ledger.chain import TxStatus
from notary.ledger.connection import LedgerConnection
from notary.ledger.identifiers import (
    compute_profile_id,
    compute_registry_id,
    digest_of_blob,
    hash_value,
    profile_digest,
)
from notary.ledger.retry import RETRY_POLICIES, OperationClass, Sleep, retry_with_backoff

logger = logging.getLogger(__name__)

PROFILE_PALLET = "Profile"
PROFILE_STORAGE = "Profiles"
REGISTRY_PALLET = "Registries"
REGISTRY_STORAGE = "Registries"
PROFILE_POLL_ATTEMPTS = 5
PROFILE_POLL_STEP_SECONDS = 2.0


class IdentityRegistrar:
    """Creates and looks up the profile and registry owned by an organization account."""

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

    async def get_existing_identifier(self, address: str) -> str | None:
        value = await self._connection.query(PROFILE_PALLET, PROFILE_STORAGE, [address])
        hashed_attributes = _profile_attributes(value)
        if not hashed_attributes:
            return None
        return compute_profile_id(profile_digest(hashed_attributes), address)

    async def registry_exists(self, registry_id: str) -> bool:
        value = await self._connection.query(REGISTRY_PALLET, REGISTRY_STORAGE, [registry_id])
        return value is not None

    async def create_profile(self, keypair: Keypair, attributes: Mapping[str, str]) -> str:
        self._connection.require("has_profile")
        hashed_attributes = [(key, hash_value(value)) for key, value in attributes.items()]
        address = keypair.ss58_address

        async def dispatch() -> str:
            await self._connection.submit_and_wait(
                keypair,
                PROFILE_PALLET,
                "set_profile",
                {"profile_data": hashed_attributes},
                wait_for=TxStatus.INCLUDED,
                timeout=self._transaction_timeout_seconds,
            )
            # The profile id is not returned by the call; poll until the chain shows it.
            for attempt in range(1, PROFILE_POLL_ATTEMPTS + 1):
                profile_id = await self.get_existing_identifier(address)
                if profile_id:
                    logger.info("profile confirmed address=%s profile_id=%s", address, profile_id)
                    return profile_id
                await self._sleep(PROFILE_POLL_STEP_SECONDS * attempt)

            profile_id = compute_profile_id(profile_digest(hashed_attributes), address)
            logger.warning(
                "profile not observed after %s polls; using derived id address=%s profile_id=%s",
                PROFILE_POLL_ATTEMPTS,
                address,
                profile_id,
            )
            return profile_id

        return await retry_with_backoff(
            dispatch,
            RETRY_POLICIES[OperationClass.PROFILE],
            context="Profile creation failed",
            sleep=self._sleep,
        )

    async def create_registry(self, keypair: Keypair, schema: Mapping[str, Any] | None = None) -> str:
        self._connection.require("has_registry")
        address = keypair.ss58_address

        async def dispatch() -> str:
            blob = {
                "title": "Organization registry",
                "schema": json.dumps(dict(schema or {}), sort_keys=True),
                "date": datetime.now(timezone.utc).isoformat(),
            }
            digest = digest_of_blob(blob)
            registry_id = compute_registry_id(digest, address)
            await self._connection.submit_and_wait(
                keypair,
                REGISTRY_PALLET,
                "create",
                {"tx_hash": digest, "blob": None},
                wait_for=TxStatus.INCLUDED,
                timeout=self._transaction_timeout_seconds,
            )
            logger.info("registry created address=%s registry_id=%s", address, registry_id)
            return registry_id

        return await retry_with_backoff(
            dispatch,
            RETRY_POLICIES[OperationClass.REGISTRY],
            context="Registry creation failed",
            sleep=self._sleep,
        )


def _profile_attributes(value: Any) -> list[tuple[str, str]]:
    if isinstance(value, Mapping):
        value = value.get("profile_data")
    if not isinstance(value, (list, tuple)):
        return []
    attributes: list[tuple[str, str]] = []
    for item in value:
        if isinstance(item, (list, tuple)) and len(item) == 2:
            attributes.append((str(item[0]), str(item[1])))
    return attributes
