from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from opentelemetry import trace

from notary.core.custody import KeyCustodian
from notary.core.errors import PreconditionFailed
from notary.ledger.connection import LedgerConnection
from notary.ledger.entries import RegistryEntryClient
from notary.ledger.retry import Sleep
from notary.services.provisioner import signing_keypair
from notary.services.repository import (
    ChainAccountRecord,
    JobPostingRecord,
    PostgresRepository,
    RegistryEntryLinkRecord,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Clock = Callable[[], datetime]


class EntryState(str, Enum):
    UNSYNCED = "unsynced"
    ACTIVE = "active"
    REVOKED = "revoked"


class EntryAction(str, Enum):
    CREATE = "create"
    REVOKE = "revoke"
    REINSTATE_AND_UPDATE = "reinstate_and_update"
    UPDATE = "update"
    NOOP = "noop"


def entry_state(link: RegistryEntryLinkRecord | None) -> EntryState:
    if link is None:
        return EntryState.UNSYNCED
    return EntryState.REVOKED if link.revoked else EntryState.ACTIVE


def plan_transition(link: RegistryEntryLinkRecord | None, posting_status: str) -> EntryAction:
    state = entry_state(link)
    archived = posting_status == "archived"
    if state == EntryState.UNSYNCED:
        return EntryAction.CREATE
    if archived:
        return EntryAction.NOOP if state == EntryState.REVOKED else EntryAction.REVOKE
    if state == EntryState.REVOKED:
        return EntryAction.REINSTATE_AND_UPDATE
    return EntryAction.UPDATE


def build_entry_blob(posting: JobPostingRecord, **extra: Any) -> dict[str, Any]:
    blob: dict[str, Any] = {
        "jobPostingId": posting.id,
        "title": posting.title,
        "status": posting.status,
        "organizationId": posting.organization_id,
        "organizationName": posting.organization_name,
        "description": posting.description or None,
        "metadata": posting.metadata or {},
        "location": posting.location or {},
        "contact": posting.contact or {},
        "createdAt": posting.created_at.isoformat() if posting.created_at else None,
    }
    blob.update(extra)
    return blob


class EntrySynchronizer:
    """Keeps one registry entry per job posting in step with the posting's status."""

    def __init__(
        self,
        *,
        enabled: bool,
        repository: PostgresRepository,
        connection: LedgerConnection | None = None,
        custodian: KeyCustodian | None = None,
        ss58_format: int = 29,
        transaction_timeout_seconds: float = 60.0,
        sleep: Sleep = asyncio.sleep,
        clock: Clock | None = None,
    ) -> None:
        self.enabled = enabled
        self._repository = repository
        self._custodian = custodian
        self._ss58_format = ss58_format
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries = (
            RegistryEntryClient(connection, transaction_timeout_seconds=transaction_timeout_seconds, sleep=sleep)
            if connection is not None
            else None
        )

    async def sync(self, job_posting_id: str) -> RegistryEntryLinkRecord | None:
        """Reconcile the ledger entry for one posting. Never raises."""
        if not self.enabled:
            logger.debug("ledger disabled; skipping entry sync job_posting_id=%s", job_posting_id)
            return None

        with tracer.start_as_current_span("ledger.sync_entry") as span:
            span.set_attribute("job_posting.id", job_posting_id)
            try:
                link = await self._sync(job_posting_id)
            except Exception as exc:
                span.record_exception(exc)
                logger.exception("failed to sync job posting %s to ledger: %s", job_posting_id, exc)
                return None
        logger.info("synced job posting %s to ledger entry_id=%s revoked=%s", job_posting_id, link.entry_id, link.revoked)
        return link

    async def _sync(self, job_posting_id: str) -> RegistryEntryLinkRecord:
        if self._entries is None or self._custodian is None:
            raise PreconditionFailed("ledger connection is not configured")

        posting = await self._repository.get_job_posting(job_posting_id)
        if posting is None:
            raise PreconditionFailed(f"job posting {job_posting_id} not found")

        account = await self._repository.get_chain_account("organization", posting.organization_id)
        if account is None or not account.registry_id:
            raise PreconditionFailed(f"organization {posting.organization_id} does not have a ledger registry")

        link = await self._repository.get_entry_link(job_posting_id)
        action = plan_transition(link, posting.status)
        logger.debug("entry sync job_posting_id=%s state=%s action=%s", job_posting_id, entry_state(link).value, action.value)

        if link is None:
            return await self._create(posting, account)
        if action == EntryAction.NOOP:
            return link
        if action == EntryAction.REVOKE:
            return await self._revoke(link, account)
        return await self._refresh(posting, link, account, reinstate=action == EntryAction.REINSTATE_AND_UPDATE)

    async def _create(self, posting: JobPostingRecord, account: ChainAccountRecord) -> RegistryEntryLinkRecord:
        keypair = signing_keypair(account, self._custodian, ss58_format=self._ss58_format)
        registry_id = account.registry_id or ""
        result = await self._entries.create_entry(
            keypair,
            registry_id,
            build_entry_blob(posting),
            profile_id=account.profile_id,
        )
        now = self._clock()
        link = await self._repository.insert_entry_link(
            RegistryEntryLinkRecord(
                job_posting_id=posting.id,
                entry_id=result.entry_id,
                registry_id=registry_id,
                tx_hash=result.tx_hash,
                revoked=False,
                created_at=now,
                updated_at=now,
            )
        )
        if posting.archived:
            # Stored as active first: if this revoke fails, the next sync revokes instead of creating again.
            link = await self._revoke(link, account)
        return link

    async def _revoke(self, link: RegistryEntryLinkRecord, account: ChainAccountRecord) -> RegistryEntryLinkRecord:
        keypair = signing_keypair(account, self._custodian, ss58_format=self._ss58_format)
        await self._entries.revoke_entry(keypair, link.registry_id, link.entry_id)
        return await self._repository.update_entry_link(link.job_posting_id, revoked=True, updated_at=self._clock())

    async def _refresh(
        self,
        posting: JobPostingRecord,
        link: RegistryEntryLinkRecord,
        account: ChainAccountRecord,
        *,
        reinstate: bool,
    ) -> RegistryEntryLinkRecord:
        keypair = signing_keypair(account, self._custodian, ss58_format=self._ss58_format)
        if reinstate:
            await self._entries.reinstate_entry(keypair, link.registry_id, link.entry_id)
            link = await self._repository.update_entry_link(
                link.job_posting_id,
                revoked=False,
                updated_at=self._clock(),
            )

        now = self._clock()
        result = await self._entries.update_entry(
            keypair,
            link.registry_id,
            link.entry_id,
            build_entry_blob(posting, syncedAt=now.isoformat()),
        )
        return await self._repository.update_entry_link(
            link.job_posting_id,
            revoked=False,
            tx_hash=result.tx_hash,
            updated_at=now,
        )
