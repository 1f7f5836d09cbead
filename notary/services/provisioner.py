from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from opentelemetry import trace
from substrateinterface import Keypair

from notary.core.custody import KeyCustodian
from notary.core.errors import (
    AuthenticationFailure,
    ConfigurationError,
    DidCreationTimeout,
    FundingTimeout,
    PreconditionFailed,
)
from notary.ledger.chain import TxStatus
from notary.ledger.connection import LedgerConnection
from notary.ledger.keys import GeneratedAccount, generate_account, keypair_from_mnemonic
from notary.ledger.registrar import IdentityRegistrar
from notary.ledger.retry import RETRY_POLICIES, OperationClass, Sleep, retry_with_backoff
from notary.services.repository import ChainAccountRecord, OwnerKind, PostgresRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

AccountFactory = Callable[..., GeneratedAccount]


class AccountProvisioner:
    """Creates one funded ledger account per organization or user.

    Organizations additionally get a profile and a registry; users get a DID when the
    runtime exposes the DID module, and fall back to their address otherwise. The
    account row is written only after every ledger step has succeeded.
    """

    def __init__(
        self,
        connection: LedgerConnection,
        custodian: KeyCustodian,
        repository: PostgresRepository,
        registrar: IdentityRegistrar,
        *,
        treasury_mnemonic: str | None,
        ss58_format: int = 29,
        funding_amount: int = 100 * 10**12,
        funding_timeout_seconds: float = 30.0,
        did_probe_timeout_seconds: float = 30.0,
        did_probe_interval_seconds: float = 1.0,
        did_timeout_seconds: float = 60.0,
        sleep: Sleep = asyncio.sleep,
        account_factory: AccountFactory = generate_account,
    ) -> None:
        self._connection = connection
        self._custodian = custodian
        self._repository = repository
        self._registrar = registrar
        self._ss58_format = ss58_format
        self._funding_amount = funding_amount
        self._funding_timeout_seconds = funding_timeout_seconds
        self._did_probe_timeout_seconds = did_probe_timeout_seconds
        self._did_probe_interval_seconds = did_probe_interval_seconds
        self._did_timeout_seconds = did_timeout_seconds
        self._sleep = sleep
        self._account_factory = account_factory
        self._treasury = self._load_treasury(treasury_mnemonic) if treasury_mnemonic else None

    async def create_account_for_user(self, user_id: str) -> ChainAccountRecord:
        existing = await self._repository.get_chain_account("user", user_id)
        if existing is not None:
            logger.info("user already has a ledger account user_id=%s address=%s", user_id, existing.address)
            return existing

        async def attempt() -> ChainAccountRecord:
            self._connection.require("has_tx", "has_balances")
            treasury = self._require_treasury()
            account = self._account_factory(ss58_format=self._ss58_format)
            mnemonic_enc = self._custodian.encrypt(account.mnemonic)

            await self._fund(treasury, account.address)
            did, did_anchored = await self._anchor_did(account)
            return ChainAccountRecord(
                owner_kind="user",
                owner_id=user_id,
                address=account.address,
                public_key=account.public_key,
                mnemonic_enc=mnemonic_enc,
                did=did,
                did_anchored=did_anchored,
            )

        with tracer.start_as_current_span("ledger.provision_user") as span:
            span.set_attribute("user.id", user_id)
            record = await retry_with_backoff(
                attempt,
                RETRY_POLICIES[OperationClass.ACCOUNT],
                context="Failed to create ledger account for user",
                sleep=self._sleep,
            )
            await self._repository.insert_chain_account(record)
        logger.info(
            "ledger account created user_id=%s address=%s did_anchored=%s",
            user_id,
            record.address,
            record.did_anchored,
        )
        return record

    async def create_account_for_organization(self, org_id: str, slug: str) -> ChainAccountRecord:
        existing = await self._repository.get_chain_account("organization", org_id)
        if existing is not None:
            logger.info("organization already has a ledger account org_id=%s address=%s", org_id, existing.address)
            return existing

        async def attempt() -> ChainAccountRecord:
            self._connection.require("has_tx", "has_balances", "has_profile", "has_registry")
            treasury = self._require_treasury()
            logger.info("creating ledger account org_id=%s", org_id)
            account = self._account_factory(ss58_format=self._ss58_format)
            mnemonic_enc = self._custodian.encrypt(account.mnemonic)

            await self._fund(treasury, account.address)
            profile_id = await self._registrar.create_profile(account.keypair, {"pub_name": slug})
            registry_id = await self._registrar.create_registry(account.keypair, {})
            return ChainAccountRecord(
                owner_kind="organization",
                owner_id=org_id,
                address=account.address,
                public_key=account.public_key,
                mnemonic_enc=mnemonic_enc,
                profile_id=profile_id,
                registry_id=registry_id,
            )

        with tracer.start_as_current_span("ledger.provision_organization") as span:
            span.set_attribute("organization.id", org_id)
            record = await retry_with_backoff(
                attempt,
                RETRY_POLICIES[OperationClass.ACCOUNT],
                context="Failed to create ledger account for organization",
                sleep=self._sleep,
            )
            await self._repository.insert_chain_account(record)
        logger.info(
            "ledger account created org_id=%s address=%s profile_id=%s registry_id=%s",
            org_id,
            record.address,
            record.profile_id,
            record.registry_id,
        )
        return record

    async def get_account(self, owner_kind: OwnerKind, owner_id: str) -> ChainAccountRecord | None:
        return await self._repository.get_chain_account(owner_kind, owner_id)

    async def load_organization_keypair(self, org_id: str) -> Keypair:
        return await self._load_keypair("organization", org_id)

    async def load_user_keypair(self, user_id: str) -> Keypair:
        return await self._load_keypair("user", user_id)

    async def _load_keypair(self, owner_kind: OwnerKind, owner_id: str) -> Keypair:
        record = await self._repository.get_chain_account(owner_kind, owner_id)
        if record is None:
            raise PreconditionFailed(f"no ledger account for {owner_kind} {owner_id}")
        return signing_keypair(record, self._custodian, ss58_format=self._ss58_format)

    async def _fund(self, treasury: Keypair, address: str) -> None:
        await self._connection.submit_and_wait(
            treasury,
            "Balances",
            "transfer_keep_alive",
            {"dest": address, "value": self._funding_amount},
            wait_for=TxStatus.INCLUDED,
            timeout=self._funding_timeout_seconds,
            timeout_error=FundingTimeout,
        )
        logger.info("funded address=%s amount=%s", address, self._funding_amount)

    async def _anchor_did(self, account: GeneratedAccount) -> tuple[str, bool]:
        available = await self._connection.wait_for_capability(
            "has_did",
            timeout=self._did_probe_timeout_seconds,
            poll_interval=self._did_probe_interval_seconds,
        )
        if not available:
            logger.warning("DID module unavailable; using address as identifier address=%s", account.address)
            return account.address, False

        async def dispatch() -> str:
            await self._connection.submit_and_wait(
                account.keypair,
                "Did",
                "create_from_account",
                {"authentication_key": {"Sr25519": account.public_key}},
                wait_for=TxStatus.FINALIZED,
                timeout=self._did_timeout_seconds,
                timeout_error=DidCreationTimeout,
            )
            return account.address

        try:
            did = await retry_with_backoff(
                dispatch,
                RETRY_POLICIES[OperationClass.DID],
                context="DID creation failed",
                sleep=self._sleep,
            )
        except Exception as exc:
            logger.warning("DID anchoring failed; using address as identifier address=%s: %s", account.address, exc)
            return account.address, False
        logger.info("DID anchored address=%s", account.address)
        return did, True

    def _require_treasury(self) -> Keypair:
        if self._treasury is None:
            raise ConfigurationError("NOTARY_TREASURY_MNEMONIC is not set")
        return self._treasury

    def _load_treasury(self, mnemonic: str) -> Keypair:
        try:
            return keypair_from_mnemonic(mnemonic, ss58_format=self._ss58_format)
        except ValueError as exc:
            raise ConfigurationError("NOTARY_TREASURY_MNEMONIC is not a valid mnemonic") from exc


def signing_keypair(record: ChainAccountRecord, custodian: KeyCustodian, *, ss58_format: int) -> Keypair:
    keypair = keypair_from_mnemonic(custodian.decrypt(record.mnemonic_enc), ss58_format=ss58_format)
    if keypair.ss58_address != record.address:
        raise AuthenticationFailure(f"decrypted mnemonic does not match address {record.address}")
    return keypair
