from __future__ import annotations

import logging
from dataclasses import dataclass

from notary.core.config import Settings
from notary.core.custody import KeyCustodian
from notary.core.errors import ConfigurationError
from notary.ledger.connection import ChainOpener, LedgerConnection
from notary.ledger.registrar import IdentityRegistrar
from notary.services.entry_sync import EntrySynchronizer
from notary.services.provisioner import AccountProvisioner
from notary.services.repository import PostgresRepository, get_repository
from notary.services.tasks import BackgroundDispatcher

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class NotaryRuntime:
    settings: Settings
    repository: PostgresRepository
    dispatcher: BackgroundDispatcher
    synchronizer: EntrySynchronizer
    connection: LedgerConnection | None = None
    provisioner: AccountProvisioner | None = None

    @property
    def enabled(self) -> bool:
        return self.settings.ledger_enabled


async def build_runtime(
    settings: Settings,
    *,
    repository: PostgresRepository | None = None,
    opener: ChainOpener | None = None,
) -> NotaryRuntime:
    """Validate key material, connect once, and wire every ledger component to the handle."""
    repository = repository or get_repository()
    dispatcher = BackgroundDispatcher()
    if not settings.ledger_enabled:
        logger.info("ledger notarization disabled; entry sync is a no-op")
        return NotaryRuntime(
            settings=settings,
            repository=repository,
            dispatcher=dispatcher,
            synchronizer=EntrySynchronizer(enabled=False, repository=repository),
        )

    secret = settings.mnemonic_secret_key
    custodian = KeyCustodian.from_secret(secret.get_secret_value() if secret is not None else None)
    if settings.treasury_mnemonic is None:
        raise ConfigurationError("NOTARY_TREASURY_MNEMONIC is required when the ledger is enabled")

    connection = await LedgerConnection.connect(
        settings.network_address,
        ss58_format=settings.ss58_format,
        timeout=settings.connect_timeout_seconds,
        poll_interval=settings.connect_poll_interval_seconds,
        socket_timeout=settings.socket_timeout_seconds,
        opener=opener,
    )
    registrar = IdentityRegistrar(connection, transaction_timeout_seconds=settings.transaction_timeout_seconds)
    provisioner = AccountProvisioner(
        connection,
        custodian,
        repository,
        registrar,
        treasury_mnemonic=settings.treasury_mnemonic.get_secret_value(),
        ss58_format=settings.ss58_format,
        funding_amount=settings.funding_amount,
        funding_timeout_seconds=settings.funding_timeout_seconds,
        did_probe_timeout_seconds=settings.did_probe_timeout_seconds,
        did_probe_interval_seconds=settings.did_probe_interval_seconds,
        did_timeout_seconds=settings.did_timeout_seconds,
    )
    synchronizer = EntrySynchronizer(
        enabled=True,
        repository=repository,
        connection=connection,
        custodian=custodian,
        ss58_format=settings.ss58_format,
        transaction_timeout_seconds=settings.transaction_timeout_seconds,
    )
    return NotaryRuntime(
        settings=settings,
        repository=repository,
        dispatcher=dispatcher,
        synchronizer=synchronizer,
        connection=connection,
        provisioner=provisioner,
    )


async def close_runtime(runtime: NotaryRuntime, *, drain_timeout: float = 30.0) -> None:
    await runtime.dispatcher.drain(timeout=drain_timeout)
    if runtime.connection is not None:
        await runtime.connection.close()
    await runtime.repository.close()
