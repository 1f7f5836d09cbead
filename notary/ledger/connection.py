from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from opentelemetry import trace
from substrateinterface import Keypair

from notary.core.errors import ConnectionNotReady, ModuleUnavailable, TransactionFailed, TransactionTimeout
from notary.ledger.chain import TRANSPORT_ERRORS, Capabilities, SubstrateChain, TxOutcome, TxStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ChainSession(Protocol):
    async def probe_capabilities(self) -> Capabilities: ...

    async def submit(
        self,
        keypair: Keypair,
        module: str,
        function: str,
        params: dict[str, Any],
        *,
        wait_for: TxStatus,
    ) -> TxOutcome: ...

    async def query(self, module: str, storage_function: str, params: list[Any]) -> Any: ...

    async def close(self) -> None: ...


ChainOpener = Callable[[str], Awaitable[ChainSession]]


class LedgerConnection:
    """Process-wide ledger handle. Built once at startup and injected everywhere."""

    def __init__(self, chain: ChainSession, capabilities: Capabilities, endpoint: str) -> None:
        self._chain = chain
        self._capabilities = capabilities
        self.endpoint = endpoint

    @classmethod
    async def connect(
        cls,
        endpoint: str,
        *,
        ss58_format: int = 29,
        timeout: float = 60.0,
        poll_interval: float = 2.0,
        socket_timeout: float = 30.0,
        opener: ChainOpener | None = None,
    ) -> LedgerConnection:
        """Open the transport and poll until the core modules are ready, all within ``timeout``."""
        logger.info("connecting to ledger endpoint=%s", endpoint)
        if opener is None:

            async def opener(url: str) -> ChainSession:
                return await SubstrateChain.open(url, ss58_format=ss58_format, socket_timeout=socket_timeout)

        deadline = time.monotonic() + timeout
        try:
            chain = await asyncio.wait_for(opener(endpoint), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ConnectionNotReady(f"ledger transport not established after {timeout:.0f}s") from exc
        except TRANSPORT_ERRORS as exc:
            raise ConnectionNotReady(f"ledger transport unavailable: {exc}") from exc

        attempt = 0
        capabilities = Capabilities()
        while True:
            attempt += 1
            try:
                capabilities = await asyncio.wait_for(
                    chain.probe_capabilities(),
                    timeout=max(deadline - time.monotonic(), 0.0),
                )
            except asyncio.TimeoutError:
                logger.warning("capability check timed out attempt=%s endpoint=%s", attempt, endpoint)
            except Exception as exc:
                logger.debug("capability check failed attempt=%s: %s", attempt, exc)
            remaining = deadline - time.monotonic()
            if capabilities.core_ready:
                logger.info(
                    "ledger ready after %.0fs endpoint=%s did=%s",
                    timeout - remaining,
                    endpoint,
                    "available" if capabilities.has_did else "pending",
                )
                return cls(chain, capabilities, endpoint)
            if remaining <= 0:
                break
            if attempt % 5 == 0:
                logger.info(
                    "still waiting for ledger (%.0fs) tx=%s balances=%s",
                    timeout - remaining,
                    capabilities.has_tx,
                    capabilities.has_balances,
                )
            await asyncio.sleep(min(poll_interval, remaining))

        await chain.close()
        raise ConnectionNotReady(
            f"ledger not ready after {timeout:.0f}s: tx={capabilities.has_tx}, balances={capabilities.has_balances}"
        )

    @property
    def capabilities(self) -> Capabilities:
        """Snapshot taken when the connection became ready; never replaced afterwards."""
        return self._capabilities

    async def probe_capabilities(self) -> Capabilities:
        """Return a fresh snapshot without touching the shared one."""
        return await self._chain.probe_capabilities()

    async def wait_for_capability(self, name: str, *, timeout: float, poll_interval: float = 1.0) -> bool:
        """Re-check until ``name`` is available; modules may activate after first reference.

        A check that fails or overruns the deadline counts as "not yet available".
        """
        if getattr(self._capabilities, name):
            return True
        deadline = time.monotonic() + timeout
        while True:
            try:
                snapshot = await asyncio.wait_for(
                    self.probe_capabilities(),
                    timeout=max(deadline - time.monotonic(), 0.0),
                )
                if getattr(snapshot, name):
                    return True
            except asyncio.TimeoutError:
                logger.debug("capability check timed out waiting for %s", name)
            except Exception as exc:
                logger.warning("capability check failed waiting for %s: %s", name, exc)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(poll_interval, remaining))

    def require(self, *names: str) -> None:
        for name in names:
            if not getattr(self._capabilities, name):
                raise ModuleUnavailable(name)

    async def submit_and_wait(
        self,
        keypair: Keypair,
        module: str,
        function: str,
        params: dict[str, Any],
        *,
        wait_for: TxStatus = TxStatus.FINALIZED,
        timeout: float = 60.0,
        timeout_error: type[TransactionTimeout] = TransactionTimeout,
    ) -> TxOutcome:
        """Submit a signed call and resolve to its terminal status.

        The deadline rejects even if the chain never answers; the transaction itself
        is not recalled and may still land afterwards.
        """
        description = f"{module}.{function}"
        with tracer.start_as_current_span("ledger.submit") as span:
            span.set_attribute("ledger.call", description)
            try:
                outcome = await asyncio.wait_for(
                    self._chain.submit(keypair, module, function, params, wait_for=wait_for),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as exc:
                raise timeout_error(f"{description} not {wait_for.value} after {timeout:.0f}s") from exc

            if outcome.status == TxStatus.FAILED:
                raise TransactionFailed(f"{description} failed: {outcome.error or 'unknown error'}")
            logger.debug(
                "%s %s block=%s extrinsic=%s",
                description,
                outcome.status.value,
                outcome.block_hash,
                outcome.extrinsic_hash,
            )
            return outcome

    async def query(self, module: str, storage_function: str, params: list[Any]) -> Any:
        return await self._chain.query(module, storage_function, params)

    async def close(self) -> None:
        await self._chain.close()
