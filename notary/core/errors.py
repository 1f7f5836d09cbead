from __future__ import annotations


class NotaryError(Exception):
    """Base error for ledger notarization."""

    retryable = True


class ConfigurationError(NotaryError):
    """Raised at startup when key material or treasury settings are invalid."""

    retryable = False


class ConnectionNotReady(NotaryError):
    """Raised when the ledger connection does not expose its core capabilities in time."""

    retryable = False


class ModuleUnavailable(NotaryError):
    """Raised when a ledger module is absent from the runtime."""

    retryable = False

    def __init__(self, capability: str) -> None:
        super().__init__(f"ledger capability unavailable: {capability}")
        self.capability = capability


class PreconditionFailed(NotaryError):
    """Raised when local state required for a ledger operation is missing."""

    retryable = False


class AuthenticationFailure(NotaryError):
    """Raised when an encrypted token does not verify."""

    retryable = False


class TransactionFailed(NotaryError):
    """Raised when the ledger reports an error status for a submitted transaction."""


class TransactionTimeout(NotaryError):
    """Raised when a transaction status is not observed before its deadline."""


class LedgerBusy(NotaryError):
    """Raised while the ledger session is still finishing a call whose waiter gave up."""


class FundingTimeout(TransactionTimeout):
    pass


class DidCreationTimeout(TransactionTimeout):
    pass


class IdentifierResolutionFailure(NotaryError):
    """Raised when no identifier can be observed or recomputed."""


class RetryExhaustedError(NotaryError):
    """Raised once a retried operation has failed on every attempt."""

    retryable = False

    def __init__(self, context: str, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"{context}: {last_error}")
        self.context = context
        self.last_error = last_error
        self.attempts = attempts
