"""Named failure conditions for the settlement pipeline.

Each collaborator raises its own subclass so the orchestrator can decide,
per feed, whether to fall back to an off-chain value, mark the feed failed,
or leave it untouched for the next sweep.

Settler errors carry a ``code`` that travels over the wire between the
settler service and :class:`~feedsettler.src.SettlerClient.SettlerClient`.
"""

from typing import ClassVar


class SettlementError(Exception):
    """Base exception for settlement pipeline errors."""

    pass


class ResolverUnavailableError(SettlementError):
    """Raised when the simulation endpoint is unreachable or returns non-2xx.

    :ivar status_code: HTTP status code, or None for transport errors.
    """

    def __init__(self, message: str, status_code: int | None = None):
        """Initialize the resolver error.

        :param message: Error message.
        :param status_code: HTTP status code if the endpoint answered.
        """
        self.status_code = status_code
        super().__init__(message)


class SettlerError(SettlementError):
    """Base exception for on-chain settlement failures.

    :cvar code: Stable identifier used in settler service responses.
    """

    code: ClassVar[str] = "settlement_failed"


class SignerConfigError(SettlerError):
    """Signing key missing or invalid. Fatal, never retried."""

    code = "signer_config"


class ConsensusUnavailableError(SettlerError):
    """No consensus gateway produced a signed update before retries ran out."""

    code = "consensus_unavailable"


class TransactionRejectedError(SettlerError):
    """The ledger confirmed the transaction as failed."""

    code = "transaction_rejected"


class ConfirmationTimeoutError(SettlerError):
    """No receipt within the confirmation window. Outcome unknown."""

    code = "confirmation_timeout"


class SettlerUnavailableError(SettlerError):
    """The settler service could not be reached or answered unusably."""

    code = "settler_unavailable"


class SettlerUnreachableError(SettlerUnavailableError):
    """The request never reached the settler service.

    This is the only settler failure that is safe to retry against another
    endpoint: the settler cannot have started a submission.
    """

    code = "settler_unreachable"


class StoreError(SettlementError):
    """Raised when the feed store cannot be read or written."""

    pass


class FeedNotFoundError(SettlementError):
    """Raised when a requested feed does not exist."""

    def __init__(self, feed_id: str):
        """Initialize the error.

        :param feed_id: Identifier that was looked up.
        """
        self.feed_id = feed_id
        super().__init__(f"Feed not found: {feed_id}")


SETTLER_ERRORS_BY_CODE: dict[str, type[SettlerError]] = {
    cls.code: cls
    for cls in (
        SettlerError,
        SignerConfigError,
        ConsensusUnavailableError,
        TransactionRejectedError,
        ConfirmationTimeoutError,
        SettlerUnavailableError,
        SettlerUnreachableError,
    )
}


def settler_error_from_code(code: str | None, message: str) -> SettlerError:
    """Rebuild a named settler error from its wire code.

    :param code: Error code reported by the settler service.
    :param message: Human-readable error message.
    :returns: Matching SettlerError subclass instance (generic if unknown).
    """
    cls = SETTLER_ERRORS_BY_CODE.get(code or "", SettlerError)
    return cls(message)
