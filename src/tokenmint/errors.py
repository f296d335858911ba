"""
Error kinds and the Outcome result type.

Components return failures as Outcome values tagged with one of the error
kinds below. Only the entry points (TokenMinter, TokenSender) classify them
and decide whether to retry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class TokenMintError(Exception):
    """Base class for all orchestration failures."""

    def __init__(
        self,
        message: str,
        *,
        stage: str = "",
        token_id: str = "",
        outpoint: str = "",
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.token_id = token_id
        self.outpoint = outpoint

    def context(self) -> str:
        parts = []
        if self.token_id:
            parts.append(f"token={self.token_id}")
        if self.stage:
            parts.append(f"stage={self.stage}")
        if self.outpoint:
            parts.append(f"utxo={self.outpoint}")
        return " ".join(parts)

    def __str__(self) -> str:
        ctx = self.context()
        return f"{self.message} ({ctx})" if ctx else self.message


class PlanningError(TokenMintError):
    """Supply, limit or premine arithmetic cannot be satisfied."""


class PremineMismatchError(PlanningError):
    pass


class LimitExceededError(PlanningError):
    pass


class MetadataError(TokenMintError):
    """Token metadata is missing or malformed."""


class AncestryLookupError(TokenMintError):
    """The ancestry of a spent contract output could not be resolved."""

    def __init__(self, message: str, *, retryable: bool = False, **kwargs: str):
        super().__init__(message, **kwargs)
        self.retryable = retryable


class InsufficientFundsError(TokenMintError):
    """Change would fall below the dust threshold."""


class InsufficientTokenBalanceError(TokenMintError):
    """No set of token UTXOs covers the requested amount."""


class MergeFailedError(TokenMintError):
    """A consolidation round failed; the whole send may be retried."""


class VerificationError(TokenMintError):
    """The contract engine rejected a finished input."""


class BackendError(TokenMintError):
    """Transient network or node failure."""


class TransactionNotFoundError(TokenMintError):
    pass


class BroadcastRejectedError(TokenMintError):
    """The node refused a transaction. `reason` holds the node's message."""

    def __init__(self, reason: str, **kwargs: str):
        super().__init__(f"Broadcast rejected: {reason}", **kwargs)
        self.reason = reason


class UTXOLockedError(TokenMintError):
    """Another attempt in this process holds a claim on the output."""


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or a tagged error, never both."""

    value: T | None = None
    error: TokenMintError | None = None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: TokenMintError) -> Outcome[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        assert self.value is not None
        return self.value
