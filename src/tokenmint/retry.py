"""
Failure classification and the retry loop.

Only the entry points retry. Components hand back tagged errors; this module
decides whether another attempt (after a fixed backoff) can succeed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from loguru import logger

from tokenmint.constants import RETRY_BACKOFF_SEC
from tokenmint.errors import (
    AncestryLookupError,
    BackendError,
    BroadcastRejectedError,
    MergeFailedError,
    Outcome,
    TokenMintError,
    UTXOLockedError,
)

T = TypeVar("T")

# Node rejections that a fresh attempt with re-queried UTXOs can get past
RETRYABLE_PATTERNS = (
    "txn-mempool-conflict",
    "bad-txns-inputs-missingorspent",
    "Transaction already in block chain",
    "mempool min fee not met",
    "min relay fee not met",
    "insufficient fee",
    "too-long-mempool-chain",
)


class ErrorClass(str, Enum):
    RETRYABLE = "retryable"
    MERGE_REQUIRED = "merge_required"
    FATAL = "fatal"


def classify(error: BaseException) -> ErrorClass:
    if isinstance(error, MergeFailedError):
        return ErrorClass.MERGE_REQUIRED
    if isinstance(error, (BackendError, UTXOLockedError)):
        return ErrorClass.RETRYABLE
    if isinstance(error, AncestryLookupError):
        return ErrorClass.RETRYABLE if error.retryable else ErrorClass.FATAL
    if isinstance(error, BroadcastRejectedError):
        if any(p.lower() in error.reason.lower() for p in RETRYABLE_PATTERNS):
            return ErrorClass.RETRYABLE
        return ErrorClass.FATAL
    return ErrorClass.FATAL


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 10
    backoff_sec: float = RETRY_BACKOFF_SEC


async def retry_loop(
    attempt: Callable[[], Awaitable[Outcome[T]]],
    policy: RetryPolicy,
    *,
    label: str,
) -> Outcome[T]:
    """
    Run `attempt` until it succeeds, fails fatally or attempts run out.

    Every call must build its plan from scratch; nothing is carried between
    attempts except what the attempt itself keeps (spend tracker, tx cache).
    """
    last: Outcome[T] | None = None
    for number in range(1, policy.max_attempts + 1):
        try:
            last = await attempt()
        except TokenMintError as e:
            last = Outcome.failure(e)

        if last.error is None:
            return last

        kind = classify(last.error)
        if kind is ErrorClass.FATAL:
            logger.error(f"{label} failed: {last.error}")
            return last

        if kind is ErrorClass.MERGE_REQUIRED:
            logger.warning(f"retry to merge {label} ({number}/{policy.max_attempts}) ...")
        else:
            logger.warning(
                f"{label} attempt {number}/{policy.max_attempts} failed: {last.error}"
            )
        if number < policy.max_attempts:
            await asyncio.sleep(policy.backoff_sec)

    assert last is not None
    logger.error(f"{label} failed after {policy.max_attempts} attempts: {last.error}")
    return last
