"""
Fee estimation.

Witness signatures are fixed-size (64-byte Schnorr), so signing a clone of
the draft with a zero-value change output yields the exact size of the final
transaction. No iterative fee/size search is needed.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from decimal import Decimal

from loguru import logger

from tokenmint.backends.base import ChainBackend
from tokenmint.errors import BackendError, Outcome, PlanningError
from tokenmint.transaction import SignedTransaction, TransactionDraft, Witness

WitnessProducer = Callable[[TransactionDraft], tuple[Witness, ...]]


def fee_for(vsize: int, fee_rate: float) -> int:
    """
    Return the ceil'd fee in satoshis for the provided vsize.

    The rate goes through its decimal string form, so 1.1 sat/vB over 100 vB
    is 110 sats rather than the 111 that binary floating point would give.
    """
    return int(math.ceil(Decimal(vsize) * Decimal(str(fee_rate))))


def estimate_vsize(draft: TransactionDraft, produce_witnesses: WitnessProducer) -> int:
    """
    Virtual size of `draft` once signed, measured on a dry-run clone.

    The clone carries a zero-value change output and dry-run signatures over
    its own provisional sighash; `draft` itself is left untouched.
    """
    provisional = draft.with_change(0)
    signed = SignedTransaction(provisional, produce_witnesses(provisional))
    logger.debug(
        f"Dry-run size: {len(signed.raw)} bytes, weight {signed.weight}, vsize {signed.vsize}"
    )
    return signed.vsize


def compute_change(
    input_value: int,
    vsize: int,
    fee_rate: float,
    committed_output_value: int,
) -> int:
    """Change left once the fee and every non-change output are paid."""
    return input_value - fee_for(vsize, fee_rate) - committed_output_value


async def resolve_fee_rate(
    backend: ChainBackend,
    override: float | None = None,
    conf_target: int = 1,
    min_fee_rate: float = 1.0,
) -> Outcome[float]:
    """Use an explicit fee rate if given, else ask the backend; never go below the floor."""
    if override is not None:
        if override <= 0:
            return Outcome.failure(PlanningError(f"Fee rate must be positive, got {override}"))
        return Outcome.success(max(float(override), min_fee_rate))

    try:
        estimate = await backend.estimate_fee(conf_target)
    except BackendError as e:
        return Outcome.failure(e)

    if estimate <= 0:
        logger.warning(f"Backend returned fee rate {estimate}, using floor {min_fee_rate}")
    return Outcome.success(max(float(estimate), min_fee_rate))
