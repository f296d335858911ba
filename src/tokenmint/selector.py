"""
UTXO selection for token sends.
"""

from __future__ import annotations

from collections.abc import Sequence

from tokenmint.models import FeeUTXO, TokenUTXO


def total_amount(contracts: Sequence[TokenUTXO]) -> int:
    return sum(c.amount for c in contracts)


def select(contracts: Sequence[TokenUTXO], target: int) -> list[TokenUTXO]:
    """
    Shortest prefix of `contracts` whose token amounts reach `target`.

    Contracts are scanned in the order given (no sorting), so the caller's
    ordering decides which outputs get spent. Returns an empty list when even
    the whole list falls short.
    """
    selected = []
    running = 0
    for contract in contracts:
        selected.append(contract)
        running += contract.amount
        if running >= target:
            return selected
    return []


def pick_large_fee_utxo(fee_utxos: Sequence[FeeUTXO]) -> FeeUTXO:
    """Fee UTXO with the most satoshis."""
    if not fee_utxos:
        raise ValueError("No fee UTXOs to pick from")
    return max(fee_utxos, key=lambda u: u.satoshis)
