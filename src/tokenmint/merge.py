"""
Token UTXO consolidation.

A transfer can spend at most a few token inputs, so a send that needs more
first merges them: each round batches the contracts, sends every batch of two
or more to ourselves, and carries singletons over. The contract count strictly
decreases every round, so the loop ends with a single UTXO.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from tokenmint.errors import MergeFailedError
from tokenmint.models import FeeUTXO, TokenMetadata, TokenUTXO, unscale_amount
from tokenmint.relay import TransferRelay
from tokenmint.selector import total_amount
from tokenmint.wallet import Wallet


@dataclass
class MergeResult:
    merged: list[TokenUTXO]
    remaining_fee_utxos: list[FeeUTXO]
    error: MergeFailedError | None = field(default=None)
    rounds: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def batches(contracts: Sequence[TokenUTXO], size: int) -> list[list[TokenUTXO]]:
    return [list(contracts[i : i + size]) for i in range(0, len(contracts), size)]


class MergeEngine:
    def __init__(
        self,
        metadata: TokenMetadata,
        relay: TransferRelay,
        wallet: Wallet,
        max_inputs: int,
    ):
        if max_inputs < 2:
            raise ValueError(f"Merging needs at least 2 inputs per transaction, got {max_inputs}")
        self.metadata = metadata
        self.relay = relay
        self.wallet = wallet
        self.max_inputs = max_inputs

    async def merge(
        self,
        fee_utxos: list[FeeUTXO],
        fee_rate: float,
        contracts: list[TokenUTXO],
        change_address: str,
    ) -> MergeResult:
        """Merge `contracts` into one token UTXO, paying fees from `fee_utxos`."""
        fee_pool = list(fee_utxos)
        pending = list(contracts)
        symbol = self.metadata.symbol
        decimals = self.metadata.info.decimals
        round_number = 0

        while len(pending) > 1:
            round_number += 1
            before = len(pending)
            carried: list[TokenUTXO] = []

            for batch in batches(pending, self.max_inputs):
                if len(batch) == 1:
                    carried.append(batch[0])
                    continue
                sent = await self.relay.transfer(
                    self.metadata,
                    batch,
                    fee_pool,
                    self.wallet.token_address,
                    total_amount(batch),
                    fee_rate,
                    change_address,
                    stage="merge",
                )
                if sent.error is not None:
                    logger.error(f"merge [{symbol}] tokens failed: {sent.error}")
                    error = MergeFailedError(
                        f"Merge round {round_number} failed: {sent.error}",
                        stage="merge",
                        token_id=self.metadata.token_id,
                    )
                    error.__cause__ = sent.error
                    return MergeResult(
                        merged=pending,
                        remaining_fee_utxos=fee_pool,
                        error=error,
                        rounds=round_number,
                    )

                result = sent.unwrap()
                spent = {o for tx in result.transactions for o in tx.spent_outpoints()}
                fee_pool = [u for u in fee_pool if u.outpoint not in spent]
                fee_pool.append(result.change)
                carried.append(result.token_outputs[0])

            pending = carried
            logger.info(
                f"Merge round {round_number}: {before} -> {len(pending)} [{symbol}] UTXOs, "
                f"total {unscale_amount(total_amount(pending), decimals)}"
            )

        return MergeResult(merged=pending, remaining_fee_utxos=fee_pool, rounds=round_number)
