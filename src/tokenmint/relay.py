"""
Building and broadcasting commit/reveal transfer pairs.

The commit is broadcast first and marked spent as soon as the node accepts
it, then the reveal. A reveal rejected after its commit went through leaves
the pair in the cache with the commit recorded as accepted, so the next
attempt for the same transfer only broadcasts the reveal.
"""

from __future__ import annotations

from loguru import logger

from tokenmint.broadcast import Broadcaster
from tokenmint.cache import TransactionCache, content_key
from tokenmint.errors import InsufficientFundsError, Outcome, TokenMintError
from tokenmint.models import FeeUTXO, TokenMetadata, TokenUTXO
from tokenmint.selector import pick_large_fee_utxo
from tokenmint.spend import SpendTracker
from tokenmint.transfer import TransferResult, TransferTxBuilder


class TransferRelay:
    def __init__(
        self,
        transfer_builder: TransferTxBuilder,
        broadcaster: Broadcaster,
        tracker: SpendTracker,
        cache: TransactionCache,
    ):
        self.transfer_builder = transfer_builder
        self.broadcaster = broadcaster
        self.tracker = tracker
        self.cache = cache

    async def transfer(
        self,
        metadata: TokenMetadata,
        token_utxos: list[TokenUTXO],
        fee_utxos: list[FeeUTXO],
        receiver: str,
        amount: int,
        fee_rate: float,
        change_address: str,
        *,
        stage: str,
    ) -> Outcome[TransferResult]:
        """Move `amount` of `token_utxos` to `receiver`, resuming a cached pair if any."""
        token_id = metadata.token_id
        key = content_key(token_utxos, receiver, amount)

        entry = self.cache.lookup(key)
        if entry is not None and not entry.accepted:
            funding: FeeUTXO = entry.payload.funding
            if funding not in fee_utxos:
                # Nothing went out and its fee input is gone: build afresh
                logger.debug(f"[{stage}] dropping cached transfer funded by {funding.outpoint}")
                self.cache.settle(key)
                entry = None

        if entry is None:
            if not fee_utxos:
                return Outcome.failure(
                    InsufficientFundsError(
                        "Insufficient satoshis balance!", stage=stage, token_id=token_id
                    )
                )
            built = await self.transfer_builder.build(
                metadata,
                token_utxos,
                pick_large_fee_utxo(fee_utxos),
                receiver,
                amount,
                fee_rate,
                change_address,
            )
            if built.error is not None:
                return Outcome.failure(built.error)
            result = built.unwrap()
            entry = self.cache.remember(key, result.transactions, result)
        else:
            result = entry.payload
            logger.debug(f"[{stage}] reusing cached transfer {result.reveal.txid}")

        pending = entry.pending
        outpoints = [o for tx in pending for o in tx.spent_outpoints()]
        try:
            with self.tracker.intent(outpoints):
                for tx in pending:
                    sent = await self.broadcaster.broadcast(tx, stage=stage, token_id=token_id)
                    if sent.error is not None:
                        return Outcome.failure(sent.error)
                    self.cache.accept(key, tx.txid)
        except TokenMintError as e:
            return Outcome.failure(e)

        self.cache.settle(key)
        return Outcome.success(result)
