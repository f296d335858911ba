"""
Broadcasting signed transactions and recording their spends.
"""

from __future__ import annotations

from loguru import logger

from tokenmint.backends.base import ChainBackend
from tokenmint.errors import BroadcastRejectedError, Outcome, TokenMintError
from tokenmint.spend import SpendTracker
from tokenmint.transaction import SignedTransaction

# The node already has this exact transaction, so its inputs are spent by it
ALREADY_KNOWN_PATTERNS = (
    "txn-already-known",
    "txn-already-in-mempool",
)


class Broadcaster:
    def __init__(self, backend: ChainBackend, tracker: SpendTracker):
        self.backend = backend
        self.tracker = tracker

    async def broadcast(
        self, tx: SignedTransaction, *, stage: str, token_id: str = ""
    ) -> Outcome[str]:
        """Broadcast `tx` and mark its inputs spent. Returns the txid."""
        try:
            txid = await self.backend.broadcast_transaction(tx.hex())
        except BroadcastRejectedError as e:
            if any(p in e.reason for p in ALREADY_KNOWN_PATTERNS):
                logger.info(f"[{stage}] {tx.txid} already known to the node")
                self.tracker.mark_spent(tx)
                return Outcome.success(tx.txid)
            e.stage = e.stage or stage
            e.token_id = e.token_id or token_id
            logger.warning(f"[{stage}] broadcast of {tx.txid} rejected: {e.reason}")
            return Outcome.failure(e)
        except TokenMintError as e:
            e.stage = e.stage or stage
            e.token_id = e.token_id or token_id
            logger.warning(f"[{stage}] broadcast of {tx.txid} failed: {e.message}")
            return Outcome.failure(e)

        if txid != tx.txid:
            logger.warning(f"[{stage}] node reported txid {txid}, expected {tx.txid}")

        self.tracker.mark_spent(tx)
        logger.info(f"[{stage}] broadcast {tx.txid}")
        return Outcome.success(tx.txid)
