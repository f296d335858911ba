"""
Ancestry lookups for contract inputs.

Spending a contract output needs the transaction that created it and that
transaction's own parent (the backtrace), and for open minters the premine
recipient baked into the previous minter's locking script.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from tokenmint.backends.base import ChainBackend
from tokenmint.cache import TransactionCache
from tokenmint.contracts import ContractEngine
from tokenmint.errors import (
    AncestryLookupError,
    BackendError,
    Outcome,
    TransactionNotFoundError,
)
from tokenmint.models import TokenUTXO
from tokenmint.transaction import parse_transaction


class AncestryResolver:
    def __init__(
        self,
        backend: ChainBackend,
        contracts: ContractEngine,
        cache: TransactionCache | None = None,
    ):
        self.backend = backend
        self.contracts = contracts
        self.cache = cache

    async def fetch(self, txid: str, *, token_id: str = "") -> Outcome[bytes]:
        """Raw transaction, from the local cache first, then the backend."""
        if self.cache is not None:
            raw = self.cache.get_raw(txid)
            if raw is not None:
                return Outcome.success(raw)

        try:
            return Outcome.success(await self.backend.get_raw_transaction(txid))
        except (TransactionNotFoundError, BackendError) as e:
            logger.warning(f"get raw transaction {txid} failed: {e}")
            # Not-found is usually indexer lag on a fresh transaction
            return Outcome.failure(
                AncestryLookupError(
                    f"Cannot fetch transaction {txid}: {e.message}",
                    retryable=True,
                    stage="ancestry",
                    token_id=token_id,
                )
            )

    async def backtrace(
        self, utxo: TokenUTXO, *, input_index: int = 0, token_id: str = ""
    ) -> Outcome[Any]:
        """Backtrace proof for spending `utxo`."""
        prev = await self.fetch(utxo.outpoint.txid, token_id=token_id)
        if prev.error is not None:
            return Outcome.failure(prev.error)
        prev_raw = prev.unwrap()

        try:
            prev_tx = parse_transaction(prev_raw)
            prev_prev_txid = prev_tx.inputs[input_index].txid
        except (ValueError, IndexError) as e:
            return Outcome.failure(
                AncestryLookupError(
                    f"Malformed ancestor transaction: {e}",
                    stage="ancestry",
                    token_id=token_id,
                    outpoint=str(utxo.outpoint),
                )
            )

        prev_prev = await self.fetch(prev_prev_txid, token_id=token_id)
        if prev_prev.error is not None:
            return Outcome.failure(prev_prev.error)

        try:
            proof = self.contracts.backtrace(prev_raw, prev_prev.unwrap(), input_index)
        except ValueError as e:
            return Outcome.failure(
                AncestryLookupError(
                    f"Backtrace failed: {e}",
                    stage="ancestry",
                    token_id=token_id,
                    outpoint=str(utxo.outpoint),
                )
            )
        return Outcome.success(proof)

    async def premine_address(self, minter: TokenUTXO, *, token_id: str = "") -> Outcome[str]:
        """
        Premine recipient of the minter being spent.

        The transaction that created `minter` spent the previous minter as its
        first input; that input's witness ends with [..., locking script,
        control block].
        """
        fetched = await self.fetch(minter.outpoint.txid, token_id=token_id)
        if fetched.error is not None:
            return Outcome.failure(fetched.error)

        try:
            tx = parse_transaction(fetched.unwrap())
            witness = tx.inputs[0].witness
            locking_script = witness[-2]
            address = self.contracts.decode_premine_address(locking_script)
        except (ValueError, IndexError) as e:
            logger.error(f"get premine address failed: {e}")
            return Outcome.failure(
                AncestryLookupError(
                    f"Cannot decode premine address: {e}",
                    stage="premine",
                    token_id=token_id,
                    outpoint=str(minter.outpoint),
                )
            )
        return Outcome.success(address)
