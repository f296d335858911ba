"""
Mint entry point.

Walks the token's minter shards, plans a mint against the first usable one,
builds and broadcasts it. Retryable failures move on to the next shard after
a fixed backoff; fatal ones end the request.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger

from tokenmint.ancestry import AncestryResolver
from tokenmint.backends.base import ChainBackend, TokenIndexer
from tokenmint.broadcast import Broadcaster
from tokenmint.config import TokenMintSettings
from tokenmint.contracts import ContractEngine
from tokenmint.errors import (
    InsufficientFundsError,
    MetadataError,
    Outcome,
    TokenMintError,
)
from tokenmint.fees import resolve_fee_rate
from tokenmint.models import MinterState, Outpoint, TokenMetadata, unscale_amount
from tokenmint.open_minter import MintTxBuilder
from tokenmint.planner import create_mint_plan, resolve_mint_amount
from tokenmint.retry import ErrorClass, classify
from tokenmint.spend import SpendTracker
from tokenmint.tx_builder import TransactionBuilder
from tokenmint.wallet import Wallet


@dataclass(frozen=True)
class MintReceipt:
    token_id: str
    txid: str
    amount: int
    minter_offset: int
    minter_outputs: tuple[Outpoint, ...]
    token_output: Outpoint


class TokenMinter:
    def __init__(
        self,
        settings: TokenMintSettings,
        backend: ChainBackend,
        indexer: TokenIndexer,
        contracts: ContractEngine,
        wallet: Wallet,
        tracker: SpendTracker,
    ):
        self.settings = settings
        self.backend = backend
        self.indexer = indexer
        self.contracts = contracts
        self.wallet = wallet
        self.tracker = tracker

        builder = TransactionBuilder(contracts, wallet, settings.build_policy())
        self.ancestry = AncestryResolver(backend, contracts)
        self.mint_builder = MintTxBuilder(builder, self.ancestry, contracts, wallet)
        self.broadcaster = Broadcaster(backend, tracker)

    async def load_metadata(self, token_id: str) -> Outcome[TokenMetadata]:
        try:
            metadata = await self.indexer.get_token_metadata(token_id)
        except TokenMintError as e:
            return Outcome.failure(e)
        if metadata is None:
            return Outcome.failure(
                MetadataError(f"No token found for tokenId: {token_id}", token_id=token_id)
            )
        if not self.contracts.supports_minter(metadata.info.minter_md5):
            return Outcome.failure(
                MetadataError(
                    f"Unknown minter contract {metadata.info.minter_md5}", token_id=token_id
                )
            )
        return Outcome.success(metadata)

    async def mint(
        self,
        token_id: str,
        amount: int | None = None,
        fee_rate: float | None = None,
    ) -> Outcome[MintReceipt]:
        """
        Mint `amount` base units of a token (default: the per-mint limit).

        Args:
            token_id: Token to mint
            amount: Scaled amount; None mints the default amount
            fee_rate: sat/vB; None uses the configured override or estimation

        Returns:
            The receipt of the broadcast mint, or the error that ended the request
        """
        loaded = await self.load_metadata(token_id)
        if loaded.error is not None:
            logger.error(f"mint failed: {loaded.error}")
            return Outcome.failure(loaded.error)
        metadata = loaded.unwrap()
        symbol = metadata.symbol

        try:
            count = await self.indexer.get_minter_count(token_id)
        except TokenMintError as e:
            logger.error(f"mint token [{symbol}] failed: {e}")
            return Outcome.failure(e)
        logger.info(f"[{symbol}] has {count} minter shards")

        attempts = 0
        last_error: TokenMintError | None = None
        for offset in range(self.settings.shard_start_offset, count):
            if attempts >= self.settings.max_attempts:
                break

            result = await self._mint_shard(metadata, offset, amount, fee_rate)
            if result is None:
                continue
            attempts += 1

            if result.error is None:
                receipt = result.unwrap()
                logger.info(
                    f"Minting {unscale_amount(receipt.amount, metadata.info.decimals)} "
                    f"{symbol} tokens in txid: {receipt.txid} ..."
                )
                return result

            last_error = result.error
            if classify(last_error) is ErrorClass.FATAL:
                logger.error(f"mint token [{symbol}] failed: {last_error}")
                return result

            logger.warning(f"{last_error.message}; retry to mint token [{symbol}] ...")
            await asyncio.sleep(self.settings.retry_backoff_sec)

        error = last_error or TokenMintError(
            f"No usable minter shard for [{symbol}]", stage="mint", token_id=token_id
        )
        logger.error(f"mint token [{symbol}] failed: {error}")
        return Outcome.failure(error)

    async def _mint_shard(
        self,
        metadata: TokenMetadata,
        offset: int,
        amount: int | None,
        fee_rate: float | None,
    ) -> Outcome[MintReceipt] | None:
        """One mint attempt against shard `offset`. None means the shard was skipped."""
        token_id = metadata.token_id
        scaled = metadata.info.scaled()

        rate = await resolve_fee_rate(
            self.backend,
            fee_rate if fee_rate is not None else self.settings.fee_rate,
            self.settings.fee_conf_target,
            self.settings.min_fee_rate,
        )
        if rate.error is not None:
            return Outcome.failure(rate.error)

        try:
            fee_utxos = [
                u
                for u in await self.backend.get_fee_utxos(self.wallet.address)
                if self.tracker.is_unspent(u.outpoint)
            ]
            minter = await self.indexer.get_minter(metadata, offset)
        except TokenMintError as e:
            return Outcome.failure(e)

        if not fee_utxos:
            return Outcome.failure(
                InsufficientFundsError(
                    "Insufficient satoshis balance!", stage="mint", token_id=token_id
                )
            )

        logger.debug(f"offset: {offset} -> minter {minter.outpoint if minter else None}")
        if minter is None or not self.tracker.is_unspent(minter.outpoint):
            return None

        state = minter.state
        if not isinstance(state, MinterState):
            return None
        if state.remaining_supply < self.settings.min_minter_supply:
            logger.debug(
                f"Skipping minter fragment {minter.outpoint}, "
                f"remainingSupply: {state.remaining_supply}"
            )
            return None

        resolved = resolve_mint_amount(amount, state, scaled)
        if resolved.error is not None:
            return Outcome.failure(_tag(resolved.error, token_id, str(minter.outpoint)))
        mint_amount = resolved.unwrap()

        plan = create_mint_plan(
            mint_amount, state, scaled, self.wallet.token_address, self.settings.successor_minters
        )
        if plan.error is not None:
            return Outcome.failure(_tag(plan.error, token_id, str(minter.outpoint)))

        outpoints = [minter.outpoint] + [u.outpoint for u in fee_utxos]
        try:
            with self.tracker.intent(outpoints):
                built = await self.mint_builder.build(
                    metadata, minter, fee_utxos, plan.unwrap(), rate.unwrap()
                )
                if built.error is not None:
                    return Outcome.failure(built.error)
                mint_tx = built.unwrap()

                broadcast = await self.broadcaster.broadcast(
                    mint_tx.tx, stage="mint", token_id=token_id
                )
        except TokenMintError as e:
            return Outcome.failure(e)

        if broadcast.error is not None:
            return Outcome.failure(broadcast.error)

        return Outcome.success(
            MintReceipt(
                token_id=token_id,
                txid=broadcast.unwrap(),
                amount=mint_amount,
                minter_offset=offset,
                minter_outputs=mint_tx.minter_outputs,
                token_output=mint_tx.token_output,
            )
        )


def _tag(error: TokenMintError, token_id: str, outpoint: str) -> TokenMintError:
    error.stage = error.stage or "plan"
    error.token_id = error.token_id or token_id
    error.outpoint = error.outpoint or outpoint
    return error
