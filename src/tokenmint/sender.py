"""
Send entry point.

A send selects token UTXOs covering the amount, merges them first when the
selection is larger than the fan-in threshold, then builds and broadcasts a
commit/reveal transfer pair. The whole attempt is retried after a fixed
backoff on retryable and merge failures.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from tokenmint.ancestry import AncestryResolver
from tokenmint.backends.base import ChainBackend, TokenIndexer
from tokenmint.broadcast import Broadcaster
from tokenmint.cache import TransactionCache
from tokenmint.config import TokenMintSettings
from tokenmint.contracts import ContractEngine
from tokenmint.errors import (
    InsufficientFundsError,
    InsufficientTokenBalanceError,
    MetadataError,
    Outcome,
    PlanningError,
    TokenMintError,
)
from tokenmint.fees import resolve_fee_rate
from tokenmint.merge import MergeEngine
from tokenmint.models import FeeUTXO, TokenMetadata, TokenUTXO, unscale_amount
from tokenmint.retry import retry_loop
from tokenmint.relay import TransferRelay
from tokenmint.selector import select, total_amount
from tokenmint.spend import SpendTracker
from tokenmint.transaction import is_taproot_address
from tokenmint.transfer import TransferTxBuilder
from tokenmint.tx_builder import TransactionBuilder
from tokenmint.wallet import Wallet


@dataclass(frozen=True)
class SendReceipt:
    token_id: str
    txid: str
    receiver: str
    amount: int
    commit_txid: str = ""
    merge_rounds: int = 0

    @property
    def merged(self) -> bool:
        return self.merge_rounds > 0


@dataclass(frozen=True)
class MergeReceipt:
    token_id: str
    utxo: TokenUTXO | None
    merged_from: int


class TokenSender:
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

        # Shared across attempts so a retried merge reuses its transactions
        self.cache = TransactionCache()
        builder = TransactionBuilder(contracts, wallet, settings.build_policy())
        self.ancestry = AncestryResolver(backend, contracts, self.cache)
        self.transfer_builder = TransferTxBuilder(
            builder, self.ancestry, contracts, wallet, settings.max_token_inputs
        )
        self.broadcaster = Broadcaster(backend, tracker)
        self.relay = TransferRelay(
            self.transfer_builder, self.broadcaster, tracker, self.cache
        )

    def merge_engine(self, metadata: TokenMetadata) -> MergeEngine:
        return MergeEngine(metadata, self.relay, self.wallet, self.settings.max_token_inputs)

    async def load_metadata(self, token_id: str) -> Outcome[TokenMetadata]:
        try:
            metadata = await self.indexer.get_token_metadata(token_id)
        except TokenMintError as e:
            return Outcome.failure(e)
        if metadata is None:
            return Outcome.failure(
                MetadataError(f"No token metadata found for tokenId: {token_id}", token_id=token_id)
            )
        return Outcome.success(metadata)

    async def send(
        self,
        token_id: str,
        receiver: str,
        amount: int,
        fee_rate: float | None = None,
    ) -> Outcome[SendReceipt]:
        """Send `amount` base units of a token to a taproot `receiver`."""
        if not is_taproot_address(receiver):
            error = PlanningError(f"Invalid receiver address: {receiver}", stage="send")
            logger.error(f"send token failed: {error}")
            return Outcome.failure(error)
        if amount <= 0:
            return Outcome.failure(PlanningError(f"Invalid amount: {amount}", stage="send"))

        loaded = await self.load_metadata(token_id)
        if loaded.error is not None:
            logger.error(f"send token failed: {loaded.error}")
            return Outcome.failure(loaded.error)
        metadata = loaded.unwrap()

        return await retry_loop(
            lambda: self._send_once(metadata, receiver, amount, fee_rate),
            self.settings.retry_policy(),
            label=f"send token [{metadata.symbol}]",
        )

    async def merge_all(
        self, token_id: str, fee_rate: float | None = None
    ) -> Outcome[MergeReceipt]:
        """Consolidate every token UTXO of the wallet into one."""
        loaded = await self.load_metadata(token_id)
        if loaded.error is not None:
            return Outcome.failure(loaded.error)
        metadata = loaded.unwrap()

        return await retry_loop(
            lambda: self._merge_once(metadata, fee_rate),
            self.settings.retry_policy(),
            label=f"merge [{metadata.symbol}] tokens",
        )

    async def _inputs(
        self, metadata: TokenMetadata, fee_rate: float | None
    ) -> Outcome[tuple[float, list[FeeUTXO], list[TokenUTXO]]]:
        """Fresh fee rate, fee UTXOs and token UTXOs for one attempt."""
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
            contracts = [
                c
                for c in await self.indexer.get_token_utxos(metadata, self.wallet.token_address)
                if self.tracker.is_unspent(c.outpoint)
            ]
        except TokenMintError as e:
            return Outcome.failure(e)

        # A reveal whose commit went through is funded by that commit
        if not fee_utxos and not self.cache.has_accepted():
            return Outcome.failure(
                InsufficientFundsError(
                    "Insufficient satoshis balance!", stage="send", token_id=metadata.token_id
                )
            )
        return Outcome.success((rate.unwrap(), fee_utxos, contracts))

    async def _send_once(
        self,
        metadata: TokenMetadata,
        receiver: str,
        amount: int,
        fee_rate: float | None,
    ) -> Outcome[SendReceipt]:
        token_id = metadata.token_id
        symbol = metadata.symbol
        inputs = await self._inputs(metadata, fee_rate)
        if inputs.error is not None:
            return Outcome.failure(inputs.error)
        rate, fee_utxos, contracts = inputs.unwrap()

        selected = select(contracts, amount)
        if not selected:
            return Outcome.failure(
                InsufficientTokenBalanceError(
                    f"Insufficient token balance! have {total_amount(contracts)}, need {amount}",
                    stage="select",
                    token_id=token_id,
                )
            )

        merge_rounds = 0
        if len(selected) > self.settings.merge_fan_in:
            logger.info(f"Merging your [{symbol}] tokens ...")
            result = await self.merge_engine(metadata).merge(
                fee_utxos, rate, selected, self.wallet.address
            )
            if result.error is not None:
                return Outcome.failure(result.error)
            selected = result.merged
            fee_utxos = result.remaining_fee_utxos
            merge_rounds = result.rounds

        sent = await self.relay.transfer(
            metadata,
            selected,
            fee_utxos,
            receiver,
            amount,
            rate,
            self.wallet.address,
            stage="send",
        )
        if sent.error is not None:
            return Outcome.failure(sent.error)
        transfer = sent.unwrap()

        logger.info(
            f"Sending {unscale_amount(amount, metadata.info.decimals)} {symbol} tokens "
            f"to {receiver} in txid: {transfer.reveal.txid}"
        )
        return Outcome.success(
            SendReceipt(
                token_id=token_id,
                txid=transfer.reveal.txid,
                receiver=receiver,
                amount=amount,
                commit_txid=transfer.commit.txid,
                merge_rounds=merge_rounds,
            )
        )

    async def _merge_once(
        self, metadata: TokenMetadata, fee_rate: float | None
    ) -> Outcome[MergeReceipt]:
        inputs = await self._inputs(metadata, fee_rate)
        if inputs.error is not None:
            return Outcome.failure(inputs.error)
        rate, fee_utxos, contracts = inputs.unwrap()

        if len(contracts) <= 1:
            logger.info(f"Nothing to merge for [{metadata.symbol}]")
            return Outcome.success(
                MergeReceipt(metadata.token_id, contracts[0] if contracts else None, len(contracts))
            )

        logger.info(f"Start merging your [{metadata.symbol}] tokens ...")
        result = await self.merge_engine(metadata).merge(
            fee_utxos, rate, contracts, self.wallet.address
        )
        if result.error is not None:
            return Outcome.failure(result.error)
        return Outcome.success(MergeReceipt(metadata.token_id, result.merged[0], len(contracts)))
