"""
Tests for the TokenSender entry point.
"""

from __future__ import annotations

import pytest
from conftest import (
    RECEIVER_ADDRESS,
    TOKEN_ID,
    WALLET_ADDRESS,
    FakeChain,
    FakeContractEngine,
    FakeIndexer,
    FakeWallet,
    make_metadata,
    seed_token,
)

from tokenmint.config import TokenMintSettings
from tokenmint.errors import (
    InsufficientFundsError,
    InsufficientTokenBalanceError,
    MetadataError,
    PlanningError,
)
from tokenmint.models import TokenState
from tokenmint.sender import TokenSender
from tokenmint.spend import MemorySpendTracker


def make_sender(
    settings: TokenMintSettings,
    chain: FakeChain,
    indexer: FakeIndexer,
    contracts: FakeContractEngine,
    wallet: FakeWallet,
    tracker: MemorySpendTracker,
) -> TokenSender:
    return TokenSender(settings, chain, indexer, contracts, wallet, tracker)


class TestTokenSender:
    """Tests for TokenSender.send and merge_all."""

    @pytest.mark.asyncio
    async def test_simple_send(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        tokens = [seed_token(chain, 60), seed_token(chain, 50), seed_token(chain, 70)]
        indexer = FakeIndexer(make_metadata(), token_utxos=tokens)

        sender = make_sender(settings, chain, indexer, contracts, wallet, tracker)
        result = await sender.send(TOKEN_ID, RECEIVER_ADDRESS, 100)

        receipt = result.unwrap()
        assert not receipt.merged
        assert chain.broadcasts == [receipt.commit_txid, receipt.txid]
        assert not tracker.is_unspent(tokens[0].outpoint)
        assert not tracker.is_unspent(tokens[1].outpoint)
        assert tracker.is_unspent(tokens[2].outpoint)
        call = contracts.transfer_calls[-1]
        assert call.output_states == (
            TokenState(RECEIVER_ADDRESS, 100),
            TokenState(wallet.token_address, 10),
        )

    @pytest.mark.asyncio
    async def test_fragmented_selection_merges_first(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        """Six UTXOs of 10 exceed the fan-in of 4: merged 6 -> 2 -> 1, then sent."""
        tokens = [seed_token(chain, 10) for _ in range(6)]
        indexer = FakeIndexer(make_metadata(), token_utxos=tokens)

        sender = make_sender(settings, chain, indexer, contracts, wallet, tracker)
        result = await sender.send(TOKEN_ID, RECEIVER_ADDRESS, 55)

        receipt = result.unwrap()
        assert receipt.merged
        assert receipt.merge_rounds == 2
        # Three merge pairs (two in the first round, one in the second) and the send pair
        assert len(chain.broadcasts) == 8
        assert chain.broadcasts[-2:] == [receipt.commit_txid, receipt.txid]
        assert all(not tracker.is_unspent(t.outpoint) for t in tokens)
        call = contracts.transfer_calls[-1]
        assert call.output_states == (
            TokenState(RECEIVER_ADDRESS, 55),
            TokenState(wallet.token_address, 5),
        )

    @pytest.mark.asyncio
    async def test_transient_rejection_retried(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        tokens = [seed_token(chain, 100)]
        indexer = FakeIndexer(make_metadata(), token_utxos=tokens)
        chain.rejections = ["bad-txns-inputs-missingorspent"]

        sender = make_sender(settings, chain, indexer, contracts, wallet, tracker)
        result = await sender.send(TOKEN_ID, RECEIVER_ADDRESS, 100)

        assert result.ok
        assert chain.rejections == []
        assert len(chain.broadcasts) == 2

    @pytest.mark.asyncio
    async def test_rejected_reveal_resumed(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        tokens = [seed_token(chain, 100)]
        indexer = FakeIndexer(make_metadata(), token_utxos=tokens)
        # Commit accepted, reveal rejected once
        chain.rejections = [None, "txn-mempool-conflict"]

        sender = make_sender(settings, chain, indexer, contracts, wallet, tracker)
        result = await sender.send(TOKEN_ID, RECEIVER_ADDRESS, 100)

        receipt = result.unwrap()
        # The retry only broadcast the reveal, although the commit spent the only fee UTXO
        assert chain.broadcasts == [receipt.commit_txid, receipt.txid]
        assert not tracker.is_unspent(chain.fee_utxos[0].outpoint)
        assert not tracker.is_unspent(tokens[0].outpoint)
        assert len(sender.cache) == 0

    @pytest.mark.asyncio
    async def test_insufficient_token_balance(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        indexer = FakeIndexer(make_metadata(), token_utxos=[seed_token(chain, 10)])

        sender = make_sender(settings, chain, indexer, contracts, wallet, tracker)
        result = await sender.send(TOKEN_ID, RECEIVER_ADDRESS, 100)

        assert isinstance(result.error, InsufficientTokenBalanceError)
        assert chain.broadcasts == []

    @pytest.mark.asyncio
    async def test_no_fee_utxos(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        chain.fee_utxos = []
        indexer = FakeIndexer(make_metadata(), token_utxos=[seed_token(chain, 100)])

        sender = make_sender(settings, chain, indexer, contracts, wallet, tracker)
        result = await sender.send(TOKEN_ID, RECEIVER_ADDRESS, 100)

        assert isinstance(result.error, InsufficientFundsError)

    @pytest.mark.asyncio
    async def test_receiver_must_be_taproot(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        indexer = FakeIndexer(make_metadata(), token_utxos=[seed_token(chain, 100)])

        sender = make_sender(settings, chain, indexer, contracts, wallet, tracker)
        result = await sender.send(TOKEN_ID, WALLET_ADDRESS, 100)

        assert isinstance(result.error, PlanningError)

    @pytest.mark.asyncio
    async def test_unknown_token(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        sender = make_sender(settings, chain, FakeIndexer(None), contracts, wallet, tracker)
        result = await sender.send(TOKEN_ID, RECEIVER_ADDRESS, 100)
        assert isinstance(result.error, MetadataError)

    @pytest.mark.asyncio
    async def test_merge_all(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        tokens = [seed_token(chain, 10) for _ in range(5)]
        indexer = FakeIndexer(make_metadata(), token_utxos=tokens)

        sender = make_sender(settings, chain, indexer, contracts, wallet, tracker)
        result = await sender.merge_all(TOKEN_ID)

        receipt = result.unwrap()
        assert receipt.merged_from == 5
        assert receipt.utxo is not None
        assert receipt.utxo.amount == 50
        # 5 -> 2 -> 1, one commit/reveal pair per round
        assert len(chain.broadcasts) == 4

    @pytest.mark.asyncio
    async def test_merge_all_nothing_to_do(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        indexer = FakeIndexer(make_metadata(), token_utxos=[seed_token(chain, 10)])

        sender = make_sender(settings, chain, indexer, contracts, wallet, tracker)
        result = await sender.merge_all(TOKEN_ID)

        assert result.unwrap().merged_from == 1
        assert chain.broadcasts == []
