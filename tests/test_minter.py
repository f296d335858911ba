"""
Tests for the TokenMinter entry point.
"""

from __future__ import annotations

import pytest
from conftest import (
    TOKEN_ID,
    WALLET_TOKEN_ADDRESS,
    FakeChain,
    FakeContractEngine,
    FakeIndexer,
    FakeWallet,
    make_metadata,
    seed_minter,
)

from tokenmint.config import TokenMintSettings
from tokenmint.errors import (
    BroadcastRejectedError,
    InsufficientFundsError,
    MetadataError,
    PremineMismatchError,
)
from tokenmint.minter import TokenMinter
from tokenmint.spend import MemorySpendTracker


def make_minter(
    settings: TokenMintSettings,
    chain: FakeChain,
    indexer: FakeIndexer,
    contracts: FakeContractEngine,
    wallet: FakeWallet,
    tracker: MemorySpendTracker,
) -> TokenMinter:
    return TokenMinter(settings, chain, indexer, contracts, wallet, tracker)


class TestTokenMinter:
    """Tests for TokenMinter.mint."""

    @pytest.mark.asyncio
    async def test_first_premine_mint(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        metadata = make_metadata(premine=500, limit=400, max_supply=2000)
        minter_utxo = seed_minter(chain, remaining=1500, is_premined=False)
        indexer = FakeIndexer(metadata, minters=[minter_utxo])

        minter = make_minter(settings, chain, indexer, contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID, amount=500)

        receipt = result.unwrap()
        assert receipt.amount == 500
        assert receipt.minter_offset == 0
        assert chain.broadcasts == [receipt.txid]
        assert not tracker.is_unspent(minter_utxo.outpoint)
        assert len(receipt.minter_outputs) == 1
        call = contracts.mint_calls[-1]
        assert call.token_state.owner == WALLET_TOKEN_ADDRESS
        assert call.split_amounts == (1500,)

    @pytest.mark.asyncio
    async def test_premine_mismatch_is_fatal(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        metadata = make_metadata(premine=500, limit=400, max_supply=2000)
        minters = [
            seed_minter(chain, remaining=1500, is_premined=False),
            seed_minter(chain, remaining=1500, is_premined=False),
        ]
        indexer = FakeIndexer(metadata, minters=minters)

        minter = make_minter(settings, chain, indexer, contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID, amount=400)

        assert isinstance(result.error, PremineMismatchError)
        assert chain.broadcasts == []
        assert contracts.mint_calls == []

    @pytest.mark.asyncio
    async def test_default_amount_is_limit(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        indexer = FakeIndexer(make_metadata(), minters=[seed_minter(chain, remaining=5000)])

        minter = make_minter(settings, chain, indexer, contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID)

        assert result.unwrap().amount == 400

    @pytest.mark.asyncio
    async def test_skips_fragments_and_missing_shards(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        minters = [None, seed_minter(chain, remaining=50), seed_minter(chain, remaining=5000)]
        indexer = FakeIndexer(make_metadata(), minters=minters)

        minter = make_minter(settings, chain, indexer, contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID)

        assert result.unwrap().minter_offset == 2

    @pytest.mark.asyncio
    async def test_shard_start_offset(
        self,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        settings = TokenMintSettings(_env_file=None, retry_backoff_sec=0, shard_start_offset=1)
        minters = [seed_minter(chain, remaining=5000), seed_minter(chain, remaining=5000)]
        indexer = FakeIndexer(make_metadata(), minters=minters)

        minter = make_minter(settings, chain, indexer, contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID)

        assert result.unwrap().minter_offset == 1

    @pytest.mark.asyncio
    async def test_retryable_rejection_moves_to_next_shard(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        minters = [seed_minter(chain, remaining=5000), seed_minter(chain, remaining=5000)]
        indexer = FakeIndexer(make_metadata(), minters=minters)
        chain.rejections = ["txn-mempool-conflict"]

        minter = make_minter(settings, chain, indexer, contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID)

        receipt = result.unwrap()
        assert receipt.minter_offset == 1
        # The abandoned attempt claimed nothing
        assert tracker.is_unspent(minters[0].outpoint)

    @pytest.mark.asyncio
    async def test_attempts_bounded(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        minters = [seed_minter(chain, remaining=5000) for _ in range(5)]
        indexer = FakeIndexer(make_metadata(), minters=minters)
        chain.rejections = ["txn-mempool-conflict"] * 5

        minter = make_minter(settings, chain, indexer, contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID)

        assert isinstance(result.error, BroadcastRejectedError)
        # max_attempts=3 in the settings fixture
        assert len(chain.rejections) == 2

    @pytest.mark.asyncio
    async def test_fatal_rejection_stops(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        minters = [seed_minter(chain, remaining=5000), seed_minter(chain, remaining=5000)]
        indexer = FakeIndexer(make_metadata(), minters=minters)
        chain.rejections = ["mandatory-script-verify-flag-failed"]

        minter = make_minter(settings, chain, indexer, contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID)

        assert isinstance(result.error, BroadcastRejectedError)
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
        indexer = FakeIndexer(make_metadata(), minters=[seed_minter(chain, remaining=5000)])

        minter = make_minter(settings, chain, indexer, contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID)

        assert isinstance(result.error, InsufficientFundsError)

    @pytest.mark.asyncio
    async def test_unknown_token(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        minter = make_minter(settings, chain, FakeIndexer(None), contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID)
        assert isinstance(result.error, MetadataError)

    @pytest.mark.asyncio
    async def test_unknown_minter_contract(
        self,
        settings: TokenMintSettings,
        chain: FakeChain,
        contracts: FakeContractEngine,
        wallet: FakeWallet,
        tracker: MemorySpendTracker,
    ) -> None:
        indexer = FakeIndexer(make_metadata(minter_md5="00" * 16))
        minter = make_minter(settings, chain, indexer, contracts, wallet, tracker)
        result = await minter.mint(TOKEN_ID)
        assert isinstance(result.error, MetadataError)
