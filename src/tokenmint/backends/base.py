"""
Base chain backend and token indexer interfaces.

Implementations translate transport failures into the tagged errors of
tokenmint.errors: BackendError for transient network trouble,
TransactionNotFoundError for unknown txids and BroadcastRejectedError (with
the node's reason) for refused transactions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from tokenmint.models import FeeUTXO, TokenMetadata, TokenUTXO


class ChainBackend(ABC):
    """Base-ledger access: raw transactions, broadcast, fees, plain UTXOs."""

    @abstractmethod
    async def get_raw_transaction(self, txid: str) -> bytes:
        """Raw transaction bytes. Raises TransactionNotFoundError or BackendError."""

    @abstractmethod
    async def broadcast_transaction(self, tx_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    @abstractmethod
    async def estimate_fee(self, target_blocks: int) -> float:
        """Estimate fee in sat/vbyte for target confirmation blocks"""

    @abstractmethod
    async def get_fee_utxos(self, address: str) -> list[FeeUTXO]:
        """Spendable plain UTXOs of an address"""

    async def close(self) -> None:
        """Close backend connection"""
        pass


class TokenIndexer(ABC):
    """Token-protocol index: metadata, minter shards and token balances."""

    @abstractmethod
    async def get_token_metadata(self, token_id: str) -> TokenMetadata | None:
        pass

    @abstractmethod
    async def get_minter_count(self, token_id: str) -> int:
        """Number of live minter UTXOs (shards) of a token"""

    @abstractmethod
    async def get_minter(self, metadata: TokenMetadata, offset: int) -> TokenUTXO | None:
        """Minter shard at `offset`, or None if it no longer exists"""

    @abstractmethod
    async def get_token_utxos(self, metadata: TokenMetadata, owner: str) -> list[TokenUTXO]:
        """Token UTXOs held by `owner`"""

    async def close(self) -> None:
        pass
