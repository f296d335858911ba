"""
Chain backend and token indexer implementations.

Available backends:
- MempoolBackend: Esplora/mempool.space REST API for raw transactions,
  broadcast, fee estimates and plain UTXOs
- TrackerIndexer: token tracker REST API for metadata, minter shards and
  token balances
"""

from tokenmint.backends.base import ChainBackend, TokenIndexer
from tokenmint.backends.mempool import MempoolBackend
from tokenmint.backends.tracker import TrackerIndexer

__all__ = [
    "ChainBackend",
    "MempoolBackend",
    "TokenIndexer",
    "TrackerIndexer",
]
