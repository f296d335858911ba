"""
Cache of constructed transactions.

Entries are keyed by the content of the transfer that produced them (token
inputs, receiver, amount), so a transfer retried after a transient failure
reuses its commit/reveal pair instead of rebuilding it. An entry remembers
which of its transactions the node already accepted: a retry after an
accepted commit only broadcasts the reveal. Raw bytes are also indexed by
txid: the ancestry of outputs created by not-yet-confirmed transactions
resolves from here.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from tokenmint.models import TokenUTXO
from tokenmint.transaction import SignedTransaction


@dataclass
class CachedEntry:
    txs: tuple[SignedTransaction, ...]
    payload: Any = None
    accepted: set[str] = field(default_factory=set)

    @property
    def pending(self) -> list[SignedTransaction]:
        """Transactions not yet accepted by the node, in broadcast order."""
        return [tx for tx in self.txs if tx.txid not in self.accepted]


def content_key(contracts: Iterable[TokenUTXO], receiver: str, amount: int) -> str:
    """Digest of the token inputs and intended outputs of a transfer."""
    h = hashlib.sha256()
    for outpoint in sorted(str(c.outpoint) for c in contracts):
        h.update(outpoint.encode())
        h.update(b"\x00")
    h.update(receiver.encode())
    h.update(amount.to_bytes(16, "big"))
    return h.hexdigest()


class TransactionCache:
    def __init__(self) -> None:
        self._entries: dict[str, CachedEntry] = {}
        self._raw: dict[str, bytes] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def remember(
        self, key: str, txs: Sequence[SignedTransaction], payload: Any = None
    ) -> CachedEntry:
        entry = CachedEntry(tuple(txs), payload)
        self._entries[key] = entry
        for tx in txs:
            self.add_raw(tx.txid, tx.raw)
        return entry

    def add_raw(self, txid: str, raw: bytes) -> None:
        self._raw[txid] = raw

    def lookup(self, key: str) -> CachedEntry | None:
        return self._entries.get(key)

    def has_accepted(self) -> bool:
        """Whether some entry is part way through its broadcasts."""
        return any(entry.accepted for entry in self._entries.values())

    def accept(self, key: str, txid: str) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.accepted.add(txid)

    def settle(self, key: str) -> None:
        """Forget an entry so it is never broadcast again; keep its raw bytes."""
        self._entries.pop(key, None)

    def get_raw(self, txid: str) -> bytes | None:
        return self._raw.get(txid)
