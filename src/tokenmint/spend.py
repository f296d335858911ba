"""
Spend tracking.

The tracker is the only mutable state shared between orchestration attempts.
It remembers outputs spent by transactions this process broadcast (which the
indexer may not reflect yet) and lets an attempt claim outputs before it
builds, so two attempts never select the same UTXO.
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from types import TracebackType

from loguru import logger

from tokenmint.errors import UTXOLockedError
from tokenmint.models import Outpoint
from tokenmint.transaction import SignedTransaction


class SpendTracker(ABC):
    @abstractmethod
    def is_unspent(self, outpoint: Outpoint) -> bool:
        pass

    @abstractmethod
    def mark_spent(self, tx: SignedTransaction) -> None:
        """Record every input of a broadcast transaction as spent."""

    @abstractmethod
    def reserve(self, outpoints: Iterable[Outpoint]) -> None:
        """Claim outpoints for one attempt. Raises UTXOLockedError if any is claimed."""

    @abstractmethod
    def release(self, outpoints: Iterable[Outpoint]) -> None:
        pass

    def intent(self, outpoints: Iterable[Outpoint]) -> SpendIntent:
        return SpendIntent(self, outpoints)


class SpendIntent:
    """
    Claim over the outputs one attempt is about to spend.

    The claim is released on exit. A successful broadcast has marked the
    outputs spent by then; an abandoned attempt leaves the tracker unchanged.
    """

    def __init__(self, tracker: SpendTracker, outpoints: Iterable[Outpoint]):
        self.tracker = tracker
        self.outpoints = list(dict.fromkeys(outpoints))
        self.active = False

    def __enter__(self) -> SpendIntent:
        self.tracker.reserve(self.outpoints)
        self.active = True
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self.active:
            self.tracker.release(self.outpoints)
            self.active = False


class MemorySpendTracker(SpendTracker):
    """
    Thread-safe in-process tracker, optionally persisted as a JSON list of
    spent outpoints so restarts do not reuse unconfirmed spends.
    """

    def __init__(self, path: Path | None = None):
        self.path = path
        self._lock = threading.Lock()
        self._spent: set[str] = set()
        self._reserved: set[str] = set()
        if path is not None and path.exists():
            self._spent = set(json.loads(path.read_text()))
            logger.debug(f"Loaded {len(self._spent)} tracked spends from {path}")

    def is_unspent(self, outpoint: Outpoint) -> bool:
        with self._lock:
            return str(outpoint) not in self._spent

    def mark_spent(self, tx: SignedTransaction) -> None:
        with self._lock:
            for outpoint in tx.spent_outpoints():
                self._spent.add(str(outpoint))
            self._save()
        logger.debug(f"Marked {len(tx.draft.inputs)} outputs spent by {tx.txid}")

    def reserve(self, outpoints: Iterable[Outpoint]) -> None:
        keys = [str(o) for o in outpoints]
        with self._lock:
            busy = [k for k in keys if k in self._reserved or k in self._spent]
            if busy:
                raise UTXOLockedError(f"UTXO already claimed: {busy[0]}", outpoint=busy[0])
            self._reserved.update(keys)

    def release(self, outpoints: Iterable[Outpoint]) -> None:
        with self._lock:
            self._reserved.difference_update(str(o) for o in outpoints)

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(sorted(self._spent)))
