"""
Wallet interface and Schnorr signing callback.

Key custody stays outside this package: the engine only asks the wallet for
addresses, for a signature over a digest, and for witnesses of its plain
fee inputs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from coincurve import PrivateKey

from tokenmint.transaction import TransactionDraft

Signer = Callable[[bytes], bytes]


class Wallet(ABC):
    @property
    @abstractmethod
    def address(self) -> str:
        """Address holding fee UTXOs and receiving change."""

    @property
    @abstractmethod
    def token_address(self) -> str:
        """Owner address recorded in token states."""

    @property
    @abstractmethod
    def x_only_pubkey(self) -> bytes:
        pass

    @property
    def pubkey_prefix(self) -> bytes:
        return b""

    @abstractmethod
    def sign(self, digest: bytes) -> bytes:
        """Schnorr signature over a 32-byte digest."""

    @abstractmethod
    def sign_fee_inputs(
        self, draft: TransactionDraft, input_indices: Sequence[int]
    ) -> list[list[bytes]]:
        """Witness stacks for the wallet's own inputs, in `input_indices` order."""


def schnorr_signer(private_key: bytes | PrivateKey) -> Signer:
    """
    Build a deferred BIP340 signing callback.

    The callback is invoked only once the digest it signs is known, so the
    dry-run pass and the final pass each sign their own sighash.
    """
    key = private_key if isinstance(private_key, PrivateKey) else PrivateKey(private_key)

    def sign(digest: bytes) -> bytes:
        if len(digest) != 32:
            raise ValueError(f"Expected a 32-byte digest, got {len(digest)} bytes")
        return key.sign_schnorr(digest)

    return sign


def x_only_public_key(private_key: bytes | PrivateKey) -> bytes:
    key = private_key if isinstance(private_key, PrivateKey) else PrivateKey(private_key)
    # Drop the parity byte of the compressed encoding
    return key.public_key.format(compressed=True)[1:]
