"""
Smart-contract engine interface.

The engine owns everything that depends on the contract code: locking
scripts, state hashes, sighash preimages, backtrace proofs, unlocking
witnesses and script verification. The orchestration engine only decides
which transaction to build and how much to pay.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from tokenmint.models import (
    GuardState,
    MinterState,
    ScaledTokenInfo,
    TokenMetadata,
    TokenState,
    TokenUTXO,
)
from tokenmint.transaction import SignedTransaction, TransactionDraft


@dataclass(frozen=True)
class ContractScript:
    """Taproot script-path spend data for one contract."""

    tap_script: bytes
    control_block: bytes
    locking_script: bytes


@dataclass(frozen=True)
class TxContext:
    """Signing context of one input: the sighash plus what the contract checks."""

    sighash: bytes
    preimage: bytes = b""
    prevouts: bytes = b""
    spent_scripts: tuple[bytes, ...] = ()


@dataclass(frozen=True)
class ChangeInfo:
    script: bytes
    satoshis: int

    def satoshis_bytes(self) -> bytes:
        """8-byte little-endian amount, fixed width whatever the value."""
        return self.satoshis.to_bytes(8, "little")


@dataclass(frozen=True)
class MintCall:
    """Arguments of the minter's mint method."""

    state_hashes: tuple[bytes, ...]
    token_state: TokenState
    split_amounts: tuple[int, ...]
    pubkey_prefix: bytes
    x_only_pubkey: bytes
    minter_postage: int
    token_postage: int
    pre_state: MinterState
    pre_tx_state_hashes: tuple[bytes, ...]
    backtrace: Any
    change: ChangeInfo


@dataclass(frozen=True)
class TransferCall:
    """Arguments of the token's transfer method for one token input."""

    state_hashes: tuple[bytes, ...]
    input_index: int
    pre_state: TokenState
    pre_tx_state_hashes: tuple[bytes, ...]
    backtrace: Any
    output_states: tuple[TokenState, ...]
    token_postage: int
    pubkey_prefix: bytes
    x_only_pubkey: bytes
    change: ChangeInfo
    # Position of the guard input in the reveal transaction
    guard_input_index: int = 0


@dataclass(frozen=True)
class GuardCall:
    """Arguments of the transfer guard for the reveal transaction."""

    state_hashes: tuple[bytes, ...]
    input_index: int
    pre_state: GuardState
    output_states: tuple[TokenState, ...]
    token_postage: int
    change: ChangeInfo


class ContractEngine(ABC):
    """Contract-level collaborator used by the transaction builders."""

    @abstractmethod
    def supports_minter(self, minter_md5: str) -> bool:
        """True if the minter contract with this code hash is an open minter."""

    @abstractmethod
    def minter_contract(
        self, metadata: TokenMetadata, scaled: ScaledTokenInfo, premine_address: str
    ) -> ContractScript:
        """Script-path data of the minter for this token and premine recipient."""

    @abstractmethod
    def token_contract(self, metadata: TokenMetadata) -> ContractScript:
        """Script-path data of the token contract."""

    @abstractmethod
    def transfer_guard(
        self, metadata: TokenMetadata, token_utxos: Sequence[TokenUTXO]
    ) -> ContractScript:
        """Script-path data of the guard that authorizes spending `token_utxos`."""

    @abstractmethod
    def minter_state_hash(self, state: MinterState) -> bytes:
        pass

    @abstractmethod
    def token_state_hash(self, state: TokenState) -> bytes:
        pass

    @abstractmethod
    def state_output_script(self, state_hashes: Sequence[bytes]) -> bytes:
        """Zero-value output script committing to the state-hash list."""

    @abstractmethod
    def backtrace(self, prev_tx: bytes, prev_prev_tx: bytes, input_index: int) -> Any:
        """Ancestry proof that the spent output descends from the genesis."""

    @abstractmethod
    def tx_context(
        self, draft: TransactionDraft, input_index: int, contract: ContractScript
    ) -> TxContext:
        pass

    @abstractmethod
    def mint_witness(
        self, call: MintCall, ctx: TxContext, signature: bytes, contract: ContractScript
    ) -> list[bytes]:
        """Complete witness stack for the minter input."""

    @abstractmethod
    def transfer_witness(
        self, call: TransferCall, ctx: TxContext, signature: bytes, contract: ContractScript
    ) -> list[bytes]:
        """Complete witness stack for one token input."""

    @abstractmethod
    def guard_witness(
        self, call: GuardCall, ctx: TxContext, signature: bytes, contract: ContractScript
    ) -> list[bytes]:
        """Complete witness stack for the guard input of a reveal transaction."""

    @abstractmethod
    def decode_premine_address(self, locking_script: bytes) -> str:
        """Premine recipient baked into a minter locking script."""

    @abstractmethod
    def verify(
        self,
        utxo: TokenUTXO,
        tx: SignedTransaction,
        input_index: int,
        witness: Sequence[bytes],
    ) -> str | None:
        """Run the contract for a finished input. None on success, else the failure detail."""
