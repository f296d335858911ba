"""
Test configuration and shared fakes for tokenmint tests.
"""

from __future__ import annotations

import hashlib
import itertools
from collections.abc import Sequence
from typing import Any

import pytest

from tokenmint.backends.base import ChainBackend, TokenIndexer
from tokenmint.config import TokenMintSettings
from tokenmint.contracts import (
    ContractEngine,
    ContractScript,
    GuardCall,
    MintCall,
    TransferCall,
    TxContext,
)
from tokenmint.errors import BroadcastRejectedError, TransactionNotFoundError
from tokenmint.models import (
    FeeUTXO,
    MinterState,
    Outpoint,
    ScaledTokenInfo,
    TokenMetadata,
    TokenState,
    TokenUTXO,
)
from tokenmint.spend import MemorySpendTracker
from tokenmint.transaction import (
    SignedTransaction,
    TransactionDraft,
    TxInput,
    TxOutput,
    address_to_scriptpubkey,
    hash256,
    parse_transaction,
)
from tokenmint.wallet import Wallet

# BIP173 / BIP350 / BIP86 test vectors
WALLET_ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
TOKEN_ADDRESS = "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0"
WALLET_TOKEN_ADDRESS = "bc1p5cyxnuxmeuwuvkwfem96lqzszd02n6xdcjrs20cac6yqjjwudpxqkedrcr"
RECEIVER_ADDRESS = TOKEN_ADDRESS

TOKEN_ID = "ab" * 32 + "_0"
OPEN_MINTER_MD5 = "a6c2e92d74a23c07bb6220b676c6cb9b"
MINTER_SCRIPT = bytes([0x51, 0x20]) + b"\x11" * 32
GUARD_SCRIPT = bytes([0x51, 0x20]) + b"\x33" * 32

_nonce = itertools.count()


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def make_metadata(
    *,
    premine: int = 0,
    limit: int = 400,
    max_supply: int = 21000,
    decimals: int = 0,
    minter_md5: str = OPEN_MINTER_MD5,
) -> TokenMetadata:
    return TokenMetadata.model_validate(
        {
            "tokenId": TOKEN_ID,
            "tokenAddr": TOKEN_ADDRESS,
            "minterAddr": TOKEN_ADDRESS,
            "info": {
                "name": "Test Token",
                "symbol": "TST",
                "decimals": decimals,
                "minterMd5": minter_md5,
                "max": max_supply,
                "limit": limit,
                "premine": premine,
            },
        }
    )


class FakeContractEngine(ContractEngine):
    """
    Deterministic stand-in for the contract engine.

    Witness sizes never depend on the change amount (it is encoded in a fixed
    8 bytes), and the minter tap script is the premine address itself so the
    premine lookup can read it back from a mint's witness.
    """

    def __init__(self, verify_error: str | None = None):
        self.verify_error = verify_error
        self.mint_calls: list[MintCall] = []
        self.transfer_calls: list[TransferCall] = []
        self.guard_calls: list[GuardCall] = []
        self.premine_addresses: list[str] = []
        self.backtraces: list[tuple[bytes, bytes, int]] = []

    def supports_minter(self, minter_md5: str) -> bool:
        return minter_md5 == OPEN_MINTER_MD5

    def minter_contract(
        self, metadata: TokenMetadata, scaled: ScaledTokenInfo, premine_address: str
    ) -> ContractScript:
        self.premine_addresses.append(premine_address)
        return ContractScript(
            tap_script=premine_address.encode() or b"\x51",
            control_block=b"\xc0" + b"\x01" * 32,
            locking_script=MINTER_SCRIPT,
        )

    def token_contract(self, metadata: TokenMetadata) -> ContractScript:
        return ContractScript(
            tap_script=b"\x52" * 40,
            control_block=b"\xc0" + b"\x02" * 32,
            locking_script=address_to_scriptpubkey(metadata.token_address),
        )

    def transfer_guard(
        self, metadata: TokenMetadata, token_utxos: Sequence[TokenUTXO]
    ) -> ContractScript:
        return ContractScript(
            tap_script=b"\x53" * 40,
            control_block=b"\xc0" + b"\x03" * 32,
            locking_script=GUARD_SCRIPT,
        )

    def minter_state_hash(self, state: MinterState) -> bytes:
        return sha256(
            b"minter"
            + state.token_script
            + bytes([state.is_premined])
            + state.remaining_supply.to_bytes(16, "big")
        )

    def token_state_hash(self, state: TokenState) -> bytes:
        return sha256(b"token" + state.owner.encode() + state.amount.to_bytes(16, "big"))

    def state_output_script(self, state_hashes: Sequence[bytes]) -> bytes:
        return bytes([0x6A, 0x20]) + sha256(b"".join(state_hashes))

    def backtrace(self, prev_tx: bytes, prev_prev_tx: bytes, input_index: int) -> Any:
        self.backtraces.append((prev_tx, prev_prev_tx, input_index))
        return (hash256(prev_tx), hash256(prev_prev_tx), input_index)

    def tx_context(
        self, draft: TransactionDraft, input_index: int, contract: ContractScript
    ) -> TxContext:
        return TxContext(sighash=sha256(draft.serialize() + input_index.to_bytes(4, "little")))

    def mint_witness(
        self, call: MintCall, ctx: TxContext, signature: bytes, contract: ContractScript
    ) -> list[bytes]:
        self.mint_calls.append(call)
        return [
            signature,
            b"".join(call.state_hashes),
            call.change.satoshis_bytes(),
            contract.tap_script,
            contract.control_block,
        ]

    def transfer_witness(
        self, call: TransferCall, ctx: TxContext, signature: bytes, contract: ContractScript
    ) -> list[bytes]:
        self.transfer_calls.append(call)
        return [
            signature,
            b"".join(call.state_hashes),
            call.change.satoshis_bytes(),
            contract.tap_script,
            contract.control_block,
        ]

    def guard_witness(
        self, call: GuardCall, ctx: TxContext, signature: bytes, contract: ContractScript
    ) -> list[bytes]:
        self.guard_calls.append(call)
        return [
            signature,
            b"".join(call.state_hashes),
            call.change.satoshis_bytes(),
            contract.tap_script,
            contract.control_block,
        ]

    def decode_premine_address(self, locking_script: bytes) -> str:
        try:
            return locking_script.decode("ascii")
        except UnicodeDecodeError as e:
            raise ValueError("not a premine script") from e

    def verify(
        self,
        utxo: TokenUTXO,
        tx: SignedTransaction,
        input_index: int,
        witness: Sequence[bytes],
    ) -> str | None:
        return self.verify_error


class FakeWallet(Wallet):
    def __init__(self) -> None:
        self.signed: list[bytes] = []

    @property
    def address(self) -> str:
        return WALLET_ADDRESS

    @property
    def token_address(self) -> str:
        return WALLET_TOKEN_ADDRESS

    @property
    def x_only_pubkey(self) -> bytes:
        return b"\x02" * 32

    def sign(self, digest: bytes) -> bytes:
        if len(digest) != 32:
            raise ValueError("bad digest")
        self.signed.append(digest)
        return sha256(digest) * 2

    def sign_fee_inputs(
        self, draft: TransactionDraft, input_indices: Sequence[int]
    ) -> list[list[bytes]]:
        return [
            [sha256(draft.serialize() + bytes([i])) * 2, b"\x03" * 33] for i in input_indices
        ]


def txid_of_raw(raw: bytes) -> str:
    parsed = parse_transaction(raw)
    draft = TransactionDraft(
        inputs=tuple(TxInput(i.txid, i.vout, 0, sequence=i.sequence) for i in parsed.inputs),
        outputs=parsed.outputs,
        version=parsed.version,
        locktime=parsed.locktime,
    )
    return draft.txid


class FakeChain(ChainBackend):
    def __init__(self, fee_rate: float = 2.0):
        self.fee_rate = fee_rate
        self.txs: dict[str, bytes] = {}
        self.fee_utxos: list[FeeUTXO] = []
        self.broadcasts: list[str] = []
        # Outcomes of the next broadcasts, in order: a reason rejects, None accepts
        self.rejections: list[str | None] = []

    def add(self, tx: SignedTransaction) -> str:
        self.txs[tx.txid] = tx.raw
        return tx.txid

    async def get_raw_transaction(self, txid: str) -> bytes:
        if txid not in self.txs:
            raise TransactionNotFoundError(f"Transaction {txid} not found")
        return self.txs[txid]

    async def broadcast_transaction(self, tx_hex: str) -> str:
        reason = self.rejections.pop(0) if self.rejections else None
        if reason is not None:
            raise BroadcastRejectedError(reason)
        raw = bytes.fromhex(tx_hex)
        txid = txid_of_raw(raw)
        self.txs[txid] = raw
        self.broadcasts.append(txid)
        return txid

    async def estimate_fee(self, target_blocks: int) -> float:
        return self.fee_rate

    async def get_fee_utxos(self, address: str) -> list[FeeUTXO]:
        return list(self.fee_utxos)


class FakeIndexer(TokenIndexer):
    def __init__(
        self,
        metadata: TokenMetadata | None,
        minters: Sequence[TokenUTXO | None] = (),
        token_utxos: Sequence[TokenUTXO] = (),
    ):
        self.metadata = metadata
        self.minters = list(minters)
        self.token_utxos = list(token_utxos)

    async def get_token_metadata(self, token_id: str) -> TokenMetadata | None:
        if self.metadata is not None and self.metadata.token_id == token_id:
            return self.metadata
        return None

    async def get_minter_count(self, token_id: str) -> int:
        return len(self.minters)

    async def get_minter(self, metadata: TokenMetadata, offset: int) -> TokenUTXO | None:
        return self.minters[offset] if offset < len(self.minters) else None

    async def get_token_utxos(self, metadata: TokenMetadata, owner: str) -> list[TokenUTXO]:
        return list(self.token_utxos)


def seed_utxo(
    chain: FakeChain,
    state: MinterState | TokenState,
    *,
    script: bytes,
    satoshis: int,
    premine_address: str = "",
) -> TokenUTXO:
    """Register a creating transaction (and its parent) for a contract output."""
    nonce = next(_nonce).to_bytes(8, "big")
    genesis = SignedTransaction(
        TransactionDraft(
            inputs=(TxInput("00" * 32, 0, 0),),
            outputs=(TxOutput(10_000, script), TxOutput(0, bytes([0x6A]) + nonce)),
        ),
        ((b"\x00" * 64,),),
    )
    chain.add(genesis)
    creating = SignedTransaction(
        TransactionDraft(
            inputs=(TxInput(genesis.txid, 0, 10_000),),
            outputs=(
                TxOutput(0, bytes([0x6A]) + nonce),
                TxOutput(satoshis, script),
            ),
        ),
        ((b"\x00" * 64, premine_address.encode() or b"\x51", b"\xc0" * 33),),
    )
    chain.add(creating)
    return TokenUTXO(
        outpoint=Outpoint(creating.txid, 1),
        script=script,
        satoshis=satoshis,
        state=state,
    )


def seed_minter(
    chain: FakeChain,
    *,
    remaining: int,
    is_premined: bool = True,
    premine_address: str = "",
) -> TokenUTXO:
    state = MinterState(
        token_script=address_to_scriptpubkey(TOKEN_ADDRESS),
        is_premined=is_premined,
        remaining_supply=remaining,
    )
    return seed_utxo(
        chain, state, script=MINTER_SCRIPT, satoshis=331, premine_address=premine_address
    )


def seed_token(chain: FakeChain, amount: int) -> TokenUTXO:
    state = TokenState(owner=WALLET_TOKEN_ADDRESS, amount=amount)
    return seed_utxo(
        chain, state, script=address_to_scriptpubkey(TOKEN_ADDRESS), satoshis=330
    )


def fee_utxo(satoshis: int = 100_000, tag: str = "cc") -> FeeUTXO:
    return FeeUTXO(
        outpoint=Outpoint(tag * 32, 0),
        satoshis=satoshis,
        script=address_to_scriptpubkey(WALLET_ADDRESS),
    )


@pytest.fixture
def chain() -> FakeChain:
    chain = FakeChain()
    chain.fee_utxos = [fee_utxo()]
    return chain


@pytest.fixture
def contracts() -> FakeContractEngine:
    return FakeContractEngine()


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def tracker() -> MemorySpendTracker:
    return MemorySpendTracker()


@pytest.fixture
def settings() -> TokenMintSettings:
    return TokenMintSettings(_env_file=None, retry_backoff_sec=0, max_attempts=3)
