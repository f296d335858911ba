"""
Immutable transaction model and wire serialization.

A TransactionDraft is never edited: setting the change amount returns a new
draft, so a dry-run signing pass cannot leak state into the final one. The
change output is always the last output of a draft.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field, replace

from bip_utils import Bech32ChecksumError, SegwitBech32Decoder

from tokenmint.constants import RBF_SEQUENCE, TX_VERSION
from tokenmint.models import FeeUTXO, Outpoint, TokenUTXO

Witness = tuple[bytes, ...]


def varint(n: int) -> bytes:
    """Encode integer as Bitcoin varint."""
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    elif n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    else:
        return bytes([0xFF]) + struct.pack("<Q", n)


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Read varint and return (value, bytes_consumed)."""
    first = data[offset]
    if first < 0xFD:
        return first, 1
    elif first == 0xFD:
        return struct.unpack("<H", data[offset + 1 : offset + 3])[0], 3
    elif first == 0xFE:
        return struct.unpack("<I", data[offset + 1 : offset + 5])[0], 5
    else:
        return struct.unpack("<Q", data[offset + 1 : offset + 9])[0], 9


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """Serialize outpoint (txid:vout)."""
    # txid is in RPC format (big-endian), need to reverse for raw tx
    return bytes.fromhex(txid)[::-1] + struct.pack("<I", vout)


def address_to_scriptpubkey(address: str) -> bytes:
    """
    Convert a SegWit address to scriptPubKey.

    Version 0 addresses carry a bech32 checksum and version 1 (taproot) a
    bech32m one; the segwit decoder accepts both.

    Supports:
    - P2WPKH (bc1q..., tb1q..., bcrt1q...)
    - P2WSH (bc1q... 62 chars)
    - P2TR (bc1p..., tb1p..., bcrt1p...)
    """
    lowered = address.lower()
    if not lowered.startswith(("bc1", "tb1", "bcrt1")):
        raise ValueError(f"Unsupported address: {address}")

    hrp = lowered[: lowered.rindex("1")]
    try:
        witver, witprog = SegwitBech32Decoder.Decode(hrp, address)
    except (Bech32ChecksumError, ValueError) as e:
        raise ValueError(f"Invalid bech32 address: {address}") from e

    if witver == 0:
        if len(witprog) == 20:
            # P2WPKH: OP_0 <20-byte-pubkeyhash>
            return bytes([0x00, 0x14]) + witprog
        elif len(witprog) == 32:
            # P2WSH: OP_0 <32-byte-scripthash>
            return bytes([0x00, 0x20]) + witprog
    elif witver == 1 and len(witprog) == 32:
        # P2TR: OP_1 <32-byte-pubkey>
        return bytes([0x51, 0x20]) + witprog

    raise ValueError(f"Unsupported witness version: {witver}")


def is_taproot_address(address: str) -> bool:
    try:
        script = address_to_scriptpubkey(address)
    except ValueError:
        return False
    return script[:2] == bytes([0x51, 0x20])


@dataclass(frozen=True)
class TxInput:
    """Transaction input together with the prevout it spends."""

    txid: str
    vout: int
    value: int
    scriptpubkey: bytes = b""
    sequence: int = RBF_SEQUENCE

    @property
    def outpoint(self) -> Outpoint:
        return Outpoint(self.txid, self.vout)

    @classmethod
    def from_token_utxo(cls, utxo: TokenUTXO) -> TxInput:
        return cls(
            txid=utxo.outpoint.txid,
            vout=utxo.outpoint.vout,
            value=utxo.satoshis,
            scriptpubkey=utxo.script,
        )

    @classmethod
    def from_fee_utxo(cls, utxo: FeeUTXO) -> TxInput:
        return cls(
            txid=utxo.outpoint.txid,
            vout=utxo.outpoint.vout,
            value=utxo.satoshis,
            scriptpubkey=utxo.script,
        )


@dataclass(frozen=True)
class TxOutput:
    value: int
    scriptpubkey: bytes


@dataclass(frozen=True)
class TransactionDraft:
    """Unsigned transaction whose last output is the change output."""

    inputs: tuple[TxInput, ...]
    outputs: tuple[TxOutput, ...]
    version: int = TX_VERSION
    locktime: int = 0

    def __post_init__(self) -> None:
        if not self.inputs:
            raise ValueError("Transaction needs at least one input")
        if not self.outputs:
            raise ValueError("Transaction needs a change output")

    @property
    def input_value(self) -> int:
        return sum(inp.value for inp in self.inputs)

    @property
    def change(self) -> TxOutput:
        return self.outputs[-1]

    @property
    def committed_output_value(self) -> int:
        """Value of every output except change."""
        return sum(out.value for out in self.outputs[:-1])

    def with_change(self, amount: int) -> TransactionDraft:
        change = replace(self.outputs[-1], value=amount)
        return replace(self, outputs=self.outputs[:-1] + (change,))

    def serialize(self, witnesses: tuple[Witness, ...] | None = None) -> bytes:
        """Serialize; without witnesses this is the txid (non-witness) encoding."""
        result = struct.pack("<I", self.version)
        if witnesses is not None:
            # SegWit marker and flag
            result += bytes([0x00, 0x01])

        result += varint(len(self.inputs))
        for inp in self.inputs:
            result += serialize_outpoint(inp.txid, inp.vout)
            # Empty scriptSig, all inputs are witness spends
            result += bytes([0x00])
            result += struct.pack("<I", inp.sequence)

        result += varint(len(self.outputs))
        for out in self.outputs:
            result += struct.pack("<Q", out.value)
            result += varint(len(out.scriptpubkey))
            result += out.scriptpubkey

        if witnesses is not None:
            if len(witnesses) != len(self.inputs):
                raise ValueError(
                    f"Expected {len(self.inputs)} witness stacks, got {len(witnesses)}"
                )
            for witness in witnesses:
                result += varint(len(witness))
                for item in witness:
                    result += varint(len(item))
                    result += item

        result += struct.pack("<I", self.locktime)
        return result

    @property
    def txid(self) -> str:
        return hash256(self.serialize())[::-1].hex()


@dataclass(frozen=True)
class SignedTransaction:
    draft: TransactionDraft
    witnesses: tuple[Witness, ...]
    raw: bytes = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw", self.draft.serialize(self.witnesses))

    @property
    def txid(self) -> str:
        return self.draft.txid

    @property
    def weight(self) -> int:
        base_size = len(self.draft.serialize())
        return base_size * 3 + len(self.raw)

    @property
    def vsize(self) -> int:
        return (self.weight + 3) // 4

    @property
    def fee(self) -> int:
        return self.draft.input_value - sum(out.value for out in self.draft.outputs)

    def hex(self) -> str:
        return self.raw.hex()

    def spent_outpoints(self) -> list[Outpoint]:
        return [inp.outpoint for inp in self.draft.inputs]

    def output_outpoint(self, index: int) -> Outpoint:
        if not 0 <= index < len(self.draft.outputs):
            raise IndexError(f"Output index {index} out of range")
        return Outpoint(self.txid, index)


@dataclass(frozen=True)
class ParsedInput:
    txid: str
    vout: int
    script_sig: bytes
    sequence: int
    witness: Witness = ()


@dataclass(frozen=True)
class ParsedTransaction:
    version: int
    inputs: tuple[ParsedInput, ...]
    outputs: tuple[TxOutput, ...]
    locktime: int


def parse_transaction(tx_bytes: bytes) -> ParsedTransaction:
    """Parse a raw transaction, keeping witness stacks."""
    try:
        offset = 0

        version = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        offset += 4

        # Check for SegWit marker
        has_witness = tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01
        if has_witness:
            offset += 2

        input_count, size = read_varint(tx_bytes, offset)
        offset += size

        raw_inputs = []
        for _ in range(input_count):
            txid = tx_bytes[offset : offset + 32][::-1].hex()
            offset += 32
            vout = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
            offset += 4
            script_len, size = read_varint(tx_bytes, offset)
            offset += size
            script_sig = tx_bytes[offset : offset + script_len]
            offset += script_len
            sequence = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
            offset += 4
            raw_inputs.append((txid, vout, script_sig, sequence))

        output_count, size = read_varint(tx_bytes, offset)
        offset += size

        outputs = []
        for _ in range(output_count):
            value = struct.unpack("<Q", tx_bytes[offset : offset + 8])[0]
            offset += 8
            script_len, size = read_varint(tx_bytes, offset)
            offset += size
            outputs.append(TxOutput(value, tx_bytes[offset : offset + script_len]))
            offset += script_len

        witnesses: list[Witness] = []
        if has_witness:
            for _ in range(input_count):
                wit_count, size = read_varint(tx_bytes, offset)
                offset += size
                items = []
                for _ in range(wit_count):
                    item_len, size = read_varint(tx_bytes, offset)
                    offset += size
                    items.append(tx_bytes[offset : offset + item_len])
                    offset += item_len
                witnesses.append(tuple(items))
        else:
            witnesses = [()] * input_count

        if len(tx_bytes) < offset + 4:
            raise ValueError("truncated locktime")
        locktime = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]

    except (IndexError, struct.error) as e:
        raise ValueError(f"Failed to parse transaction: {e}") from e

    inputs = tuple(
        ParsedInput(txid, vout, script_sig, sequence, witness)
        for (txid, vout, script_sig, sequence), witness in zip(raw_inputs, witnesses)
    )
    return ParsedTransaction(version, inputs, tuple(outputs), locktime)
