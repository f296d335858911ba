"""
Token data models.

Token configuration arrives as JSON from the tracker and is validated with
Pydantic. Everything that describes chain state (outpoints, UTXOs, decoded
contract state, mint plans) is an immutable dataclass: the engine consumes
UTXOs and produces successors, it never edits one in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TokenInfo(BaseModel):
    """Deployment parameters of an open-minter token, in whole-token units."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    symbol: str
    decimals: int = Field(default=0, ge=0, le=18)
    minter_md5: str = Field(default="", alias="minterMd5")
    max: int = Field(..., gt=0)
    limit: int = Field(..., gt=0)
    premine: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_supply(self) -> TokenInfo:
        if self.premine > self.max:
            raise ValueError(f"premine {self.premine} exceeds max supply {self.max}")
        return self

    def scaled(self) -> ScaledTokenInfo:
        factor = 10**self.decimals
        return ScaledTokenInfo(
            max=self.max * factor,
            limit=self.limit * factor,
            premine=self.premine * factor,
            decimals=self.decimals,
        )


class TokenMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token_id: str = Field(..., alias="tokenId", pattern=r"^[0-9a-f]{64}_\d+$")
    token_address: str = Field(..., alias="tokenAddr")
    minter_address: str = Field(default="", alias="minterAddr")
    info: TokenInfo

    @property
    def symbol(self) -> str:
        return self.info.symbol

    @property
    def genesis_outpoint(self) -> Outpoint:
        txid, vout = self.token_id.split("_")
        return Outpoint(txid=txid, vout=int(vout))


@dataclass(frozen=True)
class ScaledTokenInfo:
    """TokenInfo amounts multiplied by 10**decimals."""

    max: int
    limit: int
    premine: int
    decimals: int


@dataclass(frozen=True)
class Outpoint:
    txid: str
    vout: int

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class MinterState:
    """Remaining-supply accounting carried by a minter output."""

    token_script: bytes
    is_premined: bool
    remaining_supply: int


@dataclass(frozen=True)
class TokenState:
    """Balance carried by a token output."""

    owner: str
    amount: int


@dataclass(frozen=True)
class GuardState:
    """What a transfer guard output authorizes: the token and the input amounts."""

    token_script: bytes
    input_amounts: tuple[int, ...]


@dataclass(frozen=True)
class TokenUTXO:
    """Unspent contract output holding a MinterState, TokenState or GuardState."""

    outpoint: Outpoint
    script: bytes
    satoshis: int
    state: MinterState | TokenState | GuardState
    # State hashes committed by the transaction that created this output
    tx_state_hashes: tuple[bytes, ...] = ()

    @property
    def is_minter(self) -> bool:
        return isinstance(self.state, MinterState)

    @property
    def amount(self) -> int:
        """Token balance; zero for minters and guards."""
        if isinstance(self.state, TokenState):
            return self.state.amount
        return 0


@dataclass(frozen=True)
class FeeUTXO:
    """Plain wallet output used to pay fees."""

    outpoint: Outpoint
    satoshis: int
    script: bytes = b""


@dataclass(frozen=True)
class MintPlan:
    """Per-attempt result of the supply split planner."""

    mint_amount: int
    split_amounts: tuple[int, ...]
    minter_states: tuple[MinterState, ...]
    token_state: TokenState
    # Supply the split was computed over (remaining supply + carried premine)
    planned_supply: int = field(default=0)

    @property
    def successor_count(self) -> int:
        return len(self.minter_states)


def scale_amount(amount: str, decimals: int) -> int:
    """Convert a human amount ("1.5") into base units, rejecting extra precision."""
    try:
        scaled = Decimal(amount) * (Decimal(10) ** decimals)
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimals")
    if scaled <= 0:
        raise ValueError(f"Amount must be positive: {amount}")
    return int(scaled)


def unscale_amount(amount: int, decimals: int) -> str:
    value = Decimal(amount) / (Decimal(10) ** decimals)
    return format(value.normalize(), "f")
