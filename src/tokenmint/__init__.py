"""
tokenmint - Mint and send UTXO-based fungible tokens

Provides the supply split planner, the two-pass transaction builder, UTXO
selection and merging, and the retrying mint/send entry points.
"""

__version__ = "0.1.0"

from tokenmint.config import TokenMintSettings, get_settings
from tokenmint.constants import DUST_THRESHOLD, MINTER_POSTAGE, TOKEN_POSTAGE
from tokenmint.errors import (
    AncestryLookupError,
    BackendError,
    BroadcastRejectedError,
    InsufficientFundsError,
    InsufficientTokenBalanceError,
    LimitExceededError,
    MergeFailedError,
    MetadataError,
    Outcome,
    PlanningError,
    PremineMismatchError,
    TokenMintError,
    TransactionNotFoundError,
    UTXOLockedError,
    VerificationError,
)
from tokenmint.log import setup_logging
from tokenmint.minter import MintReceipt, TokenMinter
from tokenmint.models import (
    FeeUTXO,
    MinterState,
    MintPlan,
    Outpoint,
    TokenInfo,
    TokenMetadata,
    TokenState,
    TokenUTXO,
)
from tokenmint.planner import create_mint_plan, plan_split
from tokenmint.retry import ErrorClass, classify
from tokenmint.sender import SendReceipt, TokenSender
from tokenmint.spend import MemorySpendTracker, SpendTracker

__all__ = [
    "AncestryLookupError",
    "BackendError",
    "BroadcastRejectedError",
    "DUST_THRESHOLD",
    "ErrorClass",
    "FeeUTXO",
    "InsufficientFundsError",
    "InsufficientTokenBalanceError",
    "LimitExceededError",
    "MINTER_POSTAGE",
    "MemorySpendTracker",
    "MergeFailedError",
    "MetadataError",
    "MintPlan",
    "MintReceipt",
    "MinterState",
    "Outcome",
    "Outpoint",
    "PlanningError",
    "PremineMismatchError",
    "SendReceipt",
    "SpendTracker",
    "TOKEN_POSTAGE",
    "TokenInfo",
    "TokenMetadata",
    "TokenMintError",
    "TokenMintSettings",
    "TokenMinter",
    "TokenSender",
    "TokenState",
    "TokenUTXO",
    "TransactionNotFoundError",
    "UTXOLockedError",
    "VerificationError",
    "classify",
    "create_mint_plan",
    "get_settings",
    "plan_split",
    "setup_logging",
]
