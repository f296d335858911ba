"""
Token protocol and base-ledger constants.

Postage values follow the open-minter protocol deployment:
- MINTER_POSTAGE: satoshis locked in every minter output
- TOKEN_POSTAGE: satoshis locked in every token (balance holder) output
- GUARD_POSTAGE: satoshis locked in the transfer guard a send commits to
"""

from __future__ import annotations

# Standard P2PKH dust limit in Bitcoin Core
STANDARD_DUST_LIMIT = 546  # satoshis

# Change below this is rejected instead of being folded into the fee
DUST_THRESHOLD = STANDARD_DUST_LIMIT

MINTER_POSTAGE = 331  # satoshis
TOKEN_POSTAGE = 330  # satoshis
GUARD_POSTAGE = 332  # satoshis

# Selections with more token inputs than this are consolidated first
MERGE_FAN_IN_THRESHOLD = 4

# Token inputs a single transfer transaction can carry
MAX_TOKEN_INPUTS = 4

# Seconds to wait before re-attempting after a transient failure
RETRY_BACKOFF_SEC = 6.0

# Minters holding less than this remaining supply are skipped as fragments
MIN_MINTER_SUPPLY = 100

# nSequence value signalling replace-by-fee (BIP125)
RBF_SEQUENCE = 0xFFFFFFFD

TX_VERSION = 2
