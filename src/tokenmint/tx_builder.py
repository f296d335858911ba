"""
Two-pass transaction builder.

Shared by the mint, commit and reveal paths:
1. Dry-run sign a zero-change clone of the draft and measure its vsize
2. Compute change = inputs - vsize * fee_rate - committed outputs
3. Reject change below the dust threshold
4. Set the change, sign the final sighash, attach witnesses
5. Optionally run the contract verifier on every contract input
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from loguru import logger

from tokenmint.constants import DUST_THRESHOLD, GUARD_POSTAGE, MINTER_POSTAGE, TOKEN_POSTAGE
from tokenmint.contracts import ContractEngine, ContractScript, TxContext
from tokenmint.errors import (
    InsufficientFundsError,
    Outcome,
    TokenMintError,
    VerificationError,
)
from tokenmint.fees import compute_change, estimate_vsize
from tokenmint.models import TokenUTXO
from tokenmint.transaction import SignedTransaction, TransactionDraft, Witness
from tokenmint.wallet import Wallet

WitnessFactory = Callable[[TransactionDraft, TxContext, bytes], list[bytes]]


@dataclass(frozen=True)
class BuildPolicy:
    """Fee and postage policy passed explicitly to every builder."""

    dust_threshold: int = DUST_THRESHOLD
    minter_postage: int = MINTER_POSTAGE
    token_postage: int = TOKEN_POSTAGE
    guard_postage: int = GUARD_POSTAGE
    verify: bool = False


@dataclass(frozen=True)
class ContractSpend:
    """A contract input of a draft and how to unlock it."""

    index: int
    utxo: TokenUTXO
    contract: ContractScript
    make_witness: WitnessFactory


class TransactionBuilder:
    def __init__(self, contracts: ContractEngine, wallet: Wallet, policy: BuildPolicy):
        self.contracts = contracts
        self.wallet = wallet
        self.policy = policy

    def sign_inputs(
        self, draft: TransactionDraft, spends: Sequence[ContractSpend]
    ) -> tuple[Witness, ...]:
        """Witness stacks for every input of `draft`, signed over its current sighash."""
        witnesses: list[Witness] = [()] * len(draft.inputs)

        for spend in spends:
            ctx = self.contracts.tx_context(draft, spend.index, spend.contract)
            signature = self.wallet.sign(ctx.sighash)
            witnesses[spend.index] = tuple(spend.make_witness(draft, ctx, signature))

        contract_indices = {spend.index for spend in spends}
        fee_indices = [i for i in range(len(draft.inputs)) if i not in contract_indices]
        if fee_indices:
            fee_witnesses = self.wallet.sign_fee_inputs(draft, fee_indices)
            for index, witness in zip(fee_indices, fee_witnesses, strict=True):
                witnesses[index] = tuple(witness)

        return tuple(witnesses)

    def finalize(
        self,
        draft: TransactionDraft,
        fee_rate: float,
        spends: Sequence[ContractSpend],
        *,
        stage: str,
        token_id: str = "",
    ) -> Outcome[SignedTransaction]:
        """Run both signing passes over `draft` and return the finished transaction."""
        try:
            vsize = estimate_vsize(draft, lambda d: self.sign_inputs(d, spends))
        except (ValueError, TokenMintError) as e:
            return Outcome.failure(_tag(e, stage, token_id, "dry-run signing failed"))

        change = compute_change(draft.input_value, vsize, fee_rate, draft.committed_output_value)
        logger.debug(
            f"[{stage}] inputs={draft.input_value} vsize={vsize} fee_rate={fee_rate} "
            f"outputs={draft.committed_output_value} change={change}"
        )

        if change < self.policy.dust_threshold:
            return Outcome.failure(
                InsufficientFundsError(
                    "Insufficient satoshis balance!",
                    stage=stage,
                    token_id=token_id,
                    outpoint=str(draft.inputs[0].outpoint),
                )
            )

        final = draft.with_change(change)
        try:
            witnesses = self.sign_inputs(final, spends)
        except (ValueError, TokenMintError) as e:
            return Outcome.failure(_tag(e, stage, token_id, "signing failed"))

        tx = SignedTransaction(final, witnesses)

        if self.policy.verify:
            for spend in spends:
                detail = self.contracts.verify(spend.utxo, tx, spend.index, witnesses[spend.index])
                if detail is not None:
                    logger.error(f"[{stage}] unlocking {spend.utxo.outpoint} failed: {detail}")
                    return Outcome.failure(
                        VerificationError(
                            f"Unlocking contract input {spend.index} failed: {detail}",
                            stage=stage,
                            token_id=token_id,
                            outpoint=str(spend.utxo.outpoint),
                        )
                    )

        if tx.vsize != vsize:
            # Witness sizes depend on the change amount; the contract engine is broken
            return Outcome.failure(
                VerificationError(
                    f"Final vsize {tx.vsize} differs from dry-run vsize {vsize}",
                    stage=stage,
                    token_id=token_id,
                )
            )

        logger.info(f"[{stage}] built {tx.txid}: vsize={tx.vsize}, fee={tx.fee}, change={change}")
        return Outcome.success(tx)


def _tag(error: Exception, stage: str, token_id: str, prefix: str) -> TokenMintError:
    if isinstance(error, TokenMintError):
        if not error.stage:
            error.stage = stage
        if not error.token_id:
            error.token_id = token_id
        return error
    return TokenMintError(f"{prefix}: {error}", stage=stage, token_id=token_id)
