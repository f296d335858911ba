"""
Transaction builder for open-minter mints.

Builds the reveal transaction that spends a minter UTXO plus fee UTXOs:
- Output 0: state commitment (zero value)
- Outputs 1..n: successor minters carrying the split remaining supply
- Output n+1: the minted token output
- Last output: change back to the wallet
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from tokenmint.ancestry import AncestryResolver
from tokenmint.contracts import ChangeInfo, ContractEngine, MintCall, TxContext
from tokenmint.errors import MetadataError, Outcome, PlanningError
from tokenmint.models import (
    FeeUTXO,
    MinterState,
    MintPlan,
    Outpoint,
    TokenMetadata,
    TokenUTXO,
)
from tokenmint.transaction import (
    SignedTransaction,
    TransactionDraft,
    TxInput,
    TxOutput,
    address_to_scriptpubkey,
)
from tokenmint.tx_builder import ContractSpend, TransactionBuilder
from tokenmint.wallet import Wallet

MINTER_INPUT_INDEX = 0


@dataclass(frozen=True)
class MintTransaction:
    tx: SignedTransaction
    minter_outputs: tuple[Outpoint, ...]
    token_output: Outpoint


class MintTxBuilder:
    def __init__(
        self,
        builder: TransactionBuilder,
        ancestry: AncestryResolver,
        contracts: ContractEngine,
        wallet: Wallet,
    ):
        self.builder = builder
        self.ancestry = ancestry
        self.contracts = contracts
        self.wallet = wallet

    async def resolve_premine_address(
        self, metadata: TokenMetadata, minter: TokenUTXO
    ) -> Outcome[str]:
        """
        Address the premine was (or will be) minted to.

        - First mint of a premined token: our own token address
        - Token without premine: empty
        - Otherwise: read back from the ancestry of the minter being spent
        """
        state = minter.state
        if not isinstance(state, MinterState):
            return Outcome.failure(
                PlanningError(
                    "UTXO is not a minter",
                    stage="mint",
                    token_id=metadata.token_id,
                    outpoint=str(minter.outpoint),
                )
            )
        premine = metadata.info.scaled().premine

        if not state.is_premined and premine > 0:
            return Outcome.success(self.wallet.token_address)
        if premine == 0:
            return Outcome.success("")
        return await self.ancestry.premine_address(minter, token_id=metadata.token_id)

    async def build(
        self,
        metadata: TokenMetadata,
        prior_minter: TokenUTXO,
        fee_utxos: list[FeeUTXO],
        plan: MintPlan,
        fee_rate: float,
    ) -> Outcome[MintTransaction]:
        token_id = metadata.token_id
        pre_state = prior_minter.state
        if not isinstance(pre_state, MinterState):
            return Outcome.failure(
                PlanningError(
                    "UTXO is not a minter",
                    stage="mint",
                    token_id=token_id,
                    outpoint=str(prior_minter.outpoint),
                )
            )
        policy = self.builder.policy
        scaled = metadata.info.scaled()

        # New state: one entry per successor minter, then the token
        state_hashes = tuple(
            [self.contracts.minter_state_hash(s) for s in plan.minter_states]
            + [self.contracts.token_state_hash(plan.token_state)]
        )

        premine_address = await self.resolve_premine_address(metadata, prior_minter)
        if premine_address.error is not None:
            return Outcome.failure(premine_address.error)

        backtrace = await self.ancestry.backtrace(prior_minter, token_id=token_id)
        if backtrace.error is not None:
            return Outcome.failure(backtrace.error)

        minter_contract = self.contracts.minter_contract(
            metadata, scaled, premine_address.unwrap()
        )

        try:
            token_script = address_to_scriptpubkey(metadata.token_address)
            change_script = address_to_scriptpubkey(self.wallet.address)
        except ValueError as e:
            return Outcome.failure(MetadataError(str(e), stage="mint", token_id=token_id))

        inputs = [TxInput.from_token_utxo(prior_minter)] + [
            TxInput.from_fee_utxo(u) for u in fee_utxos
        ]
        outputs = [TxOutput(0, self.contracts.state_output_script(state_hashes))]
        outputs += [
            TxOutput(policy.minter_postage, prior_minter.script) for _ in plan.minter_states
        ]
        outputs.append(TxOutput(policy.token_postage, token_script))
        outputs.append(TxOutput(0, change_script))
        draft = TransactionDraft(inputs=tuple(inputs), outputs=tuple(outputs))

        logger.debug(
            f"Mint draft: {len(inputs)} inputs, {len(outputs)} outputs, "
            f"splits={list(plan.split_amounts)}"
        )

        proof = backtrace.unwrap()

        def mint_witness(
            current: TransactionDraft, ctx: TxContext, signature: bytes
        ) -> list[bytes]:
            call = MintCall(
                state_hashes=state_hashes,
                token_state=plan.token_state,
                split_amounts=plan.split_amounts,
                pubkey_prefix=self.wallet.pubkey_prefix,
                x_only_pubkey=self.wallet.x_only_pubkey,
                minter_postage=policy.minter_postage,
                token_postage=policy.token_postage,
                pre_state=pre_state,
                pre_tx_state_hashes=prior_minter.tx_state_hashes,
                backtrace=proof,
                change=ChangeInfo(script=change_script, satoshis=current.change.value),
            )
            return self.contracts.mint_witness(call, ctx, signature, minter_contract)

        spend = ContractSpend(
            index=MINTER_INPUT_INDEX,
            utxo=prior_minter,
            contract=minter_contract,
            make_witness=mint_witness,
        )
        built = self.builder.finalize(draft, fee_rate, [spend], stage="mint", token_id=token_id)
        if built.error is not None:
            return Outcome.failure(built.error)

        tx = built.unwrap()
        successors = len(plan.minter_states)
        return Outcome.success(
            MintTransaction(
                tx=tx,
                minter_outputs=tuple(tx.output_outpoint(1 + i) for i in range(successors)),
                token_output=tx.output_outpoint(1 + successors),
            )
        )
