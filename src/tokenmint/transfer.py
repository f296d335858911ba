"""
Transaction builder for token transfers.

A transfer is a commit/reveal pair, used both for sends and for merge
(transfer-to-self) transactions.

Commit:
- Input: one fee UTXO
- Output 0: transfer guard (guard postage)
- Output 1: fee change, which funds the reveal

Reveal:
- Inputs: the token UTXOs, then the guard, then the commit's fee change
- Output 0: state commitment (zero value)
- Output 1: receiver token output
- Output 2: token change back to the sender (only if any)
- Last output: fee change
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from tokenmint.ancestry import AncestryResolver
from tokenmint.contracts import (
    ChangeInfo,
    ContractEngine,
    ContractScript,
    GuardCall,
    TransferCall,
    TxContext,
)
from tokenmint.errors import (
    InsufficientTokenBalanceError,
    MetadataError,
    Outcome,
    PlanningError,
)
from tokenmint.models import FeeUTXO, GuardState, TokenMetadata, TokenState, TokenUTXO
from tokenmint.transaction import (
    SignedTransaction,
    TransactionDraft,
    TxInput,
    TxOutput,
    address_to_scriptpubkey,
)
from tokenmint.tx_builder import ContractSpend, TransactionBuilder, WitnessFactory
from tokenmint.wallet import Wallet

# Contract inputs always come first, so every token output we created was
# produced by a transaction whose first input is a contract input
BACKTRACE_INPUT_INDEX = 0


@dataclass(frozen=True)
class TransferResult:
    commit: SignedTransaction
    reveal: SignedTransaction
    # Token outputs of the reveal: receiver first, then sender change if any
    token_outputs: tuple[TokenUTXO, ...]
    change: FeeUTXO
    # Fee UTXO the commit spends
    funding: FeeUTXO

    @property
    def transactions(self) -> tuple[SignedTransaction, SignedTransaction]:
        """Broadcast order."""
        return (self.commit, self.reveal)


class TransferTxBuilder:
    def __init__(
        self,
        builder: TransactionBuilder,
        ancestry: AncestryResolver,
        contracts: ContractEngine,
        wallet: Wallet,
        max_inputs: int,
    ):
        self.builder = builder
        self.ancestry = ancestry
        self.contracts = contracts
        self.wallet = wallet
        self.max_inputs = max_inputs

    async def build(
        self,
        metadata: TokenMetadata,
        token_utxos: list[TokenUTXO],
        fee_utxo: FeeUTXO,
        receiver: str,
        amount: int,
        fee_rate: float,
        change_address: str,
    ) -> Outcome[TransferResult]:
        token_id = metadata.token_id
        policy = self.builder.policy

        if not token_utxos:
            return Outcome.failure(
                PlanningError("No token inputs to transfer", stage="transfer", token_id=token_id)
            )
        if len(token_utxos) > self.max_inputs:
            return Outcome.failure(
                PlanningError(
                    f"Too many token inputs: {len(token_utxos)} > {self.max_inputs}",
                    stage="transfer",
                    token_id=token_id,
                )
            )
        for utxo in token_utxos:
            if not isinstance(utxo.state, TokenState):
                return Outcome.failure(
                    PlanningError(
                        f"Input {utxo.outpoint} does not hold a token balance",
                        stage="transfer",
                        token_id=token_id,
                        outpoint=str(utxo.outpoint),
                    )
                )
        if amount <= 0:
            return Outcome.failure(
                PlanningError(f"Invalid amount: {amount}", stage="transfer", token_id=token_id)
            )

        total = sum(u.amount for u in token_utxos)
        if total < amount:
            return Outcome.failure(
                InsufficientTokenBalanceError(
                    f"Insufficient token balance: {total} < {amount}",
                    stage="transfer",
                    token_id=token_id,
                )
            )

        output_states = [TokenState(owner=receiver, amount=amount)]
        if total > amount:
            output_states.append(TokenState(owner=self.wallet.token_address, amount=total - amount))
        state_hashes = tuple(self.contracts.token_state_hash(s) for s in output_states)

        try:
            token_script = address_to_scriptpubkey(metadata.token_address)
            change_script = address_to_scriptpubkey(change_address)
        except ValueError as e:
            return Outcome.failure(MetadataError(str(e), stage="transfer", token_id=token_id))

        proofs = []
        for utxo in token_utxos:
            proof = await self.ancestry.backtrace(
                utxo, input_index=BACKTRACE_INPUT_INDEX, token_id=token_id
            )
            if proof.error is not None:
                return Outcome.failure(proof.error)
            proofs.append(proof.unwrap())

        guard_contract = self.contracts.transfer_guard(metadata, token_utxos)
        commit_draft = TransactionDraft(
            inputs=(TxInput.from_fee_utxo(fee_utxo),),
            outputs=(
                TxOutput(policy.guard_postage, guard_contract.locking_script),
                TxOutput(0, change_script),
            ),
        )
        committed = self.builder.finalize(
            commit_draft, fee_rate, [], stage="commit", token_id=token_id
        )
        if committed.error is not None:
            return Outcome.failure(committed.error)
        commit = committed.unwrap()

        guard = TokenUTXO(
            outpoint=commit.output_outpoint(0),
            script=guard_contract.locking_script,
            satoshis=policy.guard_postage,
            state=GuardState(token_script, tuple(u.amount for u in token_utxos)),
        )
        funding = FeeUTXO(
            outpoint=commit.output_outpoint(1),
            satoshis=commit.draft.change.value,
            script=change_script,
        )
        guard_index = len(token_utxos)

        token_contract = self.contracts.token_contract(metadata)

        inputs = [TxInput.from_token_utxo(u) for u in token_utxos]
        inputs.append(TxInput.from_token_utxo(guard))
        inputs.append(TxInput.from_fee_utxo(funding))
        outputs = [TxOutput(0, self.contracts.state_output_script(state_hashes))]
        outputs += [TxOutput(policy.token_postage, token_script) for _ in output_states]
        outputs.append(TxOutput(0, change_script))
        draft = TransactionDraft(inputs=tuple(inputs), outputs=tuple(outputs))

        logger.debug(
            f"Transfer draft: {len(token_utxos)} token inputs, total={total}, "
            f"amount={amount}, token change={total - amount}, guard={guard.outpoint}"
        )

        spends = [
            ContractSpend(
                index=i,
                utxo=utxo,
                contract=token_contract,
                make_witness=self._witness_factory(
                    i,
                    utxo,
                    proofs[i],
                    token_contract,
                    state_hashes,
                    tuple(output_states),
                    change_script,
                    guard_index,
                ),
            )
            for i, utxo in enumerate(token_utxos)
        ]
        spends.append(
            ContractSpend(
                index=guard_index,
                utxo=guard,
                contract=guard_contract,
                make_witness=self._guard_witness_factory(
                    guard_index,
                    guard,
                    guard_contract,
                    state_hashes,
                    tuple(output_states),
                    change_script,
                ),
            )
        )

        built = self.builder.finalize(
            draft, fee_rate, spends, stage="transfer", token_id=token_id
        )
        if built.error is not None:
            return Outcome.failure(built.error)
        reveal = built.unwrap()

        token_outputs = tuple(
            TokenUTXO(
                outpoint=reveal.output_outpoint(1 + i),
                script=token_script,
                satoshis=policy.token_postage,
                state=state,
                tx_state_hashes=state_hashes,
            )
            for i, state in enumerate(output_states)
        )
        change_index = len(reveal.draft.outputs) - 1
        change = FeeUTXO(
            outpoint=reveal.output_outpoint(change_index),
            satoshis=reveal.draft.change.value,
            script=change_script,
        )
        return Outcome.success(
            TransferResult(
                commit=commit,
                reveal=reveal,
                token_outputs=token_outputs,
                change=change,
                funding=fee_utxo,
            )
        )

    def _witness_factory(
        self,
        index: int,
        utxo: TokenUTXO,
        proof: object,
        contract: ContractScript,
        state_hashes: tuple[bytes, ...],
        output_states: tuple[TokenState, ...],
        change_script: bytes,
        guard_index: int,
    ) -> WitnessFactory:
        pre_state = utxo.state
        if not isinstance(pre_state, TokenState):
            raise ValueError(f"{utxo.outpoint} is not a token output")

        def make(current: TransactionDraft, ctx: TxContext, signature: bytes) -> list[bytes]:
            call = TransferCall(
                state_hashes=state_hashes,
                input_index=index,
                pre_state=pre_state,
                pre_tx_state_hashes=utxo.tx_state_hashes,
                backtrace=proof,
                output_states=output_states,
                token_postage=self.builder.policy.token_postage,
                pubkey_prefix=self.wallet.pubkey_prefix,
                x_only_pubkey=self.wallet.x_only_pubkey,
                change=ChangeInfo(script=change_script, satoshis=current.change.value),
                guard_input_index=guard_index,
            )
            return self.contracts.transfer_witness(call, ctx, signature, contract)

        return make

    def _guard_witness_factory(
        self,
        index: int,
        guard: TokenUTXO,
        contract: ContractScript,
        state_hashes: tuple[bytes, ...],
        output_states: tuple[TokenState, ...],
        change_script: bytes,
    ) -> WitnessFactory:
        pre_state = guard.state
        if not isinstance(pre_state, GuardState):
            raise ValueError(f"{guard.outpoint} is not a guard output")

        def make(current: TransactionDraft, ctx: TxContext, signature: bytes) -> list[bytes]:
            call = GuardCall(
                state_hashes=state_hashes,
                input_index=index,
                pre_state=pre_state,
                output_states=output_states,
                token_postage=self.builder.policy.token_postage,
                change=ChangeInfo(script=change_script, satoshis=current.change.value),
            )
            return self.contracts.guard_witness(call, ctx, signature, contract)

        return make
