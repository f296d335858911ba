"""
Supply split planner.

Splits the supply left after a mint across successor minter outputs and
applies premine accounting. Everything here is pure arithmetic: failures are
returned as Outcome values carrying a PlanningError.
"""

from __future__ import annotations

from loguru import logger

from tokenmint.errors import (
    LimitExceededError,
    Outcome,
    PlanningError,
    PremineMismatchError,
)
from tokenmint.models import MinterState, MintPlan, ScaledTokenInfo, TokenState


def plan_split(
    remaining_supply: int,
    mint_amount: int,
    per_mint_limit: int,
    successor_count: int,
    *,
    is_premine: bool = False,
) -> Outcome[list[int]]:
    """
    Divide `remaining_supply - mint_amount` across successor minters.

    The leftover is cut into whole `per_mint_limit` chunks dealt evenly across
    the successors, the first `chunks % n` successors taking one extra chunk.
    The sub-limit remainder goes to the first successor without an extra
    chunk. Zero shares are dropped, so fewer than `successor_count` entries
    may come back.

    When the leftover fits in `successor_count * per_mint_limit` every share is
    at most `per_mint_limit`. The shares always sum to the leftover exactly.

    Example:
        plan_split(1000, 300, 400, 2) -> [400, 300]
    """
    if per_mint_limit <= 0:
        return Outcome.failure(
            PlanningError(f"Per-mint limit must be positive, got {per_mint_limit}")
        )
    if mint_amount <= 0:
        return Outcome.failure(PlanningError(f"Mint amount must be positive, got {mint_amount}"))
    if mint_amount > remaining_supply:
        return Outcome.failure(
            PlanningError(
                f"Mint amount {mint_amount} exceeds remaining supply {remaining_supply}"
            )
        )
    if not is_premine and mint_amount > per_mint_limit:
        return Outcome.failure(
            LimitExceededError(f"Mint amount {mint_amount} exceeds per-mint limit {per_mint_limit}")
        )

    leftover = remaining_supply - mint_amount
    if leftover == 0:
        return Outcome.success([])
    if successor_count < 1:
        return Outcome.failure(
            PlanningError(f"{leftover} supply left over but no successor minter requested")
        )

    chunks, remainder = divmod(leftover, per_mint_limit)
    base, extra = divmod(chunks, successor_count)

    shares = [(base + 1 if i < extra else base) * per_mint_limit for i in range(successor_count)]
    # extra < successor_count, so this slot exists
    shares[extra] += remainder

    return Outcome.success([share for share in shares if share > 0])


def resolve_mint_amount(
    requested: int | None,
    minter: MinterState,
    scaled: ScaledTokenInfo,
) -> Outcome[int]:
    """
    Decide how much a mint against `minter` produces.

    The first mint of a premined token must mint the premine exactly. Later
    mints default to the per-mint limit and are capped to the remaining supply.
    """
    if not minter.is_premined and scaled.premine > 0:
        if requested is not None and requested != scaled.premine:
            return Outcome.failure(
                PremineMismatchError(
                    f"First mint amount should equal premine {scaled.premine}, got {requested}"
                )
            )
        return Outcome.success(scaled.premine)

    if requested is not None and requested > scaled.limit:
        return Outcome.failure(
            LimitExceededError(
                f"Mint amount {requested} exceeds per-mint limit {scaled.limit}"
            )
        )
    amount = requested or scaled.limit
    return Outcome.success(min(amount, minter.remaining_supply))


def create_mint_plan(
    mint_amount: int,
    minter: MinterState,
    scaled: ScaledTokenInfo,
    token_owner: str,
    successor_count: int,
) -> Outcome[MintPlan]:
    """
    Build the MintPlan for one mint attempt.

    On the first mint of a premined token the premine is carried into the
    split supply (the minter's remaining supply excludes it) and the mint
    amount must equal it.
    """
    first_premine = not minter.is_premined and scaled.premine > 0
    if first_premine and mint_amount != scaled.premine:
        return Outcome.failure(
            PremineMismatchError(
                f"First mint amount should equal premine {scaled.premine}, got {mint_amount}"
            )
        )

    premine = scaled.premine if not minter.is_premined else 0
    supply = premine + minter.remaining_supply
    logger.debug(
        f"premine: {premine}, remainingSupply: {minter.remaining_supply}, "
        f"mintAmount: {mint_amount}"
    )

    split = plan_split(
        supply,
        mint_amount,
        scaled.limit,
        successor_count,
        is_premine=first_premine,
    )
    if split.error is not None:
        return Outcome.failure(split.error)

    split_amounts = tuple(split.unwrap())
    minter_states = tuple(
        MinterState(token_script=minter.token_script, is_premined=True, remaining_supply=amount)
        for amount in split_amounts
    )
    logger.debug(f"splitAmountList: {list(split_amounts)}")

    return Outcome.success(
        MintPlan(
            mint_amount=mint_amount,
            split_amounts=split_amounts,
            minter_states=minter_states,
            token_state=TokenState(owner=token_owner, amount=mint_amount),
            planned_supply=supply,
        )
    )
