"""Helpers to snap buy quantities to an exchange's minimum step."""
from __future__ import annotations

import math
from dataclasses import replace
from typing import Optional

from .models import BuyLeg, LotAdjustment


_STEP_TOLERANCE = 1e-9


def adjust_to_min_step(
    shares_buyable: float,
    average_buy_price: float,
    min_step: Optional[float],
    *,
    amount_buyable: Optional[float] = None,
) -> LotAdjustment:
    """Return the largest multiple of ``min_step`` not exceeding ``shares_buyable``.

    The shares lost to rounding are re-expressed as ``leftover``, the part of
    the amount that cannot be spent, so ``amount_buyable + leftover`` always
    equals the original amount. A missing or zero step passes through.
    """

    if amount_buyable is None:
        amount_buyable = shares_buyable * average_buy_price

    if not min_step or min_step <= 0:
        return LotAdjustment(
            shares_buyable=shares_buyable,
            amount_buyable=amount_buyable,
            leftover_shares=0.0,
            leftover=0.0,
        )

    unbuyable = math.fmod(shares_buyable, min_step)
    # fmod can land a hair under the step for exact multiples
    if math.isclose(unbuyable, min_step, rel_tol=_STEP_TOLERANCE, abs_tol=0.0):
        unbuyable = 0.0

    leftover = unbuyable * average_buy_price
    return LotAdjustment(
        shares_buyable=shares_buyable - unbuyable,
        amount_buyable=amount_buyable - leftover,
        leftover_shares=unbuyable,
        leftover=leftover,
    )


def adjust_buy_leg(leg: BuyLeg, min_step: Optional[float] = None) -> BuyLeg:
    step = leg.min_step if min_step is None else min_step
    adjustment = adjust_to_min_step(
        leg.shares_buyable,
        leg.average_buy_price,
        step,
        amount_buyable=leg.amount_buyable,
    )
    return replace(
        leg,
        shares_buyable=adjustment.shares_buyable,
        amount_buyable=adjustment.amount_buyable,
        min_step=step,
        leftover=adjustment.leftover,
    )
