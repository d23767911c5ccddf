"""Settle-price selection and fee split."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from .models import FeeBreakdown

BPS_DENOMINATOR = 10_000


class _HasAmount(Protocol):
    amount_wei: int


def select_settle_price(bids: Iterable[_HasAmount]) -> int:
    """Highest committed amount, or 0 without bids.

    Reveal state is not consulted; ties are indistinguishable by amount.
    """

    return max((int(bid.amount_wei) for bid in bids), default=0)


def compute_fee(settle_price_wei: int, fee_bps: int, pool_bps: int) -> FeeBreakdown:
    fee_wei = settle_price_wei * fee_bps // BPS_DENOMINATOR
    pool_wei = fee_wei * pool_bps // BPS_DENOMINATOR
    return FeeBreakdown(
        settle_price_wei=settle_price_wei,
        fee_bps=fee_bps,
        pool_bps=pool_bps,
        fee_wei=fee_wei,
        pool_wei=pool_wei,
    )
