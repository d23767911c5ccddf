"""Dutch-auction price curves.

All curves take a reserve (the starting price) and decay it over the active
window. The formulas below are the raw shapes; :func:`decay_price` applies the
window boundaries so every mode starts at the full reserve and ends at 0.
Prices are floats: this is display-grade pricing, settlement amounts never
pass through here.
"""

from __future__ import annotations

import math
from datetime import datetime

from app.models import DecayMode

from .models import PriceQuote
from .units import wei_to_eth

DEFAULT_EXPONENTIAL_FACTOR = 10.0
DEFAULT_SIGMOID_STEEPNESS = 10.0


def linear_decay(reserve: float, elapsed: float, duration: float) -> float:
    return reserve * (1 - elapsed / duration)


def exponential_decay(
    reserve: float,
    elapsed: float,
    duration: float,
    factor: float = DEFAULT_EXPONENTIAL_FACTOR,
) -> float:
    """``reserve * e^(-k*t)`` with ``k = ln(factor) / duration``.

    At ``elapsed == duration`` this is ``reserve / factor``; the window clamp
    in :func:`decay_price` takes it to 0.
    """

    k = math.log(factor) / duration
    return reserve * math.exp(-k * elapsed)


def sigmoid_decay(
    reserve: float,
    elapsed: float,
    duration: float,
    steepness: float = DEFAULT_SIGMOID_STEEPNESS,
) -> float:
    x = elapsed / duration
    return reserve / (1 + math.exp(steepness * (x - 0.5)))


def _progress(start: datetime, end: datetime, now: datetime) -> tuple[float, float]:
    duration = (end - start).total_seconds() * 1000
    elapsed = (now - start).total_seconds() * 1000
    return elapsed, duration


def decay_price(
    reserve: float,
    start: datetime | None,
    end: datetime | None,
    now: datetime,
    mode: DecayMode | str | None = DecayMode.LINEAR,
    *,
    factor: float = DEFAULT_EXPONENTIAL_FACTOR,
    steepness: float = DEFAULT_SIGMOID_STEEPNESS,
) -> float:
    """Price at ``now`` for a reserve decaying across ``[start, end]``."""

    if start is None or end is None or now <= start:
        return reserve
    if now >= end:
        return 0.0

    elapsed, duration = _progress(start, end, now)
    resolved = DecayMode(mode) if mode else DecayMode.LINEAR
    if resolved is DecayMode.EXPONENTIAL:
        return exponential_decay(reserve, elapsed, duration, factor)
    if resolved is DecayMode.SIGMOID:
        return sigmoid_decay(reserve, elapsed, duration, steepness)
    return linear_decay(reserve, elapsed, duration)


def progress_pct(start: datetime | None, end: datetime | None, now: datetime) -> int:
    if start is None or end is None or now <= start:
        return 0
    if now >= end:
        return 100
    elapsed, duration = _progress(start, end, now)
    return int(math.floor(elapsed / duration * 100 + 0.5))


def quote_price(
    reserve_wei: int,
    start: datetime | None,
    end: datetime | None,
    now: datetime,
    mode: DecayMode | str | None = DecayMode.LINEAR,
    *,
    factor: float = DEFAULT_EXPONENTIAL_FACTOR,
    steepness: float = DEFAULT_SIGMOID_STEEPNESS,
) -> PriceQuote:
    resolved = DecayMode(mode) if mode else DecayMode.LINEAR
    price = decay_price(
        wei_to_eth(reserve_wei),
        start,
        end,
        now,
        resolved,
        factor=factor,
        steepness=steepness,
    )
    return PriceQuote(
        price_eth=price,
        progress_pct=progress_pct(start, end, now),
        decay_mode=resolved,
        quoted_at=now,
    )


__all__ = [
    "DEFAULT_EXPONENTIAL_FACTOR",
    "DEFAULT_SIGMOID_STEEPNESS",
    "decay_price",
    "exponential_decay",
    "linear_decay",
    "progress_pct",
    "quote_price",
    "sigmoid_decay",
]
