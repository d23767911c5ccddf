from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.domain.pricing import (
    decay_price,
    exponential_decay,
    linear_decay,
    progress_pct,
    quote_price,
    sigmoid_decay,
)
from app.models import DecayMode

START = datetime(2025, 1, 1, tzinfo=timezone.utc)
END = START + timedelta(hours=10)
MID = START + timedelta(hours=5)


@pytest.mark.parametrize("mode", list(DecayMode))
def test_price_is_reserve_at_start_and_zero_at_end(mode):
    """Every curve starts at the full reserve and ends at exactly 0."""
    assert decay_price(2.0, START, END, START, mode) == 2.0
    assert decay_price(2.0, START, END, END, mode) == 0.0
    assert decay_price(2.0, START, END, START - timedelta(minutes=1), mode) == 2.0
    assert decay_price(2.0, START, END, END + timedelta(days=1), mode) == 0.0


def test_linear_midpoint_is_half_reserve():
    assert decay_price(3.0, START, END, MID, DecayMode.LINEAR) == 1.5
    assert linear_decay(3.0, 5.0, 10.0) == 1.5


def test_sigmoid_midpoint_is_half_reserve():
    assert decay_price(3.0, START, END, MID, DecayMode.SIGMOID) == 1.5
    assert sigmoid_decay(3.0, 5.0, 10.0, steepness=4) == 1.5


def test_exponential_formula_reaches_reserve_over_factor_at_window_end():
    duration = (END - START).total_seconds() * 1000
    assert exponential_decay(1.0, duration, duration, factor=10) == pytest.approx(0.1)
    # the window clamp still wins at the boundary
    assert decay_price(1.0, START, END, END, DecayMode.EXPONENTIAL, factor=10) == 0.0


def test_exponential_decays_faster_than_linear_early_on():
    early = START + timedelta(hours=2)
    exponential = decay_price(1.0, START, END, early, DecayMode.EXPONENTIAL)
    linear = decay_price(1.0, START, END, early, DecayMode.LINEAR)
    assert exponential < linear


def test_missing_window_returns_reserve():
    assert decay_price(5.0, None, END, MID) == 5.0
    assert decay_price(5.0, START, None, MID) == 5.0


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError):
        decay_price(1.0, START, END, MID, "quadratic")


def test_progress_pct_is_clamped_and_rounded():
    assert progress_pct(START, END, START - timedelta(hours=1)) == 0
    assert progress_pct(START, END, MID) == 50
    assert progress_pct(START, END, END + timedelta(hours=1)) == 100
    assert progress_pct(None, END, MID) == 0


def test_quote_price_converts_wei_and_formats_display():
    quote = quote_price(2 * 10**18, START, END, MID, None)

    assert quote.decay_mode is DecayMode.LINEAR
    assert quote.price_eth == 1.0
    assert quote.display_price == "1.0000"
    assert quote.progress_pct == 50
    assert quote.quoted_at == MID
