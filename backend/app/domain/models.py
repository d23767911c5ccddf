"""Typed value objects produced by the pricing, fee and scoring math."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from dateutil import parser as date_parser

from app.models import DecayMode


@dataclass(slots=True, frozen=True)
class PriceQuote:
    """Dutch price at an instant plus how far through the window it is."""

    price_eth: float
    progress_pct: int
    decay_mode: DecayMode
    quoted_at: datetime

    @property
    def display_price(self) -> str:
        return f"{self.price_eth:.4f}"


@dataclass(slots=True, frozen=True)
class FeeBreakdown:
    settle_price_wei: int
    fee_bps: int
    pool_bps: int
    fee_wei: int
    pool_wei: int

    def to_payload(self) -> dict[str, Any]:
        # Amounts travel as decimal strings so JSON never rounds them.
        return {
            "feeBps": self.fee_bps,
            "poolBps": self.pool_bps,
            "settlePriceWei": str(self.settle_price_wei),
            "feeWei": str(self.fee_wei),
            "poolWei": str(self.pool_wei),
        }


def _coerce_price(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _coerce_time(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date_parser.isoparse(value)
    except (ValueError, OverflowError):
        return None


@dataclass(slots=True, frozen=True)
class PredictionRecord:
    """A user's guess at the settle price and/or settle time."""

    user_id: str
    price_eth: float | None = None
    time: datetime | None = None
    prediction_id: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None, *, prediction_id: int | None = None) -> "PredictionRecord":
        payload = payload or {}
        predict = payload.get("predict") if isinstance(payload.get("predict"), dict) else {}
        return cls(
            user_id=str(payload.get("userId") or "anon"),
            price_eth=_coerce_price(predict.get("priceEth")),
            time=_coerce_time(predict.get("time")),
            prediction_id=prediction_id,
        )


@dataclass(slots=True, frozen=True)
class PredictionScore:
    user_id: str
    score: int
    price_score: int
    time_score: int
    prediction_id: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "predictionId": self.prediction_id,
            "score": self.score,
            "components": {"priceScore": self.price_score, "timeScore": self.time_score},
        }
