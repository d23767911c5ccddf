"""Score price/time predictions against a settled auction."""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime, timezone

from .models import PredictionRecord, PredictionScore

MAX_SCORE = 100.0
MIN_PRICE_DENOMINATOR = 0.01
SECONDS_PER_POINT = 60.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def price_score(predicted_eth: float | None, actual_eth: float) -> float:
    """One point lost per percent of error, relative to the actual price."""

    if predicted_eth is None or actual_eth <= 0:
        return 0.0
    error_pct = abs(predicted_eth - actual_eth) / max(MIN_PRICE_DENOMINATOR, actual_eth) * 100
    return max(0.0, MAX_SCORE - error_pct)


def time_score(predicted_time: datetime | None, actual_time: datetime) -> float:
    """One point lost per minute of error."""

    if predicted_time is None:
        return 0.0
    delta_seconds = abs((_as_utc(predicted_time) - _as_utc(actual_time)).total_seconds())
    return max(0.0, MAX_SCORE - delta_seconds / SECONDS_PER_POINT)


def combine_scores(prediction: PredictionRecord, price: float, time: float) -> float:
    # Both components only count when the predicted price is truthy, so a
    # predicted price of exactly 0 scores on price alone even if a time was
    # given. Kept as-is; see DESIGN.md.
    if prediction.price_eth and prediction.time is not None:
        return (price + time) / 2
    if prediction.price_eth is None:
        return time
    return price


def score_prediction(
    prediction: PredictionRecord,
    actual_price_eth: float,
    actual_time: datetime,
) -> PredictionScore:
    price = price_score(prediction.price_eth, actual_price_eth)
    time = time_score(prediction.time, actual_time)
    combined = combine_scores(prediction, price, time)
    return PredictionScore(
        user_id=prediction.user_id,
        score=_round_half_up(combined),
        price_score=_round_half_up(price),
        time_score=_round_half_up(time),
        prediction_id=prediction.prediction_id,
    )


def score_predictions(
    predictions: Iterable[PredictionRecord],
    actual_price_eth: float,
    actual_time: datetime,
) -> list[PredictionScore]:
    return [score_prediction(p, actual_price_eth, actual_time) for p in predictions]
