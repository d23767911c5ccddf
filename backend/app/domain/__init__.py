"""Pure auction math: price curves, fee split, prediction scoring."""

from .models import FeeBreakdown, PredictionRecord, PredictionScore, PriceQuote
from .pricing import decay_price, quote_price
from .scoring import score_prediction, score_predictions
from .settlement import compute_fee, select_settle_price
from .units import format_ether, parse_ether, wei_to_eth

__all__ = [
    "FeeBreakdown",
    "PredictionRecord",
    "PredictionScore",
    "PriceQuote",
    "compute_fee",
    "decay_price",
    "format_ether",
    "parse_ether",
    "quote_price",
    "score_prediction",
    "score_predictions",
    "select_settle_price",
    "wei_to_eth",
]
