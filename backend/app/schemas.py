from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from app.domain.units import format_ether


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _wei_to_str(value: Any) -> str:
    if value is None:
        return "0"
    return str(int(value))


# ----------------------------------------------------------------------
# Records


class EventLog(ApiModel):
    id: int
    auction_id: str
    type: str
    payload: dict[str, Any] | None = None
    tx_hash: str | None = None
    created_at: datetime


class Bid(ApiModel):
    id: int
    auction_id: str
    bidder: str
    amount_wei: str
    created_at: datetime

    @field_validator("amount_wei", mode="before")
    @classmethod
    def _coerce_wei(cls, value: Any) -> str:
        return _wei_to_str(value)

    @computed_field(alias="amountEth")
    @property
    def amount_eth(self) -> str:
        return format_ether(int(self.amount_wei))


class Auction(ApiModel):
    id: str
    token_id: str | None = None
    domain_id: str | None = None
    reserve_price_wei: str
    status: str
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    decay_mode: str | None = None
    tx_hash: str | None = None
    created_at: datetime
    updated_at: datetime
    bids: list[Bid] = Field(default_factory=list)
    events: list[EventLog] = Field(default_factory=list)

    @field_validator("reserve_price_wei", mode="before")
    @classmethod
    def _coerce_wei(cls, value: Any) -> str:
        return _wei_to_str(value)

    @computed_field(alias="reservePriceEth")
    @property
    def reserve_price_eth(self) -> str:
        return format_ether(int(self.reserve_price_wei))


class FeeSummary(ApiModel):
    settle_price_wei: str
    fee_bps: int
    pool_bps: int
    fee_wei: str
    pool_wei: str


class PredictionScore(ApiModel):
    user_id: str
    prediction_id: int | None = None
    score: int
    price_score: int
    time_score: int


# ----------------------------------------------------------------------
# Responses


class AuctionList(ApiModel):
    ok: bool = True
    auctions: list[Auction]


class AuctionResponse(ApiModel):
    ok: bool = True
    auction: Auction


class ListingResponse(ApiModel):
    ok: bool = True
    message: str
    token_id: str | None = None
    domain_id: str | None = None
    reserve_price_eth: str
    reserve_price_wei: str
    listing: dict[str, Any] | None = None
    auction: Auction


class BidResponse(ApiModel):
    ok: bool = True
    bid: Bid


class Ack(ApiModel):
    ok: bool = True


class PredictionResponse(ApiModel):
    ok: bool = True
    prediction: EventLog


class SettleResponse(ApiModel):
    ok: bool = True
    auction: Auction
    already_settled: bool = False
    fee: FeeSummary | None = None
    scores: list[PredictionScore] = Field(default_factory=list)


class SettleExpiredResponse(ApiModel):
    ok: bool = True
    count: int
    settled: list[str] = Field(default_factory=list)


class PriceQuoteResponse(ApiModel):
    ok: bool = True
    auction_id: str
    price_eth: str
    progress_pct: int
    decay_mode: str
    quoted_at: datetime


class LeaderboardEntry(ApiModel):
    user_id: str
    predictions: int
    total_score: int
    average_score: float


class LeaderboardResponse(ApiModel):
    ok: bool = True
    entries: list[LeaderboardEntry]


class FeeHistoryResponse(ApiModel):
    ok: bool = True
    settlements: int
    total_fee_wei: str
    total_pool_wei: str
    total_fee_eth: str
    total_pool_eth: str


class DomainName(ApiModel):
    id: str | None = None
    name: str | None = None
    token_id: str | None = None
    owner: str | None = None


class DomainListResponse(ApiModel):
    ok: bool = True
    source: str
    domains: list[DomainName]


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str


# ----------------------------------------------------------------------
# Operation inputs
#
# Inputs are permissive structs: blank strings become None and numbers
# become strings, so JSON and form bodies normalize to the same shape.
# Semantic checks (required fields, amount parsing) live in the services.


class OperationInput(ApiModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", str_strip_whitespace=True
    )

    @field_validator("*", mode="before")
    @classmethod
    def _normalize_wire_value(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class CreateAuctionInput(OperationInput):
    token_id: str | None = None
    domain_id: str | None = None
    reserve_price_eth: str | None = None
    starts_at: str | None = None
    ends_at: str | None = None
    decay_mode: str | None = None


class ListingInput(OperationInput):
    auction_id: str | None = None
    token_id: str | None = None
    domain_id: str | None = None
    reserve_price_eth: str | None = None


class CommitBidInput(OperationInput):
    bidder: str | None = None
    amount_eth: str | None = None


class RevealBidInput(OperationInput):
    bidder: str | None = None
    proof: str | None = None


class PredictionInput(OperationInput):
    user_id: str | None = None
    price_eth: str | None = None
    time: str | None = None


class SettleInput(OperationInput):
    tx_hash: str | None = None
