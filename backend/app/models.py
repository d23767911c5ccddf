from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from .db import Base


class AuctionStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    SETTLED = "SETTLED"


class DecayMode(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    SIGMOID = "sigmoid"


class EventType(str, Enum):
    BID_COMMIT = "BID_COMMIT"
    BID_REVEAL = "BID_REVEAL"
    PREDICTION = "PREDICTION"
    PREDICTION_SCORED = "PREDICTION_SCORED"
    LISTING_CREATED = "LISTING_CREATED"
    AUCTION_SETTLED = "AUCTION_SETTLED"
    FEE_CAPTURED = "FEE_CAPTURED"
    AUTO_SETTLED = "AUTO_SETTLED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class WeiAmount(TypeDecorator):
    """Arbitrary-precision integer persisted as a decimal string."""

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class UTCDateTime(TypeDecorator):
    """Store instants as UTC and always hand back aware datetimes.

    SQLite drops tzinfo on the way in, so both directions normalize.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Auction(Base):
    __tablename__ = "auctions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    token_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    domain_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    reserve_price_wei: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=AuctionStatus.DRAFT.value)
    starts_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    decay_mode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(String(80), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    bids: Mapped[list["Bid"]] = relationship(
        "Bid", back_populates="auction", cascade="all, delete-orphan", order_by="Bid.id"
    )
    events: Mapped[list["EventLog"]] = relationship(
        "EventLog", back_populates="auction", cascade="all, delete-orphan", order_by="EventLog.id"
    )

    @property
    def effective_decay_mode(self) -> DecayMode:
        if not self.decay_mode:
            return DecayMode.LINEAR
        return DecayMode(self.decay_mode)


class Bid(Base):
    __tablename__ = "bids"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    auction_id: Mapped[str] = mapped_column(String(32), ForeignKey("auctions.id"), nullable=False, index=True)
    bidder: Mapped[str] = mapped_column(String, nullable=False)
    amount_wei: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    auction: Mapped[Auction] = relationship("Auction", back_populates="bids")


class EventLog(Base):
    __tablename__ = "event_logs"
    __table_args__ = (Index("ix_event_logs_auction_type", "auction_id", "type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    auction_id: Mapped[str] = mapped_column(String(32), ForeignKey("auctions.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    auction: Mapped[Auction] = relationship("Auction", back_populates="events")
