"""Auction, bid and event-log data access helpers."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import desc, or_, select, update
from sqlalchemy.orm import Session, selectinload

from app.models import Auction, AuctionStatus, Bid, EventLog, EventType, utcnow


class AuctionRepository:
    """Encapsulate all auction persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create_auction(
        self,
        *,
        reserve_price_wei: int,
        token_id: str | None = None,
        domain_id: str | None = None,
        status: AuctionStatus = AuctionStatus.DRAFT,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
        decay_mode: str | None = None,
        tx_hash: str | None = None,
    ) -> Auction:
        auction = Auction(
            token_id=token_id,
            domain_id=domain_id,
            reserve_price_wei=reserve_price_wei,
            status=status.value,
            starts_at=starts_at,
            ends_at=ends_at,
            decay_mode=decay_mode,
            tx_hash=tx_hash,
        )
        self._session.add(auction)
        self._session.flush()
        return auction

    def activate(self, auction: Auction, *, reserve_price_wei: int, tx_hash: str | None) -> Auction:
        auction.reserve_price_wei = reserve_price_wei
        auction.status = AuctionStatus.ACTIVE.value
        auction.tx_hash = tx_hash
        self._session.flush()
        return auction

    def add_bid(self, auction_id: str, *, bidder: str, amount_wei: int) -> Bid:
        bid = Bid(auction_id=auction_id, bidder=bidder, amount_wei=amount_wei)
        self._session.add(bid)
        self._session.flush()
        return bid

    def append_event(
        self,
        auction_id: str,
        event_type: EventType,
        *,
        payload: dict[str, Any] | None = None,
        tx_hash: str | None = None,
    ) -> EventLog:
        event = EventLog(
            auction_id=auction_id,
            type=event_type.value,
            payload=payload,
            tx_hash=tx_hash,
        )
        self._session.add(event)
        self._session.flush()
        return event

    def claim_settlement(
        self,
        auction_id: str,
        *,
        from_statuses: Iterable[AuctionStatus],
        tx_hash: str | None = None,
    ) -> bool:
        """Flip an auction to SETTLED if it is still in one of ``from_statuses``.

        This conditional UPDATE is the only serialization point between a
        manual settle and the expiry sweep: the store applies it atomically,
        so exactly one caller sees a row count of 1.
        """

        values: dict[str, Any] = {"status": AuctionStatus.SETTLED.value, "updated_at": utcnow()}
        if tx_hash:
            values["tx_hash"] = tx_hash
        statement = (
            update(Auction)
            .where(
                Auction.id == auction_id,
                Auction.status.in_([status.value for status in from_statuses]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(statement)
        claimed = result.rowcount == 1
        if claimed:
            existing = self._session.get(Auction, auction_id)
            if existing is not None:
                self._session.refresh(existing)
        return claimed

    # ------------------------------------------------------------------
    # Queries

    def get_auction(self, auction_id: str) -> Auction | None:
        statement = (
            select(Auction)
            .where(Auction.id == auction_id)
            .options(selectinload(Auction.bids), selectinload(Auction.events))
            .execution_options(populate_existing=True)
        )
        return self._session.execute(statement).scalars().first()

    def find_by_asset(self, *, token_id: str | None, domain_id: str | None) -> Auction | None:
        clauses = []
        if token_id:
            clauses.append(Auction.token_id == token_id)
        if domain_id:
            clauses.append(Auction.domain_id == domain_id)
        if not clauses:
            return None
        statement = select(Auction).where(or_(*clauses)).order_by(desc(Auction.created_at)).limit(1)
        return self._session.execute(statement).scalars().first()

    def list_auctions(self) -> list[Auction]:
        statement = (
            select(Auction)
            .options(selectinload(Auction.bids), selectinload(Auction.events))
            .order_by(desc(Auction.created_at))
        )
        return list(self._session.execute(statement).scalars().all())

    def list_bids(self, auction_id: str) -> list[Bid]:
        statement = select(Bid).where(Bid.auction_id == auction_id).order_by(Bid.id)
        return list(self._session.execute(statement).scalars().all())

    def list_events(self, auction_id: str, event_type: EventType | None = None) -> list[EventLog]:
        statement = select(EventLog).where(EventLog.auction_id == auction_id)
        if event_type is not None:
            statement = statement.where(EventLog.type == event_type.value)
        return list(self._session.execute(statement.order_by(EventLog.id)).scalars().all())

    def list_events_by_type(self, event_type: EventType) -> list[EventLog]:
        statement = select(EventLog).where(EventLog.type == event_type.value).order_by(EventLog.id)
        return list(self._session.execute(statement).scalars().all())

    def list_expired_auction_ids(self, now: datetime) -> list[str]:
        statement = (
            select(Auction.id)
            .where(
                Auction.status == AuctionStatus.ACTIVE.value,
                Auction.ends_at.is_not(None),
                Auction.ends_at < now,
            )
            .order_by(Auction.ends_at)
        )
        return list(self._session.execute(statement).scalars().all())
