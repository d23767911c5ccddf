"""Auction creation, listing, bidding and price quotes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from dateutil import parser as date_parser
from loguru import logger
from sqlalchemy.orm import Session

from app import schemas
from app.core.config import Settings, settings as default_settings
from app.domain import parse_ether, quote_price
from app.domain.units import format_ether
from app.errors import NotFoundError, ValidationError
from app.models import Auction, AuctionStatus, DecayMode, EventType, utcnow
from app.repositories import AuctionRepository
from doma.orderbook import ListingReceipt, OrderbookClient

from .notifications import AuctionNotification, NotificationSink, safe_publish
from .transactions import atomic


def _parse_instant(value: str | None, field: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, OverflowError) as exc:
        raise ValidationError(f"Invalid {field}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_decay_mode(value: str | None) -> DecayMode | None:
    if not value:
        return None
    try:
        return DecayMode(value.lower())
    except ValueError as exc:
        allowed = ", ".join(mode.value for mode in DecayMode)
        raise ValidationError(f"decayMode must be one of: {allowed}") from exc


@dataclass(slots=True)
class ListingOutcome:
    auction: schemas.Auction
    reserve_price_wei: int
    receipt: ListingReceipt | None = None

    @property
    def message(self) -> str:
        if self.receipt is not None:
            return "Listing created"
        return "Listing prepared (orderbook stub)"


class AuctionService:
    """Write and read paths for auctions that are not settlement."""

    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        notifier: NotificationSink | None = None,
        orderbook: OrderbookClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._repo = AuctionRepository(session)
        self._settings = settings or default_settings
        self._notifier = notifier
        self._orderbook = orderbook
        self._clock = clock

    def _require(self, auction_id: str) -> Auction:
        auction = self._repo.get_auction(auction_id)
        if auction is None:
            raise NotFoundError("auction not found")
        return auction

    # ------------------------------------------------------------------
    # Reads

    def list_auctions(self) -> list[schemas.Auction]:
        return [schemas.Auction.model_validate(auction) for auction in self._repo.list_auctions()]

    def get_auction(self, auction_id: str) -> schemas.Auction:
        auction = self._require(auction_id)
        payload = schemas.Auction.model_validate(auction)
        # Detail views show the newest history first.
        return payload.model_copy(update={"events": list(reversed(payload.events))})

    def quote_price(self, auction_id: str) -> schemas.PriceQuoteResponse:
        auction = self._require(auction_id)
        quote = quote_price(
            auction.reserve_price_wei,
            auction.starts_at,
            auction.ends_at,
            self._clock(),
            auction.effective_decay_mode,
            factor=self._settings.exponential_decay_factor,
            steepness=self._settings.sigmoid_steepness,
        )
        return schemas.PriceQuoteResponse(
            auction_id=auction.id,
            price_eth=quote.display_price,
            progress_pct=quote.progress_pct,
            decay_mode=quote.decay_mode.value,
            quoted_at=quote.quoted_at,
        )

    # ------------------------------------------------------------------
    # Writes

    def create_auction(self, data: schemas.CreateAuctionInput) -> schemas.Auction:
        if not data.reserve_price_eth:
            raise ValidationError("reservePriceEth required")
        if not data.token_id and not data.domain_id:
            raise ValidationError("tokenId or domainId required")

        reserve_wei = parse_ether(data.reserve_price_eth, field="reservePriceEth")
        starts_at = _parse_instant(data.starts_at, "startsAt")
        ends_at = _parse_instant(data.ends_at, "endsAt")
        if starts_at and ends_at and ends_at < starts_at:
            raise ValidationError("endsAt must not be before startsAt")
        decay_mode = _parse_decay_mode(data.decay_mode)

        with atomic(self._session):
            auction = self._repo.create_auction(
                token_id=data.token_id,
                domain_id=data.domain_id,
                reserve_price_wei=reserve_wei,
                starts_at=starts_at,
                ends_at=ends_at,
                decay_mode=decay_mode.value if decay_mode else None,
            )
        logger.info("Created DRAFT auction {} token={} domain={}", auction.id, data.token_id, data.domain_id)
        return schemas.Auction.model_validate(self._require(auction.id))

    def list_for_sale(self, data: schemas.ListingInput) -> ListingOutcome:
        """Activate an auction, creating it first when no match exists.

        With an orderbook client configured the listing goes on-chain before
        anything is written; a failed listing leaves the store untouched.
        """

        if not data.reserve_price_eth:
            raise ValidationError("reservePriceEth required")
        if not data.auction_id and not data.token_id and not data.domain_id:
            raise ValidationError("auctionId or (tokenId/domainId) required")
        reserve_wei = parse_ether(data.reserve_price_eth, field="reservePriceEth")

        existing = self._repo.get_auction(data.auction_id) if data.auction_id else None
        if existing is None:
            if not (data.token_id or data.domain_id):
                raise NotFoundError("auction not found")
            existing = self._repo.find_by_asset(token_id=data.token_id, domain_id=data.domain_id)

        if existing is not None and existing.status == AuctionStatus.SETTLED.value:
            raise ValidationError("auction already settled")

        token_id = data.token_id or (existing.token_id if existing else None)
        domain_id = data.domain_id or (existing.domain_id if existing else None)
        receipt: ListingReceipt | None = None
        if self._orderbook is not None:
            receipt = self._orderbook.create_dutch_auction(
                reserve_price_wei=reserve_wei,
                token_id=token_id,
                domain_id=domain_id,
            )
        tx_hash = receipt.tx_hash if receipt else None

        with atomic(self._session):
            if existing is not None:
                auction = self._repo.activate(existing, reserve_price_wei=reserve_wei, tx_hash=tx_hash)
            else:
                auction = self._repo.create_auction(
                    token_id=token_id,
                    domain_id=domain_id,
                    reserve_price_wei=reserve_wei,
                    status=AuctionStatus.ACTIVE,
                    tx_hash=tx_hash,
                )
            self._repo.append_event(
                auction.id,
                EventType.LISTING_CREATED,
                payload=receipt.payload if receipt else None,
                tx_hash=tx_hash,
            )
            auction_id = auction.id

        logger.info("Listed auction {} at {} ETH (tx={})", auction_id, format_ether(reserve_wei), tx_hash)
        safe_publish(
            self._notifier,
            AuctionNotification(auction_id, "listed", {"status": AuctionStatus.ACTIVE.value}),
        )
        return ListingOutcome(
            auction=schemas.Auction.model_validate(self._require(auction_id)),
            reserve_price_wei=reserve_wei,
            receipt=receipt,
        )

    def commit_bid(self, auction_id: str, data: schemas.CommitBidInput) -> schemas.Bid:
        if not data.bidder:
            raise ValidationError("bidder required")
        if not data.amount_eth:
            raise ValidationError("amountEth required")
        self._require(auction_id)
        amount_wei = parse_ether(data.amount_eth, field="amountEth")

        with atomic(self._session):
            bid = self._repo.add_bid(auction_id, bidder=data.bidder.lower(), amount_wei=amount_wei)
            self._repo.append_event(
                auction_id,
                EventType.BID_COMMIT,
                payload={"bidder": data.bidder, "amountEth": data.amount_eth},
            )

        safe_publish(
            self._notifier,
            AuctionNotification(auction_id, "committed", {"bidder": bid.bidder, "amountEth": data.amount_eth}),
        )
        return schemas.Bid.model_validate(bid)

    def reveal_bid(self, auction_id: str, data: schemas.RevealBidInput) -> None:
        self._require(auction_id)
        bidder = data.bidder or ""
        with atomic(self._session):
            self._repo.append_event(
                auction_id,
                EventType.BID_REVEAL,
                payload={"bidder": bidder, "proof": data.proof or ""},
            )
        safe_publish(self._notifier, AuctionNotification(auction_id, "revealed", {"bidder": bidder}))
