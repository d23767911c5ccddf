"""Drive auctions to SETTLED: fee capture, prediction scoring, notifications."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from loguru import logger
from sqlalchemy.orm import Session

from app import schemas
from app.core.config import Settings, settings as default_settings
from app.domain import FeeBreakdown, PredictionScore, compute_fee, select_settle_price
from app.domain.units import format_ether
from app.errors import NotFoundError
from app.models import Auction, AuctionStatus, EventType, utcnow
from app.repositories import AuctionRepository

from .notifications import AuctionNotification, NotificationSink, safe_publish
from .prediction_service import PredictionService
from .transactions import atomic


class SettlementTrigger(str, Enum):
    MANUAL = "manual"
    EXPIRY = "expiry"


# Manual settlement accepts any non-terminal auction; the expiry sweep only
# ever moves ACTIVE ones.
_CLAIMABLE: dict[SettlementTrigger, tuple[AuctionStatus, ...]] = {
    SettlementTrigger.MANUAL: (AuctionStatus.DRAFT, AuctionStatus.ACTIVE),
    SettlementTrigger.EXPIRY: (AuctionStatus.ACTIVE,),
}

_MARKER: dict[SettlementTrigger, EventType] = {
    SettlementTrigger.MANUAL: EventType.AUCTION_SETTLED,
    SettlementTrigger.EXPIRY: EventType.AUTO_SETTLED,
}


@dataclass(slots=True)
class SettlementResult:
    auction: Auction
    settled_now: bool
    fee: FeeBreakdown | None = None
    scores: list[PredictionScore] = field(default_factory=list)

    def to_response(self) -> schemas.SettleResponse:
        fee = None
        if self.fee is not None:
            fee = schemas.FeeSummary(
                settle_price_wei=str(self.fee.settle_price_wei),
                fee_bps=self.fee.fee_bps,
                pool_bps=self.fee.pool_bps,
                fee_wei=str(self.fee.fee_wei),
                pool_wei=str(self.fee.pool_wei),
            )
        return schemas.SettleResponse(
            auction=schemas.Auction.model_validate(self.auction),
            already_settled=not self.settled_now,
            fee=fee,
            scores=[
                schemas.PredictionScore(
                    user_id=score.user_id,
                    prediction_id=score.prediction_id,
                    score=score.score,
                    price_score=score.price_score,
                    time_score=score.time_score,
                )
                for score in self.scores
            ],
        )


class SettlementService:
    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        notifier: NotificationSink | None = None,
        predictions: PredictionService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._repo = AuctionRepository(session)
        self._settings = settings or default_settings
        self._notifier = notifier
        self._predictions = predictions or PredictionService(session, notifier=notifier)
        self._clock = clock

    def settle(
        self,
        auction_id: str,
        *,
        tx_hash: str | None = None,
        trigger: SettlementTrigger = SettlementTrigger.MANUAL,
    ) -> SettlementResult:
        """Settle one auction at most once.

        Status flip, marker event and fee capture commit together. Whoever
        wins the conditional status update runs the rest of the pipeline;
        everyone else gets the current auction back with ``settled_now``
        false and nothing written.
        """

        auction = self._repo.get_auction(auction_id)
        if auction is None:
            raise NotFoundError("auction not found")
        if auction.status == AuctionStatus.SETTLED.value:
            logger.info("Auction {} already settled; skipping {} settlement", auction_id, trigger.value)
            return SettlementResult(auction=auction, settled_now=False)

        fee: FeeBreakdown | None = None
        with atomic(self._session):
            claimed = self._repo.claim_settlement(
                auction_id,
                from_statuses=_CLAIMABLE[trigger],
                tx_hash=tx_hash,
            )
            if claimed:
                self._repo.append_event(
                    auction_id,
                    _MARKER[trigger],
                    payload={"trigger": trigger.value},
                    tx_hash=tx_hash,
                )
                settle_price_wei = select_settle_price(self._repo.list_bids(auction_id))
                fee = compute_fee(
                    settle_price_wei,
                    self._settings.platform_fee_bps,
                    self._settings.prediction_pool_bps,
                )
                self._repo.append_event(auction_id, EventType.FEE_CAPTURED, payload=fee.to_payload())

        if fee is None:
            logger.info("Lost settlement claim for auction {} ({})", auction_id, trigger.value)
            return SettlementResult(auction=self._repo.get_auction(auction_id) or auction, settled_now=False)

        logger.info(
            "Settled auction {} via {} at {} ETH (fee {} wei, pool {} wei)",
            auction_id,
            trigger.value,
            format_ether(fee.settle_price_wei),
            fee.fee_wei,
            fee.pool_wei,
        )

        scores: list[PredictionScore] = []
        try:
            scores = self._predictions.score_settlement(
                auction_id,
                settle_price_wei=fee.settle_price_wei,
                settled_at=self._clock(),
            )
        except Exception:
            logger.exception("Prediction scoring failed for auction {}; settlement stands", auction_id)

        safe_publish(
            self._notifier,
            AuctionNotification(auction_id, "settled", {"status": AuctionStatus.SETTLED.value}),
        )
        for score in scores:
            safe_publish(
                self._notifier,
                AuctionNotification(
                    auction_id,
                    "prediction_scored",
                    {"userId": score.user_id, "score": score.score},
                ),
            )

        refreshed = self._repo.get_auction(auction_id)
        return SettlementResult(auction=refreshed or auction, settled_now=True, fee=fee, scores=scores)

    def settle_expired(self, now: datetime | None = None) -> list[str]:
        """Settle every ACTIVE auction whose window has closed.

        One auction failing is logged and skipped; the sweep carries on.
        """

        now = now or self._clock()
        settled: list[str] = []
        for auction_id in self._repo.list_expired_auction_ids(now):
            try:
                result = self.settle(auction_id, trigger=SettlementTrigger.EXPIRY)
            except Exception:
                self._session.rollback()
                logger.exception("Auto-settlement failed for auction {}", auction_id)
                continue
            if result.settled_now:
                settled.append(auction_id)

        if settled:
            logger.info("Auto-settled {} auctions at {}", len(settled), now.isoformat())
        return settled

    def fee_history(self) -> schemas.FeeHistoryResponse:
        events = self._repo.list_events_by_type(EventType.FEE_CAPTURED)
        total_fee = 0
        total_pool = 0
        for event in events:
            payload = event.payload or {}
            total_fee += int(payload.get("feeWei") or 0)
            total_pool += int(payload.get("poolWei") or 0)
        return schemas.FeeHistoryResponse(
            settlements=len(events),
            total_fee_wei=str(total_fee),
            total_pool_wei=str(total_pool),
            total_fee_eth=format_ether(total_fee),
            total_pool_eth=format_ether(total_pool),
        )
