"""Prediction intake, settlement-time scoring and the leaderboard."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from loguru import logger
from sqlalchemy.orm import Session

from app import schemas
from app.domain import PredictionRecord, PredictionScore, score_predictions, wei_to_eth
from app.errors import NotFoundError, ScoringError, ValidationError
from app.models import AuctionStatus, EventType
from app.repositories import AuctionRepository

from .notifications import AuctionNotification, NotificationSink, safe_publish
from .transactions import atomic


class PredictionService:
    def __init__(
        self,
        session: Session,
        *,
        notifier: NotificationSink | None = None,
    ) -> None:
        self._session = session
        self._repo = AuctionRepository(session)
        self._notifier = notifier

    def submit(self, auction_id: str, data: schemas.PredictionInput) -> schemas.EventLog:
        auction = self._repo.get_auction(auction_id)
        if auction is None:
            raise NotFoundError("auction not found")
        if auction.status != AuctionStatus.ACTIVE.value:
            raise ValidationError("predictions allowed only for ACTIVE auctions")

        user_id = data.user_id or "anon"
        record = PredictionRecord.from_payload(
            {"userId": user_id, "predict": {"priceEth": data.price_eth, "time": data.time}}
        )
        if record.price_eth is None and record.time is None:
            raise ValidationError("Provide priceEth and/or time")

        with atomic(self._session):
            event = self._repo.append_event(
                auction_id,
                EventType.PREDICTION,
                payload={
                    "userId": user_id,
                    "predict": {
                        "priceEth": record.price_eth,
                        "time": record.time.isoformat() if record.time else None,
                    },
                },
            )

        safe_publish(
            self._notifier,
            AuctionNotification(auction_id, "prediction_submitted", {"userId": user_id}),
        )
        return schemas.EventLog.model_validate(event)

    def score_settlement(
        self,
        auction_id: str,
        *,
        settle_price_wei: int,
        settled_at: datetime,
    ) -> list[PredictionScore]:
        """Write one PREDICTION_SCORED event per stored prediction.

        Callers must only invoke this once per auction; the settlement claim
        guarantees that.
        """

        try:
            events = self._repo.list_events(auction_id, EventType.PREDICTION)
            records = [PredictionRecord.from_payload(event.payload, prediction_id=event.id) for event in events]
            scores = score_predictions(records, wei_to_eth(settle_price_wei), settled_at)
            for score in scores:
                self._repo.append_event(auction_id, EventType.PREDICTION_SCORED, payload=score.to_payload())
            self._session.commit()
        except Exception as exc:
            self._session.rollback()
            raise ScoringError(f"Scoring failed for auction {auction_id}: {exc}") from exc

        if scores:
            logger.info("Scored {} predictions for auction {}", len(scores), auction_id)
        return scores

    def leaderboard(self, limit: int | None = None) -> list[schemas.LeaderboardEntry]:
        totals: dict[str, list[int]] = defaultdict(list)
        for event in self._repo.list_events_by_type(EventType.PREDICTION_SCORED):
            payload = event.payload or {}
            try:
                score = int(payload.get("score", 0))
            except (TypeError, ValueError):
                continue
            totals[str(payload.get("userId") or "anon")].append(score)

        entries = [
            schemas.LeaderboardEntry(
                user_id=user_id,
                predictions=len(scores),
                total_score=sum(scores),
                average_score=round(sum(scores) / len(scores), 2),
            )
            for user_id, scores in totals.items()
        ]
        entries.sort(key=lambda entry: (-entry.total_score, entry.user_id))
        return entries[:limit] if limit else entries
