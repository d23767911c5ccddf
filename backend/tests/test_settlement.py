from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from threading import Barrier
from unittest.mock import MagicMock

import pytest

from app.errors import NotFoundError, ScoringError
from app.models import AuctionStatus, EventType
from app.repositories import AuctionRepository
from app.services.prediction_service import PredictionService
from app.services.settlement_service import SettlementService, SettlementTrigger


def _service(session, settings, sink, now, **kwargs) -> SettlementService:
    return SettlementService(session, settings=settings, notifier=sink, clock=lambda: now, **kwargs)


def _events(session, auction_id: str, event_type: EventType):
    return AuctionRepository(session).list_events(auction_id, event_type)


def _seed_bids_and_predictions(session, auction_id: str, now) -> None:
    repo = AuctionRepository(session)
    repo.add_bid(auction_id, bidder="0xaa", amount_wei=10**18)
    repo.add_bid(auction_id, bidder="0xbb", amount_wei=2 * 10**18)
    repo.append_event(
        auction_id,
        EventType.PREDICTION,
        payload={"userId": "alice", "predict": {"priceEth": 2.0, "time": now.isoformat()}},
    )
    repo.append_event(
        auction_id,
        EventType.PREDICTION,
        payload={"userId": "bob", "predict": {"priceEth": 1.0, "time": None}},
    )
    session.commit()


def test_settle_captures_fee_and_scores_predictions(session, test_settings, sink, now, make_auction):
    auction = make_auction()
    _seed_bids_and_predictions(session, auction.id, now)

    result = _service(session, test_settings, sink, now).settle(auction.id, tx_hash="0xfeed")

    assert result.settled_now is True
    assert result.auction.status == AuctionStatus.SETTLED.value
    assert result.auction.tx_hash == "0xfeed"
    assert result.fee.settle_price_wei == 2 * 10**18
    assert result.fee.fee_wei == 6 * 10**16
    assert result.fee.pool_wei == 12 * 10**15

    fee_events = _events(session, auction.id, EventType.FEE_CAPTURED)
    assert len(fee_events) == 1
    assert fee_events[0].payload["feeWei"] == str(6 * 10**16)
    assert len(_events(session, auction.id, EventType.AUCTION_SETTLED)) == 1

    scored = _events(session, auction.id, EventType.PREDICTION_SCORED)
    assert {event.payload["userId"]: event.payload["score"] for event in scored} == {"alice": 100, "bob": 50}


def test_settle_publishes_settled_then_scores(session, test_settings, sink, now, make_auction):
    auction = make_auction()
    _seed_bids_and_predictions(session, auction.id, now)

    _service(session, test_settings, sink, now).settle(auction.id)

    assert sink.actions == ["settled", "prediction_scored", "prediction_scored"]
    assert sink.notifications[0].to_message() == {"auctionId": auction.id, "action": "settled", "status": "SETTLED"}


def test_settle_twice_captures_fee_once(session, test_settings, sink, now, make_auction):
    auction = make_auction()
    _seed_bids_and_predictions(session, auction.id, now)
    service = _service(session, test_settings, sink, now)

    first = service.settle(auction.id)
    second = service.settle(auction.id)

    assert first.settled_now is True
    assert second.settled_now is False
    assert second.fee is None
    assert second.to_response().already_settled is True
    assert len(_events(session, auction.id, EventType.FEE_CAPTURED)) == 1
    assert len(_events(session, auction.id, EventType.PREDICTION_SCORED)) == 2
    assert sink.actions.count("settled") == 1


def test_settle_without_bids_settles_at_zero(session, test_settings, sink, now, make_auction):
    auction = make_auction()

    result = _service(session, test_settings, sink, now).settle(auction.id)

    assert result.fee.settle_price_wei == 0
    assert result.fee.fee_wei == 0
    assert result.scores == []


def test_manual_settle_accepts_draft_auctions(session, test_settings, sink, now, make_auction):
    auction = make_auction(status=AuctionStatus.DRAFT)

    result = _service(session, test_settings, sink, now).settle(auction.id)

    assert result.settled_now is True
    assert result.auction.status == AuctionStatus.SETTLED.value


def test_settle_unknown_auction_raises_not_found(session, test_settings, sink, now):
    with pytest.raises(NotFoundError):
        _service(session, test_settings, sink, now).settle("missing")
    assert sink.notifications == []


def test_scoring_failure_does_not_fail_settlement(session, test_settings, sink, now, make_auction):
    auction = make_auction()
    predictions = MagicMock(spec=PredictionService)
    predictions.score_settlement.side_effect = ScoringError("boom")

    result = _service(session, test_settings, sink, now, predictions=predictions).settle(auction.id)

    assert result.settled_now is True
    assert result.scores == []
    assert len(_events(session, auction.id, EventType.FEE_CAPTURED)) == 1
    assert sink.actions == ["settled"]


def test_notification_failure_does_not_fail_settlement(session, test_settings, exploding_sink, now, make_auction):
    auction = make_auction()

    result = _service(session, test_settings, exploding_sink, now).settle(auction.id)

    assert result.settled_now is True


def test_losing_claim_is_a_no_op(session_factory, test_settings, sink, now, make_auction):
    auction = make_auction()

    with session_factory() as other:
        _service(other, test_settings, sink, now).settle(auction.id)

    with session_factory() as late:
        repo = AuctionRepository(late)
        assert repo.claim_settlement(auction.id, from_statuses=(AuctionStatus.ACTIVE,)) is False
        late.rollback()
        assert len(repo.list_events(auction.id, EventType.FEE_CAPTURED)) == 1


def test_concurrent_manual_and_expiry_settle_capture_one_fee(session_factory, test_settings, now, make_auction):
    auction = make_auction(ends_in=timedelta(minutes=-1))
    barrier = Barrier(2)

    def attempt(trigger: SettlementTrigger) -> bool:
        with session_factory() as session:
            service = SettlementService(session, settings=test_settings, clock=lambda: now)
            barrier.wait()
            return service.settle(auction.id, trigger=trigger).settled_now

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(attempt, [SettlementTrigger.MANUAL, SettlementTrigger.EXPIRY]))

    assert sorted(outcomes) == [False, True]
    with session_factory() as session:
        repo = AuctionRepository(session)
        assert len(repo.list_events(auction.id, EventType.FEE_CAPTURED)) == 1
        markers = repo.list_events(auction.id, EventType.AUCTION_SETTLED) + repo.list_events(
            auction.id, EventType.AUTO_SETTLED
        )
        assert len(markers) == 1


def test_settle_expired_only_touches_expired_active_auctions(session, test_settings, sink, now, make_auction):
    expired_a = make_auction(ends_in=timedelta(minutes=-5))
    expired_b = make_auction(ends_in=timedelta(seconds=-1))
    closing_now = make_auction(ends_in=timedelta(seconds=0))
    future = make_auction(ends_in=timedelta(hours=2))
    draft = make_auction(status=AuctionStatus.DRAFT, ends_in=timedelta(minutes=-5))

    settled = _service(session, test_settings, sink, now).settle_expired(now)

    assert sorted(settled) == sorted([expired_a.id, expired_b.id])
    repo = AuctionRepository(session)
    assert repo.get_auction(future.id).status == AuctionStatus.ACTIVE.value
    assert repo.get_auction(closing_now.id).status == AuctionStatus.ACTIVE.value
    assert repo.get_auction(draft.id).status == AuctionStatus.DRAFT.value
    assert len(repo.list_events(expired_a.id, EventType.AUTO_SETTLED)) == 1
    assert repo.list_events(expired_a.id, EventType.AUCTION_SETTLED) == []


def test_settle_expired_skips_failing_auction(session, test_settings, sink, now, make_auction, monkeypatch):
    broken = make_auction(ends_in=timedelta(minutes=-10))
    healthy = make_auction(ends_in=timedelta(minutes=-5))
    service = _service(session, test_settings, sink, now)
    real_settle = service.settle

    def flaky_settle(auction_id, **kwargs):
        if auction_id == broken.id:
            raise RuntimeError("disk full")
        return real_settle(auction_id, **kwargs)

    monkeypatch.setattr(service, "settle", flaky_settle)

    assert service.settle_expired(now) == [healthy.id]


def test_fee_history_totals_captured_fees(session, test_settings, sink, now, make_auction):
    first = make_auction()
    second = make_auction()
    repo = AuctionRepository(session)
    repo.add_bid(first.id, bidder="0xaa", amount_wei=1_000_000)
    repo.add_bid(second.id, bidder="0xbb", amount_wei=2_000_000)
    session.commit()
    service = _service(session, test_settings, sink, now)
    service.settle(first.id)
    service.settle(second.id)

    history = service.fee_history()

    assert history.settlements == 2
    assert history.total_fee_wei == "90000"
    assert history.total_pool_wei == "18000"
