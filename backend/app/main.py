from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from doma.orderbook import OrderbookClient
from doma.subgraph import MOCK_NAMES_RESPONSE, SubgraphClient

from . import schemas
from .core.config import settings
from .db import SessionLocal, get_db, init_db
from .domain.units import format_ether
from .errors import AuctionError
from .payloads import body_of
from .services.auction_service import AuctionService
from .services.expiry_scheduler import ExpiryScheduler, SchedulerState
from .services.notifications import NotificationSink, WebSocketBroadcaster
from .services.prediction_service import PredictionService
from .services.settlement_service import SettlementService

app = FastAPI(title="DomaBid API", version="0.1.0", debug=settings.debug)

broadcaster = WebSocketBroadcaster()
scheduler_state = SchedulerState()
expiry_scheduler = ExpiryScheduler(SessionLocal, scheduler_state, settings=settings, notifier=broadcaster)


@app.on_event("startup")
async def on_startup() -> None:
    """Create tables, bind the live channel and start the expiry sweep."""

    init_db()
    broadcaster.bind_loop(asyncio.get_running_loop())
    if settings.scheduler_enabled:
        expiry_scheduler.start()
    else:
        logger.info("Expiry scheduler disabled by configuration")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    expiry_scheduler.stop()


@app.exception_handler(AuctionError)
async def auction_error_handler(request: Request, exc: AuctionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=schemas.ErrorResponse(error=exc.message).model_dump(),
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.opt(exception=exc).error("{} {} hit a storage failure", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=schemas.ErrorResponse(error="Storage failure").model_dump(),
    )


# ----------------------------------------------------------------------
# Dependencies


def _db_session(db: Session = Depends(get_db)) -> Session:
    return db


def _notifier() -> NotificationSink:
    return broadcaster


def _auction_service(
    db: Session = Depends(_db_session),
    notifier: NotificationSink = Depends(_notifier),
) -> Iterator[AuctionService]:
    """Provide the auction service, with an orderbook client when listing on-chain."""

    orderbook = OrderbookClient.from_settings(settings)
    try:
        yield AuctionService(db, settings=settings, notifier=notifier, orderbook=orderbook)
    finally:
        if orderbook is not None:
            orderbook.close()


def _prediction_service(
    db: Session = Depends(_db_session),
    notifier: NotificationSink = Depends(_notifier),
) -> PredictionService:
    return PredictionService(db, notifier=notifier)


def _settlement_service(
    db: Session = Depends(_db_session),
    notifier: NotificationSink = Depends(_notifier),
) -> SettlementService:
    return SettlementService(db, settings=settings, notifier=notifier)


def _subgraph_client() -> Iterator[SubgraphClient]:
    with SubgraphClient.from_settings(settings) as client:
        yield client


# ----------------------------------------------------------------------
# System


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, Any]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"ok": True, "status": "ok", "scheduler": scheduler_state.running}


# ----------------------------------------------------------------------
# Auctions


@app.get("/auctions", response_model=schemas.AuctionList, tags=["auctions"])
def list_auctions(service: AuctionService = Depends(_auction_service)):
    """List every auction, newest first, with bids and events."""

    return schemas.AuctionList(auctions=service.list_auctions())


@app.post("/auctions", response_model=schemas.AuctionResponse, status_code=201, tags=["auctions"])
def create_auction(
    data: schemas.CreateAuctionInput = Depends(body_of(schemas.CreateAuctionInput)),
    service: AuctionService = Depends(_auction_service),
):
    """Create a DRAFT auction for a token or domain."""

    return schemas.AuctionResponse(auction=service.create_auction(data))


@app.post("/auctions/settle-expired", response_model=schemas.SettleExpiredResponse, tags=["settlement"])
def settle_expired(service: SettlementService = Depends(_settlement_service)):
    """Run one expiry sweep immediately."""

    settled = service.settle_expired()
    return schemas.SettleExpiredResponse(count=len(settled), settled=settled)


@app.get("/auctions/{auction_id}", response_model=schemas.AuctionResponse, tags=["auctions"])
def get_auction(auction_id: str, service: AuctionService = Depends(_auction_service)):
    return schemas.AuctionResponse(auction=service.get_auction(auction_id))


@app.get("/auctions/{auction_id}/price", response_model=schemas.PriceQuoteResponse, tags=["auctions"])
def get_price(auction_id: str, service: AuctionService = Depends(_auction_service)):
    """Current Dutch price for the auction's decay curve."""

    return service.quote_price(auction_id)


@app.post("/listing", response_model=schemas.ListingResponse, tags=["auctions"])
def create_listing(
    data: schemas.ListingInput = Depends(body_of(schemas.ListingInput)),
    service: AuctionService = Depends(_auction_service),
):
    """Activate an auction and, when configured, list it on the orderbook."""

    outcome = service.list_for_sale(data)
    return schemas.ListingResponse(
        message=outcome.message,
        token_id=outcome.auction.token_id,
        domain_id=outcome.auction.domain_id,
        reserve_price_eth=format_ether(outcome.reserve_price_wei),
        reserve_price_wei=str(outcome.reserve_price_wei),
        listing=outcome.receipt.payload if outcome.receipt else None,
        auction=outcome.auction,
    )


@app.post("/auctions/{auction_id}/commit", response_model=schemas.BidResponse, status_code=201, tags=["bids"])
def commit_bid(
    auction_id: str,
    data: schemas.CommitBidInput = Depends(body_of(schemas.CommitBidInput)),
    service: AuctionService = Depends(_auction_service),
):
    return schemas.BidResponse(bid=service.commit_bid(auction_id, data))


@app.post("/auctions/{auction_id}/reveal", response_model=schemas.Ack, tags=["bids"])
def reveal_bid(
    auction_id: str,
    data: schemas.RevealBidInput = Depends(body_of(schemas.RevealBidInput)),
    service: AuctionService = Depends(_auction_service),
):
    service.reveal_bid(auction_id, data)
    return schemas.Ack()


@app.post(
    "/auctions/{auction_id}/predict",
    response_model=schemas.PredictionResponse,
    status_code=201,
    tags=["predictions"],
)
def submit_prediction(
    auction_id: str,
    data: schemas.PredictionInput = Depends(body_of(schemas.PredictionInput)),
    service: PredictionService = Depends(_prediction_service),
):
    """Record a price and/or settle-time guess for an ACTIVE auction."""

    return schemas.PredictionResponse(prediction=service.submit(auction_id, data))


@app.post("/auctions/{auction_id}/settle", response_model=schemas.SettleResponse, tags=["settlement"])
def settle_auction(
    auction_id: str,
    data: schemas.SettleInput = Depends(body_of(schemas.SettleInput)),
    service: SettlementService = Depends(_settlement_service),
):
    """Settle an auction; repeating the call is a no-op."""

    return service.settle(auction_id, tx_hash=data.tx_hash).to_response()


# ----------------------------------------------------------------------
# Reporting


@app.get("/leaderboard", response_model=schemas.LeaderboardResponse, tags=["predictions"])
def leaderboard(
    limit: Annotated[int | None, Query(ge=1, le=500, description="Maximum number of users")] = None,
    service: PredictionService = Depends(_prediction_service),
):
    return schemas.LeaderboardResponse(entries=service.leaderboard(limit))


@app.get("/fees", response_model=schemas.FeeHistoryResponse, tags=["settlement"])
def fee_history(service: SettlementService = Depends(_settlement_service)):
    """Totals across every captured settlement fee."""

    return service.fee_history()


# ----------------------------------------------------------------------
# Doma


@app.get("/domains", response_model=schemas.DomainListResponse, tags=["doma"])
def list_domains(client: SubgraphClient = Depends(_subgraph_client)):
    """Names and tokens from the Doma subgraph, or the canned set as fallback."""

    lookup = client.fetch_domains()
    return schemas.DomainListResponse(source=lookup.source, domains=lookup.domains)


@app.api_route("/subgraph/mock", methods=["GET", "POST"], tags=["doma"])
def subgraph_mock() -> dict[str, Any]:
    return MOCK_NAMES_RESPONSE


@app.websocket("/ws")
async def live_updates(websocket: WebSocket) -> None:
    """Push auction notifications to connected observers."""

    await broadcaster.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)
