from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.db import build_db_components, init_db
from app.models import AuctionStatus
from app.repositories import AuctionRepository
from app.services.notifications import AuctionNotification


class RecordingSink:
    """Notification sink that keeps everything published to it."""

    def __init__(self) -> None:
        self.notifications: list[AuctionNotification] = []

    def publish(self, notification: AuctionNotification) -> None:
        self.notifications.append(notification)

    @property
    def actions(self) -> list[str]:
        return [notification.action for notification in self.notifications]


class ExplodingSink:
    def publish(self, notification: AuctionNotification) -> None:
        raise RuntimeError("socket closed")


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'domabid.db'}",
        platform_fee_bps=300,
        prediction_pool_bps=2000,
        scheduler_enabled=False,
        doma_orderbook_url=None,
        relayer_private_key=None,
        doma_subgraph_url=None,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def session_factory(test_settings):
    engine, factory = build_db_components(test_settings.resolved_database_url)
    init_db(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def exploding_sink() -> ExplodingSink:
    return ExplodingSink()


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_auction(session, now):
    """Persist an auction directly through the repository."""

    def factory(
        *,
        status: AuctionStatus = AuctionStatus.ACTIVE,
        reserve_price_wei: int = 10**18,
        ends_in: timedelta | None = timedelta(hours=1),
        token_id: str | None = "1",
        domain_id: str | None = None,
    ):
        repo = AuctionRepository(session)
        auction = repo.create_auction(
            token_id=token_id,
            domain_id=domain_id,
            reserve_price_wei=reserve_price_wei,
            status=status,
            starts_at=now - timedelta(hours=1),
            ends_at=now + ends_in if ends_in is not None else None,
        )
        session.commit()
        return auction

    return factory
