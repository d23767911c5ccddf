from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import AuctionError, StorageError


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Commit the enclosed writes as one unit or roll them all back.

    Store failures surface as :class:`StorageError`; domain errors raised
    inside the block propagate unchanged after the rollback.
    """

    try:
        yield session
        session.commit()
    except AuctionError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        raise StorageError(f"Storage failure: {exc.__class__.__name__}") from exc
