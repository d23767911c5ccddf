"""Repository abstractions for database interactions."""

from .auction_repository import AuctionRepository

__all__ = ["AuctionRepository"]
