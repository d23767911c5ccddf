"""Error taxonomy shared by services and the HTTP layer."""

from __future__ import annotations


class AuctionError(Exception):
    """Base class for errors that map onto an API failure response."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AuctionError):
    """A required field is missing or malformed."""

    status_code = 400


class InvalidAmountError(ValidationError):
    """A currency value could not be parsed into wei."""


class NotFoundError(AuctionError):
    status_code = 404


class StorageError(AuctionError):
    """A primary write or read against the store failed."""

    status_code = 500


class ListingError(AuctionError):
    """The orderbook rejected or failed to process a listing."""

    status_code = 502


class SubgraphError(AuctionError):
    status_code = 502


class NotificationError(AuctionError):
    """Publishing to live observers failed. Never surfaced to callers."""


class ScoringError(AuctionError):
    """Prediction scoring failed. Settlement still reports success."""


__all__ = [
    "AuctionError",
    "InvalidAmountError",
    "ListingError",
    "NotFoundError",
    "NotificationError",
    "ScoringError",
    "StorageError",
    "SubgraphError",
    "ValidationError",
]
