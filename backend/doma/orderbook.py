from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from loguru import logger

from app.core.config import Settings, settings as default_settings
from app.errors import ListingError


@dataclass(slots=True)
class ListingReceipt:
    tx_hash: str | None
    payload: dict[str, Any] = field(default_factory=dict)


class OrderbookClient:
    """Submit Dutch-auction listings to the Doma orderbook relayer.

    Each submission is signed by the relayer key as an EIP-191 personal
    message over the canonical JSON of the listing body.
    """

    def __init__(
        self,
        *,
        base_url: str,
        private_key: str,
        listing_path: str = "/v1/orderbook/dutch-auctions",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.listing_path = listing_path
        self._account = Account.from_key(private_key)
        self.client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "OrderbookClient | None":
        """Build a client when on-chain listing is configured, else ``None``."""

        settings = settings or default_settings
        if not settings.onchain_listing_enabled:
            return None
        return cls(
            base_url=str(settings.doma_orderbook_url),
            private_key=str(settings.relayer_private_key),
            listing_path=settings.doma_orderbook_listing_path,
            timeout=settings.http_timeout_seconds,
        )

    @property
    def seller(self) -> str:
        return self._account.address

    def _sign(self, body: dict[str, Any]) -> str:
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
        signed = self._account.sign_message(encode_defunct(text=canonical))
        return "0x" + signed.signature.hex().removeprefix("0x")

    def create_dutch_auction(
        self,
        *,
        reserve_price_wei: int,
        token_id: str | None,
        domain_id: str | None,
    ) -> ListingReceipt:
        body: dict[str, Any] = {
            "reservePrice": str(reserve_price_wei),
            "tokenId": token_id,
            "domainId": domain_id,
            "seller": self.seller,
        }
        request_body = {**body, "signature": self._sign(body)}
        logger.info("Orderbook POST {} tokenId={} domainId={}", self.listing_path, token_id, domain_id)
        try:
            response = self.client.post(self.listing_path, json=request_body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise ListingError(f"Orderbook listing failed: {exc}") from exc
        except ValueError as exc:
            raise ListingError("Orderbook returned a non-JSON response") from exc

        if not isinstance(payload, dict):
            raise ListingError("Orderbook returned an unexpected payload")
        tx_hash = payload.get("txHash") or payload.get("transactionHash")
        return ListingReceipt(tx_hash=str(tx_hash) if tx_hash else None, payload=payload)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "OrderbookClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
