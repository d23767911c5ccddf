from __future__ import annotations

import json

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from app.core.config import Settings
from app.errors import ListingError
from doma.orderbook import OrderbookClient

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def _client(handler) -> OrderbookClient:
    return OrderbookClient(
        base_url="https://orderbook.test",
        private_key=PRIVATE_KEY,
        transport=httpx.MockTransport(handler),
    )


def test_listing_is_signed_by_relayer():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"txHash": "0xabc", "status": "pending"})

    with _client(handler) as client:
        receipt = client.create_dutch_auction(reserve_price_wei=10**18, token_id="7", domain_id=None)

    assert captured["path"] == "/v1/orderbook/dutch-auctions"
    assert receipt.tx_hash == "0xabc"
    assert receipt.payload == {"txHash": "0xabc", "status": "pending"}

    body = dict(captured["body"])
    signature = body.pop("signature")
    assert body == {"reservePrice": str(10**18), "tokenId": "7", "domainId": None, "seller": client.seller}
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
    assert Account.recover_message(encode_defunct(text=canonical), signature=signature) == client.seller


def test_transaction_hash_alias_is_accepted():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"transactionHash": "0xdef"})

    with _client(handler) as client:
        assert client.create_dutch_auction(reserve_price_wei=1, token_id=None, domain_id="d").tx_hash == "0xdef"


def test_http_failure_raises_listing_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="relayer unavailable")

    with _client(handler) as client:
        with pytest.raises(ListingError):
            client.create_dutch_auction(reserve_price_wei=1, token_id="1", domain_id=None)


def test_non_json_response_raises_listing_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="ok")

    with _client(handler) as client:
        with pytest.raises(ListingError, match="non-JSON"):
            client.create_dutch_auction(reserve_price_wei=1, token_id="1", domain_id=None)


def test_from_settings_requires_url_key_and_onchain_mode():
    assert OrderbookClient.from_settings(Settings(doma_orderbook_url=None, relayer_private_key=None)) is None
    assert (
        OrderbookClient.from_settings(
            Settings(doma_orderbook_url="https://orderbook.test", relayer_private_key=PRIVATE_KEY, dev_offchain=True)
        )
        is None
    )

    client = OrderbookClient.from_settings(
        Settings(doma_orderbook_url="https://orderbook.test", relayer_private_key=PRIVATE_KEY, dev_offchain=False)
    )
    try:
        assert client is not None
        assert client.seller == Account.from_key(PRIVATE_KEY).address
    finally:
        client.close()
