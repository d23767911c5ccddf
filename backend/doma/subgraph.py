from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from app.core.config import Settings, settings as default_settings
from app.errors import SubgraphError
from app.schemas import DomainName

from .normalize import normalize_names

MOCK_NAMES_RESPONSE: dict[str, Any] = {
    "data": {
        "names": {
            "items": [
                {
                    "name": "alice.doma",
                    "tokens": [
                        {"id": "1", "tokenId": "1", "owner": {"id": "0xAbC000000000000000000000000000000000AbC0"}}
                    ],
                },
                {
                    "name": "bob.doma",
                    "tokens": [
                        {"id": "2", "tokenId": "2", "owner": {"id": "0xDef000000000000000000000000000000000Def0"}}
                    ],
                },
            ]
        }
    }
}

# Tried in order; the names schema has shifted between subgraph releases.
NAME_QUERIES: tuple[tuple[str, str], ...] = (
    ("items.tokens.tokenId", "query ListNamesTokens { names { items { name tokens { tokenId } } } }"),
    ("items.nameOnly", "query ListNamesNameOnly { names { items { name } } }"),
    ("items.basic", "query ListNamesBasic { names { items { id name } } }"),
)

_UNAUTHORIZED = re.compile(r"401|UNAUTHENTICATED|api key is missing", re.IGNORECASE)


@dataclass(slots=True)
class DomainLookup:
    source: str
    domains: list[DomainName]


class SubgraphClient:
    """Read-only access to the Doma names subgraph with a canned fallback."""

    def __init__(
        self,
        *,
        url: str | None,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        headers = {"content-type": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self.client = httpx.Client(timeout=timeout, headers=headers, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SubgraphClient":
        settings = settings or default_settings
        url = str(settings.doma_subgraph_url) if settings.doma_subgraph_url else None
        return cls(url=url, api_key=settings.doma_subgraph_api_key, timeout=settings.http_timeout_seconds)

    def _query(self, name: str, query: str) -> tuple[dict[str, Any] | None, str | None]:
        try:
            response = self.client.post(self.url, json={"query": query})
        except httpx.HTTPError as exc:
            return None, f"{name}: {exc}"
        if response.status_code >= 400:
            return None, f"{name}: HTTP {response.status_code} {response.text}"
        try:
            payload = response.json()
        except ValueError:
            return None, f"{name}: non-JSON response"
        if not isinstance(payload, dict):
            return None, f"{name}: unexpected payload"
        if payload.get("errors"):
            return None, f"{name}: {payload['errors']}"
        return payload, None

    def fetch_domains(self) -> DomainLookup:
        if not self.url:
            logger.info("Using mock subgraph: URL not set")
            return DomainLookup(source="mock", domains=normalize_names(MOCK_NAMES_RESPONSE))

        errors: list[str] = []
        for name, query in NAME_QUERIES:
            logger.info("Subgraph POST {} shape={}", self.url, name)
            payload, error = self._query(name, query)
            if payload is not None:
                return DomainLookup(source="subgraph", domains=normalize_names(payload))
            errors.append(error or name)

        combined = " | ".join(errors)
        if _UNAUTHORIZED.search(combined):
            logger.warning("Using mock subgraph: unauthorized or missing API key")
            return DomainLookup(source="mock", domains=normalize_names(MOCK_NAMES_RESPONSE))
        raise SubgraphError(f"Subgraph query failed. Tried shapes: {combined}")

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "SubgraphClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
