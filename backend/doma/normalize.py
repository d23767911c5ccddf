from __future__ import annotations

from typing import Any

from app.schemas import DomainName


def _first(*values: Any) -> str | None:
    for value in values:
        if value is not None and value != "":
            return str(value)
    return None


def _owner_of(node: dict[str, Any]) -> str | None:
    def nested_id(key: str) -> Any:
        value = node.get(key)
        return value.get("id") if isinstance(value, dict) else None

    return _first(nested_id("owner"), node.get("ownerAddress"), nested_id("holder"), nested_id("account"))


def _flatten_tokens(items: list[Any]) -> list[DomainName]:
    results: list[DomainName] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = _first(item.get("label"), item.get("name"), item.get("value"))
        tokens = item.get("tokens") if isinstance(item.get("tokens"), list) else []
        for token in tokens:
            if not isinstance(token, dict):
                continue
            results.append(
                DomainName(
                    id=_first(token.get("id"), token.get("tokenId")),
                    name=name,
                    token_id=_first(token.get("tokenId"), token.get("id")),
                    owner=_owner_of(token),
                )
            )
    return results


def normalize_names(payload: dict[str, Any] | None) -> list[DomainName]:
    """Flatten the subgraph ``names`` query into one record per token.

    Handles the paginated ``items`` shape (with or without nested tokens)
    as well as ``edges``/``nodes`` connections and bare lists.
    """

    data = (payload or {}).get("data") or {}
    names = data.get("names") if isinstance(data, dict) else None
    if not names:
        return []

    if isinstance(names, dict):
        items = names.get("items")
        if isinstance(items, list) and any(
            isinstance(item, dict) and isinstance(item.get("tokens"), list) for item in items
        ):
            return _flatten_tokens(items)

    nodes: list[Any]
    if isinstance(names, list):
        nodes = names
    elif isinstance(names.get("edges"), list):
        nodes = [edge.get("node") for edge in names["edges"] if isinstance(edge, dict) and edge.get("node")]
    elif isinstance(names.get("nodes"), list):
        nodes = names["nodes"]
    elif isinstance(names.get("items"), list):
        nodes = names["items"]
    else:
        nodes = []

    results: list[DomainName] = []
    for node in nodes:
        if not isinstance(node, dict):
            continue
        token = node.get("token")
        results.append(
            DomainName(
                id=_first(node.get("id")),
                name=_first(node.get("labelName"), node.get("name"), node.get("label"), node.get("value")),
                token_id=_first(node.get("tokenId"), token.get("id") if isinstance(token, dict) else None),
                owner=_owner_of(node),
            )
        )
    return results
