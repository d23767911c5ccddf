"""Normalize JSON and form-encoded request bodies into operation inputs."""

from __future__ import annotations

import json
from typing import Any, Callable, TypeVar

from fastapi import Request
from pydantic import ValidationError as PydanticValidationError

from app.errors import ValidationError
from app.schemas import OperationInput

InputT = TypeVar("InputT", bound=OperationInput)


async def read_body(request: Request) -> dict[str, Any]:
    """Return the request body as a flat dict regardless of wire format.

    ``application/json`` bodies must decode to an object. Form bodies
    (urlencoded or multipart) keep only their text fields. Anything else,
    including an empty body, yields an empty dict.
    """

    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        raw = await request.body()
        if not raw.strip():
            return {}
        try:
            body = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError("Malformed JSON body") from exc
        if not isinstance(body, dict):
            raise ValidationError("JSON body must be an object")
        return body
    if "form" in content_type:
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    return {}


def parse_input(model: type[InputT], body: dict[str, Any]) -> InputT:
    try:
        return model.model_validate(body)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "invalid value")
        raise ValidationError(f"{location}: {message}" if location else message) from exc


def body_of(model: type[InputT]) -> Callable[[Request], Any]:
    """FastAPI dependency factory yielding ``model`` parsed from the body."""

    async def dependency(request: Request) -> InputT:
        return parse_input(model, await read_body(request))

    dependency.__name__ = f"{model.__name__}_body"
    return dependency
