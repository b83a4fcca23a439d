"""Minimal request/response objects shared by the HTTP handlers."""

from __future__ import annotations

import dataclasses
import datetime as _dt
import enum
import json as _json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _encode_default(obj: Any) -> Any:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if isinstance(obj, (_dt.datetime, _dt.date)):
        return obj.isoformat()
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serialisable")


def _encode_json(payload: Any) -> bytes:
    text = _json.dumps(
        payload, default=_encode_default, ensure_ascii=False, separators=(",", ":")
    )
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return (text + "\n").encode("utf-8")


@dataclass
class Request:
    """An incoming HTTP request as seen by a handler."""

    method: str = "GET"
    path: str = "/"
    query_string: str = ""
    body: bytes | str = b""
    url_params: dict[str, str] = field(default_factory=dict)
    pubkey: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    host: str = ""

    @property
    def query(self) -> dict[str, list[str]]:
        """All query parameters, each with every value given."""
        return parse_qs(self.query_string, keep_blank_values=True)

    def json(self) -> Any:
        """Decode the body as JSON; raises ValueError when it is not valid."""
        raw = self.body.encode("utf-8") if isinstance(self.body, str) else self.body
        return _json.loads(raw or b"")

    def query_param(self, name: str) -> str:
        """The first value of a query parameter, or an empty string."""
        values = self.query.get(name)
        return values[0] if values else ""

    def url_param(self, name: str) -> str:
        """A parameter captured from the route pattern, or an empty string."""
        return self.url_params.get(name, "")


@dataclass
class Response:
    """An HTTP response produced by a handler."""

    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        """Decode the body as JSON."""
        return _json.loads(self.body)


def json_response(status: int, payload: Any) -> Response:
    """Build a response whose body is the JSON encoding of payload plus a newline."""
    return Response(
        status=status,
        body=_encode_json(payload),
        headers={"Content-Type": "application/json"},
    )