"""Decoding of the routes map exposed to deployed applications."""

from __future__ import annotations

import json
from dataclasses import dataclass

# JSON object members that fill Route attributes, matched case-insensitively.
_FIELDS = {
    "type": "kind",
    "to": "to",
    "upstream": "upstream",
    "original_url": "original_url",
}


class _Pairs(list):
    """A JSON object kept as its ordered list of members."""


@dataclass
class Route:
    """One entry of the routes map, keyed by its resolved URL."""

    key: str = ""
    kind: str = ""
    to: str = ""
    upstream: str = ""
    original_url: str = ""


def _route_from_members(key: str, members: object) -> Route:
    route = Route(key=key)
    if members is None:
        return route
    if not isinstance(members, _Pairs):
        raise ValueError(f"route {key!r} is not a JSON object")
    for name, value in members:
        attribute = _FIELDS.get(name.lower())
        if attribute is None or value is None:
            continue
        if not isinstance(value, str):
            raise ValueError(f"route {key!r}: field {name!r} must be a string")
        setattr(route, attribute, value)
    return route


def parse_routes(data: str | bytes) -> list[Route]:
    """Decode a JSON object of routes, keeping the order in which keys appear.

    Raises ValueError if the document is not a JSON object of route objects.
    """
    decoded = json.loads(data, object_pairs_hook=_Pairs)
    if not isinstance(decoded, _Pairs):
        raise ValueError("expected start of object")
    last_values = dict(decoded)
    return [_route_from_members(key, last_values[key]) for key, _ in decoded]