"""Parsing of Link headers for resource preloading."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

PROXIED_HEADERS = (
    "Accept-Encoding",
    "Accept-Language",
    "Cache-Control",
    "Host",
    "User-Agent",
)


@dataclass
class LinkResource:
    """A resource named in a Link header with its parameters."""

    uri: str
    params: dict[str, str] = field(default_factory=dict)


def parse_link_header(header: str) -> list[LinkResource]:
    """Parse a Link header value into resources.

    Accepted forms include ``</a>; as=script``, ``</a>; as=script,</b>; as=style``
    and ``</a>;</b>``. A parameter without a value maps to its own name.
    """
    resources: list[LinkResource] = []
    if not header:
        return resources
    for link in header.split(","):
        left, right = link.find("<"), link.find(">")
        if left == -1 or right == -1 or right < left:
            continue
        resource = LinkResource(uri=link[left + 1 : right].strip())
        for param in link[right + 1 :].strip().split(";"):
            key, sep, value = param.strip().partition("=")
            key = key.strip()
            if not key:
                continue
            resource.params[key] = value.strip() if sep else key
        resources.append(resource)
    return resources


def is_remote_resource(resource: str) -> bool:
    return resource.startswith(("//", "http://", "https://"))


def filter_proxied_headers(headers: Mapping[str, list[str]]) -> dict[str, list[str]]:
    """Keep only the request headers worth forwarding with pushed resources."""
    by_lower = {name.lower(): values for name, values in headers.items()}
    return {name: by_lower[name.lower()] for name in PROXIED_HEADERS if name.lower() in by_lower}