"""
Request and response values exchanged with the asset agent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urldefrag, urlsplit, urlunsplit

import httpx

OFFLINE_HTML = (
    b"<!doctype html><html><head><meta charset=\"utf-8\"><title>Offline</title></head>"
    b"<body><h1>You are offline</h1>"
    b"<p>The currency converter will work again once you reconnect.</p></body></html>"
)


def request_key(url: str) -> str:
    """Cache identity of a request: the URL without its fragment."""
    return urldefrag(url)[0]


def search_free_key(url: str) -> str:
    """Request identity with the query string removed."""
    parts = urlsplit(request_key(url))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


@dataclass(frozen=True)
class AssetRequest:
    """An outgoing request the agent may intercept."""

    url: str
    method: str = "GET"
    navigate: bool = False

    @property
    def key(self) -> str:
        return request_key(self.url)

    @property
    def origin(self) -> str:
        return origin_of(self.url)


@dataclass(frozen=True)
class AssetResponse:
    """A response served from the network or a generation."""

    url: str
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> AssetResponse:
        return cls(
            url=str(response.request.url),
            status=response.status_code,
            body=response.content,
            headers={k.lower(): v for k, v in response.headers.items()},
        )

    @classmethod
    def offline(cls, url: str) -> AssetResponse:
        """Minimal inline page used when nothing else can be served."""
        return cls(
            url=url,
            status=503,
            body=OFFLINE_HTML,
            headers={"content-type": "text/html; charset=utf-8"},
        )
