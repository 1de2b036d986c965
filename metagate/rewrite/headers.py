"""Response header sanitization."""

from __future__ import annotations

from collections.abc import Iterable

import httpx
from starlette.responses import Response

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)
ROBOTS_HEADER = "x-robots-tag"
# httpx 已解压 body 并重新分块输出，长度/编码头需由下游重新计算
_RESPONSE_EXCLUDED = frozenset({"content-length", "content-encoding", *HOP_BY_HOP_HEADERS})


def strip_robots_header(headers: httpx.Headers) -> httpx.Headers:
    """Copy of ``headers`` without any X-Robots-Tag occurrence."""

    return httpx.Headers([(key, value) for key, value in headers.multi_items() if key.lower() != ROBOTS_HEADER])


def sanitize_response_headers(headers: httpx.Headers) -> httpx.Headers:
    kept = [
        (key, value)
        for key, value in strip_robots_header(headers).multi_items()
        if key.lower() not in _RESPONSE_EXCLUDED
    ]
    return httpx.Headers(kept)


def replace_header(headers: httpx.Headers, name: str, value: str) -> httpx.Headers:
    lowered = name.lower()
    kept = [(key, item) for key, item in headers.multi_items() if key.lower() != lowered]
    kept.append((name, value))
    return httpx.Headers(kept)


def apply_headers(response: Response, headers: Iterable[tuple[str, str]]) -> Response:
    for key, value in headers:
        if key.lower() == "content-type":
            response.headers["content-type"] = value
            continue
        response.headers.append(key, value)
    return response
