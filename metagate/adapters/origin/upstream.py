"""
Origin fetcher: forwards the client request to the hosted application and hands
back a streaming UpstreamResponse. Kept apart from the orchestrator for tests.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from typing import AsyncGenerator, Mapping
from urllib.parse import urlsplit, urlunsplit

import httpx

from metagate.config.settings import settings
from metagate.core.errors import OriginUnavailableError
from metagate.core.models import UpstreamResponse
from metagate.rewrite.headers import HOP_BY_HOP_HEADERS, sanitize_response_headers
from metagate.util.logger import logger

_origin_async_client: httpx.AsyncClient | None = None
_origin_client_lock: asyncio.Lock | None = None


def _origin_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.origin_max_connections)),
        max_keepalive_connections=max(5, int(settings.origin_max_keepalive_connections)),
    )


def _origin_http_timeout() -> httpx.Timeout:
    timeout = float(settings.origin_timeout_seconds)
    pool_timeout = max(timeout + 5.0, timeout * 2.0)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=pool_timeout)


async def _get_origin_async_client() -> httpx.AsyncClient:
    global _origin_async_client, _origin_client_lock
    if _origin_async_client is not None:
        return _origin_async_client
    if _origin_client_lock is None:
        _origin_client_lock = asyncio.Lock()
    async with _origin_client_lock:
        if _origin_async_client is None:
            _origin_async_client = httpx.AsyncClient(
                follow_redirects=False,
                http2=False,
                timeout=_origin_http_timeout(),
                limits=_origin_http_limits(),
            )
    return _origin_async_client


async def close_origin_async_client() -> None:
    global _origin_async_client
    if _origin_async_client is not None:
        await _origin_async_client.aclose()
        _origin_async_client = None


def build_origin_url(origin_base: str, path: str, query: str = "") -> str:
    route_path = path or "/"
    if not route_path.startswith("/"):
        route_path = f"/{route_path}"
    url = f"{origin_base}{route_path}"
    return f"{url}?{query}" if query else url


def _rebase_url(raw: str, origin_base: str) -> str:
    """Point ``raw`` at the origin's scheme and host, keeping path and query."""

    origin = urlsplit(origin_base)
    try:
        parsed = urlsplit(raw)
    except ValueError:
        return f"{origin.scheme}://{origin.netloc}/"
    if not parsed.scheme or not parsed.netloc:
        return raw
    return urlunsplit((origin.scheme, origin.netloc, parsed.path, parsed.query, parsed.fragment))


def build_forward_headers(
    headers: Mapping[str, str],
    origin_base: str,
    *,
    rewrite_origin_headers: bool = True,
) -> dict[str, str]:
    # accept-encoding 由 httpx 按已安装的解码器自行声明，body 到客户端前已解压
    excluded = {"host", "content-length", "accept-encoding", *HOP_BY_HOP_HEADERS}
    forwarded: dict[str, str] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if lowered in excluded:
            continue
        if rewrite_origin_headers and lowered == "origin":
            origin = urlsplit(origin_base)
            value = f"{origin.scheme}://{origin.netloc}"
        elif rewrite_origin_headers and lowered == "referer":
            value = _rebase_url(value, origin_base)
        forwarded[key] = value
    forwarded["Host"] = urlsplit(origin_base).netloc
    return forwarded


async def fetch_origin(
    method: str,
    path: str,
    query: str,
    headers: Mapping[str, str],
    body: bytes,
    *,
    origin_base: str,
    rewrite_origin_headers: bool = True,
) -> UpstreamResponse:
    """Issue the upstream request; the response body stays unread for streaming."""

    url = build_origin_url(origin_base, path, query)
    forward_headers = build_forward_headers(
        headers,
        origin_base,
        rewrite_origin_headers=rewrite_origin_headers,
    )
    client = await _get_origin_async_client()
    exit_stack = AsyncExitStack()
    try:
        upstream = await exit_stack.enter_async_context(
            client.stream(method, url, headers=forward_headers, content=body or None)
        )
    except httpx.HTTPError as exc:
        await exit_stack.aclose()
        detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
        logger.warning("origin unreachable method=%s url=%s error=%s", method, url, detail)
        raise OriginUnavailableError(url, detail) from exc

    logger.debug("origin connected method=%s url=%s status=%s", method, url, upstream.status_code)

    async def _iter_body() -> AsyncGenerator[bytes, None]:
        try:
            async for chunk in upstream.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.HTTPError as exc:
            detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
            logger.warning("origin stream interrupted url=%s error=%s", url, detail)
        finally:
            await exit_stack.aclose()

    return UpstreamResponse(
        status_code=upstream.status_code,
        headers=sanitize_response_headers(upstream.headers),
        body=_iter_body(),
        url=url,
        aclose=exit_stack.aclose,
    )
