"""Metadata resolution: request path + route rule → ResolvedMetadata (or nothing)."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from metagate.config.settings import settings
from metagate.core.errors import MetadataUnavailableError
from metagate.core.models import ResolvedMetadata, RouteRule
from metagate.core.registry import PLACEHOLDER_RE
from metagate.util.logger import logger

_metadata_async_client: httpx.AsyncClient | None = None
_metadata_client_lock: asyncio.Lock | None = None


def _metadata_http_timeout() -> httpx.Timeout:
    timeout = float(settings.metadata_timeout_seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


async def _get_metadata_async_client() -> httpx.AsyncClient:
    global _metadata_async_client, _metadata_client_lock
    if _metadata_async_client is not None:
        return _metadata_async_client
    if _metadata_client_lock is None:
        _metadata_client_lock = asyncio.Lock()
    async with _metadata_client_lock:
        if _metadata_async_client is None:
            _metadata_async_client = httpx.AsyncClient(
                follow_redirects=True,
                http2=False,
                timeout=_metadata_http_timeout(),
                limits=httpx.Limits(max_connections=max(5, int(settings.metadata_max_connections))),
            )
    return _metadata_async_client


async def close_metadata_async_client() -> None:
    global _metadata_async_client
    if _metadata_async_client is not None:
        await _metadata_async_client.aclose()
        _metadata_async_client = None


def entity_id_from_path(path: str) -> str:
    trimmed = path[:-1] if path.endswith("/") else path
    return trimmed.split("/")[-1]


def build_metadata_url(template: str, entity_id: str) -> str:
    return PLACEHOLDER_RE.sub(lambda _: quote(entity_id, safe=""), template, count=1)


def parse_metadata(payload: Any) -> ResolvedMetadata:
    if not isinstance(payload, dict):
        raise MetadataUnavailableError(f"metadata payload is not an object: {type(payload).__name__}")
    try:
        return ResolvedMetadata.model_validate(payload)
    except ValidationError as exc:
        raise MetadataUnavailableError(f"metadata payload rejected: {exc}") from exc


async def _fetch_metadata(url: str) -> ResolvedMetadata:
    client = await _get_metadata_async_client()
    try:
        response = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
        raise MetadataUnavailableError(f"metadata_unreachable: {detail}") from exc
    if not response.is_success:
        raise MetadataUnavailableError(f"metadata_http_error:{response.status_code}")
    try:
        payload = json.loads(response.content.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MetadataUnavailableError(f"metadata_invalid_json: {exc}") from exc
    return parse_metadata(payload)


async def resolve_metadata(
    path: str,
    rule: RouteRule,
    *,
    timeout_seconds: float | None = None,
) -> ResolvedMetadata | None:
    """Fetch metadata for the entity addressed by ``path``.

    Never raises: any failure (network, status, body, deadline) is logged and
    reported as ``None`` so the response falls back to the origin's content.
    """

    entity_id = entity_id_from_path(path)
    url = build_metadata_url(rule.metadata_endpoint, entity_id)
    deadline = float(timeout_seconds if timeout_seconds is not None else settings.metadata_timeout_seconds)
    try:
        metadata = await asyncio.wait_for(_fetch_metadata(url), timeout=deadline)
    except MetadataUnavailableError as exc:
        logger.warning("metadata unavailable url=%s reason=%s", url, exc)
        return None
    except asyncio.TimeoutError:
        logger.warning("metadata unavailable url=%s reason=deadline_exceeded timeout=%.2fs", url, deadline)
        return None
    logger.debug(
        "metadata resolved url=%s fields=%s",
        url,
        [name for name, value in metadata.model_dump().items() if value],
    )
    return metadata
