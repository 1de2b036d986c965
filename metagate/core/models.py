"""Request-scoped transport models."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx
from pydantic import BaseModel, ConfigDict, field_validator


class RequestKind(str, Enum):
    ASSET = "asset"
    PAGE_DATA = "page_data"
    HTML_PAGE = "html_page"


@dataclass(frozen=True, slots=True)
class RouteRule:
    pattern: re.Pattern[str]
    metadata_endpoint: str

    @property
    def pattern_source(self) -> str:
        return self.pattern.pattern


@dataclass(frozen=True, slots=True)
class ClassifiedRequest:
    path: str
    query: str
    method: str
    user_agent: str
    referer: str | None
    is_bot: bool
    is_restrictive_browser: bool
    kind: RequestKind

    @property
    def is_human(self) -> bool:
        return not self.is_bot


class ResolvedMetadata(BaseModel):
    """Metadata record for one entity; a missing field means "keep the origin's value"."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    title: str | None = None
    description: str | None = None
    image: str | None = None
    keywords: str | None = None

    @field_validator("title", "description", "image", "keywords", mode="before")
    @classmethod
    def _only_non_empty_strings(cls, value: Any) -> str | None:
        if isinstance(value, str) and value:
            return value
        return None


async def _noop_close() -> None:
    return None


@dataclass(slots=True)
class UpstreamResponse:
    """Origin response whose body is consumed exactly once, front to back."""

    status_code: int
    headers: httpx.Headers
    body: AsyncIterator[bytes]
    url: str = ""
    aclose: Callable[[], Awaitable[None]] = field(default=_noop_close)

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    async def read(self) -> bytes:
        chunks: list[bytes] = []
        try:
            async for chunk in self.body:
                if chunk:
                    chunks.append(chunk)
        finally:
            await self.aclose()
        return b"".join(chunks)
