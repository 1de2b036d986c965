"""Per-request pipeline: classify → match → (origin ∥ metadata) → transform → respond."""

from __future__ import annotations

import asyncio

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse, Response, StreamingResponse

from metagate.adapters.origin.upstream import build_origin_url, fetch_origin
from metagate.config.proxy_config import ProxyConfig
from metagate.core.classifier import classify, referer_path
from metagate.core.errors import OriginUnavailableError
from metagate.core.models import ClassifiedRequest, RequestKind, ResolvedMetadata, RouteRule, UpstreamResponse
from metagate.core.resolver import resolve_metadata
from metagate.observability.logging import log_event
from metagate.rewrite.handlers import build_bot_rewriter, build_human_rewriter, build_passthrough_rewriter
from metagate.rewrite.headers import apply_headers, replace_header
from metagate.rewrite.html_rewriter import HtmlRewriter, charset_from_content_type
from metagate.rewrite.json_patch import patch_page_data_bytes
from metagate.util.logger import logger

_REDIRECTABLE_METHODS = frozenset({"GET", "HEAD"})


def _origin_error_response(exc: OriginUnavailableError) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={
            "error": {
                "message": str(exc),
                "type": "metagate_error",
                "code": "origin_unreachable",
            }
        },
    )


def _passthrough(upstream: UpstreamResponse) -> Response:
    response = StreamingResponse(upstream.body, status_code=upstream.status_code)
    return apply_headers(response, upstream.headers.multi_items())


def _rewritten(upstream: UpstreamResponse, rewriter: HtmlRewriter) -> Response:
    encoding = charset_from_content_type(upstream.content_type, default=None)
    response = StreamingResponse(
        rewriter.transform(upstream.body, encoding=encoding),
        status_code=upstream.status_code,
    )
    return apply_headers(response, upstream.headers.multi_items())


def _is_html(upstream: UpstreamResponse) -> bool:
    return "text/html" in upstream.content_type.lower()


class MetadataProxy:
    """Stateless across requests; holds only the immutable ProxyConfig."""

    def __init__(self, config: ProxyConfig) -> None:
        self.config = config

    async def handle(self, request: Request) -> Response:
        classified = classify(
            request.method,
            request.url.path,
            request.headers.get("user-agent"),
            request.headers.get("referer"),
            self.config.classifier,
            query=request.url.query,
        )
        rule = self.config.registry.match(classified.path)
        try:
            if classified.kind is RequestKind.ASSET and rule is None:
                return await self._handle_asset(request, classified)
            if classified.kind is RequestKind.PAGE_DATA:
                return await self._handle_page_data(request, classified)
            return await self._handle_page(request, classified, rule)
        except OriginUnavailableError as exc:
            return _origin_error_response(exc)

    async def _fetch_origin(self, request: Request, classified: ClassifiedRequest) -> UpstreamResponse:
        body = await request.body()
        return await fetch_origin(
            classified.method,
            classified.path,
            classified.query,
            request.headers,
            body,
            origin_base=self.config.origin_base_url,
            rewrite_origin_headers=self.config.rewrite_origin_headers,
        )

    async def _fetch_with_metadata(
        self,
        request: Request,
        classified: ClassifiedRequest,
        metadata_path: str,
        rule: RouteRule,
    ) -> tuple[UpstreamResponse, ResolvedMetadata | None]:
        metadata_task = asyncio.ensure_future(
            resolve_metadata(metadata_path, rule, timeout_seconds=self.config.metadata_timeout_seconds)
        )
        try:
            upstream = await self._fetch_origin(request, classified)
        except BaseException:
            metadata_task.cancel()
            raise
        return upstream, await metadata_task

    async def _handle_asset(self, request: Request, classified: ClassifiedRequest) -> Response:
        if (
            self.config.redirect_assets
            and not classified.is_restrictive_browser
            and classified.method in _REDIRECTABLE_METHODS
        ):
            location = build_origin_url(self.config.origin_base_url, classified.path, classified.query)
            log_event("proxy_decision", path=classified.path, kind=classified.kind.value, action="asset_redirect")
            return RedirectResponse(location, status_code=302)
        upstream = await self._fetch_origin(request, classified)
        log_event("proxy_decision", path=classified.path, kind=classified.kind.value, action="asset_proxy")
        return _passthrough(upstream)

    async def _handle_page_data(self, request: Request, classified: ClassifiedRequest) -> Response:
        page_path = referer_path(classified.referer)
        if classified.referer and page_path is None:
            logger.info("page data referer ignored path=%s reason=malformed_referer", classified.path)
        rule = self.config.registry.match(page_path) if page_path is not None else None
        if page_path is None or rule is None:
            upstream = await self._fetch_origin(request, classified)
            log_event("proxy_decision", path=classified.path, kind=classified.kind.value, action="passthrough")
            return _passthrough(upstream)
        upstream, metadata = await self._fetch_with_metadata(request, classified, page_path, rule)
        if metadata is None or not upstream.is_success:
            log_event(
                "proxy_decision",
                path=classified.path,
                kind=classified.kind.value,
                referer_path=page_path,
                metadata=metadata is not None,
                action="passthrough",
            )
            return _passthrough(upstream)

        body = await upstream.read()
        try:
            patched = patch_page_data_bytes(body, metadata, self.config.json_languages)
        except ValueError as exc:
            logger.warning("page data patch skipped path=%s error=%s", classified.path, exc)
            response = Response(content=body, status_code=upstream.status_code)
            return apply_headers(response, upstream.headers.multi_items())

        log_event(
            "proxy_decision",
            path=classified.path,
            kind=classified.kind.value,
            referer_path=page_path,
            action="json_patch",
        )
        headers = replace_header(upstream.headers, "Content-Type", "application/json")
        response = Response(content=patched, status_code=upstream.status_code)
        return apply_headers(response, headers.multi_items())

    async def _handle_page(
        self,
        request: Request,
        classified: ClassifiedRequest,
        rule: RouteRule | None,
    ) -> Response:
        metadata: ResolvedMetadata | None = None
        if rule is not None:
            upstream, metadata = await self._fetch_with_metadata(request, classified, classified.path, rule)
        else:
            upstream = await self._fetch_origin(request, classified)

        if not _is_html(upstream):
            log_event("proxy_decision", path=classified.path, kind=classified.kind.value, action="passthrough")
            return _passthrough(upstream)

        if classified.is_bot:
            if metadata is not None:
                rewriter = build_bot_rewriter(metadata, self.config)
                action = "bot_rewrite"
            else:
                rewriter = build_passthrough_rewriter()
                action = "bot_passthrough"
        else:
            rewriter = build_human_rewriter(self.config, metadata, rule)
            action = "human_rewrite" if metadata is not None else "human_asset_rewrite"

        log_event(
            "proxy_decision",
            path=classified.path,
            kind=classified.kind.value,
            bot=classified.is_bot,
            restrictive_browser=classified.is_restrictive_browser,
            route=rule.pattern_source if rule is not None else None,
            metadata=metadata is not None,
            action=action,
        )
        return _rewritten(upstream, rewriter)
