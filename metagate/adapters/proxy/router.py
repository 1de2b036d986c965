"""Catch-all route handing every request to the metadata proxy."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import Response

router = APIRouter()

_ALL_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


@router.api_route("/{proxy_path:path}", methods=list(_ALL_METHODS))
async def proxy_request(request: Request, proxy_path: str = "") -> Response:
    del proxy_path
    return await request.app.state.proxy.handle(request)
