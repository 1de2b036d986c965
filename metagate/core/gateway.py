"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI

from metagate.adapters.origin.upstream import close_origin_async_client
from metagate.adapters.proxy.router import router as proxy_router
from metagate.config.proxy_config import ProxyConfig, load_proxy_config
from metagate.config.settings import settings
from metagate.core.orchestrator import MetadataProxy
from metagate.core.resolver import close_metadata_async_client
from metagate.util.logger import logger


def create_app(config: ProxyConfig | None = None) -> FastAPI:
    application = FastAPI(title=settings.app_name, docs_url=None, redoc_url=None, openapi_url=None)
    application.state.proxy = MetadataProxy(config or load_proxy_config())

    @application.get("/health", include_in_schema=False)
    def health() -> dict:
        logger.debug("health check")
        return {"status": "ok"}

    @application.on_event("shutdown")
    async def shutdown_cleanup() -> None:
        await close_origin_async_client()
        await close_metadata_async_client()

    # catch-all 必须最后注册，否则会吞掉 /health
    application.include_router(proxy_router)
    return application


app = create_app()
