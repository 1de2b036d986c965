import httpx
import pytest

from metagate.adapters.origin import upstream
from metagate.config.proxy_config import ProxyConfig, default_classifier_policy
from metagate.core import gateway, resolver
from metagate.core.registry import RouteRegistry, compile_rule

GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


def _config() -> ProxyConfig:
    return ProxyConfig(
        origin_base_url="https://app.example.com",
        registry=RouteRegistry([compile_rule(r"^/recipe/[^/]+/$", "https://api.example.com/recipes/{id}")]),
        classifier=default_classifier_policy(),
    )


def _install_backends(monkeypatch, origin_handler, metadata_handler) -> None:
    origin_client = httpx.AsyncClient(transport=httpx.MockTransport(origin_handler))
    metadata_client = httpx.AsyncClient(transport=httpx.MockTransport(metadata_handler))

    async def get_origin_client():
        return origin_client

    async def get_metadata_client():
        return metadata_client

    monkeypatch.setattr(upstream, "_get_origin_async_client", get_origin_client)
    monkeypatch.setattr(resolver, "_get_metadata_async_client", get_metadata_client)


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="https://www.mysite.com")


@pytest.mark.asyncio
async def test_health_is_answered_locally(monkeypatch):
    seen: list[str] = []

    def origin(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200)

    _install_backends(monkeypatch, origin, lambda request: httpx.Response(404))
    async with _client(gateway.create_app(_config())) as client:
        resp = await client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert seen == []


@pytest.mark.asyncio
async def test_catch_all_serves_rewritten_page_to_bots(monkeypatch):
    def origin(request: httpx.Request) -> httpx.Response:
        assert request.headers["host"] == "app.example.com"
        return httpx.Response(
            200,
            headers={"Content-Type": "text/html; charset=utf-8", "X-Robots-Tag": "noindex, nofollow"},
            content=b"<html><head><title>App</title></head><body></body></html>",
        )

    def metadata(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/recipes/abc"
        return httpx.Response(200, json={"title": "Tomato soup", "extra": 1})

    _install_backends(monkeypatch, origin, metadata)
    async with _client(gateway.create_app(_config())) as client:
        resp = await client.get("/recipe/abc/", headers={"User-Agent": GOOGLEBOT})

    assert resp.status_code == 200
    assert "x-robots-tag" not in resp.headers
    assert "<title>Tomato soup</title>" in resp.text
    assert '<meta name="viewport"' in resp.text


@pytest.mark.asyncio
async def test_catch_all_forwards_other_methods(monkeypatch):
    captured: dict[str, object] = {}

    def origin(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["url"] = str(request.url)
        captured["body"] = request.content
        return httpx.Response(201, json={"ok": True})

    _install_backends(monkeypatch, origin, lambda request: httpx.Response(404))
    async with _client(gateway.create_app(_config())) as client:
        resp = await client.put("/api/items/7?x=1", content=b'{"name":"a"}')

    assert resp.status_code == 201
    assert resp.json() == {"ok": True}
    assert captured == {
        "method": "PUT",
        "url": "https://app.example.com/api/items/7?x=1",
        "body": b'{"name":"a"}',
    }


@pytest.mark.asyncio
async def test_unreachable_origin_returns_502(monkeypatch):
    def origin(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    _install_backends(monkeypatch, origin, lambda request: httpx.Response(404))
    async with _client(gateway.create_app(_config())) as client:
        resp = await client.get("/about")

    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "origin_unreachable"
