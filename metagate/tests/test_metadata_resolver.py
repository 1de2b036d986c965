import asyncio

import httpx
import pytest

from metagate.core import resolver
from metagate.core.models import ResolvedMetadata
from metagate.core.registry import compile_rule

RULE = compile_rule(r"^/recipe/[^/]+/$", "https://api.example.com/recipes/{id}?lang=en")


def _patch_client(monkeypatch, handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    async def fake_get_client():
        return client

    monkeypatch.setattr(resolver, "_get_metadata_async_client", fake_get_client)
    return client


@pytest.mark.parametrize(
    ("path", "expected"),
    [("/recipe/42", "42"), ("/recipe/42/", "42"), ("/a/b/c-d", "c-d"), ("/", "")],
)
def test_entity_id_from_path(path, expected):
    assert resolver.entity_id_from_path(path) == expected


def test_build_metadata_url_substitutes_and_quotes():
    assert resolver.build_metadata_url("https://api/x/{id}/y", "42") == "https://api/x/42/y"
    assert resolver.build_metadata_url("https://api/x/{id}", "a b/c") == "https://api/x/a%20b%2Fc"


def test_parse_metadata_ignores_unknown_and_empty_fields():
    metadata = resolver.parse_metadata({"title": "Salad", "description": "", "image": 3, "extra": "x"})
    assert metadata == ResolvedMetadata(title="Salad")


@pytest.mark.asyncio
async def test_resolve_fetches_templated_endpoint(monkeypatch):
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"title": "Salad", "description": "Fresh", "keywords": "greens"})

    _patch_client(monkeypatch, handler)
    metadata = await resolver.resolve_metadata("/recipe/42/", RULE, timeout_seconds=1.0)

    assert seen == ["https://api.example.com/recipes/42?lang=en"]
    assert metadata is not None
    assert metadata.title == "Salad"
    assert metadata.description == "Fresh"
    assert metadata.keywords == "greens"
    assert metadata.image is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"title": "Nope"}),
        httpx.Response(404, text="missing"),
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json=["title", "Salad"]),
    ],
)
async def test_resolve_degrades_to_none(monkeypatch, response):
    _patch_client(monkeypatch, lambda request: response)
    assert await resolver.resolve_metadata("/recipe/42", RULE, timeout_seconds=1.0) is None


@pytest.mark.asyncio
async def test_resolve_network_error_is_none(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    _patch_client(monkeypatch, handler)
    assert await resolver.resolve_metadata("/recipe/42", RULE, timeout_seconds=1.0) is None


@pytest.mark.asyncio
async def test_resolve_respects_deadline(monkeypatch):
    async def slow_fetch(url: str) -> ResolvedMetadata:
        await asyncio.sleep(5)
        return ResolvedMetadata(title="late")

    monkeypatch.setattr(resolver, "_fetch_metadata", slow_fetch)
    assert await resolver.resolve_metadata("/recipe/42", RULE, timeout_seconds=0.05) is None
