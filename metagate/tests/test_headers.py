import httpx
from starlette.responses import Response

from metagate.rewrite.headers import apply_headers, replace_header, sanitize_response_headers, strip_robots_header


def test_strip_robots_header_without_header_is_noop():
    headers = httpx.Headers([("Content-Type", "text/html"), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")])
    stripped = strip_robots_header(headers)
    assert stripped.multi_items() == headers.multi_items()


def test_strip_robots_header_removes_every_occurrence():
    headers = httpx.Headers(
        [
            ("X-Robots-Tag", "noindex"),
            ("Content-Type", "text/html"),
            ("x-robots-tag", "nofollow"),
        ]
    )
    stripped = strip_robots_header(headers)
    assert "x-robots-tag" not in stripped
    assert stripped.get("content-type") == "text/html"


def test_sanitize_drops_framing_and_hop_by_hop_headers():
    headers = httpx.Headers(
        {
            "Content-Length": "10",
            "Content-Encoding": "gzip",
            "Transfer-Encoding": "chunked",
            "Connection": "keep-alive",
            "X-Robots-Tag": "noindex",
            "Cache-Control": "max-age=60",
        }
    )
    sanitized = sanitize_response_headers(headers)
    assert list(sanitized.keys()) == ["cache-control"]


def test_replace_header_overrides_all_values():
    headers = replace_header(httpx.Headers([("content-type", "text/plain")]), "Content-Type", "application/json")
    assert headers.get_list("content-type") == ["application/json"]


def test_apply_headers_keeps_repeated_values():
    response = apply_headers(
        Response(content=b"x", media_type="text/plain"),
        [("set-cookie", "a=1"), ("set-cookie", "b=2"), ("content-type", "text/html")],
    )
    assert response.headers.getlist("set-cookie") == ["a=1", "b=2"]
    assert response.headers["content-type"] == "text/html"
