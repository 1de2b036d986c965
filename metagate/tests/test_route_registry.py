import pytest

from metagate.core.errors import RouteConfigError
from metagate.core.registry import RouteRegistry, compile_rule


def test_first_registered_rule_wins():
    registry = RouteRegistry.from_config(
        [
            {"pattern": r"^/recipe/[^/]+/$", "metadata_endpoint": "https://api.example.com/recipes/{id}"},
            {"pattern": r"^/recipe/", "metadata_endpoint": "https://api.example.com/fallback/{id}"},
        ]
    )
    rule = registry.match("/recipe/42")
    assert rule is not None
    assert rule.metadata_endpoint == "https://api.example.com/recipes/{id}"


def test_order_flips_the_winner():
    registry = RouteRegistry.from_config(
        [
            {"pattern": r"^/recipe/", "metadata_endpoint": "https://api.example.com/fallback/{id}"},
            {"pattern": r"^/recipe/[^/]+/$", "metadata_endpoint": "https://api.example.com/recipes/{id}"},
        ]
    )
    assert registry.match("/recipe/42").metadata_endpoint == "https://api.example.com/fallback/{id}"


@pytest.mark.parametrize("path", ["/recipes/42", "/recipes/42/"])
def test_trailing_slash_is_normalized(path):
    registry = RouteRegistry([compile_rule(r"^/recipes/\d+/$", "https://api.example.com/r/{id}")])
    assert registry.match(path) is registry.rules[0]


def test_no_match_returns_none():
    registry = RouteRegistry([compile_rule(r"^/recipes/\d+/$", "https://api.example.com/r/{id}")])
    assert registry.match("/about") is None
    assert registry.match("") is None


def test_accepts_original_endpoint_key():
    registry = RouteRegistry.from_config([{"pattern": "^/blog/", "metaDataEndpoint": "https://api.example.com/p/{slug}"}])
    assert registry.match("/blog/hello").metadata_endpoint == "https://api.example.com/p/{slug}"


@pytest.mark.parametrize(
    "endpoint",
    [
        "https://api.example.com/recipes",
        "https://api.example.com/{a}/{b}",
    ],
)
def test_endpoint_requires_exactly_one_placeholder(endpoint):
    with pytest.raises(RouteConfigError):
        compile_rule("^/recipes/", endpoint)


def test_invalid_regex_is_a_config_error():
    with pytest.raises(RouteConfigError):
        compile_rule("^/recipes/(", "https://api.example.com/{id}")
