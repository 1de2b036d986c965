import pytest

from metagate.config.proxy_config import load_proxy_config, normalize_origin_base
from metagate.config.settings import Settings
from metagate.core.errors import RouteConfigError

ROUTES_YAML = """
origin_base_url: https://app.example.com/
routes:
  - pattern: "^/recipe/[^/]+/$"
    metadata_endpoint: "https://api.example.com/recipes/{id}"
  - pattern: "^/blog/"
    metaDataEndpoint: "https://api.example.com/posts/{slug}"
classifier:
  restrictive_browser_agents: []
page_data:
  languages: [en, fr]
"""


def test_load_proxy_config_from_yaml(tmp_path):
    routes_file = tmp_path / "routes.yaml"
    routes_file.write_text(ROUTES_YAML, encoding="utf-8")

    config = load_proxy_config(Settings(routes_path=str(routes_file)))

    assert config.origin_base_url == "https://app.example.com"
    assert config.origin_host == "app.example.com"
    assert config.favicon_url == "https://app.example.com/favicon.ico"
    assert len(config.registry) == 2
    assert config.registry.match("/blog/hello").metadata_endpoint == "https://api.example.com/posts/{slug}"
    assert config.json_languages == ("en", "fr")
    assert config.classifier.restrictive_browser_agents == ()
    assert "facebookexternalhit" in config.classifier.bot_keywords


def test_settings_override_policy_lists(tmp_path):
    routes_file = tmp_path / "routes.yaml"
    routes_file.write_text(ROUTES_YAML, encoding="utf-8")

    config = load_proxy_config(
        Settings(
            routes_path=str(routes_file),
            json_languages="en",
            bot_keywords="Bot, Preview",
            favicon_url="https://cdn.example.com/icon.png",
            redirect_assets=False,
        )
    )

    assert config.json_languages == ("en",)
    assert config.classifier.bot_keywords == ("bot", "preview")
    assert config.favicon_url == "https://cdn.example.com/icon.png"
    assert config.redirect_assets is False


def test_missing_routes_file_uses_defaults(tmp_path):
    config = load_proxy_config(
        Settings(routes_path=str(tmp_path / "absent.yaml"), origin_base_url="http://localhost:3000")
    )
    assert len(config.registry) == 0
    assert config.origin_base_url == "http://localhost:3000"
    assert config.json_languages == ("en",)
    assert config.classifier.restrictive_browser_agents == ("linkedinapp",)


@pytest.mark.parametrize(
    "content",
    [
        "- just\n- a list\n",
        "routes:\n  - pattern: '^/x/'\n    metadata_endpoint: 'https://api/no-placeholder'\n",
        "routes: [\n",
    ],
)
def test_invalid_routes_file_is_rejected(tmp_path, content):
    routes_file = tmp_path / "routes.yaml"
    routes_file.write_text(content, encoding="utf-8")
    with pytest.raises(RouteConfigError):
        load_proxy_config(Settings(routes_path=str(routes_file)))


@pytest.mark.parametrize("raw", ["ftp://app.example.com", "https://", "https://app.example.com/?a=1"])
def test_normalize_origin_base_rejects_bad_values(raw):
    with pytest.raises(RouteConfigError):
        normalize_origin_base(raw)


def test_config_is_immutable(tmp_path):
    config = load_proxy_config(Settings(routes_path=str(tmp_path / "absent.yaml")))
    with pytest.raises(AttributeError):
        config.origin_base_url = "https://elsewhere.example.com"


def test_explicit_origin_setting_wins_over_routes_file(tmp_path):
    routes_file = tmp_path / "routes.yaml"
    routes_file.write_text(ROUTES_YAML, encoding="utf-8")

    config = load_proxy_config(Settings(routes_path=str(routes_file), origin_base_url="https://env.example.com/"))

    assert config.origin_base_url == "https://env.example.com"
    assert config.origin_host == "env.example.com"


def test_origin_env_var_wins_over_routes_file(tmp_path, monkeypatch):
    routes_file = tmp_path / "routes.yaml"
    routes_file.write_text(ROUTES_YAML, encoding="utf-8")
    monkeypatch.setenv("METAGATE_ORIGIN_BASE_URL", "https://staging.example.com")

    config = load_proxy_config(Settings(routes_path=str(routes_file)))

    assert config.origin_base_url == "https://staging.example.com"


def test_routes_file_origin_wins_over_settings_default(tmp_path, monkeypatch):
    routes_file = tmp_path / "routes.yaml"
    routes_file.write_text(ROUTES_YAML, encoding="utf-8")
    monkeypatch.delenv("METAGATE_ORIGIN_BASE_URL", raising=False)

    config = load_proxy_config(Settings(routes_path=str(routes_file)))

    assert config.origin_base_url == "https://app.example.com"
