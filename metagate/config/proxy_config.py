"""Immutable proxy configuration built once at startup from settings + routes file."""

from __future__ import annotations

import re
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse, urlunparse

import yaml

from metagate.config.settings import Settings, settings
from metagate.core.errors import RouteConfigError
from metagate.core.registry import RouteRegistry
from metagate.util.logger import logger


_DEFAULT_POLICY: dict[str, Any] = {
    "routes": [],
    "classifier": {
        "bot_keywords": [
            "bot",
            "crawler",
            "spider",
            "crawling",
            "facebookexternalhit",
            "whatsapp",
            "telegram",
            "twitter",
            "pinterest",
            "slack",
            "discord",
            "linkedin",
        ],
        # LinkedIn 内置浏览器能执行注入脚本但处理 302 有问题：按人类 + 受限浏览器处理
        "restrictive_browser_agents": ["linkedinapp"],
        "asset_prefixes": ["/assets/", "/static/", "/fonts/", "/images/", "/icons/", "/public/", "/_nuxt/"],
        "asset_suffixes": [
            ".js",
            ".mjs",
            ".css",
            ".map",
            ".json",
            ".woff",
            ".woff2",
            ".ttf",
            ".otf",
            ".eot",
            ".png",
            ".jpg",
            ".jpeg",
            ".gif",
            ".svg",
            ".webp",
            ".avif",
            ".ico",
            ".webmanifest",
        ],
        "page_data_pattern": r"/public/data/[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}\.json",
    },
    "page_data": {
        "languages": ["en"],
    },
}

_APP_ROOT_DIR = Path(__file__).resolve().parent.parent.parent


@dataclass(frozen=True, slots=True)
class ClassifierPolicy:
    bot_keywords: tuple[str, ...]
    restrictive_browser_agents: tuple[str, ...]
    asset_prefixes: tuple[str, ...]
    asset_suffixes: tuple[str, ...]
    page_data_pattern: re.Pattern[str]


@dataclass(frozen=True, slots=True)
class ProxyConfig:
    origin_base_url: str
    registry: RouteRegistry
    classifier: ClassifierPolicy
    json_languages: tuple[str, ...] = ("en",)
    favicon_url: str = ""
    metadata_timeout_seconds: float = 3.0
    rewrite_origin_headers: bool = True
    redirect_assets: bool = True
    rewrite_asset_urls: bool = True
    enable_title_script: bool = True
    origin_host: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "origin_host", urlparse(self.origin_base_url).netloc)
        if not self.favicon_url:
            object.__setattr__(self, "favicon_url", f"{self.origin_base_url}/favicon.ico")


def normalize_origin_base(raw_base: str) -> str:
    candidate = (raw_base or "").strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"}:
        raise RouteConfigError(f"invalid origin scheme: {candidate!r}")
    if not parsed.netloc:
        raise RouteConfigError(f"invalid origin host: {candidate!r}")
    if parsed.query or parsed.fragment:
        raise RouteConfigError(f"origin base must not carry query or fragment: {candidate!r}")
    cleaned_path = parsed.path.rstrip("/")
    return urlunparse((parsed.scheme, parsed.netloc, cleaned_path, "", "", ""))


def _resolve_policy_file(path: str) -> Path:
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    cwd_candidate = Path.cwd() / candidate
    if cwd_candidate.exists():
        return cwd_candidate
    return _APP_ROOT_DIR / candidate


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def load_route_policy(path: str | None = None) -> dict[str, Any]:
    policy_path = _resolve_policy_file(path or settings.routes_path)
    policy = deepcopy(_DEFAULT_POLICY)
    if not policy_path.exists():
        logger.info("routes file not found, using defaults path=%s", policy_path)
        return policy
    try:
        raw = yaml.safe_load(policy_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise RouteConfigError(f"routes file is not valid yaml: {policy_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise RouteConfigError(f"routes file must be a mapping: {policy_path}")
    policy = _deep_merge(policy, raw)
    logger.info("routes file loaded path=%s routes=%d", policy_path, len(policy.get("routes") or []))
    return policy


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _lowered_tuple(values: Any) -> tuple[str, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    return tuple(str(value).strip().lower() for value in values if str(value).strip())


def build_classifier_policy(section: dict[str, Any], overrides: Settings | None = None) -> ClassifierPolicy:
    values = dict(section)
    if overrides is not None:
        for key in ("bot_keywords", "restrictive_browser_agents", "asset_prefixes", "asset_suffixes"):
            raw = getattr(overrides, key, "")
            if raw.strip():
                values[key] = _split_csv(raw)
    pattern_source = values.get("page_data_pattern") or _DEFAULT_POLICY["classifier"]["page_data_pattern"]
    try:
        page_data_pattern = re.compile(pattern_source)
    except re.error as exc:
        raise RouteConfigError(f"invalid page_data_pattern {pattern_source!r}: {exc}") from exc
    return ClassifierPolicy(
        bot_keywords=_lowered_tuple(values.get("bot_keywords")),
        restrictive_browser_agents=_lowered_tuple(values.get("restrictive_browser_agents")),
        asset_prefixes=_lowered_tuple(values.get("asset_prefixes")),
        asset_suffixes=_lowered_tuple(values.get("asset_suffixes")),
        page_data_pattern=page_data_pattern,
    )


def load_proxy_config(source: Settings | None = None, routes_path: str | None = None) -> ProxyConfig:
    source = source or settings
    policy = load_route_policy(routes_path or source.routes_path)

    # 显式设置（env / 构造参数）优先于 routes 文件，其次才是 Settings 默认值
    if "origin_base_url" in source.model_fields_set:
        origin_raw = source.origin_base_url
    else:
        origin_raw = policy.get("origin_base_url") or source.origin_base_url
    languages = _split_csv(source.json_languages) if source.json_languages.strip() else policy["page_data"].get("languages")
    json_languages = tuple(str(lang).strip() for lang in (languages or []) if str(lang).strip()) or ("en",)

    config = ProxyConfig(
        origin_base_url=normalize_origin_base(origin_raw),
        registry=RouteRegistry.from_config(policy.get("routes")),
        classifier=build_classifier_policy(policy.get("classifier") or {}, overrides=source),
        json_languages=json_languages,
        favicon_url=(source.favicon_url or str(policy.get("favicon_url") or "")).strip(),
        metadata_timeout_seconds=float(source.metadata_timeout_seconds),
        rewrite_origin_headers=source.rewrite_origin_headers,
        redirect_assets=source.redirect_assets,
        rewrite_asset_urls=source.rewrite_asset_urls,
        enable_title_script=source.enable_title_script,
    )
    logger.info(
        "proxy config ready origin=%s routes=%d languages=%s",
        config.origin_base_url,
        len(config.registry),
        ",".join(config.json_languages),
    )
    return config


def default_classifier_policy() -> ClassifierPolicy:
    return build_classifier_policy(deepcopy(_DEFAULT_POLICY["classifier"]))
