"""Element handlers for the HTML rewriter and the per-branch rewriter builders."""

from __future__ import annotations

from metagate.config.proxy_config import ProxyConfig
from metagate.core.models import ResolvedMetadata, RouteRule
from metagate.rewrite.html_rewriter import Element, HtmlRewriter, TagEnd
from metagate.rewrite.title_script import render_title_script
from metagate.util.logger import get_logger

log = get_logger("rewrite")

# meta name / property → metadata field
META_FIELD_MAP: dict[str, str] = {
    "title": "title",
    "description": "description",
    "image": "image",
    "keywords": "keywords",
    "twitter:title": "title",
    "twitter:description": "description",
    "twitter:image": "image",
    "og:title": "title",
    "og:description": "description",
    "og:image": "image",
}
ITEMPROP_FIELD_MAP: dict[str, str] = {
    "name": "title",
    "description": "description",
    "image": "image",
}
HEAD_DEFAULTS: tuple[tuple[str, str], ...] = (
    ("viewport", "width=device-width, initial-scale=1, viewport-fit=cover"),
    ("apple-mobile-web-app-capable", "yes"),
    ("apple-mobile-web-app-status-bar-style", "black"),
)


def _lower(value: str | None) -> str:
    return (value or "").strip().lower()


class TitleHandler:
    def __init__(self, title: str) -> None:
        self.title = title

    def element(self, el: Element) -> None:
        el.set_inner_content(self.title)


class MetaContentHandler:
    """Rewrites ``content`` of SEO/social meta tags whose metadata value is present."""

    def __init__(self, metadata: ResolvedMetadata) -> None:
        self.metadata = metadata

    def _value(self, field_name: str | None) -> str | None:
        if field_name is None:
            return None
        return getattr(self.metadata, field_name)

    def element(self, el: Element) -> None:
        for attr in ("name", "property"):
            value = self._value(META_FIELD_MAP.get(_lower(el.get_attribute(attr))))
            if value is not None:
                el.set_attribute("content", value)
                return
        value = self._value(ITEMPROP_FIELD_MAP.get(_lower(el.get_attribute("itemprop"))))
        if value is not None:
            el.set_attribute("content", value)


class NoindexHandler:
    def element(self, el: Element) -> None:
        if _lower(el.get_attribute("name")) != "robots":
            return
        directives = {item.strip() for item in _lower(el.get_attribute("content")).split(",")}
        if "noindex" in directives:
            log.debug("removing robots noindex meta")
            el.remove()


class HeadDefaultsHandler:
    """Adds viewport/Apple PWA meta tags the document never declared."""

    def __init__(self) -> None:
        self.seen: set[str] = set()

    def element(self, el: Element) -> None:
        if el.tag_name == "meta":
            name = _lower(el.get_attribute("name"))
            if name:
                self.seen.add(name)

    def end(self, tag_end: TagEnd) -> None:
        if tag_end.tag_name != "head":
            return
        for name, content in HEAD_DEFAULTS:
            if name not in self.seen:
                tag_end.before(f'<meta name="{name}" content="{content}">')
                self.seen.add(name)


class FaviconHandler:
    def __init__(self, favicon_url: str) -> None:
        self.favicon_url = favicon_url

    def element(self, el: Element) -> None:
        if _lower(el.get_attribute("rel")) in {"icon", "shortcut icon"}:
            el.set_attribute("href", self.favicon_url)


class AssetUrlHandler:
    """Makes root-relative asset URLs absolute against the origin."""

    def __init__(self, origin_base_url: str) -> None:
        self.origin_base_url = origin_base_url.rstrip("/")

    def element(self, el: Element) -> None:
        if el.tag_name == "base":
            if el.has_attribute("href"):
                el.set_attribute("href", f"{self.origin_base_url}/")
            return
        for attr in ("src", "href"):
            value = el.get_attribute(attr)
            if value and value.startswith("/") and not value.startswith("//"):
                el.set_attribute(attr, f"{self.origin_base_url}{value}")


class HeadScriptHandler:
    def __init__(self, markup: str) -> None:
        self.markup = markup

    def end(self, tag_end: TagEnd) -> None:
        if self.markup:
            tag_end.before(self.markup)
            self.markup = ""


def build_passthrough_rewriter() -> HtmlRewriter:
    return HtmlRewriter().on("meta", NoindexHandler())


def build_bot_rewriter(metadata: ResolvedMetadata, config: ProxyConfig) -> HtmlRewriter:
    head_defaults = HeadDefaultsHandler()
    rewriter = HtmlRewriter()
    if metadata.title:
        rewriter.on("title", TitleHandler(metadata.title))
    rewriter.on("meta", NoindexHandler())
    rewriter.on("meta", MetaContentHandler(metadata))
    rewriter.on("meta", head_defaults)
    rewriter.on("head", head_defaults)
    rewriter.on("link", FaviconHandler(config.favicon_url))
    return rewriter


def build_human_rewriter(
    config: ProxyConfig,
    metadata: ResolvedMetadata | None = None,
    rule: RouteRule | None = None,
) -> HtmlRewriter:
    rewriter = HtmlRewriter().on("meta", NoindexHandler())
    if config.rewrite_asset_urls:
        asset_urls = AssetUrlHandler(config.origin_base_url)
        for tag in ("base", "script", "link"):
            rewriter.on(tag, asset_urls)
    if metadata is not None and rule is not None and metadata.title:
        rewriter.on("title", TitleHandler(metadata.title))
        if config.enable_title_script:
            rewriter.on("head", HeadScriptHandler(render_title_script(metadata, rule)))
    return rewriter
