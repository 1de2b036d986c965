"""Request classification: bot vs. human, asset vs. page data vs. HTML page."""

from __future__ import annotations

from urllib.parse import urlsplit

from metagate.config.proxy_config import ClassifierPolicy
from metagate.core.models import ClassifiedRequest, RequestKind


def is_restrictive_browser(user_agent: str, policy: ClassifierPolicy) -> bool:
    lowered = (user_agent or "").lower()
    return any(agent in lowered for agent in policy.restrictive_browser_agents)


def is_bot(user_agent: str, policy: ClassifierPolicy) -> bool:
    lowered = (user_agent or "").lower()
    if not lowered:
        return False
    if is_restrictive_browser(lowered, policy):
        return False
    return any(keyword in lowered for keyword in policy.bot_keywords)


def is_page_data(path: str, policy: ClassifierPolicy) -> bool:
    return bool(policy.page_data_pattern.search(path or ""))


def is_asset(path: str, policy: ClassifierPolicy) -> bool:
    lowered = (path or "").lower()
    if any(lowered.startswith(prefix) for prefix in policy.asset_prefixes):
        return True
    return any(lowered.endswith(suffix) for suffix in policy.asset_suffixes)


def request_kind(path: str, policy: ClassifierPolicy) -> RequestKind:
    # page data 虽然以 .json 结尾，但需要打补丁，优先于通用静态资源规则
    if is_page_data(path, policy):
        return RequestKind.PAGE_DATA
    if is_asset(path, policy):
        return RequestKind.ASSET
    return RequestKind.HTML_PAGE


def referer_path(referer: str | None) -> str | None:
    """Path component of a Referer header; ``None`` when absent or malformed."""

    raw = (referer or "").strip()
    if not raw:
        return None
    try:
        parsed = urlsplit(raw)
    except ValueError:
        return None
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None
    return parsed.path or "/"


def classify(
    method: str,
    path: str,
    user_agent: str | None,
    referer: str | None,
    policy: ClassifierPolicy,
    query: str = "",
) -> ClassifiedRequest:
    agent = user_agent or ""
    return ClassifiedRequest(
        path=path or "/",
        query=query or "",
        method=(method or "GET").upper(),
        user_agent=agent,
        referer=referer or None,
        is_bot=is_bot(agent, policy),
        is_restrictive_browser=is_restrictive_browser(agent, policy),
        kind=request_kind(path, policy),
    )
