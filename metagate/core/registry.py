"""Route registry: ordered path-pattern → metadata-endpoint rules."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from metagate.core.errors import RouteConfigError
from metagate.core.models import RouteRule
from metagate.util.logger import logger

PLACEHOLDER_RE = re.compile(r"\{([^}]+)\}")


def _normalize_path(path: str) -> str:
    path = path or "/"
    return path if path.endswith("/") else f"{path}/"


def compile_rule(pattern: str, metadata_endpoint: str) -> RouteRule:
    if not isinstance(pattern, str) or not pattern.strip():
        raise RouteConfigError("route pattern must be a non-empty string")
    if not isinstance(metadata_endpoint, str) or len(PLACEHOLDER_RE.findall(metadata_endpoint)) != 1:
        raise RouteConfigError(
            f"metadata endpoint must contain exactly one {{placeholder}}: {metadata_endpoint!r}"
        )
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        raise RouteConfigError(f"invalid route pattern {pattern!r}: {exc}") from exc
    return RouteRule(pattern=compiled, metadata_endpoint=metadata_endpoint)


class RouteRegistry:
    """Immutable after construction; first registered match wins."""

    def __init__(self, rules: Iterable[RouteRule] = ()) -> None:
        self._rules: tuple[RouteRule, ...] = tuple(rules)

    @classmethod
    def from_config(cls, items: Iterable[Mapping[str, Any]] | None) -> "RouteRegistry":
        rules: list[RouteRule] = []
        for index, item in enumerate(items or []):
            if not isinstance(item, Mapping):
                raise RouteConfigError(f"route #{index} must be a mapping")
            endpoint = item.get("metadata_endpoint", item.get("metaDataEndpoint"))
            rules.append(compile_rule(item.get("pattern"), endpoint))
        logger.info("registered %d route rules", len(rules))
        return cls(rules)

    @property
    def rules(self) -> tuple[RouteRule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def match(self, path: str) -> RouteRule | None:
        candidate = _normalize_path(path)
        for rule in self._rules:
            if rule.pattern.search(candidate):
                return rule
        return None
