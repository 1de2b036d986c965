"""Page-data JSON patching."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from metagate.core.models import ResolvedMetadata

_CONTAINER_PATHS: tuple[tuple[str, ...], ...] = (
    ("title",),
    ("meta",),
    ("meta", "desc"),
    ("meta", "keywords"),
    ("socialTitle",),
    ("socialDesc",),
)


def _ensure_container(parent: dict[str, Any], key: str) -> dict[str, Any] | None:
    """Existing or newly created mapping at ``key``; ``None`` if a non-mapping value sits there."""

    current = parent.get(key)
    if isinstance(current, dict):
        return current
    if current is None:
        parent[key] = {}
        return parent[key]
    return None


def _writable_container(parent: dict[str, Any], key: str) -> dict[str, Any]:
    current = parent.get(key)
    if not isinstance(current, dict):
        current = parent[key] = {}
    return current


def _set_localized(page: dict[str, Any], path: tuple[str, ...], value: str, languages: Iterable[str]) -> None:
    node = page
    for key in path:
        node = _writable_container(node, key)
    for lang in languages:
        node[lang] = value


def patch_page_data(document: Any, metadata: ResolvedMetadata, languages: Iterable[str] = ("en",)) -> dict[str, Any]:
    """Write ``metadata`` into ``document["page"]`` in place and return the document.

    Missing containers are created; fields absent from ``metadata`` keep their
    existing values. Raises ``ValueError`` when the document is not an object.
    """

    if not isinstance(document, dict):
        raise ValueError(f"page data must be a JSON object, got {type(document).__name__}")
    langs = tuple(languages)
    page = _ensure_container(document, "page")
    if page is None:
        raise ValueError("page data 'page' entry is not an object")

    for path in _CONTAINER_PATHS:
        node: dict[str, Any] | None = page
        for key in path:
            if node is None:
                break
            node = _ensure_container(node, key)

    if metadata.title:
        _set_localized(page, ("title",), metadata.title, langs)
        _set_localized(page, ("socialTitle",), metadata.title, langs)
    if metadata.description:
        _set_localized(page, ("meta", "desc"), metadata.description, langs)
        _set_localized(page, ("socialDesc",), metadata.description, langs)
    if metadata.keywords:
        _set_localized(page, ("meta", "keywords"), metadata.keywords, langs)
    if metadata.image:
        page["metaImage"] = metadata.image
    return document


def dump_page_data(document: Any) -> bytes:
    return json.dumps(document, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def patch_page_data_bytes(body: bytes, metadata: ResolvedMetadata, languages: Iterable[str] = ("en",)) -> bytes:
    """Parse, patch and re-serialize; raises ``ValueError`` on unusable bodies."""

    document = json.loads(body.decode("utf-8"))
    return dump_page_data(patch_page_data(document, metadata, languages))
