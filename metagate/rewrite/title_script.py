"""Inline script keeping the resolved title in place after the SPA hydrates."""

from __future__ import annotations

import json
from string import Template

from metagate.core.models import ResolvedMetadata, RouteRule

_TITLE_SCRIPT = Template(
    """<script data-metagate="title">
(function () {
  var resolvedTitle = $title;
  var routePattern = new RegExp($pattern);
  var endpoint = $endpoint;
  var descriptor = Object.getOwnPropertyDescriptor(Document.prototype, "title");

  function normalize(path) {
    return path.charAt(path.length - 1) === "/" ? path : path + "/";
  }
  function entityOf(path) {
    var parts = path.replace(/\\/$$/, "").split("/");
    return parts[parts.length - 1];
  }
  function routeActive() {
    return routePattern.test(normalize(window.location.pathname));
  }
  function nativeGet() {
    return descriptor ? descriptor.get.call(document) : document.title;
  }
  function nativeSet(value) {
    if (descriptor) {
      descriptor.set.call(document, value);
    } else {
      document.title = value;
    }
  }

  var currentEntity = entityOf(window.location.pathname);
  function refresh() {
    if (!routeActive()) {
      return;
    }
    var entity = entityOf(window.location.pathname);
    if (entity === currentEntity) {
      return;
    }
    currentEntity = entity;
    fetch(endpoint.replace(/\\{[^}]+\\}/, encodeURIComponent(entity)))
      .then(function (response) { return response.ok ? response.json() : null; })
      .then(function (data) {
        if (data && typeof data.title === "string" && data.title && entity === currentEntity) {
          resolvedTitle = data.title;
          if (routeActive()) {
            nativeSet(resolvedTitle);
          }
        }
      })
      .catch(function () {});
  }

  if (descriptor && descriptor.set) {
    Object.defineProperty(document, "title", {
      configurable: true,
      get: function () { return nativeGet(); },
      set: function (value) {
        refresh();
        nativeSet(routeActive() ? resolvedTitle : value);
      }
    });
  }
  nativeSet(resolvedTitle);

  ["pushState", "replaceState"].forEach(function (name) {
    var original = window.history[name];
    window.history[name] = function () {
      var result = original.apply(this, arguments);
      refresh();
      return result;
    };
  });
  window.addEventListener("popstate", refresh);

  new MutationObserver(function () {
    if (routeActive() && nativeGet() !== resolvedTitle) {
      nativeSet(resolvedTitle);
    }
  }).observe(document.head || document.documentElement, {
    childList: true,
    subtree: true,
    characterData: true
  });
})();
</script>"""
)


def _js_literal(value: str) -> str:
    # ensure_ascii 同时转义 U+2028/U+2029；再防止 "</script>" 提前闭合
    return json.dumps(value).replace("</", "<\\/")


def render_title_script(metadata: ResolvedMetadata, rule: RouteRule) -> str:
    """Render the title guard for ``rule``; empty when there is no title to keep."""

    if not metadata.title:
        return ""
    return _TITLE_SCRIPT.substitute(
        title=_js_literal(metadata.title),
        pattern=_js_literal(rule.pattern_source),
        endpoint=_js_literal(rule.metadata_endpoint),
    )
