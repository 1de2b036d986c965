"""Streaming HTML rewriter.

Documents are tokenized incrementally as chunks arrive from the origin and
written back out token by token.  Markup no handler touches is emitted from the
source text verbatim, so an un-rewritten document comes out byte-identical.
Handlers are registered per tag name and see two kinds of events:

* ``element(el)``: a start tag; the handler may read/modify attributes, drop
  the element, or replace its inner content.
* ``end(tag_end)``: an end tag; the handler may insert markup right before it.

Nothing ever looks back at already emitted output, so one forward pass is
enough and memory stays bounded by the largest single tag.
"""

from __future__ import annotations

import codecs
import html
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator

VOID_ELEMENTS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
)
RAW_TEXT_ELEMENTS = frozenset({"script", "style", "textarea", "title"})

_TAG_NAME_RE = re.compile(r"[a-zA-Z][^\s/>]*")
_TAG_BODY_RE = re.compile(r"""(?:[^>"']|"[^"]*"|'[^']*')*>""")
_ATTR_RE = re.compile(r"""([^\s/>"'=]+)(?:\s*=\s*("[^"]*"|'[^']*'|[^\s>]*))?""")
_END_TAG_RE = re.compile(r"</\s*([a-zA-Z][^\s/>]*)[^>]*>")
_CHARSET_RE = re.compile(r"charset=[\"']?([\w.:-]+)", re.IGNORECASE)
_META_CHARSET_RE = re.compile(rb"""<meta[^>]*?charset\s*=\s*["']?\s*([\w.:-]+)""", re.IGNORECASE)
_BOMS = (
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)
_ENCODE_ERRORS = "metagate.html"
# 与 HTML 规范的 prescan 长度一致
PRESCAN_BYTES = 1024
# 单个标签超过该长度仍未闭合时按普通文本输出，避免无限缓冲
_MAX_PENDING_TAG_CHARS = 64 * 1024


@dataclass(slots=True)
class Token:
    kind: str  # text | start | end | other
    raw: str
    name: str = ""
    attrs: list[tuple[str, str | None]] = field(default_factory=list)
    self_closing: bool = False


def _parse_attrs(body: str) -> list[tuple[str, str | None]]:
    attrs: list[tuple[str, str | None]] = []
    for match in _ATTR_RE.finditer(body):
        name = match.group(1).lower()
        value = match.group(2)
        if value is None:
            attrs.append((name, None))
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        attrs.append((name, html.unescape(value)))
    return attrs


class HtmlTokenizer:
    """Incremental tokenizer: ``feed`` text, get back the tokens completed so far."""

    def __init__(self) -> None:
        self._buffer = ""
        self._raw_text_tag: str | None = None

    def feed(self, text: str) -> list[Token]:
        self._buffer += text
        return self._drain(final=False)

    def close(self) -> list[Token]:
        tokens = self._drain(final=True)
        if self._buffer:
            tokens.append(Token("text", self._buffer))
            self._buffer = ""
        return tokens

    def _drain(self, *, final: bool) -> list[Token]:
        tokens: list[Token] = []
        buf = self._buffer
        pos = 0
        while pos < len(buf):
            if self._raw_text_tag is not None:
                closing = re.compile(rf"</{re.escape(self._raw_text_tag)}[\s/>]", re.IGNORECASE).search(buf, pos)
                if closing is None:
                    # 保留可能被截断的结束标签前缀，等下一块数据
                    keep = len(self._raw_text_tag) + 3
                    safe_end = len(buf) if final else max(pos, len(buf) - keep)
                    if safe_end > pos:
                        tokens.append(Token("text", buf[pos:safe_end]))
                        pos = safe_end
                    break
                if closing.start() > pos:
                    tokens.append(Token("text", buf[pos : closing.start()]))
                pos = closing.start()
                self._raw_text_tag = None
                continue

            lt = buf.find("<", pos)
            if lt < 0:
                tokens.append(Token("text", buf[pos:]))
                pos = len(buf)
                break
            if lt > pos:
                tokens.append(Token("text", buf[pos:lt]))
                pos = lt

            token, consumed = self._markup_at(buf, pos, final=final)
            if token is None:
                break
            tokens.append(token)
            pos += consumed
            if token.kind == "start" and token.name in RAW_TEXT_ELEMENTS and not token.self_closing:
                self._raw_text_tag = token.name

        self._buffer = buf[pos:]
        return tokens

    def _markup_at(self, buf: str, pos: int, *, final: bool) -> tuple[Token | None, int]:
        """Token starting at ``buf[pos] == "<"``; ``(None, 0)`` when more input is needed."""

        rest = len(buf) - pos
        if rest < 2 and not final:
            return None, 0

        if buf.startswith("<!--", pos):
            end = buf.find("-->", pos + 4)
            if end < 0:
                return self._incomplete(buf, pos, final=final)
            return Token("other", buf[pos : end + 3]), end + 3 - pos

        if buf.startswith("<!", pos) or buf.startswith("<?", pos):
            end = buf.find(">", pos + 2)
            if end < 0:
                return self._incomplete(buf, pos, final=final)
            return Token("other", buf[pos : end + 1]), end + 1 - pos

        if buf.startswith("</", pos):
            match = _END_TAG_RE.match(buf, pos)
            if match is None:
                if buf.find(">", pos) < 0 and len(buf) - pos < _MAX_PENDING_TAG_CHARS:
                    return self._incomplete(buf, pos, final=final)
                return Token("text", "<"), 1
            return Token("end", match.group(0), name=match.group(1).lower()), match.end() - pos

        name_match = _TAG_NAME_RE.match(buf, pos + 1)
        if name_match is None:
            return Token("text", "<"), 1
        body_match = _TAG_BODY_RE.match(buf, name_match.end())
        if body_match is None:
            if len(buf) - pos < _MAX_PENDING_TAG_CHARS:
                return self._incomplete(buf, pos, final=final)
            return Token("text", "<"), 1
        raw = buf[pos : body_match.end()]
        attr_text = buf[name_match.end() : body_match.end() - 1]
        return (
            Token(
                "start",
                raw,
                name=name_match.group(0).lower(),
                attrs=_parse_attrs(attr_text),
                self_closing=attr_text.rstrip().endswith("/"),
            ),
            len(raw),
        )

    @staticmethod
    def _incomplete(buf: str, pos: int, *, final: bool) -> tuple[Token | None, int]:
        if final:
            return Token("text", buf[pos:]), len(buf) - pos
        return None, 0


class Element:
    """Mutable view of one start tag handed to ``element`` handlers."""

    def __init__(self, token: Token) -> None:
        self.tag_name = token.name
        self.self_closing = token.self_closing
        self._raw = token.raw
        self._attrs = list(token.attrs)
        self._modified = False
        self.removed = False
        self.inner_content: str | None = None

    @property
    def attributes(self) -> list[tuple[str, str | None]]:
        return list(self._attrs)

    def get_attribute(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self._attrs:
            if key == lowered:
                return value if value is not None else ""
        return None

    def has_attribute(self, name: str) -> bool:
        return self.get_attribute(name) is not None

    def set_attribute(self, name: str, value: str) -> None:
        lowered = name.lower()
        for index, (key, _) in enumerate(self._attrs):
            if key == lowered:
                self._attrs[index] = (key, value)
                break
        else:
            self._attrs.append((lowered, value))
        self._modified = True

    def remove_attribute(self, name: str) -> None:
        lowered = name.lower()
        kept = [(key, value) for key, value in self._attrs if key != lowered]
        if len(kept) != len(self._attrs):
            self._attrs = kept
            self._modified = True

    def remove(self) -> None:
        self.removed = True

    def set_inner_content(self, text: str, *, is_html: bool = False) -> None:
        self.inner_content = text if is_html else html.escape(text, quote=False)

    def serialize(self) -> str:
        if not self._modified:
            return self._raw
        parts = [self.tag_name]
        for key, value in self._attrs:
            if value is None:
                parts.append(key)
            else:
                parts.append(f'{key}="{html.escape(value, quote=True)}"')
        closing = " />" if self.self_closing else ">"
        return f"<{' '.join(parts)}{closing}"


class TagEnd:
    """End tag view handed to ``end`` handlers."""

    def __init__(self, name: str) -> None:
        self.tag_name = name
        self._before: list[str] = []

    def before(self, markup: str) -> None:
        self._before.append(markup)

    @property
    def inserted(self) -> str:
        return "".join(self._before)


class _RewriteSession:
    def __init__(self, handlers: dict[str, list[Any]]) -> None:
        self._handlers = handlers
        self._tokenizer = HtmlTokenizer()
        # (tag, depth, emit_end_tag): 删除整个元素或替换其内部内容时跳过的区间
        self._skipping: tuple[str, int, bool] | None = None

    def feed(self, text: str) -> str:
        return self._render(self._tokenizer.feed(text))

    def close(self) -> str:
        return self._render(self._tokenizer.close())

    def _render(self, tokens: list[Token]) -> str:
        out: list[str] = []
        for token in tokens:
            if self._skipping is not None:
                self._skip(self._skipping, token, out)
                continue
            if token.kind == "start":
                out.append(self._on_start(token))
            elif token.kind == "end":
                out.append(self._on_end(token))
            else:
                out.append(token.raw)
        return "".join(out)

    def _skip(self, skipping: tuple[str, int, bool], token: Token, out: list[str]) -> None:
        tag, depth, emit_end = skipping
        if token.kind == "start" and token.name == tag and not token.self_closing:
            self._skipping = (tag, depth + 1, emit_end)
        elif token.kind == "end" and token.name == tag:
            if depth > 0:
                self._skipping = (tag, depth - 1, emit_end)
                return
            self._skipping = None
            if emit_end:
                out.append(self._on_end(token))

    def _on_start(self, token: Token) -> str:
        handlers = self._handlers.get(token.name)
        if not handlers:
            return token.raw
        element = Element(token)
        for handler in handlers:
            on_element = getattr(handler, "element", None)
            if on_element is not None:
                on_element(element)
            if element.removed:
                break
        is_void = token.name in VOID_ELEMENTS or token.self_closing
        if element.removed:
            if not is_void:
                self._skipping = (token.name, 0, False)
            return ""
        rendered = element.serialize()
        if element.inner_content is not None and not is_void:
            self._skipping = (token.name, 0, True)
            return rendered + element.inner_content
        return rendered

    def _on_end(self, token: Token) -> str:
        handlers = self._handlers.get(token.name)
        if not handlers:
            return token.raw
        tag_end = TagEnd(token.name)
        for handler in handlers:
            on_end = getattr(handler, "end", None)
            if on_end is not None:
                on_end(tag_end)
        return tag_end.inserted + token.raw


def charset_from_content_type(content_type: str, default: str | None = "utf-8") -> str | None:
    match = _CHARSET_RE.search(content_type or "")
    if match is None:
        return default
    try:
        return codecs.lookup(match.group(1)).name
    except LookupError:
        return default


def sniff_charset(prefix: bytes, default: str = "utf-8") -> str:
    """Charset from a BOM or a ``<meta charset>`` declaration in the first bytes of a document."""

    for bom, name in _BOMS:
        if prefix.startswith(bom):
            return name
    match = _META_CHARSET_RE.search(prefix[:PRESCAN_BYTES])
    if match is not None:
        try:
            return codecs.lookup(match.group(1).decode("ascii")).name
        except LookupError:
            pass
    return default


def _html_encode_errors(exc: UnicodeError) -> tuple[str | bytes, int]:
    # 解码时 surrogateescape 留下的 U+DC80..U+DCFF 还原成原字节；handler 写入的不可编码字符转成 &#NNN;
    if not isinstance(exc, UnicodeEncodeError):
        raise exc
    text, start, end = exc.object, exc.start, exc.end
    escaped = 0xDC80 <= ord(text[start]) <= 0xDCFF
    stop = start + 1
    while stop < end and (0xDC80 <= ord(text[stop]) <= 0xDCFF) == escaped:
        stop += 1
    if escaped:
        return bytes(ord(ch) - 0xDC00 for ch in text[start:stop]), stop
    return "".join(f"&#{ord(ch)};" for ch in text[start:stop]), stop


codecs.register_error(_ENCODE_ERRORS, _html_encode_errors)


class HtmlRewriter:
    """Element-scoped handler registry plus the streaming transform."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Any]] = {}

    def on(self, tag: str, handler: Any) -> "HtmlRewriter":
        self._handlers.setdefault(tag.lower(), []).append(handler)
        return self

    def rewrite(self, document: str) -> str:
        session = _RewriteSession(self._handlers)
        return session.feed(document) + session.close()

    async def transform(
        self,
        chunks: AsyncIterable[bytes],
        *,
        encoding: str | None = None,
    ) -> AsyncIterator[bytes]:
        """Rewrite a byte stream.

        Without ``encoding`` the first ``PRESCAN_BYTES`` are held back and
        sniffed for a BOM or ``<meta charset>``, falling back to utf-8.  Bytes
        the charset cannot decode pass through unchanged.
        """

        session = _RewriteSession(self._handlers)
        decoder = None
        pending = b""
        async for chunk in chunks:
            if not chunk:
                continue
            if encoding is None:
                pending += chunk
                if len(pending) < PRESCAN_BYTES:
                    continue
                encoding, chunk, pending = sniff_charset(pending), pending, b""
            if decoder is None:
                decoder = codecs.getincrementaldecoder(encoding)(errors="surrogateescape")
            out = session.feed(decoder.decode(chunk))
            if out:
                yield out.encode(encoding, errors=_ENCODE_ERRORS)
        if encoding is None:
            encoding = sniff_charset(pending)
        if decoder is None:
            decoder = codecs.getincrementaldecoder(encoding)(errors="surrogateescape")
        tail = session.feed(decoder.decode(pending, final=True)) + session.close()
        if tail:
            yield tail.encode(encoding, errors=_ENCODE_ERRORS)
