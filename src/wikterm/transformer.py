"""Article HTML to terminal Document transformer.

Two passes over a BeautifulSoup tree:

1. Block pass: walk the tree and produce a flat list of blocks (wrapped
   text, preformatted text, horizontal rules), each carrying its indentation
   and list-marker prefix. Inline markup becomes styled pieces; every ``<a>``
   that points somewhere navigable gets a link id.
2. Layout pass: word-wrap text blocks to the configured width, merge pieces
   into styled spans and record the column range of every link run.

Nothing here performs I/O. A given ``(width, site_url)`` configuration maps
equal input bytes to equal Documents. Broken fragments degrade to their
plain text and are reported as PartialRenderWarning; transform never raises
because of content.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING
from urllib.parse import unquote, urljoin, urlparse

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

from wikterm.models.document import (
    PLAIN,
    Document,
    ExternalTarget,
    InternalTarget,
    Link,
    PartialRenderWarning,
    Span,
    SpanStyle,
    StyledLine,
)
from wikterm.titles import article_url, normalise_title

if TYPE_CHECKING:
    from wikterm.models.document import LinkTarget

DEFAULT_WIDTH = 100
DEFAULT_SITE_URL = "https://en.wikipedia.org"

_MIN_TEXT_WIDTH = 10

# Deeper markup is flattened to plain text instead of walked
_MAX_NESTING = 100

_SKIP_TAGS = frozenset(
    {
        "audio",
        "button",
        "embed",
        "form",
        "head",
        "iframe",
        "img",
        "input",
        "link",
        "map",
        "meta",
        "noscript",
        "object",
        "picture",
        "script",
        "select",
        "source",
        "style",
        "svg",
        "textarea",
        "title",
        "track",
        "video",
    }
)

_SKIP_CLASSES = frozenset(
    {
        "catlinks",
        "metadata",
        "mw-editsection",
        "mw-empty-elt",
        "mw-jump-link",
        "mw-ref",
        "mwe-math-fallback-image-display",
        "mwe-math-fallback-image-inline",
        "navbox",
        "navbox-styles",
        "noprint",
        "printfooter",
        "reference",
    }
)

_HIDDEN_STYLE_RE = re.compile(r"display\s*:\s*none", re.IGNORECASE)

_HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}

_CONTAINER_TAGS = frozenset(
    {
        "address",
        "article",
        "aside",
        "body",
        "caption",
        "center",
        "details",
        "div",
        "fieldset",
        "figcaption",
        "figure",
        "footer",
        "header",
        "html",
        "main",
        "nav",
        "p",
        "section",
        "summary",
        "tbody",
        "td",
        "tfoot",
        "th",
        "thead",
        "tr",
    }
)

_BLOCK_TAGS = _CONTAINER_TAGS | frozenset(
    {"blockquote", "dd", "dl", "dt", "hr", "li", "ol", "pre", "table", "ul", *_HEADING_LEVELS}
)

_BOLD_TAGS = frozenset({"b", "strong"})
_ITALIC_TAGS = frozenset({"cite", "dfn", "em", "i", "var"})
_CODE_TAGS = frozenset({"code", "kbd", "samp", "tt"})

_NON_ARTICLE_NAMESPACES = frozenset(
    {
        "book",
        "category",
        "draft",
        "file",
        "help",
        "image",
        "media",
        "mediawiki",
        "module",
        "portal",
        "special",
        "talk",
        "template",
        "template talk",
        "timedtext",
        "user",
        "user talk",
        "wikipedia",
        "wikipedia talk",
        "wp",
    }
)

_SPACE_SPLIT_RE = re.compile(r"(\s+)")


# ---------------------------------------------------------------------------
# Link classification
# ---------------------------------------------------------------------------


def _wiki_target(path: str, site_url: str) -> LinkTarget | None:
    path, _, query = path.partition("?")
    if "redlink=1" in query:
        return None
    title = unquote(path.split("#", 1)[0])
    key = normalise_title(title)
    if not key:
        return None
    namespace, sep, _ = key.partition(":")
    if sep and namespace.strip().casefold() in _NON_ARTICLE_NAMESPACES:
        return ExternalTarget(article_url(site_url, key))
    return InternalTarget(key)


def classify_href(href: str | None, site_url: str = DEFAULT_SITE_URL) -> LinkTarget | None:
    """Decide where an ``href`` leads.

    Returns ``None`` for links that are not worth selecting: in-page
    fragments, links to missing articles and non-web schemes.
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith("#"):
        return None
    if href.startswith("./"):
        return _wiki_target(href[2:], site_url)

    absolute = urljoin(site_url.rstrip("/") + "/", href)
    parsed = urlparse(absolute)
    if parsed.scheme not in ("http", "https"):
        return None

    if parsed.netloc == urlparse(site_url).netloc:
        if parsed.path.startswith("/wiki/"):
            suffix = parsed.path[len("/wiki/") :]
            if parsed.query:
                suffix = f"{suffix}?{parsed.query}"
            return _wiki_target(suffix, site_url)
        if "redlink=1" in parsed.query:
            return None
    return ExternalTarget(absolute)


# ---------------------------------------------------------------------------
# Intermediate representation
# ---------------------------------------------------------------------------


@dataclass
class _Piece:
    text: str
    style: SpanStyle = PLAIN
    link: int | None = None
    hard_break: bool = False


@dataclass
class _Block:
    kind: str  # "text" | "pre" | "rule"
    pieces: list[_Piece] = field(default_factory=list)
    indent: str = ""
    first_prefix: str | None = None  # None: same as indent
    space_before: bool = False
    text: str = ""  # "pre" blocks only
    keep_empty: bool = False


@dataclass(frozen=True)
class _Frag:
    text: str
    style: SpanStyle
    link: int | None


_Word = tuple[_Frag, ...]
_BREAK = None


def _sole_link(word: _Word) -> int | None:
    links = {frag.link for frag in word}
    if len(links) == 1:
        return next(iter(links))
    return None


def _word_len(word: _Word) -> int:
    return sum(len(frag.text) for frag in word)


def _split_word(word: _Word, size: int) -> list[_Word]:
    """Hard-split a word that is wider than a whole line."""
    chars = [(ch, frag.style, frag.link) for frag in word for ch in frag.text]
    chunks: list[_Word] = []
    for start in range(0, len(chars), size):
        frags: list[_Frag] = []
        for ch, style, link in chars[start : start + size]:
            if frags and frags[-1].style == style and frags[-1].link == link:
                frags[-1] = _Frag(frags[-1].text + ch, style, link)
            else:
                frags.append(_Frag(ch, style, link))
        chunks.append(tuple(frags))
    return chunks


def _has_text(pieces: list[_Piece]) -> bool:
    return any(piece.text.strip() for piece in pieces)


def _is_blank(line: StyledLine) -> bool:
    return not line.text.strip()


# ---------------------------------------------------------------------------
# Builder (one per transform call)
# ---------------------------------------------------------------------------


class _DocumentBuilder:
    def __init__(self, width: int, site_url: str) -> None:
        self._width = width
        self._site_url = site_url
        self._targets: list[LinkTarget] = []
        self.warnings: list[PartialRenderWarning] = []
        self._depth = 0

    # -- helpers ---------------------------------------------------------

    def _warn(self, element: str, exc: BaseException) -> None:
        self.warnings.append(PartialRenderWarning(element=element, reason=f"{type(exc).__name__}: {exc}"))

    @staticmethod
    def _skipped(tag: Tag) -> bool:
        if tag.name in _SKIP_TAGS:
            return True
        classes = tag.get("class") or ()
        if isinstance(classes, str):
            classes = classes.split()
        if _SKIP_CLASSES.intersection(classes):
            return True
        return bool(_HIDDEN_STYLE_RE.search(str(tag.get("style") or "")))

    def _too_deep(self, tag: Tag) -> str | None:
        """Return the plain text of ``tag`` when it sits past the nesting limit."""
        if self._depth < _MAX_NESTING:
            return None
        self.warnings.append(
            PartialRenderWarning(
                element=tag.name or "?",
                reason=f"nested deeper than {_MAX_NESTING} levels; rendered as plain text",
            )
        )
        return tag.get_text(" ")

    def _degrade(self, tag: Tag, exc: BaseException, indent: str) -> list[_Block]:
        self._warn(tag.name or "?", exc)
        try:
            text = tag.get_text(" ")
        except Exception:  # noqa: BLE001 - last-resort fallback for a broken fragment
            return []
        if not text.strip():
            return []
        return [_Block("text", [_Piece(text)], indent=indent, space_before=True)]

    # -- inline pass -------------------------------------------------------

    def _inline(self, node: Tag, style: SpanStyle, link: int | None, out: list[_Piece]) -> None:
        if self._skipped(node):
            return
        flat = self._too_deep(node)
        if flat is not None:
            out.append(_Piece(flat, style, link))
            return
        self._depth += 1
        try:
            self._inline_tag(node, style, link, out)
        finally:
            self._depth -= 1

    def _inline_tag(self, node: Tag, style: SpanStyle, link: int | None, out: list[_Piece]) -> None:
        name = node.name

        if name == "br":
            out.append(_Piece("", style, link, hard_break=True))
            return
        if name == "math":
            alt = node.get("alttext")
            if alt:
                out.append(_Piece(str(alt), replace(style, italic=True), link))
            return

        if name in _BOLD_TAGS:
            style = replace(style, bold=True)
        elif name in _ITALIC_TAGS:
            style = replace(style, italic=True)
        elif name in _CODE_TAGS:
            style = replace(style, code=True)
        elif name == "a" and link is None:
            target = classify_href(node.get("href"), self._site_url)
            if target is not None:
                link = len(self._targets)
                self._targets.append(target)
                style = replace(style, link=True, external=isinstance(target, ExternalTarget))

        # Block markup reached in inline context (e.g. a list in a table cell)
        is_block = name in _BLOCK_TAGS
        if is_block:
            out.append(_Piece(" "))
        for child in node.children:
            if isinstance(child, PreformattedString):
                continue
            if isinstance(child, NavigableString):
                out.append(_Piece(str(child), style, link))
            elif isinstance(child, Tag):
                self._inline(child, style, link, out)
        if is_block:
            out.append(_Piece(" "))

    def _collect(self, node: Tag, style: SpanStyle) -> list[_Piece]:
        pieces: list[_Piece] = []
        for child in node.children:
            if isinstance(child, PreformattedString):
                continue
            if isinstance(child, NavigableString):
                pieces.append(_Piece(str(child), style))
            elif isinstance(child, Tag):
                self._inline(child, style, None, pieces)
        return pieces

    # -- block pass --------------------------------------------------------

    def walk(self, node: Tag, indent: str = "", tight: bool = False) -> list[_Block]:
        flat = self._too_deep(node)
        if flat is not None:
            if not flat.strip():
                return []
            return [_Block("text", [_Piece(flat)], indent=indent, space_before=not tight)]
        self._depth += 1
        try:
            return self._walk_children(node, indent, tight)
        finally:
            self._depth -= 1

    def _walk_children(self, node: Tag, indent: str, tight: bool) -> list[_Block]:
        blocks: list[_Block] = []
        inline: list[_Piece] = []

        def flush() -> None:
            if _has_text(inline) or any(piece.hard_break for piece in inline):
                blocks.append(_Block("text", list(inline), indent=indent, space_before=not tight))
            inline.clear()

        for child in node.children:
            if isinstance(child, PreformattedString):
                continue
            if isinstance(child, NavigableString):
                inline.append(_Piece(str(child)))
                continue
            if not isinstance(child, Tag) or self._skipped(child):
                continue

            if child.name in _BLOCK_TAGS:
                flush()
                try:
                    blocks.extend(self._block(child, indent, tight))
                except Exception as exc:  # noqa: BLE001 - degrade, never abort the document
                    blocks.extend(self._degrade(child, exc, indent))
                continue

            collected: list[_Piece] = []
            try:
                self._inline(child, PLAIN, None, collected)
            except Exception as exc:  # noqa: BLE001
                self._warn(child.name or "?", exc)
                collected = [_Piece(child.get_text(" "))]
            inline.extend(collected)

        flush()
        return blocks

    def _block(self, tag: Tag, indent: str, tight: bool) -> list[_Block]:
        name = tag.name

        if name in _HEADING_LEVELS:
            style = SpanStyle(heading=_HEADING_LEVELS[name], bold=True)
            pieces = self._collect(tag, style)
            if not _has_text(pieces):
                return []
            return [_Block("text", pieces, indent=indent, space_before=True)]

        if name in ("ul", "ol"):
            return self._list(tag, indent, ordered=name == "ol", tight=tight)

        if name == "li":
            return self._list_item(tag, indent, "• ")

        if name == "dl":
            return self._definition_list(tag, indent, tight)

        if name == "dt":
            pieces = self._collect(tag, SpanStyle(bold=True))
            return [_Block("text", pieces, indent=indent)] if _has_text(pieces) else []

        if name == "dd":
            return self.walk(tag, indent + "    ", tight=True)

        if name == "table":
            return self._table(tag, indent, tight)

        if name == "pre":
            text = tag.get_text()
            if not text.strip():
                return []
            return [_Block("pre", indent=indent, text=text, space_before=not tight)]

        if name == "blockquote":
            blocks = self.walk(tag, indent + "  ", tight)
            for block in blocks:
                block.pieces = [
                    replace(piece, style=replace(piece.style, quote=True)) for piece in block.pieces
                ]
            return blocks

        if name == "hr":
            return [_Block("rule", indent=indent, space_before=not tight)]

        return self.walk(tag, indent, tight)

    def _list(self, tag: Tag, indent: str, *, ordered: bool, tight: bool) -> list[_Block]:
        start = 1
        if ordered:
            try:
                start = int(str(tag.get("start", 1)))
            except ValueError:
                start = 1

        blocks: list[_Block] = []
        for number, item in enumerate(tag.find_all("li", recursive=False), start=start):
            marker = f"{number}. " if ordered else "• "
            try:
                blocks.extend(self._list_item(item, indent, marker))
            except Exception as exc:  # noqa: BLE001
                blocks.extend(self._degrade(item, exc, indent + "  "))

        if blocks:
            blocks[0].space_before = not tight
        return blocks

    def _list_item(self, item: Tag, indent: str, marker: str) -> list[_Block]:
        body_indent = indent + " " * len(marker)
        blocks = self.walk(item, body_indent, tight=True)
        for block in blocks:
            block.space_before = False
        if blocks and blocks[0].kind == "text":
            blocks[0].first_prefix = indent + marker
        else:
            blocks.insert(
                0,
                _Block("text", indent=body_indent, first_prefix=indent + marker, keep_empty=True),
            )
        return blocks

    def _definition_list(self, tag: Tag, indent: str, tight: bool) -> list[_Block]:
        blocks: list[_Block] = []
        for child in tag.children:
            if not isinstance(child, Tag) or self._skipped(child):
                continue
            try:
                blocks.extend(self._block(child, indent, tight=True))
            except Exception as exc:  # noqa: BLE001
                blocks.extend(self._degrade(child, exc, indent))
        if blocks:
            blocks[0].space_before = not tight
        return blocks

    def _table(self, tag: Tag, indent: str, tight: bool) -> list[_Block]:
        blocks: list[_Block] = []

        caption = tag.find("caption")
        if caption is not None and caption.find_parent("table") is tag:
            pieces = self._collect(caption, SpanStyle(italic=True))
            if _has_text(pieces):
                blocks.append(_Block("text", pieces, indent=indent))

        rows = [row for row in tag.find_all("tr") if row.find_parent("table") is tag]
        for row in rows:
            if self._skipped(row):
                continue
            pieces: list[_Piece] = []
            for cell in row.find_all(["td", "th"], recursive=False):
                if self._skipped(cell):
                    continue
                cell_pieces = self._collect(cell, SpanStyle(bold=True) if cell.name == "th" else PLAIN)
                if not _has_text(cell_pieces):
                    continue
                if pieces:
                    pieces.append(_Piece(" | "))
                # Rows are single blocks: line breaks inside a cell become spaces
                pieces.extend(_Piece(" ") if piece.hard_break else piece for piece in cell_pieces)
            if _has_text(pieces):
                blocks.append(_Block("text", pieces, indent=indent))

        if blocks:
            blocks[0].space_before = not tight
        return blocks

    # -- layout pass -------------------------------------------------------

    def layout(self, blocks: list[_Block]) -> Document:
        lines: list[StyledLine] = []
        links: list[Link] = []

        for block in blocks:
            if block.space_before and lines and not _is_blank(lines[-1]):
                lines.append(StyledLine())
            if block.kind == "rule":
                rule = "─" * max(1, self._width - len(block.indent))
                lines.append(self._line([_Frag(block.indent, PLAIN, None), _Frag(rule, PLAIN, None)]))
            elif block.kind == "pre":
                self._layout_pre(block, lines)
            else:
                self._layout_text(block, lines, links)

        while lines and _is_blank(lines[-1]):
            lines.pop()

        return Document(
            styled_lines=tuple(lines),
            links=tuple(links),
            warnings=tuple(self.warnings),
        )

    @staticmethod
    def _line(frags: list[_Frag]) -> StyledLine:
        spans: list[Span] = []
        for frag in frags:
            if not frag.text:
                continue
            if spans and spans[-1].style == frag.style:
                spans[-1] = Span(spans[-1].text + frag.text, frag.style)
            else:
                spans.append(Span(frag.text, frag.style))
        return StyledLine(tuple(spans))

    def _layout_pre(self, block: _Block, lines: list[StyledLine]) -> None:
        text = block.text.expandtabs(4)
        if text.startswith("\n"):
            text = text[1:]
        code = SpanStyle(code=True)
        size = max(_MIN_TEXT_WIDTH, self._width - len(block.indent))
        for raw_line in text.rstrip().split("\n"):
            chunks = [raw_line[i : i + size] for i in range(0, len(raw_line), size)] or [""]
            for chunk in chunks:
                lines.append(self._line([_Frag(block.indent, PLAIN, None), _Frag(chunk, code, None)]))

    @staticmethod
    def _tokenise(pieces: list[_Piece]) -> list[_Word | None]:
        tokens: list[_Word | None] = []
        current: list[_Frag] = []
        for piece in pieces:
            if piece.hard_break:
                if current:
                    tokens.append(tuple(current))
                    current = []
                tokens.append(_BREAK)
                continue
            for part in _SPACE_SPLIT_RE.split(piece.text):
                if not part:
                    continue
                if part.isspace():
                    if current:
                        tokens.append(tuple(current))
                        current = []
                else:
                    current.append(_Frag(part, piece.style, piece.link))
        if current:
            tokens.append(tuple(current))
        return tokens

    @staticmethod
    def _units(tokens: list[_Word | None]) -> list[list[_Word] | None]:
        """Group consecutive words of one anchor so the anchor wraps as a whole."""
        units: list[list[_Word] | None] = []
        for token in tokens:
            if token is _BREAK:
                units.append(_BREAK)
                continue
            link = _sole_link(token)
            previous = units[-1] if units else _BREAK
            if link is not None and previous is not _BREAK and _sole_link(previous[-1]) == link:
                previous.append(token)
            else:
                units.append([token])
        return units

    def _layout_text(self, block: _Block, lines: list[StyledLine], links: list[Link]) -> None:
        prefix = block.first_prefix if block.first_prefix is not None else block.indent
        current: list[_Frag] = []
        length = 0
        emitted = False

        def available() -> int:
            return max(_MIN_TEXT_WIDTH, self._width - len(prefix))

        def emit() -> None:
            nonlocal prefix, current, length, emitted
            self._emit(prefix, current, lines, links)
            prefix = block.indent
            current = []
            length = 0
            emitted = True

        def place(word: _Word) -> None:
            nonlocal length
            size = _word_len(word)
            if current and length + 1 + size > available():
                emit()
            if current:
                last, first = current[-1], word[0]
                if last.link is not None and last.link == first.link:
                    current.append(_Frag(" ", last.style, last.link))
                else:
                    current.append(_Frag(" ", PLAIN, None))
                length += 1
            current.extend(word)
            length += size

        for unit in self._units(self._tokenise(block.pieces)):
            if unit is _BREAK:
                emit()
                continue
            unit_size = sum(_word_len(word) for word in unit) + len(unit) - 1
            if unit_size <= available():
                if current and length + 1 + unit_size > available():
                    emit()
                for word in unit:
                    place(word)
                continue
            for word in unit:
                if _word_len(word) <= available():
                    place(word)
                    continue
                for chunk in _split_word(word, available()):
                    place(chunk)

        if current or (block.keep_empty and not emitted):
            emit()

    def _emit(
        self,
        prefix: str,
        frags: list[_Frag],
        lines: list[StyledLine],
        links: list[Link],
    ) -> None:
        line_index = len(lines)
        line = self._line([_Frag(prefix, PLAIN, None), *frags])
        text = line.text

        column = len(prefix)
        run_link: int | None = None
        run_start = 0
        for frag in [*frags, _Frag("", PLAIN, None)]:
            if frag.link != run_link:
                if run_link is not None:
                    links.append(
                        Link(
                            line_index=line_index,
                            start=run_start,
                            end=column,
                            target=self._targets[run_link],
                            text=text[run_start:column],
                        )
                    )
                run_link = frag.link
                run_start = column
            column += len(frag.text)

        lines.append(line)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class ContentTransformer:
    """Converts raw article HTML into a terminal-renderable Document."""

    def __init__(self, width: int = DEFAULT_WIDTH, site_url: str = DEFAULT_SITE_URL) -> None:
        self.width = width
        self.site_url = site_url

    def transform(self, raw_content: bytes, width: int | None = None) -> Document:
        """Render ``raw_content``.

        ``width`` narrows the configured wrap width (never widens it), so the
        text fits a terminal smaller than ``self.width`` columns.
        """
        effective = self.width if width is None else min(self.width, max(1, width))
        builder = _DocumentBuilder(effective, self.site_url)

        try:
            html = raw_content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            html = raw_content.decode("utf-8-sig", errors="replace")
            builder.warnings.append(
                PartialRenderWarning(element="document", reason=f"invalid UTF-8 at byte {exc.start}")
            )

        soup = BeautifulSoup(html, "html.parser")
        return builder.layout(builder.walk(soup))
