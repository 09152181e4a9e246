"""Terminal-renderable article representation.

Plain frozen dataclasses: a Document is a value, compared structurally, so a
cached payload transformed twice yields two equal Documents.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SpanStyle:
    """Visual emphasis of a run of text. Colours are the renderer's business."""

    heading: int = 0  # 0 = body text, 1-6 = heading level
    bold: bool = False
    italic: bool = False
    code: bool = False
    quote: bool = False
    link: bool = False
    external: bool = False


PLAIN = SpanStyle()


@dataclass(frozen=True)
class Span:
    text: str
    style: SpanStyle = PLAIN


@dataclass(frozen=True)
class StyledLine:
    spans: tuple[Span, ...] = ()

    @property
    def text(self) -> str:
        return "".join(span.text for span in self.spans)

    def __len__(self) -> int:
        return sum(len(span.text) for span in self.spans)


@dataclass(frozen=True)
class InternalTarget:
    """Another article, identified by its normalised title."""

    key: str


@dataclass(frozen=True)
class ExternalTarget:
    """Anything that must be opened outside the terminal."""

    url: str


LinkTarget = InternalTarget | ExternalTarget


@dataclass(frozen=True)
class Link:
    """A selectable region of one line. ``end`` is exclusive."""

    line_index: int
    start: int
    end: int
    target: LinkTarget
    text: str

    @property
    def is_external(self) -> bool:
        return isinstance(self.target, ExternalTarget)


@dataclass(frozen=True)
class PartialRenderWarning:
    """A fragment that could not be rendered faithfully and was degraded."""

    element: str
    reason: str


@dataclass(frozen=True)
class Document:
    styled_lines: tuple[StyledLine, ...] = ()
    links: tuple[Link, ...] = ()
    warnings: tuple[PartialRenderWarning, ...] = ()

    @property
    def total_lines(self) -> int:
        return len(self.styled_lines)
