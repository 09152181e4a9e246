"""Full-screen terminal UI.

A thin Textual shell around the NavigationEngine: key bindings become
intents, a timer polls the engine for finished fetches, and every change is
redrawn from a RenderFrame. No article logic lives here.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

import structlog
from rich.style import Style
from rich.text import Text
from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widget import Widget
from textual.widgets import Footer, Header, Input, Static

from wikterm.errors import ErrorCode
from wikterm.navigation import (
    ActivateSelectedLink,
    CancelSearch,
    CloseResults,
    DismissError,
    EngineState,
    GoBack,
    GoForward,
    OpenInBrowser,
    OpenSearch,
    Refresh,
    Scroll,
    SearchFor,
    SelectNextLink,
    SelectPrevLink,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from textual.events import Resize as ResizeEvent

    from wikterm.models.document import SpanStyle
    from wikterm.navigation import (
        ErrorOverlay,
        Intent,
        NavigationEngine,
        RenderFrame,
        SearchResults,
    )
    from wikterm.state import AppState

log = structlog.get_logger()

_HEADING_COLOURS = {1: "bright_cyan", 2: "cyan", 3: "bright_blue"}

DEFAULT_THEME = "textual-dark"

# Actions that stay live while the search prompt has focus
_SEARCH_ACTIONS = frozenset({"escape"})


def rich_style(style: SpanStyle) -> Style:
    """Map a document span style to a terminal style.

    Headings and links combine: a link inside a heading keeps the heading's
    weight but takes the link colour and underline.
    """
    color = None
    if style.link:
        color = "magenta" if style.external else "bright_blue"
    elif style.heading:
        color = _HEADING_COLOURS.get(style.heading, "blue")
    elif style.code:
        color = "green"

    return Style(
        bold=style.bold or bool(style.heading) or None,
        italic=style.italic or None,
        underline=style.link or 0 < style.heading <= 2 or None,
        dim=style.quote or None,
        color=color,
    )


def pick_theme(name: str, available: Iterable[str]) -> str:
    """Return ``name`` if Textual knows it, else the default theme."""
    if name in set(available):
        return name
    log.warning("unknown_theme", theme=name, fallback=DEFAULT_THEME)
    return DEFAULT_THEME


def render_lines(frame: RenderFrame) -> Text:
    """Build the visible article text, with the selected link reversed."""
    text = Text(no_wrap=True, overflow="crop")
    row_starts: list[int] = []
    for row, line in enumerate(frame.styled_lines):
        if row:
            text.append("\n")
        row_starts.append(len(text))
        for span in line.spans:
            text.append(span.text, rich_style(span.style))

    for row, start, end in frame.link_highlight_ranges:
        base = row_starts[row]
        text.stylize("reverse", base + start, base + end)
    return text


def render_results(results: SearchResults, height: int) -> Text:
    """Two rows per hit (title, then snippet), windowed around the selection."""
    visible = max(1, height // 2)
    hits = results.results
    first = min(max(0, results.selected_index - visible // 2), max(0, len(hits) - visible))

    text = Text(no_wrap=True, overflow="ellipsis")
    for index in range(first, min(len(hits), first + visible)):
        hit = hits[index]
        if index > first:
            text.append("\n")
        selected = index == results.selected_index
        text.append(hit.title, Style(bold=True, reverse=selected or None))
        text.append("\n  ")
        text.append(hit.snippet, Style(dim=True))
    return text


def status_text(frame: RenderFrame) -> str:
    if frame.state is EngineState.LOADING or (frame.search_open and frame.loading_target):
        return f" Loading {frame.loading_target}…"
    results = frame.search_results
    if results is not None:
        position = f"{results.selected_index + 1}/{len(results.results)}"
        return f" Results for '{results.query}'  ·  {position}"
    if frame.title is None:
        return " No article loaded. Press / to search."

    parts = [f" {frame.title}"]
    if frame.total_lines:
        parts.append(f"line {frame.scroll_offset + 1}/{frame.total_lines}")
    link = frame.selected_link
    if link is not None:
        target = link.target
        parts.append(f"→ {getattr(target, 'url', None) or getattr(target, 'key', '')}")
    return "  ·  ".join(parts)


def _offers_search(error: ErrorOverlay | None) -> bool:
    return error is not None and error.code == ErrorCode.ARTICLE_NOT_FOUND and bool(error.query)


def error_text(frame: RenderFrame) -> str:
    if frame.error is None:
        return ""
    hints = []
    if frame.error.recoverable:
        hints.append("r: retry")
    if _offers_search(frame.error):
        hints.append("s: search")
    hints.append("esc: dismiss")
    hint = "  ".join(hints)
    return f"{frame.error.code}: {frame.error.message}\n{frame.error.suggestion}\n[{hint}]"


def intent_for_action(
    name: str,
    state: EngineState,
    *,
    page: int,
    error: ErrorOverlay | None = None,
) -> Intent | None:
    """Translate a key-binding action into an engine intent."""
    page = max(1, page)
    if name == "escape":
        if state is EngineState.SEARCH_PROMPT:
            return CancelSearch()
        if state is EngineState.ERROR:
            return DismissError()
        if state is EngineState.SEARCH_RESULTS:
            return CloseResults()
        return None
    if name == "full_search":
        # A title that does not exist is retried as a full-text search
        if state is EngineState.ERROR and _offers_search(error):
            assert error is not None and error.query is not None
            return SearchFor(error.query)
        return OpenSearch(full_text=True)

    intents: dict[str, Intent] = {
        "scroll_down": Scroll(1),
        "scroll_up": Scroll(-1),
        "page_down": Scroll(page),
        "page_up": Scroll(-page),
        "top": Scroll(-sys.maxsize),
        "bottom": Scroll(sys.maxsize),
        "next_link": SelectNextLink(),
        "prev_link": SelectPrevLink(),
        "activate": ActivateSelectedLink(),
        "back": GoBack(),
        "forward": GoForward(),
        "refresh": Refresh(),
        "search": OpenSearch(),
        "open_browser": OpenInBrowser(),
    }
    return intents.get(name)


class ArticleView(Widget, can_focus=True):
    """The scrolled article window. Scrolling is the engine's job, not Textual's."""

    DEFAULT_CSS = """
    ArticleView {
        height: 1fr;
        padding: 0 1;
    }
    """

    def __init__(self) -> None:
        super().__init__(id="article")
        self._frame: RenderFrame | None = None

    def show(self, frame: RenderFrame) -> None:
        self._frame = frame
        self.refresh()

    def render(self) -> Text:
        if self._frame is None:
            return Text("")
        if self._frame.search_results is not None:
            return render_results(self._frame.search_results, self.content_size.height)
        return render_lines(self._frame)


class WiktermApp(App):
    """Terminal encyclopedia browser."""

    TITLE = "wikterm"

    CSS = """
    #search {
        display: none;
        dock: top;
    }
    #search.visible {
        display: block;
    }
    #error {
        display: none;
        dock: bottom;
        background: $error;
        color: $text;
        padding: 0 1;
    }
    #error.visible {
        display: block;
    }
    #status-bar {
        dock: bottom;
        height: 1;
        background: $panel;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("down,j", "intent('scroll_down')", "Down", show=False),
        Binding("up,k", "intent('scroll_up')", "Up", show=False),
        Binding("pagedown,space", "intent('page_down')", "Page down", show=False),
        Binding("pageup", "intent('page_up')", "Page up", show=False),
        Binding("home,g", "intent('top')", "Top", show=False),
        Binding("end,G", "intent('bottom')", "Bottom", show=False),
        Binding("tab", "intent('next_link')", "Next link", priority=True),
        Binding("right,n", "intent('next_link')", "Next link", show=False),
        Binding("shift+tab", "intent('prev_link')", "Prev link", show=False, priority=True),
        Binding("left,p", "intent('prev_link')", "Prev link", show=False),
        Binding("enter", "intent('activate')", "Open link"),
        Binding("b,backspace", "intent('back')", "Back"),
        Binding("f", "intent('forward')", "Forward"),
        Binding("r", "intent('refresh')", "Refresh"),
        Binding("slash", "intent('search')", "Go to"),
        Binding("s", "intent('full_search')", "Search"),
        Binding("o", "intent('open_browser')", "Browser"),
        Binding("escape", "intent('escape')", "Dismiss", show=False),
    ]

    def __init__(
        self,
        state: AppState,
        *,
        start_article: str,
        force_refresh: bool = False,
        start_search: str | None = None,
    ) -> None:
        super().__init__()
        self._app_state = state
        self._engine: NavigationEngine = state.engine
        self._start_article = start_article
        self._force_refresh = force_refresh
        self._start_search = start_search

    def compose(self) -> ComposeResult:
        yield Header()
        yield Input(placeholder=" Article title", id="search")
        yield ArticleView()
        yield Static("", id="error")
        yield Static("", id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        self.theme = pick_theme(self._app_state.settings.ui.theme, self.available_themes)
        self.set_interval(self._app_state.settings.ui.poll_interval_seconds, self._tick)
        self.query_one(ArticleView).focus()
        # Start once the layout is known so the first article wraps to the window
        self.call_after_refresh(self._begin)
        self._sync()

    def _begin(self) -> None:
        self._fit_viewport()
        if self._start_search is not None:
            self._engine.start_search(self._start_search)
        else:
            self._engine.start(self._start_article, force_refresh=self._force_refresh)
        self._sync()

    def on_resize(self, event: ResizeEvent) -> None:
        self.call_after_refresh(self._fit_viewport)

    def _fit_viewport(self) -> None:
        size = self.query_one(ArticleView).content_size
        if size.height > 0 and size.width > 0:
            self._engine.resize(size.height, size.width)
            self._sync()

    def _tick(self) -> None:
        if self._engine.poll():
            self._sync()

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool | None:
        if self._engine.state is not EngineState.SEARCH_PROMPT:
            return True
        if action == "intent":
            return bool(parameters) and parameters[0] in _SEARCH_ACTIONS
        return action in _SEARCH_ACTIONS

    def action_intent(self, name: str) -> None:
        intent = intent_for_action(
            name,
            self._engine.state,
            page=self._engine.viewport_height - 1,
            error=self._engine.error,
        )
        if intent is not None and self._engine.dispatch(intent):
            self._sync()

    @on(Input.Submitted, "#search")
    def on_search_submitted(self, event: Input.Submitted) -> None:
        query = event.value
        event.input.value = ""
        self._engine.submit_search(query)
        self._sync()

    def _sync(self) -> None:
        """Redraw every widget from the engine's current frame."""
        frame = self._engine.frame()
        self.sub_title = frame.title or ""
        self.query_one(ArticleView).show(frame)
        self.query_one("#status-bar", Static).update(Text(status_text(frame)))

        error = self.query_one("#error", Static)
        error.update(Text(error_text(frame)))
        error.set_class(frame.error is not None and not frame.search_open, "visible")

        search = self.query_one("#search", Input)
        search.placeholder = " Search Wikipedia" if frame.search_full_text else " Article title"
        if frame.search_open:
            if not search.has_class("visible"):
                search.add_class("visible")
                search.focus()
        elif search.has_class("visible"):
            search.remove_class("visible")
            self.query_one(ArticleView).focus()
