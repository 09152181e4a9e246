"""Unit tests for the pure rendering helpers in wikterm.tui."""

from __future__ import annotations

import sys

from rich.style import Style

from wikterm.errors import ErrorCode
from wikterm.models.document import (
    PLAIN,
    ExternalTarget,
    InternalTarget,
    Link,
    Span,
    SpanStyle,
    StyledLine,
)
from wikterm.models.wiki import SearchResult
from wikterm.navigation import (
    CancelSearch,
    CloseResults,
    DismissError,
    EngineState,
    ErrorOverlay,
    GoBack,
    OpenSearch,
    RenderFrame,
    Scroll,
    SearchFor,
    SearchResults,
    SelectNextLink,
)
from wikterm.tui import (
    DEFAULT_THEME,
    error_text,
    intent_for_action,
    pick_theme,
    render_lines,
    render_results,
    rich_style,
    status_text,
)

LINK = SpanStyle(link=True)


def _frame(**overrides) -> RenderFrame:
    values = {
        "state": EngineState.IDLE,
        "title": "Alpha",
        "styled_lines": (
            StyledLine((Span("Alpha", SpanStyle(heading=1)),)),
            StyledLine((Span("See "), Span("Beta", LINK), Span(" now."))),
        ),
        "scroll_offset": 0,
        "link_highlight_ranges": (),
        "error": None,
        "loading_target": None,
        "search_open": False,
        "total_lines": 10,
    }
    values.update(overrides)
    return RenderFrame(**values)


class TestRichStyle:
    def test_plain_text_has_no_style(self) -> None:
        assert rich_style(PLAIN) == Style()

    def test_heading_is_bold(self) -> None:
        assert rich_style(SpanStyle(heading=2)).bold is True

    def test_internal_and_external_links_differ(self) -> None:
        internal = rich_style(SpanStyle(link=True))
        external = rich_style(SpanStyle(link=True, external=True))
        assert internal.underline is True
        assert external.underline is True
        assert internal.color != external.color

    def test_emphasis(self) -> None:
        style = rich_style(SpanStyle(bold=True, italic=True))
        assert style.bold is True
        assert style.italic is True

    def test_heading_colour_and_underline_by_level(self) -> None:
        assert rich_style(SpanStyle(heading=1)).color.name == "bright_cyan"
        assert rich_style(SpanStyle(heading=2)).underline is True
        assert not rich_style(SpanStyle(heading=4)).underline

    def test_link_inside_heading_keeps_link_styling(self) -> None:
        style = rich_style(SpanStyle(heading=3, link=True))
        assert style.bold is True
        assert style.underline is True
        assert style.color.name == "bright_blue"

    def test_external_link_inside_heading(self) -> None:
        style = rich_style(SpanStyle(heading=2, link=True, external=True))
        assert style.color.name == "magenta"
        assert style.bold is True


class TestPickTheme:
    def test_known_theme_kept(self) -> None:
        assert pick_theme("nord", ["textual-dark", "nord"]) == "nord"

    def test_unknown_theme_falls_back(self) -> None:
        assert pick_theme("solarised-neon", ["textual-dark", "nord"]) == DEFAULT_THEME


class TestRenderLines:
    def test_lines_joined(self) -> None:
        assert render_lines(_frame()).plain == "Alpha\nSee Beta now."

    def test_selected_link_reversed(self) -> None:
        text = render_lines(_frame(link_highlight_ranges=((1, 4, 8),)))
        reversed_spans = [span for span in text.spans if span.style == "reverse"]
        assert len(reversed_spans) == 1
        span = reversed_spans[0]
        assert text.plain[span.start : span.end] == "Beta"

    def test_empty_frame(self) -> None:
        assert render_lines(_frame(styled_lines=())).plain == ""


def _results(count: int, selected: int = 0) -> SearchResults:
    hits = tuple(
        SearchResult(title=f"Hit {index}", snippet=f"snippet {index}") for index in range(count)
    )
    return SearchResults(query="cats", results=hits, selected_index=selected)


class TestRenderResults:
    def test_title_then_snippet(self) -> None:
        text = render_results(_results(2), height=10)
        assert text.plain == "Hit 0\n  snippet 0\nHit 1\n  snippet 1"

    def test_selected_title_reversed(self) -> None:
        text = render_results(_results(3, selected=1), height=10)
        reversed_spans = [span for span in text.spans if span.style.reverse]
        assert len(reversed_spans) == 1
        span = reversed_spans[0]
        assert text.plain[span.start : span.end] == "Hit 1"

    def test_window_follows_selection(self) -> None:
        text = render_results(_results(20, selected=15), height=6)
        titles = [line for line in text.plain.split("\n") if line.startswith("Hit")]
        assert len(titles) == 3
        assert "Hit 15" in titles

    def test_window_stops_at_last_hit(self) -> None:
        text = render_results(_results(20, selected=19), height=6)
        titles = [line for line in text.plain.split("\n") if line.startswith("Hit")]
        assert titles == ["Hit 17", "Hit 18", "Hit 19"]

    def test_tiny_window_still_shows_selection(self) -> None:
        text = render_results(_results(5, selected=4), height=1)
        assert text.plain.startswith("Hit 4")


class TestStatusText:
    def test_loading(self) -> None:
        frame = _frame(state=EngineState.LOADING, loading_target="Gamma")
        assert status_text(frame) == " Loading Gamma…"

    def test_nothing_loaded(self) -> None:
        frame = _frame(title=None, styled_lines=(), total_lines=0)
        assert "Press / to search" in status_text(frame)

    def test_position_and_link_target(self) -> None:
        link = Link(line_index=1, start=4, end=8, target=InternalTarget("Beta"), text="Beta")
        status = status_text(_frame(scroll_offset=2, selected_link=link))
        assert "Alpha" in status
        assert "line 3/10" in status
        assert "→ Beta" in status

    def test_external_target_shows_url(self) -> None:
        link = Link(
            line_index=1, start=4, end=8, target=ExternalTarget("https://example.org/"), text="x"
        )
        assert "→ https://example.org/" in status_text(_frame(selected_link=link))

    def test_search_results_position(self) -> None:
        frame = _frame(state=EngineState.SEARCH_RESULTS, search_results=_results(4, selected=2))
        assert status_text(frame) == " Results for 'cats'  ·  3/4"


class TestErrorText:
    def test_no_error(self) -> None:
        assert error_text(_frame()) == ""

    def test_recoverable_offers_retry(self) -> None:
        overlay = ErrorOverlay(
            code=ErrorCode.ARTICLE_FETCH_FAILED,
            message="Network error",
            suggestion="Retry later.",
            recoverable=True,
        )
        text = error_text(_frame(state=EngineState.ERROR, error=overlay))
        assert "Network error" in text
        assert "r: retry" in text

    def test_not_found_only_dismisses(self) -> None:
        overlay = ErrorOverlay(
            code=ErrorCode.ARTICLE_NOT_FOUND,
            message="No article named 'Zzz'",
            suggestion="Check the spelling.",
            recoverable=False,
        )
        text = error_text(_frame(state=EngineState.ERROR, error=overlay))
        assert "r: retry" not in text
        assert "esc: dismiss" in text

    def test_missing_title_offers_search(self) -> None:
        overlay = ErrorOverlay(
            code=ErrorCode.ARTICLE_NOT_FOUND,
            message="No article named 'Zzz'",
            suggestion="Check the spelling.",
            recoverable=False,
            query="Zzz",
        )
        assert "s: search" in error_text(_frame(state=EngineState.ERROR, error=overlay))


class TestIntentForAction:
    def test_scroll_actions(self) -> None:
        assert intent_for_action("scroll_down", EngineState.IDLE, page=20) == Scroll(1)
        assert intent_for_action("page_up", EngineState.IDLE, page=20) == Scroll(-20)
        assert intent_for_action("bottom", EngineState.IDLE, page=20) == Scroll(sys.maxsize)

    def test_page_never_zero(self) -> None:
        assert intent_for_action("page_down", EngineState.IDLE, page=0) == Scroll(1)

    def test_navigation_actions(self) -> None:
        assert intent_for_action("back", EngineState.IDLE, page=1) == GoBack()
        assert intent_for_action("next_link", EngineState.IDLE, page=1) == SelectNextLink()

    def test_escape_depends_on_state(self) -> None:
        assert intent_for_action("escape", EngineState.SEARCH_PROMPT, page=1) == CancelSearch()
        assert intent_for_action("escape", EngineState.ERROR, page=1) == DismissError()
        assert intent_for_action("escape", EngineState.IDLE, page=1) is None

    def test_unknown_action(self) -> None:
        assert intent_for_action("dance", EngineState.IDLE, page=1) is None

    def test_escape_closes_results(self) -> None:
        assert intent_for_action("escape", EngineState.SEARCH_RESULTS, page=1) == CloseResults()

    def test_full_search_opens_full_text_prompt(self) -> None:
        intent = intent_for_action("full_search", EngineState.IDLE, page=1)
        assert intent == OpenSearch(full_text=True)

    def test_full_search_after_missing_title_searches_it(self) -> None:
        overlay = ErrorOverlay(
            code=ErrorCode.ARTICLE_NOT_FOUND,
            message="No article named 'Felid'",
            suggestion="Check the spelling.",
            recoverable=False,
            query="Felid",
        )
        intent = intent_for_action("full_search", EngineState.ERROR, page=1, error=overlay)
        assert intent == SearchFor("Felid")

    def test_full_search_after_network_error_opens_prompt(self) -> None:
        overlay = ErrorOverlay(
            code=ErrorCode.ARTICLE_FETCH_FAILED,
            message="Network error",
            suggestion="Retry later.",
            recoverable=True,
            query="Cat",
        )
        intent = intent_for_action("full_search", EngineState.ERROR, page=1, error=overlay)
        assert intent == OpenSearch(full_text=True)
