"""Navigation engine: the state machine behind the article view.

Intents are plain synchronous calls made from the UI loop. Anything that
needs the network (navigation, refresh, history moves) switches the engine
to LOADING immediately and hands the work to a background task; the task
posts a FetchCompletion to a queue which ``poll()`` drains once per render
tick. Every request carries a monotonically increasing id and only the
completion for the active request is applied, so a slow response for a
superseded navigation can never overwrite a newer one.

The engine owns the only mutable view state in the program: the current
ViewState and the HistoryStack.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from wikterm.errors import ErrorCode, WiktermError
from wikterm.history import HistoryStack
from wikterm.models.document import ExternalTarget, InternalTarget
from wikterm.titles import article_url, normalise_title

if TYPE_CHECKING:
    from collections.abc import Callable

    from wikterm.models.document import Document, Link, StyledLine
    from wikterm.models.wiki import SearchResult
    from wikterm.protocols import BrowserOpenerProtocol, FetcherProtocol, TransformerProtocol

log = structlog.get_logger()


class EngineState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"
    SEARCH_PROMPT = "search_prompt"
    SEARCH_RESULTS = "search_results"


class RequestKind(StrEnum):
    NAVIGATE = "navigate"
    REFRESH = "refresh"
    HISTORY = "history"
    SEARCH = "search"


# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NavigateTo:
    title_query: str
    force_refresh: bool = False


@dataclass(frozen=True)
class ActivateSelectedLink:
    pass


@dataclass(frozen=True)
class Scroll:
    delta: int


@dataclass(frozen=True)
class SelectNextLink:
    pass


@dataclass(frozen=True)
class SelectPrevLink:
    pass


@dataclass(frozen=True)
class GoBack:
    pass


@dataclass(frozen=True)
class GoForward:
    pass


@dataclass(frozen=True)
class Refresh:
    pass


@dataclass(frozen=True)
class OpenSearch:
    full_text: bool = False


@dataclass(frozen=True)
class CancelSearch:
    pass


@dataclass(frozen=True)
class SubmitSearch:
    query: str


@dataclass(frozen=True)
class SearchFor:
    query: str


@dataclass(frozen=True)
class CloseResults:
    pass


@dataclass(frozen=True)
class DismissError:
    pass


@dataclass(frozen=True)
class OpenInBrowser:
    pass


@dataclass(frozen=True)
class Resize:
    viewport_height: int
    width: int | None = None


Intent = (
    NavigateTo
    | ActivateSelectedLink
    | Scroll
    | SelectNextLink
    | SelectPrevLink
    | GoBack
    | GoForward
    | Refresh
    | OpenSearch
    | CancelSearch
    | SubmitSearch
    | SearchFor
    | CloseResults
    | DismissError
    | OpenInBrowser
    | Resize
)


# ---------------------------------------------------------------------------
# State records
# ---------------------------------------------------------------------------


@dataclass
class ViewState:
    key: str
    document: Document
    scroll_offset: int = 0
    selected_link_index: int | None = None
    # Kept so the article can be re-wrapped when the terminal width changes
    raw_content: bytes = b""

    @property
    def selected_link(self) -> Link | None:
        if self.selected_link_index is None:
            return None
        return self.document.links[self.selected_link_index]


@dataclass(frozen=True)
class SearchResults:
    """Upstream full-text search hits for one query, with the chosen row."""

    query: str
    results: tuple[SearchResult, ...]
    selected_index: int = 0

    @property
    def selected(self) -> SearchResult:
        return self.results[self.selected_index]


@dataclass(frozen=True)
class FetchRequest:
    request_id: int
    query: str
    kind: RequestKind
    force_refresh: bool = False
    history_index: int | None = None
    width: int | None = None


@dataclass(frozen=True)
class FetchCompletion:
    request: FetchRequest
    key: str | None = None
    raw_content: bytes = b""
    document: Document | None = None
    error: WiktermError | None = None
    results: tuple[SearchResult, ...] = ()


@dataclass(frozen=True)
class ErrorOverlay:
    code: ErrorCode
    message: str
    suggestion: str
    recoverable: bool
    query: str | None = None

    @classmethod
    def from_error(cls, exc: WiktermError, query: str | None = None) -> ErrorOverlay:
        return cls(
            code=exc.code,
            message=exc.message,
            suggestion=exc.suggestion,
            recoverable=exc.recoverable,
            query=query,
        )


@dataclass(frozen=True)
class RenderFrame:
    """Everything the draw surface needs for one tick.

    ``styled_lines`` is the visible window only; ``link_highlight_ranges``
    holds ``(row, start, end)`` triples relative to that window.
    """

    state: EngineState
    title: str | None
    styled_lines: tuple[StyledLine, ...]
    scroll_offset: int
    link_highlight_ranges: tuple[tuple[int, int, int], ...]
    error: ErrorOverlay | None
    loading_target: str | None
    search_open: bool
    total_lines: int = 0
    selected_link: Link | None = None
    can_go_back: bool = False
    can_go_forward: bool = False
    search_results: SearchResults | None = None
    search_full_text: bool = False


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class NavigationEngine:
    """Owns ViewState and HistoryStack and turns intents into transitions."""

    def __init__(
        self,
        fetcher: FetcherProtocol,
        transformer: TransformerProtocol,
        opener: BrowserOpenerProtocol,
        *,
        site_url: str,
        viewport_height: int = 24,
    ) -> None:
        self._fetcher = fetcher
        self._transformer = transformer
        self._opener = opener
        self._site_url = site_url
        self._viewport_height = max(1, viewport_height)
        # None until the draw surface reports its width: the transformer's own
        # configured width applies
        self._layout_width: int | None = None

        self._state = EngineState.IDLE
        self._search_open = False
        self._search_full_text = False
        self._view: ViewState | None = None
        self._results: SearchResults | None = None
        self._history = HistoryStack()
        self._error: ErrorOverlay | None = None

        self._next_request_id = 0
        self._active: FetchRequest | None = None
        self._last_request: FetchRequest | None = None
        self._completions: asyncio.Queue[FetchCompletion] = asyncio.Queue()
        self._tasks: set[asyncio.Task[None]] = set()

        self._handlers: dict[type, Callable[..., bool]] = {
            NavigateTo: lambda i: self.navigate_to(i.title_query, force_refresh=i.force_refresh),
            ActivateSelectedLink: lambda i: self.activate_selected_link(),
            Scroll: lambda i: self.scroll(i.delta),
            SelectNextLink: lambda i: self.select_next_link(),
            SelectPrevLink: lambda i: self.select_prev_link(),
            GoBack: lambda i: self.go_back(),
            GoForward: lambda i: self.go_forward(),
            Refresh: lambda i: self.refresh(),
            OpenSearch: lambda i: self.open_search(full_text=i.full_text),
            CancelSearch: lambda i: self.cancel_search(),
            SubmitSearch: lambda i: self.submit_search(i.query),
            SearchFor: lambda i: self.search_for(i.query),
            CloseResults: lambda i: self.close_results(),
            DismissError: lambda i: self.dismiss_error(),
            OpenInBrowser: lambda i: self.open_in_browser(),
            Resize: lambda i: self.resize(i.viewport_height, i.width),
        }

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        if self._search_open:
            return EngineState.SEARCH_PROMPT
        return self._state

    @property
    def view(self) -> ViewState | None:
        return self._view

    @property
    def results(self) -> SearchResults | None:
        return self._results

    @property
    def history(self) -> HistoryStack:
        return self._history

    @property
    def error(self) -> ErrorOverlay | None:
        return self._error

    @property
    def viewport_height(self) -> int:
        return self._viewport_height

    @property
    def layout_width(self) -> int | None:
        return self._layout_width

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def frame(self) -> RenderFrame:
        view = self._view
        highlights: tuple[tuple[int, int, int], ...] = ()
        results = self._results if self._state is EngineState.SEARCH_RESULTS else None
        if view is None:
            return RenderFrame(
                state=self.state,
                title=None,
                styled_lines=(),
                scroll_offset=0,
                link_highlight_ranges=highlights,
                error=self._error,
                loading_target=self._active.query if self._active else None,
                search_open=self._search_open,
                search_results=results,
                search_full_text=self._search_full_text,
            )

        top = view.scroll_offset
        bottom = top + self._viewport_height
        selected = view.selected_link
        if selected is not None and top <= selected.line_index < bottom:
            highlights = ((selected.line_index - top, selected.start, selected.end),)

        return RenderFrame(
            state=self.state,
            title=view.key,
            styled_lines=view.document.styled_lines[top:bottom],
            scroll_offset=top,
            link_highlight_ranges=highlights,
            error=self._error,
            loading_target=self._active.query if self._active else None,
            search_open=self._search_open,
            total_lines=view.document.total_lines,
            selected_link=selected,
            can_go_back=self._history.can_go_back(),
            can_go_forward=self._history.can_go_forward(),
            search_results=results,
            search_full_text=self._search_full_text,
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, intent: Intent) -> bool:
        """Apply one intent. Returns False when the intent was not applicable."""
        return self._handlers[type(intent)](intent)

    def _reject(self, intent: str, reason: str) -> bool:
        log.debug("intent_rejected", intent=intent, state=self.state, reason=reason)
        return False

    # ------------------------------------------------------------------
    # Network-backed intents
    # ------------------------------------------------------------------

    def start(self, title_query: str, force_refresh: bool = False) -> None:
        """Issue the first navigation. The engine is LOADING on return."""
        self.navigate_to(title_query, force_refresh=force_refresh)

    def start_search(self, query: str) -> None:
        """Open on the search results for ``query`` instead of an article."""
        self.search_for(query)

    def navigate_to(self, title_query: str, force_refresh: bool = False) -> bool:
        self._search_open = False
        return self._submit(title_query, RequestKind.NAVIGATE, force_refresh=force_refresh)

    def search_for(self, query: str) -> bool:
        """List upstream full-text search hits for ``query``."""
        query = " ".join(query.split())
        if not query:
            return self._reject("search_for", "empty query")
        self._search_open = False
        return self._submit(query, RequestKind.SEARCH)

    def go_back(self) -> bool:
        return self._go(-1, "go_back")

    def go_forward(self) -> bool:
        return self._go(1, "go_forward")

    def _go(self, offset: int, intent: str) -> bool:
        if self.state is not EngineState.IDLE:
            return self._reject(intent, "not idle")
        neighbour = self._history.peek(offset)
        if neighbour is None:
            return self._reject(intent, "no history entry")
        index, key = neighbour
        return self._submit(key, RequestKind.HISTORY, history_index=index)

    def refresh(self) -> bool:
        if self.state not in (EngineState.IDLE, EngineState.ERROR):
            return self._reject("refresh", "not idle or error")
        current = self._history.current
        if current is not None:
            return self._submit(current, RequestKind.REFRESH, force_refresh=True)
        if self._last_request is not None:
            last = self._last_request
            return self._submit(
                last.query,
                last.kind,
                force_refresh=True,
                history_index=last.history_index,
            )
        return self._reject("refresh", "nothing to refresh")

    def _submit(
        self,
        query: str,
        kind: RequestKind,
        *,
        force_refresh: bool = False,
        history_index: int | None = None,
    ) -> bool:
        active = self._active
        if (
            active is not None
            and active.kind is kind
            and active.force_refresh == force_refresh
            and active.history_index == history_index
            and normalise_title(active.query) == normalise_title(query)
        ):
            log.debug("navigation_coalesced", query=query, request_id=active.request_id)
            return False

        self._next_request_id += 1
        request = FetchRequest(
            request_id=self._next_request_id,
            query=query,
            kind=kind,
            force_refresh=force_refresh,
            history_index=history_index,
            width=self._layout_width,
        )
        if active is not None:
            log.info(
                "request_superseded",
                superseded_id=active.request_id,
                superseded_query=active.query,
                request_id=request.request_id,
            )

        self._active = request
        self._last_request = request
        self._error = None
        self._state = EngineState.LOADING
        log.info(
            "navigation_requested",
            request_id=request.request_id,
            query=query,
            kind=kind,
            force_refresh=force_refresh,
        )

        task = asyncio.get_running_loop().create_task(self._work(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _work(self, request: FetchRequest) -> None:
        """Resolve, load and transform off the UI path, then post the outcome."""
        try:
            if request.kind is RequestKind.SEARCH:
                completion = await self._search(request)
            else:
                if request.kind is RequestKind.NAVIGATE:
                    key = await self._fetcher.resolve(request.query)
                else:
                    key = request.query
                raw_content = await self._fetcher.load(key, force_refresh=request.force_refresh)
                document = await asyncio.to_thread(
                    self._transformer.transform, raw_content, request.width
                )
                completion = FetchCompletion(
                    request=request, key=key, raw_content=raw_content, document=document
                )
        except WiktermError as exc:
            completion = FetchCompletion(request=request, error=exc)
        except Exception as exc:
            log.error(
                "fetch_worker_unexpected_error",
                request_id=request.request_id,
                query=request.query,
                exc_info=True,
            )
            completion = FetchCompletion(
                request=request,
                error=WiktermError(
                    code=ErrorCode.ARTICLE_FETCH_FAILED,
                    message=f"Unexpected error loading '{request.query}': {exc}",
                    suggestion="Press r to retry. See the log file for details.",
                    recoverable=True,
                ),
            )
        self._completions.put_nowait(completion)

    async def _search(self, request: FetchRequest) -> FetchCompletion:
        results = await self._fetcher.search(request.query)
        if not results:
            raise WiktermError(
                code=ErrorCode.ARTICLE_NOT_FOUND,
                message=f"No articles match '{request.query}'",
                suggestion="Try different or fewer search terms.",
                recoverable=False,
            )
        return FetchCompletion(request=request, results=tuple(results))

    # ------------------------------------------------------------------
    # Completion handling
    # ------------------------------------------------------------------

    def poll(self) -> bool:
        """Apply any finished work. Returns True when the view changed."""
        changed = False
        while True:
            try:
                completion = self._completions.get_nowait()
            except asyncio.QueueEmpty:
                break
            request = completion.request
            if self._active is None or request.request_id != self._active.request_id:
                log.info(
                    "stale_result_discarded",
                    request_id=request.request_id,
                    query=request.query,
                    active_id=self._active.request_id if self._active else None,
                )
                continue
            self._apply(completion)
            changed = True
        return changed

    async def wait_for_pending(self) -> None:
        """Wait for every outstanding worker, then apply their results."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.poll()

    async def aclose(self) -> None:
        """Cancel outstanding workers. Called once on shutdown."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _apply(self, completion: FetchCompletion) -> None:
        request = completion.request
        self._active = None

        if completion.error is not None:
            exc = completion.error
            # The failed title, offered for a full-text search instead
            failed_title = None if request.kind is RequestKind.SEARCH else request.query
            self._error = ErrorOverlay.from_error(exc, query=failed_title)
            self._state = EngineState.ERROR
            log.warning(
                "navigation_failed",
                request_id=request.request_id,
                query=request.query,
                code=exc.code,
                message=exc.message,
                recoverable=exc.recoverable,
            )
            return

        if request.kind is RequestKind.SEARCH:
            self._results = SearchResults(query=request.query, results=completion.results)
            self._error = None
            self._state = EngineState.SEARCH_RESULTS
            log.info(
                "search_complete",
                request_id=request.request_id,
                query=request.query,
                results=len(completion.results),
            )
            return

        key = completion.key
        document = completion.document
        assert key is not None and document is not None
        raw_content = completion.raw_content
        if request.width != self._layout_width:
            # The terminal was resized while this request was in flight
            document = self._transformer.transform(raw_content, self._layout_width)

        for warning in document.warnings:
            log.warning("partial_render", key=key, element=warning.element, reason=warning.reason)

        if request.kind is RequestKind.NAVIGATE:
            self._history.push(key)
            self._view = ViewState(key=key, document=document, raw_content=raw_content)
        elif request.kind is RequestKind.HISTORY:
            assert request.history_index is not None
            self._history.move_to(request.history_index)
            self._view = ViewState(key=key, document=document, raw_content=raw_content)
        else:
            previous = self._view
            if previous is not None and previous.key == key:
                selected = previous.selected_link_index
                if selected is not None and selected >= len(document.links):
                    selected = None
                self._view = ViewState(
                    key=key,
                    document=document,
                    scroll_offset=previous.scroll_offset,
                    selected_link_index=selected,
                    raw_content=raw_content,
                )
                self._view.scroll_offset = self._clamp(previous.scroll_offset)
            else:
                self._view = ViewState(key=key, document=document, raw_content=raw_content)

        self._results = None
        self._error = None
        self._state = EngineState.IDLE
        log.info(
            "navigation_complete",
            request_id=request.request_id,
            key=key,
            kind=request.kind,
            total_lines=document.total_lines,
            links=len(document.links),
        )

    # ------------------------------------------------------------------
    # Local intents
    # ------------------------------------------------------------------

    def _clamp(self, offset: int) -> int:
        if self._view is None:
            return 0
        max_offset = max(0, self._view.document.total_lines - self._viewport_height)
        return min(max(0, offset), max_offset)

    def _idle_view(self, intent: str) -> ViewState | None:
        if self.state is not EngineState.IDLE:
            self._reject(intent, "not idle")
            return None
        if self._view is None:
            self._reject(intent, "no document")
            return None
        return self._view

    def _showing_results(self) -> bool:
        return self.state is EngineState.SEARCH_RESULTS

    def _move_result(self, delta: int, *, cyclic: bool) -> bool:
        results = self._results
        assert results is not None
        count = len(results.results)
        index = results.selected_index + delta
        index = index % count if cyclic else min(max(0, index), count - 1)
        self._results = replace(results, selected_index=index)
        return True

    def scroll(self, delta: int) -> bool:
        if self._showing_results():
            return self._move_result(delta, cyclic=False)
        view = self._idle_view("scroll")
        if view is None:
            return False
        view.scroll_offset = self._clamp(view.scroll_offset + delta)
        return True

    def select_next_link(self) -> bool:
        return self._select(1, "select_next_link")

    def select_prev_link(self) -> bool:
        return self._select(-1, "select_prev_link")

    def _select(self, step: int, intent: str) -> bool:
        if self._showing_results():
            return self._move_result(step, cyclic=True)
        view = self._idle_view(intent)
        if view is None:
            return False
        links = view.document.links
        if not links:
            return self._reject(intent, "no links")

        if view.selected_link_index is None:
            top = view.scroll_offset
            bottom = top + self._viewport_height
            visible = [i for i, link in enumerate(links) if top <= link.line_index < bottom]
            if visible:
                index = visible[0] if step > 0 else visible[-1]
            else:
                index = 0 if step > 0 else len(links) - 1
        else:
            index = (view.selected_link_index + step) % len(links)

        view.selected_link_index = index
        self._reveal(view, links[index].line_index)
        return True

    def _reveal(self, view: ViewState, line_index: int) -> None:
        if line_index < view.scroll_offset:
            view.scroll_offset = line_index
        elif line_index >= view.scroll_offset + self._viewport_height:
            view.scroll_offset = line_index - self._viewport_height + 1
        view.scroll_offset = self._clamp(view.scroll_offset)

    def activate_selected_link(self) -> bool:
        if self._showing_results():
            assert self._results is not None
            title = self._results.selected.title
            log.info("search_result_chosen", query=self._results.query, title=title)
            return self.navigate_to(title)

        view = self._idle_view("activate_selected_link")
        if view is None:
            return False
        link = view.selected_link
        if link is None:
            return self._reject("activate_selected_link", "no selection")

        target = link.target
        if isinstance(target, ExternalTarget):
            opened = self._opener.open(target.url)
            log.info("external_link_opened", url=target.url, opened=opened)
            return True
        assert isinstance(target, InternalTarget)
        return self.navigate_to(target.key)

    def open_in_browser(self) -> bool:
        view = self._idle_view("open_in_browser")
        if view is None:
            return False
        url = article_url(self._site_url, view.key)
        opened = self._opener.open(url)
        log.info("article_opened_in_browser", key=view.key, url=url, opened=opened)
        return True

    def open_search(self, full_text: bool = False) -> bool:
        if self._search_open:
            return self._reject("open_search", "already open")
        self._search_open = True
        self._search_full_text = full_text
        return True

    def cancel_search(self) -> bool:
        if not self._search_open:
            return self._reject("cancel_search", "not open")
        self._search_open = False
        return True

    def submit_search(self, query: str) -> bool:
        if not self._search_open:
            return self._reject("submit_search", "not open")
        if self._search_full_text:
            return self.search_for(query)
        return self.navigate_to(query)

    def close_results(self) -> bool:
        if not self._showing_results():
            return self._reject("close_results", "no results shown")
        self._results = None
        self._state = EngineState.IDLE
        if self._view is None:
            self._search_open = True
        return True

    def dismiss_error(self) -> bool:
        if self.state is not EngineState.ERROR:
            return self._reject("dismiss_error", "no error")
        self._error = None
        if self._results is not None:
            self._state = EngineState.SEARCH_RESULTS
            return True
        self._state = EngineState.IDLE
        if self._view is None:
            self._search_open = True
        return True

    def resize(self, viewport_height: int, width: int | None = None) -> bool:
        self._viewport_height = max(1, viewport_height)
        if width is not None and max(1, width) != self._layout_width:
            self._layout_width = max(1, width)
            self._relayout()
        if self._view is not None:
            self._view.scroll_offset = self._clamp(self._view.scroll_offset)
        return True

    def _relayout(self) -> None:
        """Re-wrap the displayed article to the current layout width."""
        view = self._view
        if view is None:
            return
        document = self._transformer.transform(view.raw_content, self._layout_width)

        old_total = view.document.total_lines
        offset = round(view.scroll_offset * document.total_lines / old_total) if old_total else 0
        selected = view.selected_link_index
        if selected is not None and selected >= len(document.links):
            selected = None

        self._view = ViewState(
            key=view.key,
            document=document,
            scroll_offset=0,
            selected_link_index=selected,
            raw_content=view.raw_content,
        )
        self._view.scroll_offset = self._clamp(offset)
        if selected is not None:
            self._reveal(self._view, document.links[selected].line_index)
        log.debug(
            "document_relayout",
            key=view.key,
            width=self._layout_width,
            total_lines=document.total_lines,
        )
