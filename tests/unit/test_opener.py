"""Unit tests for wikterm.opener."""

from __future__ import annotations

import webbrowser

import pytest

from wikterm.opener import BrowserOpener


class TestBrowserOpener:
    def test_opens_in_new_tab(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[tuple[str, int]] = []

        def fake_open(url: str, new: int = 0, autoraise: bool = True) -> bool:
            calls.append((url, new))
            return True

        monkeypatch.setattr(webbrowser, "open", fake_open)
        assert BrowserOpener().open("https://example.org/") is True
        assert calls == [("https://example.org/", 2)]

    def test_no_browser_available(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(webbrowser, "open", lambda url, new=0, autoraise=True: False)
        assert BrowserOpener().open("https://example.org/") is False

    def test_browser_error_is_swallowed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken(url: str, new: int = 0, autoraise: bool = True) -> bool:
            raise webbrowser.Error("could not locate runnable browser")

        monkeypatch.setattr(webbrowser, "open", broken)
        assert BrowserOpener().open("https://example.org/") is False
