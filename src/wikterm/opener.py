"""Hands external URLs to the system web browser."""

from __future__ import annotations

import webbrowser

import structlog

log = structlog.get_logger()


class BrowserOpener:
    """Opens URLs outside the terminal. Failures are logged, never raised."""

    def open(self, url: str) -> bool:
        try:
            opened = webbrowser.open(url, new=2)
        except webbrowser.Error:
            log.warning("browser_open_failed", url=url, exc_info=True)
            return False
        if not opened:
            log.warning("browser_open_failed", url=url, reason="no usable browser")
        return opened
