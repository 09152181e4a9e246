"""wikterm: a terminal browser for Wikipedia articles.

Run ``wikterm`` (or ``python -m wikterm``) to open the browser. The version
below is also sent to Wikipedia as part of the User-Agent header.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("wikterm")
except PackageNotFoundError:
    # Source checkout that was never installed. No warning: the terminal
    # belongs to the UI.
    __version__ = "0.0.0+unknown"
