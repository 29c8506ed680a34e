"""Browser contracts."""

from .session import (
    BrowserSessionOptions,
    PlaywrightBrowserSession,
    PlaywrightRenderSession,
    load_collector_source,
)

__all__ = [
    "BrowserSessionOptions",
    "PlaywrightBrowserSession",
    "PlaywrightRenderSession",
    "load_collector_source",
]
