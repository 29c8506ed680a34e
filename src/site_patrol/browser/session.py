"""Playwright browser lifecycle and per-run render sessions."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from importlib import resources
import logging
from pathlib import Path
from typing import Any

from site_patrol.config import RuntimeConfig
from site_patrol.engine.base import Unsubscribe
from site_patrol.errors import BrowserError

logger = logging.getLogger(__name__)

RESPOND_BINDING = "sitePatrolRespond"
RECEIVE_EXPRESSION = "command => window.__sitePatrol.receive(command)"
READY_STATE_EXPRESSION = "() => document.readyState"
BUNDLED_COLLECTOR = "collector.js"


@dataclass(frozen=True)
class BrowserSessionOptions:
    engine: str
    headless: bool
    navigation_timeout_ms: int
    locale: str
    viewport_width: int
    viewport_height: int
    collector_script: str | None = None


class PlaywrightRenderSession:
    """One browser context and page owned by a single target run."""

    def __init__(self, context: Any, page: Any) -> None:
        self._context = context
        self._page = page
        self._response_listeners: list[Callable[[Any], None]] = []
        self._closed = False

    def subscribe_load(self, callback: Callable[[], None]) -> Unsubscribe:
        def _handler(_page: Any) -> None:
            callback()

        self._page.on("load", _handler)

        def _unsubscribe() -> None:
            try:
                self._page.remove_listener("load", _handler)
            except Exception as exc:
                logger.debug("Ignoring load listener removal failure: %s", exc)

        return _unsubscribe

    def load_complete(self) -> bool:
        try:
            return self._page.evaluate(READY_STATE_EXPRESSION) == "complete"
        except Exception as exc:
            # The execution context is replaced while a navigation commits.
            logger.debug("readyState poll failed: %s", exc)
            return False

    def subscribe_responses(self, callback: Callable[[Any], None]) -> Unsubscribe:
        self._response_listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._response_listeners:
                self._response_listeners.remove(callback)

        return _unsubscribe

    def send_command(self, command: dict[str, Any]) -> None:
        try:
            delivered = self._page.evaluate(RECEIVE_EXPRESSION, command)
        except Exception as exc:
            raise BrowserError(f"Could not deliver '{command.get('command')}' to the page: {exc}") from exc
        if delivered is False:
            raise BrowserError("Page collector rejected the command.")

    def pump(self, seconds: float) -> None:
        try:
            self._page.wait_for_timeout(max(0.0, seconds) * 1000)
        except Exception as exc:
            raise BrowserError(f"Render session stopped responding: {exc}") from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._response_listeners.clear()
        try:
            self._context.close()
        except Exception as exc:
            raise BrowserError(f"Failed to close render session: {exc}") from exc

    def dispatch_response(self, message: Any) -> None:
        """Entry point for the page's ``sitePatrolRespond`` binding."""
        for listener in tuple(self._response_listeners):
            listener(message)


class PlaywrightBrowserSession:
    """Manage one browser lifecycle with deterministic teardown.

    The browser process is launched on first use and shared by the runs of a
    wake cycle; every run gets a brand-new context and page from
    :meth:`open_session`.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        engine: str | None = None,
        headless: bool | None = None,
        navigation_timeout_ms: int | None = None,
        locale: str | None = None,
        viewport_width: int | None = None,
        viewport_height: int | None = None,
        collector_script: str | Path | None = None,
        playwright_factory: Callable[[], AbstractContextManager[Any]] | None = None,
    ) -> None:
        browser = config.browser
        configured_script: str | Path | None = (
            collector_script if collector_script is not None else browser.collector_script
        )
        if configured_script is not None:
            configured_script = str(config.resolve_storage_path(str(configured_script)))

        self.options = BrowserSessionOptions(
            engine=engine if engine is not None else browser.engine,
            headless=headless if headless is not None else browser.headless,
            navigation_timeout_ms=(
                navigation_timeout_ms
                if navigation_timeout_ms is not None
                else browser.navigation_timeout_ms
            ),
            locale=locale if locale is not None else browser.locale,
            viewport_width=(
                viewport_width if viewport_width is not None else browser.viewport_width
            ),
            viewport_height=(
                viewport_height if viewport_height is not None else browser.viewport_height
            ),
            collector_script=configured_script,
        )
        self._playwright_factory = playwright_factory or _default_playwright_factory
        self._playwright_cm: AbstractContextManager[Any] | None = None
        self._browser: Any | None = None
        self._collector_source: str | None = None

    def open(self) -> None:
        if self._browser is not None:
            return

        try:
            self._collector_source = load_collector_source(self.options.collector_script)
            self._playwright_cm = self._playwright_factory()
            playwright = self._playwright_cm.__enter__()

            launcher = getattr(playwright, self.options.engine, None)
            if launcher is None:
                raise BrowserError(
                    f"Unsupported browser engine '{self.options.engine}' for Playwright session."
                )

            self._browser = launcher.launch(headless=self.options.headless)
        except BrowserError:
            self._teardown(raise_on_error=False)
            raise
        except Exception as exc:
            self._teardown(raise_on_error=False)
            raise BrowserError(f"Failed to open browser session: {exc}") from exc

    def open_session(self, url: str) -> PlaywrightRenderSession:
        if self._browser is None:
            self.open()

        if self._browser is None or self._collector_source is None:
            raise BrowserError("Browser session is not open.")

        context: Any | None = None
        try:
            context = self._browser.new_context(
                locale=self.options.locale,
                viewport={
                    "width": self.options.viewport_width,
                    "height": self.options.viewport_height,
                },
            )
            page = context.new_page()
            set_navigation_timeout = getattr(page, "set_default_navigation_timeout", None)
            if callable(set_navigation_timeout):
                set_navigation_timeout(self.options.navigation_timeout_ms)

            session = PlaywrightRenderSession(context, page)
            page.expose_function(RESPOND_BINDING, session.dispatch_response)
            page.add_init_script(script=self._collector_source)
            # Readiness is awaited separately, so only wait for the navigation to commit.
            page.goto(url, wait_until="commit")
            return session
        except Exception as exc:
            if context is not None:
                try:
                    context.close()
                except Exception as close_exc:
                    logger.warning("Failed to close context after open failure: %s", close_exc)
            raise BrowserError(f"Failed to open render session for '{url}': {exc}") from exc

    def close(self) -> None:
        self._teardown(raise_on_error=True)

    def __enter__(self) -> PlaywrightBrowserSession:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        try:
            self.close()
        except BrowserError:
            if exc_type is None:
                raise
        return False

    def _teardown(self, *, raise_on_error: bool) -> None:
        errors: list[str] = []

        if self._browser is not None:
            try:
                self._browser.close()
            except Exception as exc:
                errors.append(f"browser close failed: {exc}")
            finally:
                self._browser = None

        if self._playwright_cm is not None:
            try:
                self._playwright_cm.__exit__(None, None, None)
            except Exception as exc:
                errors.append(f"playwright teardown failed: {exc}")
            finally:
                self._playwright_cm = None

        if raise_on_error and errors:
            raise BrowserError(
                "Errors occurred during browser session teardown: " + "; ".join(errors)
            )


def load_collector_source(path: str | Path | None = None) -> str:
    """Return the page collector script, bundled unless ``path`` is given."""
    if path is None:
        return resources.files("site_patrol.browser").joinpath(BUNDLED_COLLECTOR).read_text(encoding="utf-8")
    script_path = Path(path).expanduser()
    try:
        return script_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise BrowserError(f"Could not read collector script '{script_path}': {exc}") from exc


def _default_playwright_factory() -> AbstractContextManager[Any]:
    try:
        from playwright.sync_api import sync_playwright
    except ModuleNotFoundError as exc:
        raise BrowserError(
            "Playwright is not available. Install dependencies and run "
            "`python -m playwright install chromium`."
        ) from exc
    return sync_playwright()
