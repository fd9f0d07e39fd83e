"""Page automation: the browser capability consumed by the extraction engine."""
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .errors import AutomationError, NavigationError, NavigationTimeout, ReadinessTimeout
from .models import ScraperSettings

logger = structlog.get_logger()

# Resource types that never carry listing data
BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media"})


def allow_essential_resources(resource_type: str) -> bool:
    """Request filter passing documents, scripts, XHR/fetch and the rest."""
    return resource_type not in BLOCKED_RESOURCE_TYPES


class PageSession(ABC):
    """One isolated browser page used for a single category job."""

    @abstractmethod
    async def set_request_filter(self, predicate: Callable[[str], bool]) -> None:
        """Only let requests through whose resource type satisfies predicate."""

    @abstractmethod
    async def navigate(
        self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 60000
    ) -> None:
        """Navigate to url.

        Raises:
            NavigationTimeout: If the wait condition is not met in time.
            NavigationError: If navigation fails outright.
        """

    @abstractmethod
    async def wait_for_selector(self, selector: str, timeout_ms: int = 20000) -> None:
        """Wait until selector is attached to the DOM.

        Raises:
            ReadinessTimeout: If the element does not appear in time.
        """

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run script inside the page with one serializable argument."""

    @abstractmethod
    async def close(self) -> None:
        """Release the session. Safe to call more than once."""


class PageAutomation(ABC):
    """Factory for page sessions."""

    @abstractmethod
    async def _open_session(self) -> PageSession:
        """Create a new configured session."""

    @asynccontextmanager
    async def session(self) -> AsyncIterator[PageSession]:
        """Scoped session: closed on every exit path, exceptions included."""
        session = await self._open_session()
        try:
            yield session
        finally:
            await session.close()


class PlaywrightSession(PageSession):
    """PageSession backed by a Playwright browser context and page."""

    def __init__(self, context: BrowserContext, page: Page) -> None:
        self._context = context
        self._page = page
        self._closed = False

    @property
    def page(self) -> Page:
        """Get the underlying Playwright page."""
        return self._page

    async def set_request_filter(self, predicate: Callable[[str], bool]) -> None:
        async def handle(route: Route) -> None:
            if predicate(route.request.resource_type):
                await route.continue_()
            else:
                await route.abort()

        await self._context.route("**/*", handle)

    async def navigate(
        self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 60000
    ) -> None:
        try:
            await self._page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"Timed out after {timeout_ms}ms loading {url}") from e
        except PlaywrightError as e:
            raise NavigationError(f"Navigation to {url} failed: {e.message}") from e

    async def wait_for_selector(self, selector: str, timeout_ms: int = 20000) -> None:
        try:
            await self._page.wait_for_selector(
                selector, state="attached", timeout=timeout_ms
            )
        except PlaywrightTimeoutError as e:
            raise ReadinessTimeout(
                f"Selector '{selector}' did not appear within {timeout_ms}ms"
            ) from e

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._page.evaluate(script, arg)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._context.close()
        except PlaywrightError as e:
            # Context already gone with the browser
            logger.debug("session_close_failed", error=str(e))


class PlaywrightAutomation(PageAutomation):
    """Chromium launched once per run; a fresh context per session.

    Use as an async context manager::

        async with PlaywrightAutomation(settings) as automation:
            async with automation.session() as session:
                ...
    """

    LAUNCH_ARGS = [
        "--disable-gpu",
        "--disable-dev-shm-usage",
        "--no-sandbox",
        "--disable-setuid-sandbox",
    ]

    def __init__(self, settings: ScraperSettings) -> None:
        self.settings = settings
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> "PlaywrightAutomation":
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.settings.headless,
                args=[*self.LAUNCH_ARGS, f"--lang={self.settings.locale}"],
            )
        except PlaywrightError as e:
            await self._shutdown()
            raise AutomationError(f"Could not launch browser: {e.message}") from e

        logger.info("browser_launched", headless=self.settings.headless)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._shutdown()

    async def _shutdown(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def _open_session(self) -> PageSession:
        if self._browser is None:
            raise AutomationError("Browser is not running")

        try:
            context = await self._browser.new_context(
                user_agent=self.settings.user_agent,
                viewport={
                    "width": self.settings.viewport_width,
                    "height": self.settings.viewport_height,
                },
                locale=self.settings.locale,
                service_workers="block",  # Required for route interception
            )
        except PlaywrightError as e:
            raise AutomationError(f"Could not open browser context: {e.message}") from e

        try:
            page = await context.new_page()
        except PlaywrightError as e:
            await context.close()
            raise AutomationError(f"Could not open page: {e.message}") from e

        return PlaywrightSession(context, page)
