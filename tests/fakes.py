"""Test doubles for the page automation client and persistence sink."""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from grocery_scraper.automation import PageAutomation, PageSession
from grocery_scraper.models import SaveReport, SiteProfile, SiteSelectors
from grocery_scraper.normalizer import parse_price
from grocery_scraper.storage import ProductSink


@dataclass
class FakePage:
    """Scripted behavior for one URL."""

    cards: list = field(default_factory=list)
    has_next_page: bool = False
    navigate_error: Optional[Exception] = None
    wait_error: Optional[Exception] = None
    evaluate_error: Optional[Exception] = None
    # Navigation failures to raise before succeeding
    navigate_failures: list = field(default_factory=list)


class FakeSession(PageSession):
    """Records every call; behavior comes from the FakePage of the navigated URL."""

    def __init__(self, automation: "FakeAutomation") -> None:
        self.automation = automation
        self.url: Optional[str] = None
        self.request_filter: Optional[Callable[[str], bool]] = None
        self.navigate_calls: list[dict] = []
        self.waited_for: list[str] = []
        self.evaluate_calls: list[Any] = []
        self.close_calls = 0

    def _page(self) -> FakePage:
        return self.automation.pages.get(self.url, self.automation.default_page)

    async def set_request_filter(self, predicate):
        self.request_filter = predicate

    async def navigate(self, url, wait_until="domcontentloaded", timeout_ms=60000):
        self.url = url
        self.navigate_calls.append(
            {"url": url, "wait_until": wait_until, "timeout_ms": timeout_ms}
        )
        page = self._page()
        if page.navigate_failures:
            raise page.navigate_failures.pop(0)
        if page.navigate_error:
            raise page.navigate_error

    async def wait_for_selector(self, selector, timeout_ms=20000):
        self.waited_for.append(selector)
        page = self._page()
        if page.wait_error:
            raise page.wait_error

    async def evaluate(self, script, arg=None):
        self.evaluate_calls.append(arg)
        await asyncio.sleep(self.automation.evaluate_delay)
        page = self._page()
        if page.evaluate_error:
            raise page.evaluate_error
        return {"cards": list(page.cards), "hasNextPage": page.has_next_page}

    async def close(self):
        if self.close_calls == 0:
            self.automation.active -= 1
        self.close_calls += 1


class FakeAutomation(PageAutomation):
    """Page automation double tracking opened and closed sessions."""

    def __init__(
        self,
        pages: Optional[dict[str, FakePage]] = None,
        default_page: Optional[FakePage] = None,
        open_error: Optional[Exception] = None,
        evaluate_delay: float = 0,
        open_failures: Optional[list] = None,
    ) -> None:
        self.pages = pages or {}
        self.default_page = default_page or FakePage()
        self.open_error = open_error
        # Errors raised by the next opens, one per call
        self.open_failures = list(open_failures or [])
        self.evaluate_delay = evaluate_delay
        self.sessions: list[FakeSession] = []
        self.active = 0
        self.max_active = 0

    async def _open_session(self) -> PageSession:
        if self.open_failures:
            raise self.open_failures.pop(0)
        if self.open_error:
            raise self.open_error
        session = FakeSession(self)
        self.sessions.append(session)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        return session

    @property
    def opened(self) -> int:
        return len(self.sessions)

    @property
    def closed(self) -> int:
        return sum(s.close_calls for s in self.sessions)


class RecordingSink(ProductSink):
    """Sink double keeping every batch it receives."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.batches: list[tuple] = []
        self.error = error
        self.closed = False

    def save_batch(self, records):
        if self.error:
            raise self.error
        batch = tuple(records)
        self.batches.append(batch)
        return SaveReport(attempted=len(batch), saved=len(batch))

    @property
    def records(self) -> list:
        return [r for batch in self.batches for r in batch]

    def close(self):
        self.closed = True


def make_profile(
    name: str = "silpo",
    categories: Optional[dict] = None,
    base_url: str = "https://silpo.ua",
    next_page: Optional[str] = None,
) -> SiteProfile:
    return SiteProfile(
        name=name,
        display_name=name.capitalize(),
        base_url=base_url,
        categories=categories if categories is not None else {"dairy_eggs": "/category/dairy"},
        selectors=SiteSelectors(
            card=".product-card",
            name=".product-card__title",
            price=".price",
            old_price=".old-price",
            image="img",
            link="a",
            next_page=next_page,
        ),
        parse_price=parse_price,
        category_names={"dairy_eggs": "Dairy & Eggs"},
    )
