"""Extraction engine: scrape one category page into validated products."""
from datetime import datetime, timezone
from typing import Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .automation import PageAutomation, PageSession, allow_essential_resources
from .errors import NavigationError, NavigationTimeout, ReadinessTimeout
from .models import (
    CategoryJob,
    ExtractionResult,
    RawCardPayload,
    ScrapedProduct,
    ScraperSettings,
    SiteProfile,
)
from .normalizer import normalize_card, resolve_url

logger = structlog.get_logger()

# Runs inside the page. Each card is read in its own try/catch so one broken
# card only marks its own payload with an error.
EXTRACT_CARDS_SCRIPT = """
(selectors) => {
    const text = (root, selector) => {
        if (!selector) return null;
        const el = root.querySelector(selector);
        return el && el.textContent ? el.textContent.trim() : null;
    };
    const attr = (root, selector, prop) => {
        const el = root.querySelector(selector);
        if (!el) return null;
        return el[prop] || el.getAttribute(prop) || null;
    };
    const cards = Array.from(document.querySelectorAll(selectors.card)).map((card) => {
        try {
            return {
                name: text(card, selectors.name),
                price: text(card, selectors.price),
                oldPrice: text(card, selectors.oldPrice),
                image: attr(card, selectors.image, "src"),
                link: card.matches(selectors.link)
                    ? card.href || card.getAttribute("href")
                    : attr(card, selectors.link, "href"),
            };
        } catch (err) {
            return { error: String(err) };
        }
    });
    return {
        cards: cards,
        hasNextPage: selectors.nextPage
            ? document.querySelector(selectors.nextPage) !== null
            : false,
    };
}
"""


def build_job(profile: SiteProfile, category_key: str, path: str) -> CategoryJob:
    """Create the job for one configured category path."""
    return CategoryJob(
        category_key=category_key,
        display_name=profile.category_display_name(category_key),
        resolved_url=resolve_url(path, profile.base_url),
    )


class CategoryScraper:
    """Scrapes the first rendered page of a category.

    Navigation and readiness problems are soft failures: they are logged
    and an empty ExtractionResult is returned. Anything else propagates.
    The page session is always closed before scrape() returns.
    """

    def __init__(self, automation: PageAutomation, settings: ScraperSettings) -> None:
        self.automation = automation
        self.settings = settings
        self.retry_wait = wait_exponential(multiplier=1, min=2, max=10)

    async def scrape(self, profile: SiteProfile, job: CategoryJob) -> ExtractionResult:
        """Scrape one category job.

        Args:
            profile: Site the category belongs to.
            job: Category job with its resolved URL.

        Returns:
            ExtractionResult with products, attempted and skipped counts.
        """
        log = logger.bind(site=profile.name, category=job.category_key)

        async with self.automation.session() as session:
            await session.set_request_filter(allow_essential_resources)

            log.info("navigating_to_category", url=job.resolved_url)
            try:
                await self._navigate(session, job.resolved_url)
            except (NavigationTimeout, NavigationError) as e:
                log.warning("page_load_failed", url=job.resolved_url, error=str(e))
                return ExtractionResult.empty(str(e))

            try:
                await session.wait_for_selector(
                    profile.selectors.card,
                    timeout_ms=self.settings.readiness_timeout_ms,
                )
            except ReadinessTimeout as e:
                log.warning(
                    "product_cards_not_found",
                    url=job.resolved_url,
                    selector=profile.selectors.card,
                    error=str(e),
                )
                return ExtractionResult.empty(str(e))

            log.info("product_cards_detected")
            page_data = await session.evaluate(
                EXTRACT_CARDS_SCRIPT, profile.selectors.to_dict()
            )

        return self._build_result(profile, job, page_data, log)

    async def _navigate(self, session: PageSession, url: str) -> None:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.navigation_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type((NavigationTimeout, NavigationError)),
            reraise=True,
        ):
            with attempt:
                await session.navigate(
                    url,
                    wait_until="domcontentloaded",
                    timeout_ms=self.settings.navigation_timeout_ms,
                )

    def _build_result(
        self,
        profile: SiteProfile,
        job: CategoryJob,
        page_data: Optional[dict],
        log,
    ) -> ExtractionResult:
        page_data = page_data or {}
        raw_cards = page_data.get("cards") or []
        captured_at = datetime.now(timezone.utc)

        products: list[ScrapedProduct] = []
        skipped = 0
        for index, raw in enumerate(raw_cards):
            product = self._normalize(profile, job, index, raw, captured_at, log)
            if product is None:
                skipped += 1
            else:
                products.append(product)

        has_next_page = bool(page_data.get("hasNextPage"))
        if has_next_page:
            # Only the first rendered page is scraped
            log.info("pagination_not_followed", selector=profile.selectors.next_page)

        log.info(
            "finished_extraction",
            attempted=len(raw_cards),
            found=len(products),
            skipped=skipped,
        )
        return ExtractionResult(
            products=tuple(products),
            attempted=len(raw_cards),
            skipped=skipped,
            has_next_page=has_next_page,
        )

    def _normalize(
        self,
        profile: SiteProfile,
        job: CategoryJob,
        index: int,
        raw: object,
        captured_at: datetime,
        log,
    ) -> Optional[ScrapedProduct]:
        if not isinstance(raw, dict):
            log.warning("card_unreadable", product_index=index)
            return None

        payload = RawCardPayload.from_page(raw)
        if payload.error:
            log.warning("card_extraction_failed", product_index=index, error=payload.error)
            return None

        try:
            product = normalize_card(
                payload,
                store=profile.display_name,
                category=job.display_name,
                category_url=job.resolved_url,
                price_parser=profile.parse_price,
                captured_at=captured_at,
            )
        except (ValueError, TypeError) as e:
            log.warning("card_normalization_failed", product_index=index, error=str(e))
            return None

        if product is None:
            log.debug("card_rejected", product_index=index)
        return product
