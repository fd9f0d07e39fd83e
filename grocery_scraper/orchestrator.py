"""Run every configured site and category through the extraction engine."""
import asyncio
from typing import Callable, Iterable, Optional

import structlog

from .automation import PageAutomation
from .errors import AutomationError
from .extraction import CategoryScraper, build_job
from .models import (
    CategoryJob,
    CategoryOutcome,
    OutcomeStatus,
    ScraperSettings,
    SiteProfile,
)
from .storage import ProductSink

logger = structlog.get_logger()


class ScrapeOrchestrator:
    """Iterates sites x categories and forwards non-empty batches to the sink.

    A category that fails, for any reason other than the browser itself
    being unusable, is recorded as FAILED and the run moves on. Sites are
    processed one after another; within a site at most
    ``max_concurrent_per_site`` categories are in flight, one browser
    session each.
    """

    def __init__(
        self,
        profiles: dict[str, SiteProfile],
        automation: PageAutomation,
        sink: ProductSink,
        settings: ScraperSettings,
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            profiles: Site profiles keyed by site name.
            automation: Page automation used to open sessions.
            sink: Destination for scraped batches.
            settings: Runtime settings.
            progress_callback: Optional callback for human-readable progress.
        """
        self.profiles = profiles
        self.sink = sink
        self.settings = settings
        self.scraper = CategoryScraper(automation, settings)
        self.progress_callback = progress_callback
        self._sink_lock = asyncio.Lock()

    def _report_progress(self, message: str) -> None:
        """Report progress via callback if available."""
        if self.progress_callback:
            self.progress_callback(message)

    def select_profiles(self, site_filter: Optional[str] = None) -> list[SiteProfile]:
        """Profiles to run; all of them when no filter is given.

        Raises:
            ValueError: If site_filter names an unknown site.
        """
        if site_filter is None:
            return list(self.profiles.values())

        site = site_filter.strip().lower()
        if site not in self.profiles:
            raise ValueError(
                f"Unknown site '{site_filter}'. Configured sites: {sorted(self.profiles)}"
            )
        return [self.profiles[site]]

    def build_jobs(
        self, profile: SiteProfile, category_filter: Optional[Iterable[str]] = None
    ) -> list[CategoryJob]:
        """Jobs for the categories this site carries, optionally filtered."""
        wanted = set(category_filter) if category_filter else None
        jobs = []
        for key, path in profile.categories.items():
            if wanted is not None and key not in wanted:
                continue
            if path is None:
                logger.debug("category_not_carried", site=profile.name, category=key)
                continue
            jobs.append(build_job(profile, key, path))
        return jobs

    async def run(
        self,
        site_filter: Optional[str] = None,
        category_filter: Optional[Iterable[str]] = None,
    ) -> list[CategoryOutcome]:
        """Scrape the selected sites.

        Args:
            site_filter: Single site name, or None for every site.
            category_filter: Category keys to restrict the run to.

        Returns:
            One CategoryOutcome per category job, in configuration order.

        Raises:
            ValueError: If site_filter is unknown.
            AutomationError: If the browser cannot be used at all.
        """
        profiles = self.select_profiles(site_filter)
        outcomes: list[CategoryOutcome] = []

        for profile in profiles:
            jobs = self.build_jobs(profile, category_filter)
            logger.info(
                "starting_site",
                site=profile.name,
                category_count=len(jobs),
                max_concurrent=self.settings.max_concurrent_per_site,
            )
            self._report_progress(f"🏪 {profile.display_name}: {len(jobs)} categories")
            outcomes.extend(await self._run_site(profile, jobs))

        logger.info(
            "run_complete",
            categories=len(outcomes),
            succeeded=sum(1 for o in outcomes if o.status == OutcomeStatus.SUCCESS),
            empty=sum(1 for o in outcomes if o.status == OutcomeStatus.EMPTY),
            failed=sum(1 for o in outcomes if o.status == OutcomeStatus.FAILED),
        )
        return outcomes

    async def _run_site(
        self, profile: SiteProfile, jobs: list[CategoryJob]
    ) -> list[CategoryOutcome]:
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_per_site)
        abort = asyncio.Event()
        tasks = [
            asyncio.create_task(self._run_job(semaphore, abort, profile, job))
            for job in jobs
        ]

        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # A fatal error ends the site: nothing else may open a session or save
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _run_job(
        self,
        semaphore: asyncio.Semaphore,
        abort: asyncio.Event,
        profile: SiteProfile,
        job: CategoryJob,
    ) -> Optional[CategoryOutcome]:
        async with semaphore:
            log = logger.bind(site=profile.name, category=job.category_key)
            if abort.is_set():
                log.debug("category_skipped_after_fatal_error")
                return None

            self._report_progress(f"🔗 {profile.display_name} / {job.display_name}")

            try:
                result = await self.scraper.scrape(profile, job)
            except AutomationError:
                abort.set()
                raise
            except Exception as e:
                log.exception("category_scrape_failed", url=job.resolved_url, error=str(e))
                return CategoryOutcome(
                    site=profile.name,
                    job=job,
                    status=OutcomeStatus.FAILED,
                    error=str(e),
                )

            if not result.products:
                log.warning(
                    "no_products_found",
                    url=job.resolved_url,
                    attempted=result.attempted,
                    reason=result.soft_failure,
                )
                self._report_progress(f"⚠️ No products found in {job.display_name}")
                return CategoryOutcome(
                    site=profile.name,
                    job=job,
                    status=OutcomeStatus.EMPTY,
                    result=result,
                )

            log.info(
                "category_scraped",
                found=len(result.products),
                skipped=result.skipped,
                sample=result.products[0].to_dict(),
            )
            self._report_progress(
                f"📦 Found {len(result.products)} products in {job.display_name}"
            )

            try:
                async with self._sink_lock:
                    report = await asyncio.to_thread(self.sink.save_batch, result.products)
            except Exception as e:
                log.exception("batch_save_failed", count=len(result.products), error=str(e))
                return CategoryOutcome(
                    site=profile.name,
                    job=job,
                    status=OutcomeStatus.FAILED,
                    result=result,
                    error=f"save failed: {e}",
                )

            if report.failures:
                log.warning("partial_save", saved=report.saved, failed=report.failed)

            return CategoryOutcome(
                site=profile.name,
                job=job,
                status=OutcomeStatus.SUCCESS,
                result=result,
                saved=report.saved,
            )
