"""Tests for the scrape orchestrator."""
from dataclasses import replace

import pytest

from grocery_scraper.errors import AutomationError, ReadinessTimeout
from grocery_scraper.models import OutcomeStatus
from grocery_scraper.orchestrator import ScrapeOrchestrator

from fakes import FakeAutomation, FakePage, RecordingSink, make_profile

SILPO_DAIRY = "https://silpo.ua/category/dairy"
SILPO_CHEESE = "https://silpo.ua/category/cheese"
ATB_DAIRY = "https://www.atbmarket.com/catalog/dairy"


def _cards(*names):
    return [{"name": name, "price": "25,00", "link": "/p"} for name in names]


@pytest.fixture
def profiles():
    return {
        "silpo": make_profile(
            "silpo",
            categories={
                "dairy_eggs": "/category/dairy",
                "novelties": None,
                "cheese": "/category/cheese",
            },
        ),
        "atb": make_profile(
            "atb",
            base_url="https://www.atbmarket.com",
            categories={"dairy_eggs": "/catalog/dairy", "novelties": None},
        ),
    }


class TestSelection:
    """Tests for site and category selection."""

    def test_all_sites_by_default(self, profiles, settings):
        """Test that no filter selects every site."""
        orchestrator = ScrapeOrchestrator(profiles, FakeAutomation(), RecordingSink(), settings)
        assert [p.name for p in orchestrator.select_profiles()] == ["silpo", "atb"]

    def test_site_filter(self, profiles, settings):
        """Test that a filter selects one site, case-insensitively."""
        orchestrator = ScrapeOrchestrator(profiles, FakeAutomation(), RecordingSink(), settings)
        assert [p.name for p in orchestrator.select_profiles("ATB")] == ["atb"]

    def test_unknown_site(self, profiles, settings):
        """Test ValueError for a site that is not configured."""
        orchestrator = ScrapeOrchestrator(profiles, FakeAutomation(), RecordingSink(), settings)
        with pytest.raises(ValueError, match="Unknown site"):
            orchestrator.select_profiles("novus")

    def test_absent_categories_skipped(self, profiles, settings):
        """Test that categories without a path produce no job."""
        orchestrator = ScrapeOrchestrator(profiles, FakeAutomation(), RecordingSink(), settings)

        jobs = orchestrator.build_jobs(profiles["silpo"])

        assert [j.category_key for j in jobs] == ["dairy_eggs", "cheese"]
        assert [j.resolved_url for j in jobs] == [SILPO_DAIRY, SILPO_CHEESE]

    def test_category_filter(self, profiles, settings):
        """Test that a category filter restricts the jobs."""
        orchestrator = ScrapeOrchestrator(profiles, FakeAutomation(), RecordingSink(), settings)

        jobs = orchestrator.build_jobs(profiles["silpo"], ["cheese", "novelties"])

        assert [j.category_key for j in jobs] == ["cheese"]


class TestRun:
    """Tests for ScrapeOrchestrator.run."""

    @pytest.mark.asyncio
    async def test_end_to_end_sink_receives_valid_records(self, settings, sample_cards):
        """Test that the sink receives exactly the normalized records."""
        profiles = {"silpo": make_profile()}
        automation = FakeAutomation({SILPO_DAIRY: FakePage(cards=sample_cards)})
        sink = RecordingSink()

        outcomes = await ScrapeOrchestrator(profiles, automation, sink, settings).run()

        assert len(outcomes) == 1
        assert outcomes[0].status == OutcomeStatus.SUCCESS
        assert outcomes[0].result.skipped == 1
        assert outcomes[0].saved == 2
        assert len(sink.batches) == 1
        assert [(p.name, p.price, p.old_price) for p in sink.records] == [
            ("Milk 2.5% 900g", 49.99, None),
            ("Cheese Gouda 200g", 59.50, 79.99),
        ]

    @pytest.mark.asyncio
    async def test_outcomes_per_category(self, profiles, settings):
        """Test success, empty and failed categories in one run."""
        automation = FakeAutomation(
            {
                SILPO_DAIRY: FakePage(cards=_cards("Milk", "Kefir")),
                SILPO_CHEESE: FakePage(wait_error=ReadinessTimeout("no cards")),
                ATB_DAIRY: FakePage(evaluate_error=RuntimeError("page crashed")),
            }
        )
        sink = RecordingSink()

        outcomes = await ScrapeOrchestrator(profiles, automation, sink, settings).run()

        assert [(o.site, o.job.category_key, o.status) for o in outcomes] == [
            ("silpo", "dairy_eggs", OutcomeStatus.SUCCESS),
            ("silpo", "cheese", OutcomeStatus.EMPTY),
            ("atb", "dairy_eggs", OutcomeStatus.FAILED),
        ]
        assert outcomes[1].result.soft_failure == "no cards"
        assert "page crashed" in outcomes[2].error
        assert [p.name for p in sink.records] == ["Milk", "Kefir"]

    @pytest.mark.asyncio
    async def test_sessions_always_released(self, profiles, settings):
        """Test that every opened session is closed across mixed outcomes."""
        automation = FakeAutomation(
            {
                SILPO_DAIRY: FakePage(cards=_cards("Milk")),
                SILPO_CHEESE: FakePage(evaluate_error=RuntimeError("crash")),
                ATB_DAIRY: FakePage(wait_error=ReadinessTimeout("no cards")),
            }
        )

        await ScrapeOrchestrator(profiles, automation, RecordingSink(), settings).run()

        assert automation.opened == 3
        assert automation.closed == automation.opened
        assert automation.active == 0

    @pytest.mark.asyncio
    async def test_site_filter_limits_run(self, profiles, settings):
        """Test that only the filtered site is visited."""
        automation = FakeAutomation(default_page=FakePage(cards=_cards("Milk")))

        outcomes = await ScrapeOrchestrator(
            profiles, automation, RecordingSink(), settings
        ).run(site_filter="atb")

        assert [o.job.resolved_url for o in outcomes] == [ATB_DAIRY]

    @pytest.mark.asyncio
    async def test_empty_batch_not_sent_to_sink(self, settings):
        """Test that the sink is not called for an empty category."""
        profiles = {"silpo": make_profile()}
        sink = RecordingSink()

        outcomes = await ScrapeOrchestrator(
            profiles, FakeAutomation(), sink, settings
        ).run()

        assert outcomes[0].status == OutcomeStatus.EMPTY
        assert sink.batches == []

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_abort(self, profiles, settings):
        """Test that a failing sink marks the category failed and continues."""
        automation = FakeAutomation(default_page=FakePage(cards=_cards("Milk")))
        sink = RecordingSink(error=ConnectionError("database is down"))

        outcomes = await ScrapeOrchestrator(profiles, automation, sink, settings).run()

        assert len(outcomes) == 3
        assert all(o.status == OutcomeStatus.FAILED for o in outcomes)
        assert all("database is down" in o.error for o in outcomes)

    @pytest.mark.asyncio
    async def test_browser_failure_is_fatal(self, profiles, settings):
        """Test that AutomationError aborts the run."""
        automation = FakeAutomation(open_error=AutomationError("browser crashed"))

        with pytest.raises(AutomationError):
            await ScrapeOrchestrator(profiles, automation, RecordingSink(), settings).run()

    @pytest.mark.asyncio
    async def test_browser_failure_stops_remaining_jobs(self, settings):
        """Test that no category runs or saves after a fatal browser error."""
        profiles = {
            "silpo": make_profile(
                categories={f"cat_{i}": f"/category/{i}" for i in range(4)}
            ),
            "atb": make_profile("atb", base_url="https://www.atbmarket.com"),
        }
        automation = FakeAutomation(
            default_page=FakePage(cards=_cards("Milk")),
            open_failures=[AutomationError("browser crashed")],
        )
        sink = RecordingSink()

        with pytest.raises(AutomationError):
            await ScrapeOrchestrator(profiles, automation, sink, settings).run()

        assert automation.opened == 0
        assert sink.batches == []

    @pytest.mark.asyncio
    async def test_browser_failure_closes_in_flight_sessions(self, settings):
        """Test that concurrent jobs are cancelled and release their sessions."""
        profiles = {
            "silpo": make_profile(
                categories={f"cat_{i}": f"/category/{i}" for i in range(4)}
            )
        }
        automation = FakeAutomation(
            {"https://silpo.ua/category/0": FakePage(cards=_cards("Milk"))},
            default_page=FakePage(wait_error=AutomationError("browser crashed")),
            evaluate_delay=0.05,
        )
        settings = replace(settings, max_concurrent_per_site=2)
        sink = RecordingSink()

        with pytest.raises(AutomationError):
            await ScrapeOrchestrator(profiles, automation, sink, settings).run()

        assert automation.opened == 2
        assert automation.closed == automation.opened
        assert sink.batches == []

    @pytest.mark.asyncio
    async def test_sequential_by_default(self, profiles, settings):
        """Test that only one session is open at a time by default."""
        automation = FakeAutomation(
            default_page=FakePage(cards=_cards("Milk")), evaluate_delay=0.01
        )

        await ScrapeOrchestrator(profiles, automation, RecordingSink(), settings).run()

        assert automation.max_active == 1

    @pytest.mark.asyncio
    async def test_bounded_concurrency_per_site(self, settings):
        """Test that per-site concurrency never exceeds the configured cap."""
        profiles = {
            "silpo": make_profile(
                categories={f"cat_{i}": f"/category/{i}" for i in range(6)}
            )
        }
        automation = FakeAutomation(
            default_page=FakePage(cards=_cards("Milk")), evaluate_delay=0.01
        )
        settings = replace(settings, max_concurrent_per_site=2)

        outcomes = await ScrapeOrchestrator(
            profiles, automation, RecordingSink(), settings
        ).run()

        assert len(outcomes) == 6
        assert automation.max_active == 2
        assert automation.closed == automation.opened == 6

    @pytest.mark.asyncio
    async def test_progress_callback(self, settings):
        """Test that progress messages are reported."""
        messages = []
        profiles = {"silpo": make_profile()}
        automation = FakeAutomation({SILPO_DAIRY: FakePage(cards=_cards("Milk"))})

        await ScrapeOrchestrator(
            profiles, automation, RecordingSink(), settings, progress_callback=messages.append
        ).run()

        assert any("Found 1 products" in m for m in messages)
