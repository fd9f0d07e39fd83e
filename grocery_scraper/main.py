"""Grocery Scraper - Main Entry Point."""
import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from .automation import PlaywrightAutomation
from .config_loader import load_settings, load_site_profiles
from .errors import AutomationError
from .excel_handler import save_run_results
from .models import CategoryOutcome, OutcomeStatus, ScraperSettings, SiteProfile
from .orchestrator import ScrapeOrchestrator
from .storage import LoggingSink, ProductSink, SQLAlchemyProductSink


def configure_logging(verbose: bool = False) -> None:
    """Configure structured logging.

    Args:
        verbose: Enable debug level logging if True.
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        stream=sys.stdout,
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="Grocery Scraper - collect product listings from retail category pages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scrape every configured site into the database
  python -m grocery_scraper.main

  # Only one site
  python -m grocery_scraper.main --site silpo

  # One category, no database writes, with a spreadsheet of the results
  python -m grocery_scraper.main --site atb --category dairy_eggs --dry-run --export output

  # Run with visible browser for debugging
  python -m grocery_scraper.main --site silpo --visible
        """,
    )
    parser.add_argument(
        "--site",
        help="Scrape a single configured site (e.g., silpo, atb)",
    )
    parser.add_argument(
        "--category",
        action="append",
        dest="categories",
        metavar="KEY",
        help="Restrict the run to this category key (repeatable)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config/sites.yaml"),
        help="Path to sites.yaml configuration file (default: config/sites.yaml)",
    )
    parser.add_argument(
        "--settings",
        "-s",
        type=Path,
        default=Path("config/settings.yaml"),
        help="Path to settings.yaml configuration file",
    )
    parser.add_argument(
        "--visible",
        action="store_true",
        help="Run browser with visible window (for debugging)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log scraped products instead of writing them to the database",
    )
    parser.add_argument(
        "--export",
        type=Path,
        metavar="DIR",
        help="Also write an Excel summary of the run to this directory",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser.parse_args(argv)


async def run_scrape(
    profiles: dict[str, SiteProfile],
    settings: ScraperSettings,
    sink: ProductSink,
    site_filter: Optional[str] = None,
    category_filter: Optional[list[str]] = None,
) -> list[CategoryOutcome]:
    """Launch the browser and run the orchestrator once."""
    async with PlaywrightAutomation(settings) as automation:
        orchestrator = ScrapeOrchestrator(
            profiles,
            automation,
            sink,
            settings,
            progress_callback=print,
        )
        return await orchestrator.run(site_filter, category_filter)


def main(argv: Optional[list[str]] = None) -> int:
    """Run the scraper.

    Returns:
        Exit code: 0 if every category completed, 1 if any category
        failed, 2+ for errors.
    """
    args = parse_args(argv)
    configure_logging(args.verbose)

    logger = structlog.get_logger()

    sink: Optional[ProductSink] = None
    try:
        profiles = load_site_profiles(args.config)
        settings = ScraperSettings()
        if args.settings.exists():
            settings = load_settings(args.settings)
        if args.visible:
            settings = replace(settings, headless=False)

        sink = LoggingSink() if args.dry_run else SQLAlchemyProductSink()

        logger.info(
            "starting_scrape",
            sites=[args.site] if args.site else sorted(profiles),
            categories=args.categories,
            dry_run=args.dry_run,
            max_concurrent_per_site=settings.max_concurrent_per_site,
        )

        print(f"\n{'=' * 60}")
        print("🚀 GROCERY SCRAPER")
        print(f"{'=' * 60}")
        print(f"Sites: {args.site or ', '.join(profiles)}")
        print(f"Mode: {'DRY RUN' if args.dry_run else 'DATABASE'}")
        print(f"Started: {datetime.now():%Y-%m-%d %H:%M:%S}")
        print(f"{'=' * 60}\n")

        started_at = datetime.now()
        outcomes = asyncio.run(
            run_scrape(profiles, settings, sink, args.site, args.categories)
        )
        ended_at = datetime.now()
        elapsed_seconds = (ended_at - started_at).total_seconds()

        if args.export:
            output_path = save_run_results(
                outcomes,
                args.export,
                timing_info={
                    "started_at": started_at.isoformat(),
                    "ended_at": ended_at.isoformat(),
                    "elapsed_seconds": elapsed_seconds,
                },
            )
            logger.info("results_exported", output_file=str(output_path))

        failed = [o for o in outcomes if o.status == OutcomeStatus.FAILED]
        found = sum(len(o.result.products) for o in outcomes if o.result)
        saved = sum(o.saved for o in outcomes)

        elapsed_str = f"{int(elapsed_seconds // 60)}m {int(elapsed_seconds % 60)}s"
        print(f"\n{'=' * 60}")
        print("✅ SCRAPE COMPLETE")
        print(f"{'=' * 60}")
        print(f"Duration: {elapsed_str}")
        print(f"Categories: {len(outcomes)} ({len(failed)} failed)")
        print(f"Products found: {found}, saved: {saved}")
        print(f"{'=' * 60}\n")

        return 1 if failed else 0

    except FileNotFoundError as e:
        logger.error("file_not_found", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 2

    except ValueError as e:
        logger.error("configuration_error", error=str(e))
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 3

    except AutomationError as e:
        logger.error("browser_unavailable", error=str(e))
        print(f"Browser Error: {e}", file=sys.stderr)
        return 4

    except KeyboardInterrupt:
        logger.info("interrupted_by_user")
        print("\nScrape interrupted by user.", file=sys.stderr)
        return 130

    except Exception as e:
        logger.exception("unexpected_error", error=str(e))
        print(f"Unexpected Error: {e}", file=sys.stderr)
        return 4

    finally:
        if sink is not None:
            sink.close()


if __name__ == "__main__":
    sys.exit(main())
