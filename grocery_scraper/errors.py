"""Exception hierarchy for the scraping pipeline."""


class ScraperError(Exception):
    """Base class for all scraper errors."""


class AutomationError(ScraperError):
    """The browser could not be started or a session could not be opened.

    This is fatal for the run and is never retried.
    """


class NavigationTimeout(ScraperError):
    """Navigation did not reach DOMContentLoaded before the timeout."""


class NavigationError(ScraperError):
    """Navigation failed outright (DNS, connection refused, aborted, ...)."""


class ReadinessTimeout(ScraperError):
    """The product card selector never appeared on the page."""


# Category-level failures handled by returning an empty result
SOFT_FAILURES = (NavigationTimeout, NavigationError, ReadinessTimeout)
