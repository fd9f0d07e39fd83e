"""Data contracts for type safety and documentation."""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Callable, Optional

# Names the page renders while a card is still a skeleton
PLACEHOLDER_NAMES = frozenset({"n/a", "unknown product"})


class OutcomeStatus(StrEnum):
    """Result of processing one category job."""

    SUCCESS = "SUCCESS"
    EMPTY = "EMPTY"
    FAILED = "FAILED"


@dataclass(frozen=True)
class SiteSelectors:
    """CSS selectors used to read product cards on a site."""

    card: str
    name: str
    price: str
    image: str
    link: str
    old_price: Optional[str] = None
    next_page: Optional[str] = None

    def to_dict(self) -> dict:
        """Serializable form passed into the page."""
        return {
            "card": self.card,
            "name": self.name,
            "price": self.price,
            "oldPrice": self.old_price,
            "image": self.image,
            "link": self.link,
            "nextPage": self.next_page,
        }


@dataclass(frozen=True)
class SiteProfile:
    """Static description of one retail site."""

    name: str
    display_name: str
    base_url: str
    categories: dict[str, Optional[str]]
    selectors: SiteSelectors
    parse_price: Callable[[Optional[str]], Optional[float]]
    category_names: dict[str, str] = field(default_factory=dict)

    def category_display_name(self, category_key: str) -> str:
        """Human-readable category label, falling back to the key."""
        return self.category_names.get(category_key, category_key)

    def available_categories(self) -> list[tuple[str, str]]:
        """(key, path) pairs for categories this site actually carries."""
        return [
            (key, path)
            for key, path in self.categories.items()
            if path is not None
        ]


@dataclass(frozen=True)
class CategoryJob:
    """One category page to scrape."""

    category_key: str
    display_name: str
    resolved_url: str


@dataclass(frozen=True)
class RawCardPayload:
    """Raw text and attribute values read from one product card."""

    name_text: Optional[str] = None
    price_text: Optional[str] = None
    old_price_text: Optional[str] = None
    image_src: Optional[str] = None
    link_href: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_page(cls, data: dict) -> "RawCardPayload":
        """Build from the plain dict returned by the in-page routine."""
        return cls(
            name_text=data.get("name"),
            price_text=data.get("price"),
            old_price_text=data.get("oldPrice"),
            image_src=data.get("image"),
            link_href=data.get("link"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class ScrapedProduct:
    """A single validated product listing.

    Construction fails with ValueError for an empty name or a price that
    is not a finite positive number.
    """

    name: str
    price: float
    store: str
    category: str
    product_url: str
    last_updated: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    old_price: Optional[float] = None
    image_url: Optional[str] = None
    category_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Product name must not be empty")
        if self.name.strip().lower() in PLACEHOLDER_NAMES:
            raise ValueError(f"Placeholder product name: {self.name!r}")
        if not math.isfinite(self.price) or self.price <= 0:
            raise ValueError(f"Price must be a positive number, got {self.price!r}")
        if self.old_price is not None and (
            not math.isfinite(self.old_price) or self.old_price <= 0
        ):
            raise ValueError(f"Invalid old price: {self.old_price!r}")
        if not self.product_url:
            raise ValueError("Product URL must not be empty")

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and DataFrame creation."""
        return {
            "name": self.name,
            "price": self.price,
            "old_price": self.old_price,
            "image_url": self.image_url,
            "store": self.store,
            "category": self.category,
            "last_updated": self.last_updated.isoformat(),
            "product_url": self.product_url,
            "category_url": self.category_url,
        }


@dataclass(frozen=True)
class ExtractionResult:
    """Products extracted from one category page."""

    products: tuple[ScrapedProduct, ...] = ()
    attempted: int = 0
    skipped: int = 0
    soft_failure: Optional[str] = None
    has_next_page: bool = False

    @classmethod
    def empty(cls, reason: Optional[str] = None) -> "ExtractionResult":
        return cls(soft_failure=reason)


@dataclass(frozen=True)
class RecordFailure:
    """A record the sink could not persist."""

    index: int
    name: str
    error: str


@dataclass(frozen=True)
class SaveReport:
    """Per-batch persistence outcome."""

    attempted: int
    saved: int
    failures: tuple[RecordFailure, ...] = ()

    @property
    def failed(self) -> int:
        return len(self.failures)


@dataclass(frozen=True)
class CategoryOutcome:
    """What happened to one category job during a run."""

    site: str
    job: CategoryJob
    status: OutcomeStatus
    result: Optional[ExtractionResult] = None
    saved: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for the run summary sheet."""
        result = self.result or ExtractionResult()
        return {
            "site": self.site,
            "category": self.job.category_key,
            "url": self.job.resolved_url,
            "status": str(self.status),
            "found": len(result.products),
            "attempted": result.attempted,
            "skipped": result.skipped,
            "saved": self.saved,
            "has_next_page": result.has_next_page,
            "error": self.error or result.soft_failure,
        }


@dataclass(frozen=True)
class ScraperSettings:
    """Runtime settings for a scrape run."""

    navigation_timeout_ms: int = 60000
    readiness_timeout_ms: int = 20000
    headless: bool = True
    max_concurrent_per_site: int = 1
    navigation_attempts: int = 1
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/114.0.0.0 Safari/537.36"
    )
    viewport_width: int = 1920
    viewport_height: int = 1080
    locale: str = "uk-UA"
