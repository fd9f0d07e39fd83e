"""Pure functions turning raw card text into validated product records."""
import math
import re
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import urljoin

from .models import PLACEHOLDER_NAMES, RawCardPayload, ScrapedProduct

_NON_PRICE_CHARS = re.compile(r"[^\d.,]")
_WHITESPACE = re.compile(r"\s+")


def resolve_url(path: str, base_url: str) -> str:
    """Return an absolute category URL.

    Args:
        path: Configured category path, relative or absolute.
        base_url: Site base URL (no trailing slash).

    Returns:
        ``path`` unchanged when it already starts with ``http``,
        otherwise ``base_url + path``.
    """
    if path.startswith("http"):
        return path
    return base_url + path


def parse_price(price_text: Optional[str]) -> Optional[float]:
    """Parse a displayed price into a float.

    Handles formats:
    - "199,00 ₴" (decimal comma)
    - "1 299.50 UAH" (grouping spaces)
    - "1.299,50" / "1,299.50" (grouping separators)
    - "59.50 грн." (trailing punctuation)

    Everything except digits, commas and periods is dropped, commas become
    periods, and when several periods remain only the last one is kept as
    the decimal point.

    Args:
        price_text: Raw price string from the page.

    Returns:
        Parsed value, or None if nothing usable or not a positive number.
    """
    if not price_text:
        return None

    cleaned = _NON_PRICE_CHARS.sub("", price_text).strip(".,")
    if not cleaned:
        return None

    cleaned = cleaned.replace(",", ".")
    if cleaned.count(".") > 1:
        whole, _, fraction = cleaned.rpartition(".")
        cleaned = f"{whole.replace('.', '')}.{fraction}"

    try:
        value = float(cleaned)
    except ValueError:
        return None

    if not math.isfinite(value) or value <= 0:
        return None
    return value


# Named price rules selectable per site in sites.yaml
PRICE_RULES: dict[str, Callable[[Optional[str]], Optional[float]]] = {
    "decimal_comma": parse_price,
}


def clean_name(name_text: Optional[str]) -> Optional[str]:
    """Collapse whitespace; None for empty or placeholder names."""
    if not name_text:
        return None
    name = _WHITESPACE.sub(" ", name_text).strip()
    if not name or name.lower() in PLACEHOLDER_NAMES:
        return None
    return name


def _optional_url(value: Optional[str], base: str) -> Optional[str]:
    if not value or not value.strip():
        return None
    return urljoin(base, value.strip())


def normalize_card(
    payload: RawCardPayload,
    *,
    store: str,
    category: str,
    category_url: str,
    price_parser: Callable[[Optional[str]], Optional[float]] = parse_price,
    captured_at: Optional[datetime] = None,
) -> Optional[ScrapedProduct]:
    """Turn one raw card into a product, or None if the card is rejected.

    Args:
        payload: Raw values read from the card.
        store: Store label stamped on the record.
        category: Category label stamped on the record.
        category_url: Page the card came from; used as the product URL
            fallback and as the base for relative links.
        price_parser: Site price rule, applied to price and old price.
        captured_at: Capture time; defaults to now (UTC).

    Returns:
        Validated ScrapedProduct or None.
    """
    if payload.error:
        return None

    name = clean_name(payload.name_text)
    if name is None:
        return None

    price = price_parser(payload.price_text)
    if price is None:
        return None

    old_price = price_parser(payload.old_price_text)
    if old_price is not None and old_price <= price:
        # Not a discount
        old_price = None

    return ScrapedProduct(
        name=name,
        price=price,
        old_price=old_price,
        image_url=_optional_url(payload.image_src, category_url),
        store=store,
        category=category,
        last_updated=captured_at or datetime.now(timezone.utc),
        product_url=_optional_url(payload.link_href, category_url) or category_url,
        category_url=category_url,
    )
