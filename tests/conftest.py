"""Shared fixtures."""
import pytest

from grocery_scraper.models import ScraperSettings

from fakes import make_profile


@pytest.fixture
def settings():
    return ScraperSettings(navigation_timeout_ms=60000, readiness_timeout_ms=20000)


@pytest.fixture
def profile():
    return make_profile()


@pytest.fixture
def sample_cards():
    """One valid card, one without a price element, one discounted."""
    return [
        {
            "name": "Milk 2.5% 900g",
            "price": "49.99 грн",
            "oldPrice": None,
            "image": "https://silpo.ua/images/milk.png",
            "link": "/product/milk-2-5",
        },
        {
            "name": "Kefir 1%",
            "price": None,
            "oldPrice": None,
            "image": None,
            "link": "/product/kefir",
        },
        {
            "name": "Cheese Gouda 200g",
            "price": "59,50 ₴",
            "oldPrice": "79,99 ₴",
            "image": None,
            "link": None,
        },
    ]
