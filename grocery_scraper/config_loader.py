"""Configuration loading with YAML security."""
from pathlib import Path
from typing import Any

import yaml

from .models import ScraperSettings, SiteProfile, SiteSelectors
from .normalizer import PRICE_RULES

REQUIRED_SELECTORS = ("card", "name", "price", "image", "link")


def load_config_secure(config_path: Path) -> dict[str, Any]:
    """Load YAML configuration with security hardening.

    CRITICAL: Uses safe_load() to prevent code execution attacks.
    Never use yaml.load() without a SafeLoader.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary containing the configuration.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If config is not a valid dictionary.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        # CRITICAL: Use safe_load() - never yaml.load()
        config = yaml.safe_load(f)

    if not isinstance(config, dict):
        raise ValueError("Configuration must be a dictionary")

    return config


def _build_selectors(site_name: str, raw: Any) -> SiteSelectors:
    if not isinstance(raw, dict):
        raise ValueError(f"Site '{site_name}' must define a 'selectors' mapping")

    missing = [key for key in REQUIRED_SELECTORS if not raw.get(key)]
    if missing:
        raise ValueError(f"Site '{site_name}' is missing selectors: {missing}")

    return SiteSelectors(
        card=raw["card"],
        name=raw["name"],
        price=raw["price"],
        image=raw["image"],
        link=raw["link"],
        old_price=raw.get("old_price"),
        next_page=raw.get("next_page"),
    )


def load_site_profiles(config_path: Path) -> dict[str, SiteProfile]:
    """Load site profiles from YAML file.

    Category paths may be ``null`` for sites that do not carry a category;
    those stay None in the profile and are skipped at run time.

    Args:
        config_path: Path to the sites YAML file.

    Returns:
        Mapping of site name to SiteProfile, in file order.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If the sites section or a site definition is invalid.
    """
    config = load_config_secure(config_path)

    sites = config.get("sites")
    if not isinstance(sites, dict) or not sites:
        raise ValueError("Configuration must contain a non-empty 'sites' section")

    category_names = config.get("category_names") or {}

    profiles: dict[str, SiteProfile] = {}
    for site_name, site in sites.items():
        if not isinstance(site, dict):
            raise ValueError(f"Site '{site_name}' must be a mapping")

        base_url = site.get("base_url")
        if not base_url:
            raise ValueError(f"Site '{site_name}' is missing 'base_url'")

        rule_name = site.get("price_rule", "decimal_comma")
        if rule_name not in PRICE_RULES:
            raise ValueError(
                f"Site '{site_name}' uses unknown price rule '{rule_name}'"
            )

        categories = site.get("categories") or {}
        if not isinstance(categories, dict):
            raise ValueError(f"Site '{site_name}' categories must be a mapping")

        profiles[site_name] = SiteProfile(
            name=site_name,
            display_name=site.get("display_name", site_name),
            base_url=base_url.rstrip("/"),
            categories={
                key: (str(path) if path else None)
                for key, path in categories.items()
            },
            selectors=_build_selectors(site_name, site.get("selectors")),
            parse_price=PRICE_RULES[rule_name],
            category_names=dict(category_names),
        )

    return profiles


def load_settings(config_path: Path) -> ScraperSettings:
    """Load settings configuration from YAML file.

    Args:
        config_path: Path to the settings YAML file.

    Returns:
        ScraperSettings with defaults applied for missing keys.

    Raises:
        ValueError: If timeouts or concurrency values are inconsistent.
    """
    config = load_config_secure(config_path)

    defaults = ScraperSettings()
    viewport = config.get("viewport") or {}

    headless = config.get("headless", defaults.headless)
    if not isinstance(headless, bool):
        raise ValueError(f"headless must be true or false, got {headless!r}")

    settings = ScraperSettings(
        navigation_timeout_ms=int(
            config.get("navigation_timeout_ms", defaults.navigation_timeout_ms)
        ),
        readiness_timeout_ms=int(
            config.get("readiness_timeout_ms", defaults.readiness_timeout_ms)
        ),
        headless=headless,
        max_concurrent_per_site=int(
            config.get("max_concurrent_per_site", defaults.max_concurrent_per_site)
        ),
        navigation_attempts=int(
            config.get("navigation_attempts", defaults.navigation_attempts)
        ),
        user_agent=config.get("user_agent", defaults.user_agent),
        viewport_width=int(viewport.get("width", defaults.viewport_width)),
        viewport_height=int(viewport.get("height", defaults.viewport_height)),
        locale=config.get("locale", defaults.locale),
    )

    # Rendering follows document load, so the readiness wait is the shorter one
    if settings.readiness_timeout_ms >= settings.navigation_timeout_ms:
        raise ValueError(
            "readiness_timeout_ms must be shorter than navigation_timeout_ms"
        )
    if settings.max_concurrent_per_site < 1:
        raise ValueError("max_concurrent_per_site must be at least 1")
    if settings.navigation_attempts < 1:
        raise ValueError("navigation_attempts must be at least 1")

    return settings
