"""Database configuration and the mapping of the existing product table.

Nothing here creates or migrates the table. Column names follow the deployed
schema, which mixes quoted camelCase names with product_url.
"""
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Integer, Numeric, String, create_engine
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .models import ScrapedProduct


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the product database."""

    host: str = "localhost"
    port: int = 5432
    username: str = "postgres"
    password: str = "root"
    database: str = "scansave"

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Read DB_HOST, DB_PORT, DB_USER, DB_PASS and DB_NAME.

        Raises:
            ValueError: If DB_PORT is not an integer.
        """
        defaults = cls()
        raw_port = os.getenv("DB_PORT", str(defaults.port))
        try:
            port = int(raw_port)
        except ValueError:
            raise ValueError(f"DB_PORT must be an integer, got {raw_port!r}") from None

        return cls(
            host=os.getenv("DB_HOST", defaults.host),
            port=port,
            username=os.getenv("DB_USER", defaults.username),
            password=os.getenv("DB_PASS", defaults.password),
            database=os.getenv("DB_NAME", defaults.database),
        )

    def url(self) -> URL:
        return URL.create(
            "postgresql+psycopg",
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )


def create_db_engine(config: DatabaseConfig) -> Engine:
    return create_engine(config.url(), pool_pre_ping=True)


class Base(DeclarativeBase):
    """Declarative base for the scraper's tables."""


class Product(Base):
    """One persisted product observation. Rows are insert-only."""

    __tablename__ = "product"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric, nullable=False)
    old_price: Mapped[Optional[Decimal]] = mapped_column("oldPrice", Numeric, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column("imageUrl", String, nullable=True)
    store: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    category_url: Mapped[Optional[str]] = mapped_column("categoryUrl", String, nullable=True)
    # "timestamp" without time zone; values are stored as UTC
    last_updated: Mapped[datetime] = mapped_column("lastUpdated", DateTime, nullable=False)
    product_url: Mapped[str] = mapped_column("product_url", String, nullable=False)

    @classmethod
    def from_scraped(cls, product: ScrapedProduct) -> "Product":
        """Build a row from a validated product."""
        return cls(
            name=product.name,
            price=_to_decimal(product.price),
            old_price=_to_decimal(product.old_price),
            image_url=product.image_url,
            store=product.store,
            category=product.category,
            category_url=product.category_url,
            last_updated=_to_naive_utc(product.last_updated),
            product_url=product.product_url,
        )


def _to_decimal(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    # str() keeps 59.5 as 59.5 instead of the binary expansion
    return Decimal(str(value))


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
