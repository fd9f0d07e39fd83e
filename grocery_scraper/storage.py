"""Persistence sinks for scraped product batches."""
from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .db import DatabaseConfig, Product, create_db_engine
from .models import RecordFailure, SaveReport, ScrapedProduct

logger = structlog.get_logger()


class ProductSink(ABC):
    """Destination for batches of normalized products."""

    @abstractmethod
    def save_batch(self, records: Sequence[ScrapedProduct]) -> SaveReport:
        """Attempt every record and report which ones failed."""

    def close(self) -> None:
        """Release any resources held by the sink."""


class SQLAlchemyProductSink(ProductSink):
    """Insert products into the existing ``product`` table.

    The engine is created on the first batch and disposed by close().
    A batch is inserted in a single transaction; if that fails, the
    records are retried one transaction each so a bad row only costs
    itself. Rows are always inserted, never deduplicated.
    """

    def __init__(
        self,
        config: Optional[DatabaseConfig] = None,
        *,
        engine_factory: Callable[[DatabaseConfig], Engine] = create_db_engine,
    ) -> None:
        self._config = config or DatabaseConfig.from_env()
        self._engine_factory = engine_factory
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    def _get_session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._engine = self._engine_factory(self._config)
            self._session_factory = sessionmaker(
                bind=self._engine,
                class_=Session,
                expire_on_commit=False,
            )
            logger.info(
                "database_connected",
                host=self._config.host,
                port=self._config.port,
                database=self._config.database,
            )
        return self._session_factory

    def save_batch(self, records: Sequence[ScrapedProduct]) -> SaveReport:
        if not records:
            logger.info("no_products_to_save")
            return SaveReport(attempted=0, saved=0)

        factory = self._get_session_factory()
        logger.info("saving_products", count=len(records))

        with factory() as session:
            try:
                session.add_all([Product.from_scraped(record) for record in records])
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.warning(
                    "batch_insert_failed",
                    count=len(records),
                    error=str(e),
                )
            else:
                logger.info("saved_products", saved=len(records))
                return SaveReport(attempted=len(records), saved=len(records))

        return self._save_one_by_one(factory, records)

    def _save_one_by_one(
        self, factory: sessionmaker, records: Sequence[ScrapedProduct]
    ) -> SaveReport:
        saved = 0
        failures: list[RecordFailure] = []
        for index, record in enumerate(records):
            with factory() as session:
                try:
                    session.add(Product.from_scraped(record))
                    session.commit()
                    saved += 1
                except SQLAlchemyError as e:
                    session.rollback()
                    error = str(getattr(e, "orig", None) or e)
                    failures.append(RecordFailure(index=index, name=record.name, error=error))
                    logger.error(
                        "product_save_failed",
                        product_index=index,
                        name=record.name,
                        store=record.store,
                        error=error,
                    )

        logger.info("saved_products", saved=saved, failed=len(failures))
        return SaveReport(attempted=len(records), saved=saved, failures=tuple(failures))

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("database_disconnected")
        self._engine = None
        self._session_factory = None


class LoggingSink(ProductSink):
    """Dry-run sink: logs a preview of each batch and persists nothing."""

    PREVIEW_SIZE = 5

    def __init__(self) -> None:
        self.batches: list[tuple[ScrapedProduct, ...]] = []

    def save_batch(self, records: Sequence[ScrapedProduct]) -> SaveReport:
        batch = tuple(records)
        self.batches.append(batch)

        logger.info("dry_run_batch", count=len(batch))
        for record in batch[: self.PREVIEW_SIZE]:
            logger.info(
                "dry_run_product",
                name=record.name,
                store=record.store,
                price=record.price,
                product_url=record.product_url,
            )
        if len(batch) > self.PREVIEW_SIZE:
            logger.info("dry_run_more_products", remaining=len(batch) - self.PREVIEW_SIZE)

        return SaveReport(attempted=len(batch), saved=len(batch))
