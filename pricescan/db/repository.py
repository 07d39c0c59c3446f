"""Persistence interfaces and their SQLAlchemy implementation."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricescan import domain
from pricescan.db import models
from pricescan.domain import (
    JOB_UPDATE_FIELDS,
    InvalidJobTransition,
    JobConfig,
    JobNotFound,
    JobStatus,
    ResultFilter,
    SourceConfig,
    SourceNotFound,
)

logger = logging.getLogger(__name__)


class JobRepository(ABC):
    """Job state as seen by the scraping manager."""

    @abstractmethod
    async def update_job(self, job_id: str, status: JobStatus, **fields: Any) -> None:
        """Apply a status transition plus progress fields to one job.

        Raises:
            InvalidJobTransition: If the stored status cannot move to ``status``
            JobNotFound: If the job does not exist
        """

    @abstractmethod
    async def get_job_status(self, job_id: str) -> Optional[JobStatus]:
        """Current stored status, used to observe external stop requests."""


class ResultSink(ABC):
    """The single write path for ranked price observations."""

    @abstractmethod
    async def save_results(
        self, product_id: str, results: list[domain.PriceScrapingResult]
    ) -> int:
        """Persist one product's ranked results and return how many were stored."""


@dataclass
class ResultWithProduct:
    """A stored result joined with the wholesale figures of its product."""

    result: domain.PriceScrapingResult
    wholesale_price: Optional[Decimal]
    product_currency: str
    supplier_id: str


def _job_to_domain(row: models.PriceScrapingJob) -> domain.PriceScrapingJob:
    return domain.PriceScrapingJob(
        id=row.id,
        name=row.name,
        description=row.description,
        status=JobStatus(row.status),
        supplier_id=row.supplier_id,
        total_products=row.total_products,
        processed_products=row.processed_products,
        successful_products=row.successful_products,
        failed_products=row.failed_products,
        started_at=row.started_at,
        completed_at=row.completed_at,
        error_message=row.error_message,
        config=JobConfig.from_dict(row.config),
        created_at=row.created_at,
    )


def _source_to_domain(row: models.PriceScrapingSource) -> domain.PriceScrapingSource:
    return domain.PriceScrapingSource(
        id=row.id,
        name=row.name,
        base_url=row.base_url,
        country=row.country,
        is_active=row.is_active,
        priority=row.priority,
        rate_limit=row.rate_limit,
        config=SourceConfig.from_dict(row.config),
    )


def _product_to_domain(row: models.NormalizedProduct) -> domain.NormalizedProduct:
    return domain.NormalizedProduct(
        id=row.id,
        supplier_id=row.supplier_id,
        brand=row.brand,
        product_name=row.product_name,
        variant_size=row.variant_size,
        ean=row.ean,
        wholesale_price=row.wholesale_price,
        currency=row.currency,
        pack_size=row.pack_size,
        supplier_name=row.supplier_name,
        last_purchase_price=row.last_purchase_price,
        availability=row.availability,
        notes=row.notes,
        import_session_id=row.import_session_id,
    )


def _result_to_domain(row: models.PriceScrapingResult) -> domain.PriceScrapingResult:
    return domain.PriceScrapingResult(
        id=row.id,
        normalized_product_id=row.normalized_product_id,
        source_id=row.source_id,
        job_id=row.job_id,
        product_title=row.product_title,
        merchant=row.merchant,
        url=row.url,
        price=row.price,
        currency=row.currency,
        price_incl_vat=row.price_incl_vat,
        shipping_cost=row.shipping_cost,
        availability=row.availability,
        confidence_score=row.confidence_score,
        is_lowest_price=row.is_lowest_price,
        scraped_at=row.scraped_at,
    )


def _alert_to_domain(row: models.ScrapingAlert) -> domain.ScrapingAlert:
    return domain.ScrapingAlert(
        id=row.id,
        normalized_product_id=row.normalized_product_id,
        alert_type=domain.AlertType(row.alert_type),
        message=row.message,
        current_margin=row.current_margin,
        target_margin=row.target_margin,
        is_read=row.is_read,
        created_at=row.created_at,
    )


def _supplier_to_domain(row: models.Supplier) -> domain.Supplier:
    return domain.Supplier(
        id=row.id, name=row.name, country=row.country, currency=row.currency, is_active=row.is_active
    )


def _rate_to_domain(row: models.CurrencyRate) -> domain.CurrencyRate:
    return domain.CurrencyRate(
        id=row.id,
        from_currency=row.from_currency,
        to_currency=row.to_currency,
        rate=row.rate,
        date=row.date,
        source=row.source,
        is_active=row.is_active,
    )


def _result_row(result: domain.PriceScrapingResult) -> models.PriceScrapingResult:
    return models.PriceScrapingResult(
        id=result.id,
        normalized_product_id=result.normalized_product_id,
        source_id=result.source_id,
        job_id=result.job_id,
        product_title=result.product_title,
        merchant=result.merchant,
        url=result.url,
        price=result.price,
        currency=result.currency,
        price_incl_vat=result.price_incl_vat,
        shipping_cost=result.shipping_cost,
        availability=result.availability,
        confidence_score=result.confidence_score,
        is_lowest_price=result.is_lowest_price,
        scraped_at=result.scraped_at,
    )


def _apply_result_filter(query, result_filter: ResultFilter | None):
    if result_filter is None:
        return query
    model = models.PriceScrapingResult
    if result_filter.job_id:
        query = query.where(model.job_id == result_filter.job_id)
    if result_filter.source_id:
        query = query.where(model.source_id == result_filter.source_id)
    if result_filter.product_id:
        query = query.where(model.normalized_product_id == result_filter.product_id)
    if result_filter.supplier_id:
        query = query.where(models.NormalizedProduct.supplier_id == result_filter.supplier_id)
    if result_filter.min_confidence is not None:
        query = query.where(model.confidence_score >= result_filter.min_confidence)
    if result_filter.date_from:
        query = query.where(model.scraped_at >= result_filter.date_from)
    if result_filter.date_to:
        query = query.where(model.scraped_at <= result_filter.date_to)
    return query


class SqlAlchemyRepository(JobRepository):
    """Repository over an async SQLAlchemy session factory.

    Every public method opens its own session and commits once before
    returning, so each call is atomic on its own.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def create_job(self, job: domain.PriceScrapingJob) -> domain.PriceScrapingJob:
        async with self.session_factory() as session:
            row = models.PriceScrapingJob(
                id=job.id,
                name=job.name,
                description=job.description,
                status=job.status.value,
                supplier_id=job.supplier_id,
                total_products=job.total_products,
                config=job.config.to_dict(),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _job_to_domain(row)

    async def update_job(self, job_id: str, status: JobStatus, **fields: Any) -> None:
        unknown = set(fields) - JOB_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        async with self.session_factory() as session:
            result = await session.execute(
                select(models.PriceScrapingJob)
                .where(models.PriceScrapingJob.id == job_id)
                .with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise JobNotFound(job_id)

            current = JobStatus(row.status)
            if not current.can_transition_to(status):
                raise InvalidJobTransition(job_id, current, status)

            row.status = status.value
            for name, value in fields.items():
                setattr(row, name, value)
            await session.commit()

    async def get_job(self, job_id: str) -> Optional[domain.PriceScrapingJob]:
        async with self.session_factory() as session:
            row = await session.get(models.PriceScrapingJob, job_id)
            return _job_to_domain(row) if row else None

    async def get_job_status(self, job_id: str) -> Optional[JobStatus]:
        async with self.session_factory() as session:
            status = await session.scalar(
                select(models.PriceScrapingJob.status).where(models.PriceScrapingJob.id == job_id)
            )
            return JobStatus(status) if status else None

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        supplier_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[domain.PriceScrapingJob]:
        async with self.session_factory() as session:
            query = select(models.PriceScrapingJob)
            if status:
                query = query.where(models.PriceScrapingJob.status == status.value)
            if supplier_id:
                query = query.where(models.PriceScrapingJob.supplier_id == supplier_id)
            query = query.order_by(models.PriceScrapingJob.created_at.desc()).limit(limit).offset(offset)
            result = await session.execute(query)
            return [_job_to_domain(row) for row in result.scalars().all()]

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job and all results it produced."""
        async with self.session_factory() as session:
            row = await session.get(models.PriceScrapingJob, job_id)
            if row is None:
                return False
            await session.execute(
                delete(models.PriceScrapingResult).where(models.PriceScrapingResult.job_id == job_id)
            )
            await session.execute(
                delete(models.PriceScrapingJob).where(models.PriceScrapingJob.id == job_id)
            )
            await session.commit()
            logger.info(f"Deleted job {job_id} and its results")
            return True

    # ------------------------------------------------------------------
    # Results & alerts
    # ------------------------------------------------------------------

    async def save_result(self, result: domain.PriceScrapingResult) -> None:
        async with self.session_factory() as session:
            session.add(_result_row(result))
            await session.commit()

    async def save_results(self, results: list[domain.PriceScrapingResult]) -> int:
        """Insert one product's scrape pass in a single commit."""
        if not results:
            return 0
        async with self.session_factory() as session:
            session.add_all([_result_row(r) for r in results])
            await session.commit()
        return len(results)

    async def find_results(
        self,
        result_filter: ResultFilter | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[domain.PriceScrapingResult]:
        async with self.session_factory() as session:
            query = select(models.PriceScrapingResult).join(models.NormalizedProduct)
            query = _apply_result_filter(query, result_filter)
            query = query.order_by(
                models.PriceScrapingResult.scraped_at.desc(), models.PriceScrapingResult.id
            ).limit(limit).offset(offset)
            result = await session.execute(query)
            return [_result_to_domain(row) for row in result.scalars().all()]

    async def count_results(self, result_filter: ResultFilter | None = None) -> int:
        async with self.session_factory() as session:
            query = (
                select(func.count(models.PriceScrapingResult.id))
                .select_from(models.PriceScrapingResult)
                .join(models.NormalizedProduct)
            )
            query = _apply_result_filter(query, result_filter)
            return await session.scalar(query) or 0

    async def find_result_rows(self, result_filter: ResultFilter | None = None) -> list[ResultWithProduct]:
        """All matching results with their product's wholesale price, in a stable order."""
        async with self.session_factory() as session:
            query = select(
                models.PriceScrapingResult,
                models.NormalizedProduct.wholesale_price,
                models.NormalizedProduct.currency,
                models.NormalizedProduct.supplier_id,
            ).join(models.NormalizedProduct)
            query = _apply_result_filter(query, result_filter)
            query = query.order_by(models.PriceScrapingResult.id)
            result = await session.execute(query)
            return [
                ResultWithProduct(
                    result=_result_to_domain(row),
                    wholesale_price=wholesale_price,
                    product_currency=currency,
                    supplier_id=supplier_id,
                )
                for row, wholesale_price, currency, supplier_id in result.all()
            ]

    async def create_alert(self, alert: domain.ScrapingAlert) -> domain.ScrapingAlert:
        async with self.session_factory() as session:
            session.add(
                models.ScrapingAlert(
                    id=alert.id,
                    normalized_product_id=alert.normalized_product_id,
                    alert_type=alert.alert_type.value,
                    message=alert.message,
                    current_margin=alert.current_margin,
                    target_margin=alert.target_margin,
                    is_read=alert.is_read,
                    created_at=alert.created_at,
                )
            )
            await session.commit()
        return alert

    async def list_alerts(
        self, unread_only: bool = False, limit: int = 50, offset: int = 0
    ) -> list[domain.ScrapingAlert]:
        async with self.session_factory() as session:
            query = select(models.ScrapingAlert)
            if unread_only:
                query = query.where(models.ScrapingAlert.is_read.is_(False))
            query = query.order_by(models.ScrapingAlert.created_at.desc()).limit(limit).offset(offset)
            result = await session.execute(query)
            return [_alert_to_domain(row) for row in result.scalars().all()]

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def find_active_sources(self) -> list[domain.PriceScrapingSource]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.PriceScrapingSource)
                .where(models.PriceScrapingSource.is_active.is_(True))
                .order_by(models.PriceScrapingSource.priority.desc(), models.PriceScrapingSource.name)
            )
            return [_source_to_domain(row) for row in result.scalars().all()]

    async def list_sources(self) -> list[domain.PriceScrapingSource]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.PriceScrapingSource)
                .order_by(models.PriceScrapingSource.priority.desc(), models.PriceScrapingSource.name)
            )
            return [_source_to_domain(row) for row in result.scalars().all()]

    async def create_source(self, source: domain.PriceScrapingSource) -> domain.PriceScrapingSource:
        async with self.session_factory() as session:
            row = models.PriceScrapingSource(
                id=source.id,
                name=source.name,
                base_url=source.base_url,
                country=source.country,
                is_active=source.is_active,
                priority=source.priority,
                rate_limit=source.rate_limit,
                config=source.config.to_dict(),
            )
            session.add(row)
            await session.commit()
            return _source_to_domain(row)

    async def update_sources(self, updates: list[dict[str, Any]]) -> list[domain.PriceScrapingSource]:
        """
        Apply several source updates in one transaction.

        Each update carries ``id`` plus any of ``name``, ``base_url``, ``country``,
        ``is_active``, ``priority``, ``rate_limit`` and ``config`` (a SourceConfig).

        Raises:
            SourceNotFound: If any id is unknown; nothing is written in that case
        """
        allowed = {"name", "base_url", "country", "is_active", "priority", "rate_limit", "config"}
        async with self.session_factory() as session:
            async with session.begin():
                ids = [u["id"] for u in updates]
                result = await session.execute(
                    select(models.PriceScrapingSource).where(models.PriceScrapingSource.id.in_(ids))
                )
                rows = {row.id: row for row in result.scalars().all()}
                missing = [source_id for source_id in ids if source_id not in rows]
                if missing:
                    raise SourceNotFound(", ".join(missing))

                for update in updates:
                    row = rows[update["id"]]
                    for name, value in update.items():
                        if name not in allowed:
                            continue
                        if name == "config":
                            value = value.to_dict() if isinstance(value, SourceConfig) else dict(value)
                        setattr(row, name, value)
                    row.updated_at = datetime.utcnow()

            logger.info(f"Updated {len(updates)} price sources")
            return [_source_to_domain(rows[source_id]) for source_id in ids]

    # ------------------------------------------------------------------
    # Products & suppliers
    # ------------------------------------------------------------------

    async def find_products_by_supplier(
        self, supplier_id: str, limit: Optional[int] = None
    ) -> list[domain.NormalizedProduct]:
        async with self.session_factory() as session:
            query = (
                select(models.NormalizedProduct)
                .where(models.NormalizedProduct.supplier_id == supplier_id)
                .order_by(models.NormalizedProduct.created_at, models.NormalizedProduct.id)
            )
            if limit:
                query = query.limit(limit)
            result = await session.execute(query)
            return [_product_to_domain(row) for row in result.scalars().all()]

    async def find_products_by_ids(self, product_ids: list[str]) -> list[domain.NormalizedProduct]:
        if not product_ids:
            return []
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.NormalizedProduct).where(models.NormalizedProduct.id.in_(product_ids))
            )
            by_id = {row.id: _product_to_domain(row) for row in result.scalars().all()}
        return [by_id[pid] for pid in product_ids if pid in by_id]

    async def get_product(self, product_id: str) -> Optional[domain.NormalizedProduct]:
        async with self.session_factory() as session:
            row = await session.get(models.NormalizedProduct, product_id)
            return _product_to_domain(row) if row else None

    async def save_products(
        self,
        supplier_id: str,
        products: list[domain.NormalizedProduct],
        import_session_id: Optional[str] = None,
    ) -> list[domain.NormalizedProduct]:
        saved = []
        async with self.session_factory() as session:
            for product in products:
                row = models.NormalizedProduct(
                    id=product.id or domain.new_id(),
                    supplier_id=supplier_id,
                    brand=product.brand,
                    product_name=product.product_name,
                    variant_size=product.variant_size,
                    ean=product.ean,
                    wholesale_price=product.wholesale_price,
                    currency=product.currency,
                    pack_size=product.pack_size,
                    supplier_name=product.supplier_name,
                    last_purchase_price=product.last_purchase_price,
                    availability=product.availability,
                    notes=product.notes,
                    import_session_id=import_session_id,
                )
                session.add(row)
                saved.append(row)
            await session.commit()
            return [_product_to_domain(row) for row in saved]

    async def get_supplier(self, supplier_id: str) -> Optional[domain.Supplier]:
        async with self.session_factory() as session:
            row = await session.get(models.Supplier, supplier_id)
            if row is None:
                return None
            return _supplier_to_domain(row)

    async def list_suppliers(self, active_only: bool = True) -> list[domain.Supplier]:
        async with self.session_factory() as session:
            query = select(models.Supplier).order_by(models.Supplier.name)
            if active_only:
                query = query.where(models.Supplier.is_active.is_(True))
            result = await session.execute(query)
            return [_supplier_to_domain(row) for row in result.scalars().all()]

    async def create_supplier(self, supplier: domain.Supplier) -> domain.Supplier:
        async with self.session_factory() as session:
            row = models.Supplier(
                id=supplier.id or domain.new_id(),
                name=supplier.name,
                country=supplier.country,
                currency=supplier.currency,
                is_active=supplier.is_active,
            )
            session.add(row)
            await session.commit()
            return _supplier_to_domain(row)

    async def list_products(
        self, supplier_id: Optional[str] = None, product_ids: Optional[list[str]] = None, limit: int = 1000
    ) -> list[domain.NormalizedProduct]:
        async with self.session_factory() as session:
            query = select(models.NormalizedProduct)
            if supplier_id:
                query = query.where(models.NormalizedProduct.supplier_id == supplier_id)
            if product_ids:
                query = query.where(models.NormalizedProduct.id.in_(product_ids))
            query = query.order_by(models.NormalizedProduct.created_at, models.NormalizedProduct.id).limit(limit)
            result = await session.execute(query)
            return [_product_to_domain(row) for row in result.scalars().all()]

    # ------------------------------------------------------------------
    # Dashboard counts
    # ------------------------------------------------------------------

    async def get_counts(self) -> dict[str, Any]:
        """Row counts and the latest scrape time for the dashboard."""
        job = models.PriceScrapingJob
        async with self.session_factory() as session:
            return {
                "suppliers": await session.scalar(select(func.count(models.Supplier.id))) or 0,
                "products": await session.scalar(select(func.count(models.NormalizedProduct.id))) or 0,
                "active_jobs": await session.scalar(
                    select(func.count(job.id)).where(
                        job.status.in_([JobStatus.RUNNING.value, JobStatus.PENDING.value])
                    )
                ) or 0,
                "results": await session.scalar(select(func.count(models.PriceScrapingResult.id))) or 0,
                "last_scraped": await session.scalar(select(func.max(models.PriceScrapingResult.scraped_at))),
            }

    # ------------------------------------------------------------------
    # Exchange rates
    # ------------------------------------------------------------------

    async def find_exchange_rate(
        self, from_currency: str, to_currency: str, on: Optional[date] = None
    ) -> Optional[domain.CurrencyRate]:
        """Rate for the pair on ``on`` (or the latest before it), else the latest stored."""
        model = models.CurrencyRate
        async with self.session_factory() as session:
            base = (
                select(model)
                .where(model.from_currency == from_currency)
                .where(model.to_currency == to_currency)
                .where(model.is_active.is_(True))
                .order_by(model.date.desc())
                .limit(1)
            )
            row = None
            if on is not None:
                row = await session.scalar(base.where(model.date <= on))
            if row is None:
                row = await session.scalar(base)
            return _rate_to_domain(row) if row else None

    async def save_exchange_rate(self, rate: domain.CurrencyRate) -> domain.CurrencyRate:
        """Insert or replace the rate for a pair on a given day."""
        model = models.CurrencyRate
        async with self.session_factory() as session:
            row = await session.scalar(
                select(model)
                .where(model.from_currency == rate.from_currency)
                .where(model.to_currency == rate.to_currency)
                .where(model.date == rate.date)
            )
            if row is None:
                row = model(
                    id=rate.id,
                    from_currency=rate.from_currency,
                    to_currency=rate.to_currency,
                    rate=rate.rate,
                    date=rate.date,
                    source=rate.source,
                    is_active=rate.is_active,
                )
                session.add(row)
            else:
                row.rate = rate.rate
                row.source = rate.source
                row.is_active = rate.is_active
            await session.commit()
            return _rate_to_domain(row)

    async def set_exchange_rate_active(self, rate_id: str, is_active: bool) -> Optional[domain.CurrencyRate]:
        """Enable or retire a stored rate. Retired rates are ignored by lookups."""
        async with self.session_factory() as session:
            row = await session.get(models.CurrencyRate, rate_id)
            if row is None:
                return None
            row.is_active = is_active
            await session.commit()
            return _rate_to_domain(row)

    async def list_exchange_rates(
        self, limit: int = 100, active_only: bool = True
    ) -> list[domain.CurrencyRate]:
        model = models.CurrencyRate
        async with self.session_factory() as session:
            query = select(model)
            if active_only:
                query = query.where(model.is_active.is_(True))
            query = query.order_by(model.from_currency, model.to_currency, model.date.desc()).limit(limit)
            result = await session.execute(query)
            return [_rate_to_domain(row) for row in result.scalars().all()]
