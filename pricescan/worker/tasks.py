"""Background scan tasks: launching, stopping and deleting scraping jobs."""

import asyncio
import logging
import math
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from pricescan import metrics
from pricescan.config import settings
from pricescan.currency.converter import CurrencyConverter
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.domain import (
    InvalidJobTransition,
    JobConfig,
    JobNotFound,
    JobStatus,
    NoScrapersAvailable,
    NormalizedProduct,
    PriceScrapingJob,
    PriceScrapingSource,
    ProductNotFound,
    SupplierNotFound,
)
from pricescan.ingest.manager import ScrapingManager
from pricescan.logging_config import get_logger
from pricescan.sources import SourceRegistry
from pricescan.worker.sinks import AlertingResultSink

logger = logging.getLogger(__name__)

# Rough cost of one adapter search, used for the duration estimate
SECONDS_PER_SEARCH = 2


@dataclass
class ScanLaunch:
    job: PriceScrapingJob
    estimated_duration: int  # minutes
    total_products: int


def estimate_duration(products: int, sources: int) -> int:
    """Minutes a scan is expected to take."""
    return math.ceil(products * max(sources, 1) * SECONDS_PER_SEARCH / 60)


class ScanTaskRunner:
    """
    Launches scraping jobs as background asyncio tasks.

    Every job gets its own ScrapingManager. The HTTP layer gets the job id
    back immediately and follows progress through the repository.
    """

    def __init__(
        self,
        repository: SqlAlchemyRepository,
        converter: Optional[CurrencyConverter] = None,
        manager_factory: Optional[Callable[[], ScrapingManager]] = None,
    ):
        self.repository = repository
        self.sources = SourceRegistry(repository)
        self.converter = converter or CurrencyConverter(repository)
        self.manager_factory = manager_factory or self._default_manager
        self._tasks: dict[str, asyncio.Task] = {}
        self._managers: dict[str, ScrapingManager] = {}

    def _default_manager(self) -> ScrapingManager:
        return ScrapingManager(self.repository, AlertingResultSink(self.repository, self.converter))

    @property
    def running_jobs(self) -> list[str]:
        return list(self._tasks)

    def manager_health(self) -> dict[str, dict]:
        return {job_id: manager.get_scraper_health() for job_id, manager in self._managers.items()}

    async def create_price_scan(
        self,
        supplier_id: Optional[str] = None,
        product_ids: Optional[list[str]] = None,
        sources: Optional[list[str]] = None,
        priority: Optional[str] = None,
        config: Optional[dict[str, Any]] = None,
        requested_by: str = "api",
        product_limit: Optional[int] = None,
        name: Optional[str] = None,
    ) -> ScanLaunch:
        """
        Create a job for a supplier's products or an explicit product list and start it.

        Raises:
            ValueError: If neither supplier nor products are given, a requested
                source is not active, or there is nothing to scan
            SupplierNotFound: If the supplier does not exist
            ProductNotFound: If any of the product ids does not exist
        """
        if not supplier_id and not product_ids:
            raise ValueError("Either supplierId or productIds must be provided")

        if supplier_id:
            supplier = await self.repository.get_supplier(supplier_id)
            if supplier is None:
                raise SupplierNotFound(f"Supplier {supplier_id} not found")
            products = await self.repository.find_products_by_supplier(supplier_id, product_limit)
            label = f"Supplier {supplier.name}"
        else:
            products = await self.repository.find_products_by_ids(product_ids)
            if len(products) != len(set(product_ids)):
                raise ProductNotFound("Some products not found")
            label = f"{len(products)} Products"

        if not products:
            raise ValueError("No normalized products found for the selected supplier")

        source_snapshot = await self.sources.snapshot(sources)
        if sources:
            matched = {s.id for s in source_snapshot} | {s.name for s in source_snapshot}
            if any(s not in matched for s in sources):
                raise ValueError("Some sources are not active")

        overrides = dict(config or {})
        overrides["sources"] = list(sources or [])
        if priority:
            overrides["priority"] = priority
        job = await self.repository.create_job(
            PriceScrapingJob(
                name=name or f"Price Scan - {label}",
                description=f"Price scanning job initiated by {requested_by}",
                supplier_id=supplier_id,
                total_products=len(products),
                config=JobConfig.from_dict(overrides),
            )
        )

        self.launch(job, products, source_snapshot)
        return ScanLaunch(
            job=job,
            estimated_duration=estimate_duration(len(products), len(source_snapshot)),
            total_products=len(products),
        )

    def launch(
        self,
        job: PriceScrapingJob,
        products: list[NormalizedProduct],
        sources: list[PriceScrapingSource],
    ) -> asyncio.Task:
        task = asyncio.create_task(self._run_job(job, products, sources), name=f"scan-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        logger.info(f"Queued job {job.id} ({len(products)} products, {len(sources)} sources)")
        return task

    async def _run_job(
        self,
        job: PriceScrapingJob,
        products: list[NormalizedProduct],
        sources: list[PriceScrapingSource],
    ) -> None:
        job_logger = get_logger(__name__, job_id=job.id, supplier_id=job.supplier_id)
        manager = self.manager_factory()
        self._managers[job.id] = manager
        try:
            try:
                await manager.initialize_scrapers(sources)
            except NoScrapersAvailable:
                # start_scraping_job records the failure on the job
                pass
            await manager.start_scraping_job(job, products)
        except NoScrapersAvailable as e:
            job_logger.error(f"Job could not start: {e}")
        except Exception as e:
            job_logger.error(f"Job ended with an error: {e}")
        finally:
            await manager.cleanup()
            self._managers.pop(job.id, None)

    async def wait_for(self, job_id: str) -> None:
        """Wait until a launched job's task has finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task

    async def stop_job(self, job_id: str) -> PriceScrapingJob:
        """
        Mark a pending or running job STOPPED.

        Raises:
            JobNotFound: If the job does not exist
            InvalidJobTransition: If the job is already finished
        """
        job = await self.repository.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        if job.status not in (JobStatus.RUNNING, JobStatus.PENDING):
            raise InvalidJobTransition(job_id, job.status, JobStatus.STOPPED)

        await self.repository.update_job(
            job_id,
            JobStatus.STOPPED,
            completed_at=datetime.utcnow(),
            error_message="Job stopped by user",
        )
        manager = self._managers.get(job_id)
        if manager is not None:
            manager.request_stop()
        logger.info(f"Job {job_id} stopped by user")
        return await self.repository.get_job(job_id)

    async def delete_job(self, job_id: str) -> None:
        """
        Delete a job and its results, cancelling it first if it is still running.

        Raises:
            JobNotFound: If the job does not exist
        """
        task = self._tasks.get(job_id)
        if task is not None:
            manager = self._managers.get(job_id)
            if manager is not None:
                manager.request_stop()
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        if not await self.repository.delete_job(job_id):
            raise JobNotFound(f"Job {job_id} not found")

    async def run_nightly_scan(self) -> int:
        """
        Queue one scan per active supplier over its first products.

        Returns:
            Number of jobs queued
        """
        sources = await self.sources.list_active()
        if not sources:
            logger.warning("Nightly scan skipped: no active sources")
            return 0

        queued = 0
        for supplier in await self.repository.list_suppliers(active_only=True):
            try:
                await self.create_price_scan(
                    supplier_id=supplier.id,
                    sources=[s.id for s in sources],
                    config={"maxRetries": 2},
                    requested_by="scheduler",
                    product_limit=settings.nightly_products_per_supplier,
                    name=f"Nightly Scan - {supplier.name}",
                )
                queued += 1
            except ValueError as e:
                logger.info(f"Nightly scan skipped supplier {supplier.name}: {e}")
            except Exception as e:
                logger.error(f"Nightly scan failed for supplier {supplier.name}: {e}")

        metrics.record_scheduler_run("nightly_scan", success=True)
        logger.info(f"Nightly scan queued {queued} jobs")
        return queued

    async def refresh_exchange_rates(self) -> int:
        try:
            stored = await self.converter.update_exchange_rates()
        except Exception as e:
            metrics.record_scheduler_run("exchange_rates", success=False)
            logger.error(f"Exchange rate refresh failed: {e}")
            return 0
        metrics.record_scheduler_run("exchange_rates", success=True)
        return stored

    async def close(self) -> None:
        """Stop and cancel every running job."""
        for job_id, task in list(self._tasks.items()):
            manager = self._managers.get(job_id)
            if manager is not None:
                manager.request_stop()
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        logger.info("Task runner closed")
