"""Batch orchestration of scraping jobs across price source adapters."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from pricescan import metrics
from pricescan.config import settings
from pricescan.db.repository import JobRepository, ResultSink
from pricescan.detect.outliers import filter_outliers
from pricescan.detect.ranking import rank_results
from pricescan.domain import (
    InvalidJobTransition,
    JobAlreadyRunning,
    JobConfig,
    JobStatus,
    NoScrapersAvailable,
    NormalizedProduct,
    PriceScrapingJob,
    PriceScrapingResult,
    PriceScrapingSource,
)
from pricescan.ingest.base import FailureReason, ScraperAdapter
from pricescan.ingest.rate_limiter import Sleep
from pricescan.ingest.registry import AdapterRegistry

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[PriceScrapingSource], Optional[ScraperAdapter]]


@dataclass
class JobProgress:
    """Counters of a running job, pushed to the repository after every batch."""

    job_id: str
    total_products: int
    processed_products: int = 0
    successful_products: int = 0
    failed_products: int = 0
    status: JobStatus = JobStatus.PENDING
    error_message: Optional[str] = None
    batch_sizes: list[int] = field(default_factory=list)

    def counters(self) -> dict:
        return {
            "total_products": self.total_products,
            "processed_products": self.processed_products,
            "successful_products": self.successful_products,
            "failed_products": self.failed_products,
        }


class ScrapingManager:
    """
    Drives one scraping job at a time.

    Products are processed in batches. Within a batch every adapter searches
    every product concurrently; batches run one after the other with a pause
    in between. Ranked results go through the result sink, which is the only
    write path for observations. Job state is pushed through the job
    repository after every batch.
    """

    def __init__(
        self,
        job_repository: JobRepository,
        result_sink: ResultSink,
        adapter_factory: AdapterFactory = AdapterRegistry.create,
        sleep: Sleep = asyncio.sleep,
        call_timeout: Optional[float] = None,
    ):
        self.jobs = job_repository
        self.sink = result_sink
        self.adapter_factory = adapter_factory
        self._sleep = sleep
        self.call_timeout = call_timeout or settings.adapter_call_timeout_seconds

        self.adapters: list[ScraperAdapter] = []
        self._priorities: dict[str, int] = {}
        self._running_job_id: Optional[str] = None
        self._stop_event = asyncio.Event()

    @property
    def running_job_id(self) -> Optional[str]:
        return self._running_job_id

    async def initialize_scrapers(self, sources: list[PriceScrapingSource]) -> int:
        """
        Create and initialize one adapter per active source.

        Sources without an implementation and adapters that fail to come up
        are logged and left out.

        Returns:
            Number of ready adapters

        Raises:
            NoScrapersAvailable: If no adapter could be initialized
        """
        known = {adapter.source.id for adapter in self.adapters}
        candidates: list[ScraperAdapter] = []
        for source in sources:
            if not source.is_active or source.id in known:
                continue
            try:
                adapter = self.adapter_factory(source)
            except Exception as e:
                logger.error(f"Could not create scraper for {source.name}: {e}")
                continue
            if adapter is not None:
                candidates.append(adapter)

        outcomes = await asyncio.gather(
            *(adapter.initialize() for adapter in candidates), return_exceptions=True
        )
        for adapter, outcome in zip(candidates, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Failed to initialize scraper for {adapter.name}: {outcome}")
                await adapter.shutdown()
                continue
            self.adapters.append(adapter)
            self._priorities[adapter.source.id] = adapter.source.priority

        logger.info(f"Initialized {len(self.adapters)} of {len(sources)} scrapers")
        if not self.adapters:
            raise NoScrapersAvailable("No scrapers could be initialized for the requested sources")
        return len(self.adapters)

    def request_stop(self) -> None:
        """Ask the running job to stop at the next batch boundary."""
        if self._running_job_id:
            logger.info(f"Stop requested for job {self._running_job_id}")
        self._stop_event.set()

    async def start_scraping_job(
        self, job: PriceScrapingJob, products: list[NormalizedProduct]
    ) -> JobProgress:
        """
        Run a job to completion, failure or stop.

        Returns:
            Final progress including the terminal status

        Raises:
            JobAlreadyRunning: If this manager is already driving a job
            NoScrapersAvailable: If no adapter is ready; the job is marked FAILED
        """
        if self._running_job_id is not None:
            raise JobAlreadyRunning(
                f"Job {self._running_job_id} is already running on this manager"
            )
        self._running_job_id = job.id
        self._stop_event.clear()
        try:
            return await self._run_job(job, products)
        finally:
            self._running_job_id = None

    async def _run_job(
        self, job: PriceScrapingJob, products: list[NormalizedProduct]
    ) -> JobProgress:
        config = job.config
        progress = JobProgress(job_id=job.id, total_products=len(products))

        if not self.adapters:
            reason = "No scrapers available for the requested sources"
            await self.jobs.update_job(
                job.id,
                JobStatus.FAILED,
                error_message=reason,
                completed_at=datetime.utcnow(),
                total_products=len(products),
            )
            metrics.record_job_finished(JobStatus.FAILED.value)
            logger.error(f"Job {job.id} failed: {reason}")
            raise NoScrapersAvailable(reason)

        if await self._stop_requested(job.id):
            logger.info(f"Job {job.id} was stopped before it started")
            progress.status = JobStatus.STOPPED
            return progress

        for adapter in self.adapters:
            adapter.max_retries = config.max_retries

        await self.jobs.update_job(
            job.id, JobStatus.RUNNING, started_at=datetime.utcnow(), **progress.counters()
        )
        progress.status = JobStatus.RUNNING
        metrics.scraping_jobs_active.inc()
        logger.info(
            f"Started job {job.id}: {len(products)} products, {len(self.adapters)} scrapers, "
            f"batch size {config.batch_size}"
        )

        try:
            status, error_message = await self._process_batches(job, products, progress)
        except Exception as e:
            logger.exception(f"Job {job.id} failed")
            try:
                await self._finish(progress, JobStatus.FAILED, error_message=str(e) or repr(e))
            except Exception as update_error:
                logger.error(f"Could not mark job {job.id} as failed: {update_error}")
            raise
        finally:
            metrics.scraping_jobs_active.dec()

        await self._finish(progress, status, error_message=error_message)
        logger.info(
            f"Job {job.id} finished {progress.status.value}: "
            f"{progress.successful_products} ok, {progress.failed_products} failed "
            f"of {progress.total_products}"
        )
        return progress

    async def _process_batches(
        self,
        job: PriceScrapingJob,
        products: list[NormalizedProduct],
        progress: JobProgress,
    ) -> tuple[JobStatus, Optional[str]]:
        config = job.config
        size = config.batch_size
        batches = [products[i:i + size] for i in range(0, len(products), size)]
        save_failures = 0

        for index, batch in enumerate(batches):
            if await self._stop_requested(job.id):
                return JobStatus.STOPPED, None

            batch_results = await self._process_batch(job.id, batch, config)
            progress.batch_sizes.append(len(batch))

            for product, results in zip(batch, batch_results):
                progress.processed_products += 1
                if not results:
                    progress.failed_products += 1
                    metrics.products_processed_total.labels(outcome="no_results").inc()
                    continue
                try:
                    await self.sink.save_results(product.id, results)
                except Exception as e:
                    save_failures += 1
                    progress.failed_products += 1
                    metrics.products_processed_total.labels(outcome="save_failed").inc()
                    logger.error(f"Saving results for product {product.id} failed: {e}")
                    if save_failures >= settings.max_consecutive_save_failures:
                        return (
                            JobStatus.FAILED,
                            f"{save_failures} consecutive result saves failed: {e}",
                        )
                    continue
                save_failures = 0
                progress.successful_products += 1
                metrics.products_processed_total.labels(outcome="success").inc()

            try:
                await self.jobs.update_job(job.id, JobStatus.RUNNING, **progress.counters())
            except InvalidJobTransition as e:
                logger.info(f"Job {job.id} moved to {e.current.value} outside the manager")
                return JobStatus.STOPPED, None

            if all(a.consecutive_failures >= settings.adapter_failure_limit for a in self.adapters):
                return JobStatus.FAILED, "All scrapers exceeded the consecutive failure limit"

            if index < len(batches) - 1:
                await self._sleep(config.delay_between_batches / 1000)

        if self._stop_event.is_set():
            return JobStatus.STOPPED, None
        return JobStatus.COMPLETED, None

    async def _process_batch(
        self, job_id: str, batch: list[NormalizedProduct], config: JobConfig
    ) -> list[list[PriceScrapingResult]]:
        """Search every product with every adapter and rank each product's results."""
        width = len(self.adapters)
        found = await asyncio.gather(
            *(
                self._search(adapter, product, job_id, queued=position)
                for position, product in enumerate(batch)
                for adapter in self.adapters
            )
        )

        ranked = []
        for i, product in enumerate(batch):
            results = [r for chunk in found[i * width:(i + 1) * width] for r in chunk]
            kept = filter_outliers(results, settings.outlier_multiplier)
            ranked.append(rank_results(kept, config.confidence_threshold, self._priorities))
        return ranked

    async def _search(
        self,
        adapter: ScraperAdapter,
        product: NormalizedProduct,
        job_id: str,
        queued: int = 0,
    ) -> list[PriceScrapingResult]:
        # An adapter throttles its calls one after another, so the product at
        # position n of a batch first waits behind n earlier calls
        timeout = self.call_timeout + queued * adapter.min_interval
        try:
            observations = await asyncio.wait_for(adapter.search(product), timeout=timeout)
        except asyncio.TimeoutError:
            adapter.record_failure(
                FailureReason.TIMEOUT,
                f"No answer within {timeout:.1f}s for '{product.search_term}'",
                timeout,
            )
            return []
        except Exception as e:
            logger.error(f"Unexpected error from {adapter.name}: {e}")
            return []

        return [
            PriceScrapingResult(
                normalized_product_id=product.id,
                source_id=adapter.source.id,
                job_id=job_id,
                product_title=o.title,
                price=o.price,
                merchant=o.merchant,
                url=o.url,
                currency=o.currency,
                price_incl_vat=o.price_incl_vat,
                shipping_cost=o.shipping_cost,
                availability=o.availability,
                confidence_score=o.confidence,
            )
            for o in observations
        ]

    async def _stop_requested(self, job_id: str) -> bool:
        if self._stop_event.is_set():
            return True
        return await self.jobs.get_job_status(job_id) == JobStatus.STOPPED

    async def _finish(
        self, progress: JobProgress, status: JobStatus, error_message: Optional[str] = None
    ) -> None:
        fields = dict(progress.counters(), completed_at=datetime.utcnow())
        if error_message:
            fields["error_message"] = error_message
        progress.status = status
        progress.error_message = error_message
        try:
            await self.jobs.update_job(progress.job_id, status, **fields)
        except InvalidJobTransition as e:
            logger.warning(
                f"Job {progress.job_id} is already {e.current.value}, not marking {status.value}"
            )
            progress.status = e.current
        metrics.record_job_finished(progress.status.value)

    def get_scraper_health(self) -> dict:
        return {
            "activeScrapers": len(self.adapters),
            "runningJobId": self._running_job_id,
            "scrapers": [adapter.health() for adapter in self.adapters],
        }

    async def cleanup(self) -> None:
        """Shut down all adapters. Safe to call repeatedly."""
        adapters, self.adapters = self.adapters, []
        self._priorities.clear()
        for adapter in adapters:
            try:
                await adapter.shutdown()
            except Exception as e:
                logger.error(f"Error shutting down scraper {adapter.name}: {e}")
        if adapters:
            logger.info(f"Shut down {len(adapters)} scrapers")
