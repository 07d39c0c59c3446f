"""Tests for the batch scraping manager."""

import asyncio
from decimal import Decimal

import pytest

from pricescan.db.repository import JobRepository, ResultSink
from pricescan.domain import (
    InvalidJobTransition,
    JobAlreadyRunning,
    JobConfig,
    JobNotFound,
    JobStatus,
    NoScrapersAvailable,
    NormalizedProduct,
    PriceScrapingJob,
    PriceScrapingSource,
)
from pricescan.ingest.base import Observation, ScraperAdapter
from pricescan.ingest.manager import ScrapingManager
from pricescan.worker.sinks import AlertingResultSink


class FakeJobRepository(JobRepository):
    """Job store that enforces the status state machine in memory."""

    def __init__(self, *jobs: PriceScrapingJob):
        self.statuses = {job.id: JobStatus.PENDING for job in jobs}
        self.updates: list[tuple[JobStatus, dict]] = []

    async def update_job(self, job_id, status, **fields):
        if job_id not in self.statuses:
            raise JobNotFound(job_id)
        current = self.statuses[job_id]
        if not current.can_transition_to(status):
            raise InvalidJobTransition(job_id, current, status)
        self.statuses[job_id] = status
        self.updates.append((status, fields))

    async def get_job_status(self, job_id):
        return self.statuses.get(job_id)


class RecordingSink(ResultSink):
    def __init__(self, on_save=None):
        self.saved: dict[str, list] = {}
        self.on_save = on_save

    async def save_results(self, product_id, results):
        if self.on_save is not None:
            await self.on_save(product_id, results)
        self.saved[product_id] = list(results)
        return len(results)


class FailingSink(ResultSink):
    def __init__(self):
        self.calls = 0

    async def save_results(self, product_id, results):
        self.calls += 1
        raise RuntimeError("database unavailable")


class FakeAdapter(ScraperAdapter):
    """Adapter returning canned observations without touching the network."""

    def __init__(self, source, prices=None, fail_init=False, delay=0.0):
        super().__init__(source)
        self.prices = prices if prices is not None else [Decimal("20.00")]
        self.fail_init = fail_init
        self.delay = delay
        self.searched: list[str] = []
        self.shut_down = False

    async def initialize(self):
        if self.fail_init:
            raise RuntimeError("browser did not start")
        self.initialized = True

    async def shutdown(self):
        self.shut_down = True
        self.initialized = False

    async def search(self, product):
        self.searched.append(product.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        return [
            Observation(title=f"{product.brand} {product.product_name}", price=price, confidence=0.85)
            for price in self.prices
        ]

    def build_search_url(self, product):
        return ""

    def parse_results(self, html):
        return []


def make_source(source_id="src-1", priority=1, is_active=True):
    return PriceScrapingSource(id=source_id, name=f"Source {source_id}", priority=priority, is_active=is_active)


def make_products(count):
    return [
        NormalizedProduct(
            id=f"prod-{i}",
            supplier_id="sup-1",
            brand="Chanel",
            product_name=f"Product {i}",
            wholesale_price=Decimal("10.00"),
            currency="EUR",
        )
        for i in range(count)
    ]


def make_job(**config):
    return PriceScrapingJob(name="Test scan", config=JobConfig.from_dict(config))


async def ready_manager(repository, sink, adapters, sleeps=None):
    by_source = {adapter.source.id: adapter for adapter in adapters}

    async def fake_sleep(seconds):
        if sleeps is not None:
            sleeps.append(seconds)

    manager = ScrapingManager(
        repository,
        sink,
        adapter_factory=lambda source: by_source.get(source.id),
        sleep=fake_sleep,
    )
    await manager.initialize_scrapers([adapter.source for adapter in adapters])
    return manager


@pytest.mark.asyncio
async def test_products_processed_in_batches():
    """Five products with batch size two run as 2, 2, 1 with two pauses."""
    job = make_job(batchSize=2, delayBetweenBatches=250)
    repository = FakeJobRepository(job)
    sink = RecordingSink()
    sleeps = []
    manager = await ready_manager(repository, sink, [FakeAdapter(make_source())], sleeps)

    progress = await manager.start_scraping_job(job, make_products(5))

    assert progress.batch_sizes == [2, 2, 1]
    assert sleeps == [0.25, 0.25]
    assert progress.status == JobStatus.COMPLETED
    assert progress.processed_products == 5
    assert progress.successful_products == 5
    assert progress.failed_products == 0
    assert repository.statuses[job.id] == JobStatus.COMPLETED
    assert set(sink.saved) == {f"prod-{i}" for i in range(5)}


@pytest.mark.asyncio
async def test_progress_counters_stay_consistent():
    job = make_job(batchSize=3, delayBetweenBatches=0)
    repository = FakeJobRepository(job)
    adapter = FakeAdapter(make_source(), prices=[])
    manager = await ready_manager(repository, RecordingSink(), [adapter])

    progress = await manager.start_scraping_job(job, make_products(4))

    assert progress.failed_products == 4
    for status, fields in repository.updates:
        if "processed_products" in fields:
            assert fields["processed_products"] == (
                fields["successful_products"] + fields["failed_products"]
            )
            assert fields["processed_products"] <= fields["total_products"]
    assert repository.statuses[job.id] == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_no_scrapers_fails_job_without_running():
    job = make_job()
    repository = FakeJobRepository(job)
    manager = ScrapingManager(repository, RecordingSink(), adapter_factory=lambda source: None)

    with pytest.raises(NoScrapersAvailable):
        await manager.initialize_scrapers([make_source()])

    with pytest.raises(NoScrapersAvailable):
        await manager.start_scraping_job(job, make_products(3))

    statuses = [status for status, _ in repository.updates]
    assert statuses == [JobStatus.FAILED]
    assert repository.updates[0][1]["error_message"]


@pytest.mark.asyncio
async def test_initialize_skips_failing_and_inactive_sources():
    good = FakeAdapter(make_source("good"))
    broken = FakeAdapter(make_source("broken"), fail_init=True)
    inactive = FakeAdapter(make_source("off", is_active=False))
    adapters = {a.source.id: a for a in (good, broken, inactive)}
    manager = ScrapingManager(
        FakeJobRepository(), RecordingSink(), adapter_factory=lambda s: adapters[s.id]
    )

    ready = await manager.initialize_scrapers([good.source, broken.source, inactive.source])

    assert ready == 1
    assert manager.adapters == [good]
    assert broken.shut_down


@pytest.mark.asyncio
async def test_request_stop_ends_job_at_batch_boundary():
    job = make_job(batchSize=2, delayBetweenBatches=0)
    repository = FakeJobRepository(job)
    manager = None

    async def stop_after_first(product_id, results):
        manager.request_stop()

    manager = await ready_manager(
        repository, RecordingSink(on_save=stop_after_first), [FakeAdapter(make_source())]
    )

    progress = await manager.start_scraping_job(job, make_products(6))

    assert progress.status == JobStatus.STOPPED
    assert progress.batch_sizes == [2]
    assert progress.processed_products == 2
    assert repository.statuses[job.id] == JobStatus.STOPPED


@pytest.mark.asyncio
async def test_external_stop_is_respected():
    job = make_job(batchSize=1, delayBetweenBatches=0)
    repository = FakeJobRepository(job)

    async def stop_in_store(product_id, results):
        repository.statuses[job.id] = JobStatus.STOPPED

    manager = await ready_manager(
        repository, RecordingSink(on_save=stop_in_store), [FakeAdapter(make_source())]
    )

    progress = await manager.start_scraping_job(job, make_products(3))

    assert progress.status == JobStatus.STOPPED
    assert progress.processed_products == 1
    assert JobStatus.COMPLETED not in [status for status, _ in repository.updates]


@pytest.mark.asyncio
async def test_second_job_rejected_while_running():
    first = make_job(batchSize=1, delayBetweenBatches=0)
    second = make_job()
    repository = FakeJobRepository(first, second)
    release = asyncio.Event()

    async def block(product_id, results):
        await release.wait()

    manager = await ready_manager(repository, RecordingSink(on_save=block), [FakeAdapter(make_source())])

    running = asyncio.create_task(manager.start_scraping_job(first, make_products(1)))
    await asyncio.sleep(0)
    while manager.running_job_id is None:
        await asyncio.sleep(0)

    with pytest.raises(JobAlreadyRunning):
        await manager.start_scraping_job(second, make_products(1))

    release.set()
    progress = await running
    assert progress.status == JobStatus.COMPLETED
    assert repository.statuses[second.id] == JobStatus.PENDING


@pytest.mark.asyncio
async def test_repeated_save_failures_fail_the_job():
    job = make_job(batchSize=5, delayBetweenBatches=0)
    repository = FakeJobRepository(job)
    sink = FailingSink()
    manager = await ready_manager(repository, sink, [FakeAdapter(make_source())])

    progress = await manager.start_scraping_job(job, make_products(5))

    assert progress.status == JobStatus.FAILED
    assert sink.calls == 3
    assert "consecutive result saves failed" in progress.error_message
    assert repository.statuses[job.id] == JobStatus.FAILED


@pytest.mark.asyncio
async def test_results_are_filtered_and_ranked_per_product():
    cheap = FakeAdapter(make_source("cheap", priority=1), prices=[Decimal("18.00"), Decimal("500.00")])
    pricey = FakeAdapter(make_source("pricey", priority=3), prices=[Decimal("21.00"), Decimal("19.00")])
    job = make_job(batchSize=2, delayBetweenBatches=0)
    sink = RecordingSink()
    manager = await ready_manager(FakeJobRepository(job), sink, [cheap, pricey])

    await manager.start_scraping_job(job, make_products(1))

    results = sink.saved["prod-0"]
    assert Decimal("500.00") not in [r.price for r in results]
    assert sum(1 for r in results if r.is_lowest_price) == 1
    # Equal confidence: the higher priority source wins, cheapest first
    assert results[0].source_id == "pricey"
    assert results[0].price == Decimal("19.00")
    assert all(r.job_id == job.id for r in results)


@pytest.mark.asyncio
async def test_slow_adapter_times_out():
    slow = FakeAdapter(make_source(), delay=1.0)
    job = make_job(batchSize=1, delayBetweenBatches=0)
    repository = FakeJobRepository(job)
    manager = ScrapingManager(
        repository, RecordingSink(), adapter_factory=lambda s: slow, call_timeout=0.01
    )
    await manager.initialize_scrapers([slow.source])

    progress = await manager.start_scraping_job(job, make_products(1))

    assert progress.failed_products == 1
    assert slow.failures["timeout"] == 1
    assert slow.consecutive_failures == 1


@pytest.mark.asyncio
async def test_cleanup_is_idempotent():
    adapter = FakeAdapter(make_source())
    manager = await ready_manager(FakeJobRepository(), RecordingSink(), [adapter])

    await manager.cleanup()
    await manager.cleanup()

    assert adapter.shut_down
    assert manager.adapters == []


class ThrottledAdapter(ScraperAdapter):
    """Adapter that fetches instantly but goes through the real throttle."""

    def __init__(self, source):
        super().__init__(source)
        self.fetched = 0

    async def initialize(self):
        self.initialized = True

    async def fetch(self, url):
        self.fetched += 1
        return "<html></html>"

    def build_search_url(self, product):
        return f"https://shop.example/search?q={product.id}"

    def parse_results(self, html):
        return [Observation(title="Chanel Product", price=Decimal("20.00"))]


@pytest.mark.asyncio
async def test_throttle_wait_does_not_count_against_call_timeout():
    source = PriceScrapingSource(id="src-1", name="Slow shop", rate_limit=100)
    source.config.delay_ms = 0
    adapter = ThrottledAdapter(source)
    job = make_job(batchSize=5, delayBetweenBatches=0)
    repository = FakeJobRepository(job)
    manager = ScrapingManager(
        repository, RecordingSink(), adapter_factory=lambda s: adapter, call_timeout=0.25
    )
    await manager.initialize_scrapers([source])

    # The fifth call waits 0.4s in the throttle queue, longer than the call timeout
    progress = await manager.start_scraping_job(job, make_products(5))

    assert adapter.fetched == 5
    assert progress.successful_products == 5
    assert progress.failed_products == 0
    assert adapter.failures["timeout"] == 0


class AlertlessRepository:
    """Stores results; every alert-side lookup fails."""

    def __init__(self):
        self.saved = 0

    async def save_results(self, results):
        self.saved += len(results)
        return len(results)

    async def get_product(self, product_id):
        raise RuntimeError("db hiccup")

    async def create_alert(self, alert):
        raise RuntimeError("alerts table locked")


@pytest.mark.asyncio
async def test_alert_failures_do_not_fail_products():
    adapter = FakeAdapter(make_source())
    store = AlertlessRepository()
    job = make_job(batchSize=2, delayBetweenBatches=0)
    repository = FakeJobRepository(job)
    manager = await ready_manager(repository, AlertingResultSink(store), [adapter])

    progress = await manager.start_scraping_job(job, make_products(4))

    assert progress.successful_products == 4
    assert progress.failed_products == 0
    assert store.saved == 4
    assert repository.statuses[job.id] == JobStatus.COMPLETED
