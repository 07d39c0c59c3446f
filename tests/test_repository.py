"""Tests for the SQLAlchemy repository and source registry."""

from decimal import Decimal

import pytest

from pricescan.domain import (
    InvalidJobTransition,
    JobConfig,
    JobNotFound,
    JobStatus,
    PriceScrapingJob,
    PriceScrapingResult,
    PriceScrapingSource,
    ResultFilter,
    SourceNotFound,
)
from pricescan.sources import SourceRegistry


@pytest.mark.asyncio
async def test_job_status_transitions(repository, supplier):
    job = await repository.create_job(
        PriceScrapingJob(name="Scan", supplier_id=supplier.id, total_products=4)
    )
    assert job.status == JobStatus.PENDING

    await repository.update_job(job.id, JobStatus.RUNNING, processed_products=2)
    await repository.update_job(job.id, JobStatus.COMPLETED, processed_products=4)

    stored = await repository.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.processed_products == 4
    assert stored.progress_percent == 100.0

    with pytest.raises(InvalidJobTransition):
        await repository.update_job(job.id, JobStatus.RUNNING)


@pytest.mark.asyncio
async def test_update_job_rejects_unknown_job_and_fields(repository):
    with pytest.raises(JobNotFound):
        await repository.update_job("missing", JobStatus.RUNNING)
    with pytest.raises(ValueError):
        await repository.update_job("missing", JobStatus.RUNNING, colour="red")


@pytest.mark.asyncio
async def test_job_config_round_trips_unknown_keys(repository):
    config = JobConfig.from_dict({"batchSize": 4, "notifyEmail": "ops@example.com"})
    job = await repository.create_job(PriceScrapingJob(name="Scan", config=config))

    stored = await repository.get_job(job.id)

    assert stored.config.batch_size == 4
    assert stored.config.extras == {"notifyEmail": "ops@example.com"}
    assert stored.config.to_dict()["notifyEmail"] == "ops@example.com"


@pytest.mark.asyncio
async def test_delete_job_removes_its_results(repository, products, source):
    job = await repository.create_job(PriceScrapingJob(name="Scan"))
    await repository.save_results([
        PriceScrapingResult(
            normalized_product_id=products[0].id,
            source_id=source.id,
            job_id=job.id,
            product_title="Chanel No 5",
            price=Decimal("99.00"),
        ),
        PriceScrapingResult(
            normalized_product_id=products[0].id,
            source_id=source.id,
            product_title="Chanel No 5",
            price=Decimal("98.00"),
        ),
    ])

    assert await repository.delete_job(job.id)
    assert await repository.get_job(job.id) is None
    assert await repository.count_results(ResultFilter(job_id=job.id)) == 0
    assert await repository.count_results() == 1
    assert not await repository.delete_job(job.id)


@pytest.mark.asyncio
async def test_result_filters(repository, supplier, products, source):
    chanel, dior = products
    await repository.save_results([
        PriceScrapingResult(
            normalized_product_id=chanel.id,
            source_id=source.id,
            product_title="Chanel No 5",
            price=Decimal("99.00"),
            confidence_score=0.9,
        ),
        PriceScrapingResult(
            normalized_product_id=dior.id,
            source_id=source.id,
            product_title="Dior Sauvage",
            price=Decimal("70.00"),
            confidence_score=0.4,
        ),
    ])

    assert await repository.count_results(ResultFilter(supplier_id=supplier.id)) == 2
    confident = await repository.find_results(ResultFilter(min_confidence=0.8))
    assert [r.normalized_product_id for r in confident] == [chanel.id]
    rows = await repository.find_result_rows(ResultFilter(product_id=dior.id))
    assert rows[0].wholesale_price == Decimal("55.00")


@pytest.mark.asyncio
async def test_source_updates_are_atomic(repository):
    registry = SourceRegistry(repository)
    await repository.create_source(PriceScrapingSource(id="a", name="Bol.com", priority=1))
    await repository.create_source(PriceScrapingSource(id="b", name="Amazon NL", priority=2))

    with pytest.raises(SourceNotFound):
        await registry.update([
            {"id": "a", "is_active": False},
            {"id": "nope", "priority": 9},
        ])
    assert [s.id for s in await registry.list_active()] == ["b", "a"]

    updated = await registry.update([
        {"id": "a", "priority": 5, "config": {"delayMs": 250, "customFlag": True}},
        {"id": "b", "is_active": False},
    ])

    assert [s.id for s in updated] == ["a", "b"]
    active = await registry.list_active()
    assert [s.id for s in active] == ["a"]
    assert active[0].config.delay_ms == 250
    assert active[0].config.extras == {"customFlag": True}


@pytest.mark.asyncio
async def test_source_snapshot_selects_by_id_or_name(repository):
    registry = SourceRegistry(repository)
    await repository.create_source(PriceScrapingSource(id="a", name="Bol.com"))
    await repository.create_source(PriceScrapingSource(id="b", name="Amazon NL"))
    await repository.create_source(PriceScrapingSource(id="c", name="Old shop", is_active=False))

    assert len(await registry.snapshot()) == 2
    selected = await registry.snapshot(["Bol.com", "c"])
    assert [s.id for s in selected] == ["a"]


@pytest.mark.asyncio
async def test_counts(repository, supplier, products):
    await repository.create_job(PriceScrapingJob(name="Scan"))

    counts = await repository.get_counts()

    assert counts["suppliers"] == 1
    assert counts["products"] == 2
    assert counts["active_jobs"] == 1
    assert counts["results"] == 0
    assert counts["last_scraped"] is None
