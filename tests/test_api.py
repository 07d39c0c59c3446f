"""HTTP-level tests for the scraping API."""

import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from pricescan.api.deps import get_converter, get_repository, get_task_runner
from pricescan.currency.converter import CurrencyConverter
from pricescan.db.models import Base
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.domain import PriceScrapingSource, Supplier
from pricescan.main import app
from pricescan.worker.tasks import ScanTaskRunner

MAPPING = {
    "brand": "Merk",
    "productName": "Omschrijving",
    "wholesalePrice": "Inkoop",
    "currency": "Valuta",
    "variantSize": "Inhoud",
}


class RecordingTaskRunner(ScanTaskRunner):
    """Creates jobs like the real runner but does not start them."""

    def __init__(self, repository, converter):
        super().__init__(repository, converter)
        self.launched = []

    def launch(self, job, products, sources):
        self.launched.append((job, products, sources))


@pytest.fixture
def api_repository(tmp_path):
    # A file database without pooling: every request runs on its own event loop
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_tables())
    return SqlAlchemyRepository(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))


@pytest.fixture
def runner(api_repository):
    return RecordingTaskRunner(api_repository, CurrencyConverter(api_repository))


@pytest.fixture
def client(api_repository, runner):
    app.dependency_overrides[get_repository] = lambda: api_repository
    app.dependency_overrides[get_converter] = lambda: runner.converter
    app.dependency_overrides[get_task_runner] = lambda: runner

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def seeded(api_repository, client):
    """A supplier with two imported products and one active source."""
    supplier = client.post("/api/scraping/suppliers", json={"name": "Parfum Groothandel"}).json()["supplier"]
    response = client.post(
        "/api/scraping/import",
        json={
            "supplierId": supplier["id"],
            "columnMapping": MAPPING,
            "rows": [
                {"Merk": "Chanel", "Omschrijving": "No 5 EDP", "Inkoop": "80,00", "Valuta": "EUR", "Inhoud": "100 ml"},
                {"Merk": "Dior", "Omschrijving": "Sauvage EDT", "Inkoop": "55,00", "Valuta": "EUR", "Inhoud": "60ml"},
            ],
        },
    )
    assert response.status_code == 200
    asyncio.run(
        api_repository.create_source(PriceScrapingSource(id="src-bol", name="Bol.com", priority=2))
    )
    products = client.get("/api/scraping/products", params={"supplierId": supplier["id"]}).json()["products"]
    return {"supplier": supplier, "products": products}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_import_reports_row_errors(client, api_repository):
    supplier = asyncio.run(api_repository.create_supplier(Supplier(name="Beauty BV")))

    response = client.post(
        "/api/scraping/import",
        json={
            "supplierId": supplier.id,
            "columnMapping": MAPPING,
            "rows": [
                {"Merk": "Chanel", "Omschrijving": "No.5", "Inkoop": "45,00", "Valuta": "EUR"},
                {"Merk": "", "Omschrijving": "Unknown", "Inkoop": "12", "Valuta": "EUR"},
            ],
            "fileName": "prijslijst.xlsx",
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["totalRows"] == 2
    assert data["validRows"] == 1
    assert data["savedCount"] == 1
    assert data["isValid"] is False
    assert data["errors"][0]["row"] == 2
    assert data["errors"][0]["field"] == "brand"
    assert data["normalizedProducts"][0]["wholesalePrice"] == 45.0


def test_import_validation(client, api_repository):
    response = client.post(
        "/api/scraping/import",
        json={"supplierId": "x", "columnMapping": {"brand": "Merk"}, "rows": [{"Merk": "A"}]},
    )
    assert response.status_code == 400

    response = client.post(
        "/api/scraping/import",
        json={"supplierId": "missing", "columnMapping": MAPPING, "rows": [{"Merk": "A"}]},
    )
    assert response.status_code == 404


def test_start_price_scan(client, runner, seeded):
    response = client.post(
        "/api/scraping/price-scan",
        json={"supplierId": seeded["supplier"]["id"], "config": {"batchSize": 5}},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["totalProducts"] == 2
    assert data["estimatedDuration"] == 1
    assert data["status"] == "PENDING"

    job, products, sources = runner.launched[0]
    assert job.id == data["jobId"]
    assert len(products) == 2
    assert [s.id for s in sources] == ["src-bol"]

    detail = client.get(f"/api/scraping/jobs/{data['jobId']}").json()
    assert detail["config"]["batchSize"] == 5
    assert detail["recentResults"] == []

    listed = client.get("/api/scraping/jobs", params={"status": "pending"}).json()
    assert [j["id"] for j in listed] == [data["jobId"]]


def test_price_scan_request_errors(client, seeded):
    assert client.post("/api/scraping/price-scan", json={}).status_code == 400
    assert client.post("/api/scraping/price-scan", json={"supplierId": "missing"}).status_code == 404
    assert client.post(
        "/api/scraping/price-scan", json={"productIds": [seeded["products"][0]["id"], "missing"]}
    ).status_code == 404

    response = client.post(
        "/api/scraping/price-scan",
        json={"productIds": [seeded["products"][0]["id"]], "sources": ["src-unknown"]},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Some sources are not active"


def test_stop_and_delete_job(client, seeded):
    job_id = client.post(
        "/api/scraping/price-scan", json={"supplierId": seeded["supplier"]["id"]}
    ).json()["jobId"]

    response = client.post(f"/api/scraping/jobs/{job_id}/stop")
    assert response.status_code == 200
    assert response.json()["job"]["status"] == "STOPPED"
    assert response.json()["job"]["errorMessage"] == "Job stopped by user"

    response = client.post(f"/api/scraping/jobs/{job_id}/stop")
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot stop job with status: STOPPED"

    assert client.post("/api/scraping/jobs/missing/stop").status_code == 404

    assert client.delete(f"/api/scraping/jobs/{job_id}").status_code == 200
    assert client.get(f"/api/scraping/jobs/{job_id}").status_code == 404
    assert client.delete(f"/api/scraping/jobs/{job_id}").status_code == 404


def test_ingest_results_filters_outliers_and_alerts(client, seeded):
    chanel = seeded["products"][0]
    prices = [100, 101, 99, 98, 1000]
    payload = {
        "results": [
            {
                "normalizedProductId": chanel["id"],
                "sourceId": "src-bol",
                "productTitle": "Chanel No 5 EDP 100ml",
                "price": price,
                "confidenceScore": 0.9,
            }
            for price in prices
        ]
    }

    response = client.post("/api/scraping/results", json=payload)

    assert response.status_code == 200
    assert response.json() == {"success": True, "savedCount": 4, "droppedCount": 1}

    listing = client.get("/api/scraping/results", params={"productId": chanel["id"], "limit": 3}).json()
    assert listing["pagination"]["totalCount"] == 4
    assert listing["pagination"]["totalPages"] == 2
    assert len(listing["results"]) == 3
    assert listing["analytics"]["totalResults"] == 4
    assert listing["analytics"]["opportunitiesCount"] == 4
    assert max(r["price"] for r in listing["results"]) < 1000

    alerts = client.get("/api/scraping/alerts").json()["alerts"]
    assert len(alerts) == 4
    assert all(a["alertType"] == "MARGIN_OPPORTUNITY" for a in alerts)


def test_ingest_rejects_unknown_products_and_bad_prices(client, seeded):
    result = {"normalizedProductId": "missing", "sourceId": "src-bol", "productTitle": "X", "price": 10}
    assert client.post("/api/scraping/results", json={"results": [result]}).status_code == 400

    result["normalizedProductId"] = seeded["products"][0]["id"]
    result["price"] = -1
    assert client.post("/api/scraping/results", json={"results": [result]}).status_code == 422


def test_source_configuration(client, seeded):
    response = client.get("/api/scraping/sources")
    assert response.status_code == 200
    assert "bol.com" in response.json()["supportedAdapters"]

    response = client.put(
        "/api/scraping/sources",
        json={"sources": [{"id": "src-bol", "isActive": False}, {"id": "missing", "priority": 3}]},
    )
    assert response.status_code == 404

    response = client.put(
        "/api/scraping/sources",
        json={"sources": [{"id": "src-bol", "priority": 7, "config": {"useHeadless": True, "extra": 1}}]},
    )
    assert response.status_code == 200
    source = response.json()["sources"][0]
    assert source["priority"] == 7
    assert source["isActive"] is True
    assert source["config"]["useHeadless"] is True
    assert source["config"]["extra"] == 1


def test_currency_rates(client, api_repository):
    response = client.post(
        "/api/scraping/currency",
        json={"action": "add-rate", "fromCurrency": "usd", "toCurrency": "eur", "rate": 0.92, "date": "2024-03-01"},
    )
    assert response.status_code == 200
    rate_id = response.json()["rate"]["id"]

    lookup = client.get("/api/scraping/currency", params={"from": "EUR", "to": "USD"}).json()
    assert lookup["rate"] == pytest.approx(1 / 0.92)

    listed = client.get("/api/scraping/currency").json()["rates"]
    assert [r["fromCurrency"] for r in listed] == ["USD"]

    response = client.post(
        "/api/scraping/currency", json={"action": "set-active", "rateId": rate_id, "isActive": False}
    )
    assert response.status_code == 200
    assert client.get("/api/scraping/currency", params={"from": "USD", "to": "EUR"}).status_code == 404

    assert client.post("/api/scraping/currency", json={"action": "add-rate"}).status_code == 400


def test_stats(client, seeded):
    data = client.get("/api/scraping/stats").json()

    assert data["totalSuppliers"] == 1
    assert data["totalProducts"] == 2
    assert data["activeJobs"] == 0
    assert data["totalScrapedResults"] == 0
    assert data["recentOpportunities"] == 0
