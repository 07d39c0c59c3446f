"""Supplier, product and dashboard statistics routes."""

from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from pricescan.api.deps import get_converter, get_repository
from pricescan.api.schemas import (
    CamelModel,
    ProductResponse,
    SupplierResponse,
    product_response,
)
from pricescan.currency.converter import CurrencyConverter
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.detect.analytics import calculate_analytics
from pricescan.domain import ResultFilter, Supplier

router = APIRouter(prefix="/api/scraping", tags=["catalog"])

# Window for the dashboard's recent opportunity figures
RECENT_DAYS = 7


class SupplierCreate(CamelModel):
    name: str
    country: str = "NL"
    currency: str = "EUR"


class StatsResponse(CamelModel):
    total_suppliers: int
    total_products: int
    active_jobs: int
    total_scraped_results: int
    last_scraped: Optional[datetime] = None
    recent_opportunities: int
    average_margin: float
    health_status: str = "healthy"


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    repository: SqlAlchemyRepository = Depends(get_repository),
    converter: CurrencyConverter = Depends(get_converter),
):
    """Dashboard counters plus margin figures over the last week."""
    counts = await repository.get_counts()
    recent = await calculate_analytics(
        repository,
        ResultFilter(date_from=datetime.utcnow() - timedelta(days=RECENT_DAYS)),
        converter,
    )
    return StatsResponse(
        total_suppliers=counts["suppliers"],
        total_products=counts["products"],
        active_jobs=counts["active_jobs"],
        total_scraped_results=counts["results"],
        last_scraped=counts["last_scraped"],
        recent_opportunities=recent.opportunities_count,
        average_margin=recent.average_margin or 0.0,
    )


@router.get("/suppliers")
async def list_suppliers(repository: SqlAlchemyRepository = Depends(get_repository)):
    suppliers = await repository.list_suppliers(active_only=False)
    return {
        "suppliers": [
            SupplierResponse.model_validate(s).model_dump(by_alias=True) for s in suppliers
        ]
    }


@router.post("/suppliers")
async def create_supplier(
    request: SupplierCreate,
    repository: SqlAlchemyRepository = Depends(get_repository),
):
    if not request.name.strip():
        raise HTTPException(status_code=400, detail="Name is required")
    supplier = await repository.create_supplier(
        Supplier(
            name=request.name.strip(),
            country=request.country.upper(),
            currency=request.currency.upper(),
        )
    )
    return {"supplier": SupplierResponse.model_validate(supplier).model_dump(by_alias=True)}


@router.get("/products")
async def list_products(
    supplier_id: Optional[str] = Query(None, alias="supplierId"),
    ids: Optional[str] = None,
    repository: SqlAlchemyRepository = Depends(get_repository),
):
    """Products of a supplier, or a comma-separated id list."""
    product_ids = [i for i in ids.split(",") if i] if ids else None
    products = await repository.list_products(supplier_id=supplier_id, product_ids=product_ids)
    response: List[ProductResponse] = [product_response(p) for p in products]
    return {"products": [p.model_dump(by_alias=True) for p in response]}
