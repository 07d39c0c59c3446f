"""Price result routes: filtered listing with analytics, and batch ingest."""

import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field

from pricescan.api.deps import get_converter, get_repository
from pricescan.api.schemas import CamelModel, ResultResponse, result_response
from pricescan.currency.converter import CurrencyConverter
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.detect.analytics import calculate_analytics
from pricescan.detect.outliers import filter_outliers
from pricescan.domain import PriceScrapingResult, ResultFilter
from pricescan.worker.sinks import AlertingResultSink

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scraping", tags=["results"])


class ResultIn(CamelModel):
    normalized_product_id: str
    source_id: str
    product_title: str
    price: Decimal = Field(gt=0)
    merchant: str = ""
    url: str = ""
    currency: str = "EUR"
    price_incl_vat: Optional[bool] = None
    shipping_cost: Optional[Decimal] = None
    availability: bool = True
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    is_lowest_price: bool = False
    job_id: Optional[str] = None
    scraped_at: Optional[datetime] = None


class IngestRequest(CamelModel):
    results: List[ResultIn]


class IngestResponse(CamelModel):
    success: bool = True
    saved_count: int
    dropped_count: int


class Pagination(CamelModel):
    page: int
    limit: int
    total_count: int
    total_pages: int


class ResultListResponse(CamelModel):
    success: bool = True
    results: List[ResultResponse]
    pagination: Pagination
    analytics: dict


@router.get("/results", response_model=ResultListResponse)
async def list_results(
    job_id: Optional[str] = Query(None, alias="jobId"),
    supplier_id: Optional[str] = Query(None, alias="supplierId"),
    source_id: Optional[str] = Query(None, alias="sourceId"),
    product_id: Optional[str] = Query(None, alias="productId"),
    min_confidence: Optional[float] = Query(None, alias="minConfidence"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    page: int = 1,
    limit: int = 50,
    repository: SqlAlchemyRepository = Depends(get_repository),
    converter: CurrencyConverter = Depends(get_converter),
):
    """List stored results, newest first, with analytics over the whole filter."""
    page = max(1, page)
    limit = min(max(1, limit), 500)
    result_filter = ResultFilter(
        job_id=job_id,
        supplier_id=supplier_id,
        source_id=source_id,
        product_id=product_id,
        min_confidence=min_confidence,
        date_from=date_from,
        date_to=date_to,
    )

    total = await repository.count_results(result_filter)
    results = await repository.find_results(result_filter, limit=limit, offset=(page - 1) * limit)
    analytics = await calculate_analytics(repository, result_filter, converter)

    return ResultListResponse(
        results=[result_response(r) for r in results],
        pagination=Pagination(
            page=page,
            limit=limit,
            total_count=total,
            total_pages=math.ceil(total / limit),
        ),
        analytics=analytics.to_dict(),
    )


@router.post("/results", response_model=IngestResponse)
async def ingest_results(
    request: IngestRequest,
    repository: SqlAlchemyRepository = Depends(get_repository),
    converter: CurrencyConverter = Depends(get_converter),
):
    """Store externally scraped results after outlier filtering, raising margin alerts."""
    if not request.results:
        raise HTTPException(status_code=400, detail="Invalid results data")

    product_ids = sorted({r.normalized_product_id for r in request.results})
    known = {p.id for p in await repository.find_products_by_ids(product_ids)}
    missing = [pid for pid in product_ids if pid not in known]
    if missing:
        raise HTTPException(status_code=400, detail=f"Unknown products: {missing}")

    results = [
        PriceScrapingResult(
            normalized_product_id=r.normalized_product_id,
            source_id=r.source_id,
            job_id=r.job_id,
            product_title=r.product_title,
            price=r.price,
            merchant=r.merchant,
            url=r.url,
            currency=r.currency.upper(),
            price_incl_vat=r.price_incl_vat,
            shipping_cost=r.shipping_cost,
            availability=r.availability,
            confidence_score=r.confidence_score,
            is_lowest_price=r.is_lowest_price,
            **({"scraped_at": r.scraped_at} if r.scraped_at else {}),
        )
        for r in request.results
    ]

    kept = filter_outliers(results)
    sink = AlertingResultSink(repository, converter)
    saved = await sink.save_batch(kept)
    logger.info(f"Ingested {saved} results ({len(results) - len(kept)} outliers dropped)")

    return IngestResponse(saved_count=saved, dropped_count=len(results) - len(kept))
