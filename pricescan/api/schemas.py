"""Response models shared by the scraping routes."""

from datetime import date as date_type, datetime
from typing import Any, Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from pricescan import domain


class CamelModel(BaseModel):
    """Serialized with camelCase keys; accepts either case on input."""

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel


class JobResponse(CamelModel):
    id: str
    name: str
    status: str
    description: Optional[str] = None
    supplier_id: Optional[str] = None
    total_products: int
    processed_products: int
    successful_products: int
    failed_products: int
    progress_percent: float
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    config: dict[str, Any]
    created_at: Optional[datetime] = None


class ResultResponse(CamelModel):
    id: str
    normalized_product_id: str
    source_id: str
    job_id: Optional[str] = None
    product_title: str
    merchant: str
    url: str
    price: float
    currency: str
    price_incl_vat: Optional[bool] = None
    shipping_cost: Optional[float] = None
    availability: bool
    confidence_score: float
    is_lowest_price: bool
    scraped_at: datetime


class AlertResponse(CamelModel):
    id: str
    normalized_product_id: str
    alert_type: str
    message: str
    current_margin: float
    target_margin: float
    is_read: bool
    created_at: datetime


class SourceResponse(CamelModel):
    id: str
    name: str
    base_url: str
    country: str
    is_active: bool
    priority: int
    rate_limit: int
    config: dict[str, Any]


class RateResponse(CamelModel):
    id: str
    from_currency: str
    to_currency: str
    rate: float
    date: date_type
    source: str
    is_active: bool


class SupplierResponse(CamelModel):
    id: str
    name: str
    country: str
    currency: str
    is_active: bool


class ProductResponse(CamelModel):
    id: str
    supplier_id: str
    brand: str
    product_name: str
    variant_size: Optional[str] = None
    ean: Optional[str] = None
    wholesale_price: float
    currency: str
    pack_size: int
    supplier_name: str
    last_purchase_price: Optional[float] = None
    availability: bool
    notes: Optional[str] = None


def job_response(job: domain.PriceScrapingJob) -> JobResponse:
    return JobResponse(
        id=job.id,
        name=job.name,
        status=job.status.value,
        description=job.description,
        supplier_id=job.supplier_id,
        total_products=job.total_products,
        processed_products=job.processed_products,
        successful_products=job.successful_products,
        failed_products=job.failed_products,
        progress_percent=round(job.progress_percent, 1),
        started_at=job.started_at,
        completed_at=job.completed_at,
        error_message=job.error_message,
        config=job.config.to_dict(),
        created_at=job.created_at,
    )


def result_response(result: domain.PriceScrapingResult) -> ResultResponse:
    return ResultResponse(
        id=result.id,
        normalized_product_id=result.normalized_product_id,
        source_id=result.source_id,
        job_id=result.job_id,
        product_title=result.product_title,
        merchant=result.merchant,
        url=result.url,
        price=float(result.price),
        currency=result.currency,
        price_incl_vat=result.price_incl_vat,
        shipping_cost=float(result.shipping_cost) if result.shipping_cost is not None else None,
        availability=result.availability,
        confidence_score=result.confidence_score,
        is_lowest_price=result.is_lowest_price,
        scraped_at=result.scraped_at,
    )


def alert_response(alert: domain.ScrapingAlert) -> AlertResponse:
    return AlertResponse(
        id=alert.id,
        normalized_product_id=alert.normalized_product_id,
        alert_type=alert.alert_type.value,
        message=alert.message,
        current_margin=float(alert.current_margin),
        target_margin=float(alert.target_margin),
        is_read=alert.is_read,
        created_at=alert.created_at,
    )


def source_response(source: domain.PriceScrapingSource) -> SourceResponse:
    return SourceResponse(
        id=source.id,
        name=source.name,
        base_url=source.base_url,
        country=source.country,
        is_active=source.is_active,
        priority=source.priority,
        rate_limit=source.rate_limit,
        config=source.config.to_dict(),
    )


def rate_response(rate: domain.CurrencyRate) -> RateResponse:
    return RateResponse(
        id=rate.id,
        from_currency=rate.from_currency,
        to_currency=rate.to_currency,
        rate=float(rate.rate),
        date=rate.date,
        source=rate.source,
        is_active=rate.is_active,
    )


def product_response(product: domain.NormalizedProduct) -> ProductResponse:
    return ProductResponse(
        id=product.id,
        supplier_id=product.supplier_id,
        brand=product.brand,
        product_name=product.product_name,
        variant_size=product.variant_size,
        ean=product.ean,
        wholesale_price=float(product.wholesale_price),
        currency=product.currency,
        pack_size=product.pack_size,
        supplier_name=product.supplier_name,
        last_purchase_price=(
            float(product.last_purchase_price) if product.last_purchase_price is not None else None
        ),
        availability=product.availability,
        notes=product.notes,
    )
