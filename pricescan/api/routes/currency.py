"""Exchange rate routes."""

import logging
from datetime import date as date_type, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field

from pricescan.api.deps import get_converter, get_repository
from pricescan.api.schemas import CamelModel, RateResponse, rate_response
from pricescan.currency.converter import CurrencyConverter, ExchangeRateNotFound
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.domain import CurrencyRate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scraping", tags=["currency"])


class RateLookupResponse(CamelModel):
    success: bool = True
    from_currency: str
    to_currency: str
    rate: float
    date: str


class RateListResponse(CamelModel):
    success: bool = True
    rates: List[RateResponse]


class CurrencyAction(CamelModel):
    action: Literal["update-rates", "add-rate", "set-active"]
    from_currency: Optional[str] = None
    to_currency: Optional[str] = None
    rate: Optional[Decimal] = Field(default=None, gt=0)
    rate_date: Optional[date_type] = Field(default=None, alias="date")
    rate_id: Optional[str] = None
    is_active: Optional[bool] = None


@router.get("/currency")
async def get_rates(
    from_currency: Optional[str] = Query(None, alias="from"),
    to_currency: Optional[str] = Query(None, alias="to"),
    on: Optional[date_type] = Query(None, alias="date"),
    repository: SqlAlchemyRepository = Depends(get_repository),
    converter: CurrencyConverter = Depends(get_converter),
):
    """Look up one pair when ``from`` and ``to`` are given, else list active rates."""
    if from_currency and to_currency:
        try:
            rate = await converter.get_exchange_rate(from_currency, to_currency, on)
        except ExchangeRateNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        return RateLookupResponse(
            from_currency=from_currency.upper(),
            to_currency=to_currency.upper(),
            rate=float(rate),
            date=on.isoformat() if on else "latest",
        ).model_dump(by_alias=True)

    rates = await repository.list_exchange_rates(limit=100)
    return RateListResponse(rates=[rate_response(r) for r in rates]).model_dump(
        by_alias=True, mode="json"
    )


@router.post("/currency")
async def update_rates(
    request: CurrencyAction,
    repository: SqlAlchemyRepository = Depends(get_repository),
    converter: CurrencyConverter = Depends(get_converter),
):
    """Refresh rates from the rate API, add a manual rate, or retire/restore a rate."""
    if request.action == "update-rates":
        stored = await converter.update_exchange_rates()
        return {"success": True, "message": "Exchange rates updated successfully", "stored": stored}

    if request.action == "add-rate":
        if not request.from_currency or not request.to_currency or request.rate is None:
            raise HTTPException(
                status_code=400,
                detail="Missing required fields: fromCurrency, toCurrency, rate",
            )
        saved = await repository.save_exchange_rate(
            CurrencyRate(
                from_currency=request.from_currency.upper(),
                to_currency=request.to_currency.upper(),
                rate=request.rate,
                date=request.rate_date or datetime.utcnow().date(),
                source="manual",
            )
        )
        converter.clear_cache()
        logger.info(f"Manual rate {saved.from_currency}->{saved.to_currency} = {saved.rate}")
        return {
            "success": True,
            "message": "Currency rate saved successfully",
            "rate": rate_response(saved).model_dump(by_alias=True, mode="json"),
        }

    if not request.rate_id:
        raise HTTPException(status_code=400, detail="Missing rateId")
    updated = await repository.set_exchange_rate_active(
        request.rate_id, True if request.is_active is None else request.is_active
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="Rate not found")
    converter.clear_cache()
    return {
        "success": True,
        "message": "Currency rate updated successfully",
        "rate": rate_response(updated).model_dump(by_alias=True, mode="json"),
    }
