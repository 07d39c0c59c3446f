"""Margin alert routes."""

from typing import List

from fastapi import APIRouter, Depends, Query

from pricescan.api.deps import get_repository
from pricescan.api.schemas import CamelModel, AlertResponse, alert_response
from pricescan.db.repository import SqlAlchemyRepository

router = APIRouter(prefix="/api/scraping", tags=["alerts"])


class AlertListResponse(CamelModel):
    alerts: List[AlertResponse]


@router.get("/alerts", response_model=AlertListResponse)
async def list_alerts(
    limit: int = 20,
    unread_only: bool = Query(False, alias="unreadOnly"),
    repository: SqlAlchemyRepository = Depends(get_repository),
):
    """List recent alerts."""
    alerts = await repository.list_alerts(unread_only=unread_only, limit=limit)
    return AlertListResponse(alerts=[alert_response(a) for a in alerts])
