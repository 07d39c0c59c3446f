"""Price source configuration routes."""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from pricescan.api.deps import get_repository
from pricescan.api.schemas import CamelModel, SourceResponse, source_response
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.domain import SourceNotFound
from pricescan.ingest.registry import AdapterRegistry
from pricescan.sources import SourceRegistry

router = APIRouter(prefix="/api/scraping", tags=["sources"])


class SourceUpdate(CamelModel):
    id: str
    name: Optional[str] = None
    base_url: Optional[str] = None
    country: Optional[str] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None
    rate_limit: Optional[int] = None
    config: Optional[dict[str, Any]] = None


class SourcesUpdateRequest(CamelModel):
    sources: List[SourceUpdate]


class SourceListResponse(CamelModel):
    sources: List[SourceResponse]
    supported_adapters: List[str]


@router.get("/sources", response_model=SourceListResponse)
async def list_sources(repository: SqlAlchemyRepository = Depends(get_repository)):
    """All sources, highest priority first."""
    sources = await SourceRegistry(repository).list_all()
    return SourceListResponse(
        sources=[source_response(s) for s in sources],
        supported_adapters=AdapterRegistry.list_supported(),
    )


@router.put("/sources", response_model=SourceListResponse)
async def update_sources(
    request: SourcesUpdateRequest,
    repository: SqlAlchemyRepository = Depends(get_repository),
):
    """Apply all source changes in one transaction; nothing changes if any id is unknown."""
    updates = [s.model_dump(exclude_none=True) for s in request.sources]
    try:
        await SourceRegistry(repository).update(updates)
    except SourceNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid source configuration: {e}")

    sources = await SourceRegistry(repository).list_all()
    return SourceListResponse(
        sources=[source_response(s) for s in sources],
        supported_adapters=AdapterRegistry.list_supported(),
    )
