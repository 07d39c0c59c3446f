"""Price scan job API endpoints."""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from pricescan.api.deps import get_repository, get_task_runner
from pricescan.api.schemas import CamelModel, JobResponse, ResultResponse, job_response, result_response
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.domain import (
    InvalidJobTransition,
    JobNotFound,
    JobStatus,
    ProductNotFound,
    ResultFilter,
    SupplierNotFound,
)
from pricescan.worker.tasks import ScanTaskRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scraping", tags=["scans"])


class PriceScanRequest(CamelModel):
    """Request model for starting a price scan."""
    supplier_id: Optional[str] = None
    product_ids: Optional[List[str]] = None
    sources: Optional[List[str]] = None
    priority: Optional[str] = None
    config: Optional[dict[str, Any]] = None


class PriceScanResponse(CamelModel):
    success: bool = True
    job_id: str
    estimated_duration: int
    total_products: int
    status: str


class JobDetailResponse(JobResponse):
    recent_results: List[ResultResponse] = []


class StopJobResponse(CamelModel):
    success: bool = True
    message: str
    job: JobResponse


@router.post("/price-scan", response_model=PriceScanResponse)
async def start_price_scan(
    request: PriceScanRequest,
    runner: ScanTaskRunner = Depends(get_task_runner),
):
    """Create a scan job and start it in the background."""
    try:
        launch = await runner.create_price_scan(
            supplier_id=request.supplier_id,
            product_ids=request.product_ids,
            sources=request.sources,
            priority=request.priority,
            config=request.config,
        )
    except (SupplierNotFound, ProductNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return PriceScanResponse(
        job_id=launch.job.id,
        estimated_duration=launch.estimated_duration,
        total_products=launch.total_products,
        status=launch.job.status.value,
    )


@router.get("/jobs", response_model=List[JobResponse])
async def list_jobs(
    status: Optional[str] = None,
    supplier_id: Optional[str] = Query(None, alias="supplierId"),
    limit: int = 50,
    repository: SqlAlchemyRepository = Depends(get_repository),
):
    """List scan jobs, newest first."""
    try:
        job_status = JobStatus(status.upper()) if status else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    jobs = await repository.list_jobs(status=job_status, supplier_id=supplier_id, limit=limit)
    return [job_response(job) for job in jobs]


@router.get("/jobs/{job_id}", response_model=JobDetailResponse)
async def get_job(job_id: str, repository: SqlAlchemyRepository = Depends(get_repository)):
    """Get a job with its ten most recent results."""
    job = await repository.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")

    recent = await repository.find_results(ResultFilter(job_id=job_id), limit=10)
    return JobDetailResponse(
        **job_response(job).model_dump(),
        recent_results=[result_response(r) for r in recent],
    )


@router.post("/jobs/{job_id}/stop", response_model=StopJobResponse)
async def stop_job(job_id: str, runner: ScanTaskRunner = Depends(get_task_runner)):
    """Stop a pending or running job."""
    try:
        job = await runner.stop_job(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidJobTransition as e:
        raise HTTPException(
            status_code=400, detail=f"Cannot stop job with status: {e.current.value}"
        )
    return StopJobResponse(message="Job stopped successfully", job=job_response(job))


@router.delete("/jobs/{job_id}")
async def delete_job(job_id: str, runner: ScanTaskRunner = Depends(get_task_runner)):
    """Delete a job and its results."""
    try:
        await runner.delete_job(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    return {"success": True, "message": "Job deleted successfully"}


@router.get("/health")
async def scraping_health(
    runner: ScanTaskRunner = Depends(get_task_runner),
    repository: SqlAlchemyRepository = Depends(get_repository),
):
    """Scraper health for running jobs plus the active source list."""
    sources = await repository.find_active_sources()
    return {
        "status": "healthy",
        "activeSources": [s.name for s in sources],
        "runningJobs": runner.running_jobs,
        "managers": runner.manager_health(),
    }
