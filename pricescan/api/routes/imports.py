"""Supplier price-list import route."""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from pricescan.api.deps import get_repository
from pricescan.api.schemas import CamelModel, ProductResponse, product_response
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.domain import new_id
from pricescan.normalize.processor import REQUIRED_FIELDS, DataNormalizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scraping", tags=["import"])


class ImportRequest(CamelModel):
    supplier_id: str
    column_mapping: dict[str, str]
    rows: List[dict[str, Any]]
    file_name: Optional[str] = None


class ImportResponse(CamelModel):
    success: bool = True
    import_id: str
    total_rows: int
    valid_rows: int
    invalid_rows: int
    is_valid: bool
    errors: List[dict[str, Any]]
    warnings: List[dict[str, Any]]
    normalized_products: List[ProductResponse]
    saved_count: int


@router.post("/import", response_model=ImportResponse)
async def import_price_list(
    request: ImportRequest,
    repository: SqlAlchemyRepository = Depends(get_repository),
):
    """
    Normalize a supplier price list and store the valid rows.

    Invalid rows are reported with their errors and skipped. The response
    previews the first five stored products.
    """
    if not request.rows:
        raise HTTPException(status_code=400, detail="Missing required fields: rows")
    unmapped = [f for f in REQUIRED_FIELDS if not request.column_mapping.get(f)]
    if unmapped:
        raise HTTPException(status_code=400, detail=f"Column mapping is missing: {unmapped}")

    supplier = await repository.get_supplier(request.supplier_id)
    if supplier is None:
        raise HTTPException(status_code=404, detail="Supplier not found")

    summary = DataNormalizer().normalize_rows(request.rows, request.column_mapping)

    import_id = new_id()
    saved = []
    if summary.products:
        for product in summary.products:
            product.supplier_id = supplier.id
            product.supplier_name = product.supplier_name or supplier.name
        saved = await repository.save_products(supplier.id, summary.products, import_session_id=import_id)

    logger.info(
        f"Imported {len(saved)}/{summary.total_rows} rows for supplier {supplier.name}"
        + (f" from {request.file_name}" if request.file_name else "")
    )
    return ImportResponse(
        import_id=import_id,
        total_rows=summary.total_rows,
        valid_rows=summary.valid_rows,
        invalid_rows=summary.invalid_rows,
        is_valid=summary.is_valid,
        errors=[e.to_dict() for e in summary.errors],
        warnings=[w.to_dict() for w in summary.warnings],
        normalized_products=[product_response(p) for p in saved[:5]],
        saved_count=len(saved),
    )
