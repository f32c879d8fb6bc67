"""
HTTP routes for takeoff listings.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from takeoffs.auth import authenticate, require_admin
from takeoffs.dependencies import get_takeoff_service
from takeoffs.errors import InternalError, TakeoffError
from takeoffs.forms import read_takeoff_form
from takeoffs.query import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT, TakeoffQuery
from takeoffs.schemas import DeleteResponse, TakeoffRecord
from takeoffs.service import TakeoffService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Takeoffs"])


@contextmanager
def _internal_errors(action: str):
    """Surface anything outside the error taxonomy as a 500 with its message."""
    try:
        yield
    except TakeoffError:
        raise
    except Exception as exc:
        logger.exception("Failed to %s", action)
        raise InternalError(str(exc)) from exc


@router.post("/takeoffs", response_model=TakeoffRecord, status_code=201)
async def create_takeoff(
    request: Request,
    claims: dict = Depends(authenticate),
    service: TakeoffService = Depends(get_takeoff_service),
):
    with _internal_errors("create takeoff"):
        form = await read_takeoff_form(request)
        return await service.create_takeoff(
            form.fields, form.files, form.pdf_preview, user=claims
        )


@router.get("/takeoffs", response_model=list[TakeoffRecord])
async def list_takeoffs(
    zip_code: Optional[str] = Query(None, alias="zipCode"),
    size: Optional[str] = Query(None),
    type: Optional[str] = Query(None, description="Comma-separated project types"),
    price_min: Optional[float] = Query(None, alias="priceMin"),
    price_max: Optional[float] = Query(None, alias="priceMax"),
    search: Optional[str] = Query(None),
    sort: Optional[str] = Query(
        None, description="price_asc, price_desc, size or newest (default)"
    ),
    page: int = Query(DEFAULT_PAGE, ge=1),
    limit: int = Query(
        DEFAULT_LIMIT, ge=1, description=f"Page size; values above {MAX_LIMIT} are clamped"
    ),
    service: TakeoffService = Depends(get_takeoff_service),
):
    query = TakeoffQuery.from_params(
        zip_code=zip_code,
        size=size,
        type=type,
        price_min=price_min,
        price_max=price_max,
        search=search,
        sort=sort,
        page=page,
        limit=limit,
    )
    with _internal_errors("list takeoffs"):
        return await service.list_takeoffs(query)


@router.get("/takeoffs/{takeoff_id}", response_model=TakeoffRecord)
async def get_takeoff(
    takeoff_id: str, service: TakeoffService = Depends(get_takeoff_service)
):
    with _internal_errors("get takeoff"):
        return await service.get_takeoff(takeoff_id)


@router.put("/takeoffs/{takeoff_id}", response_model=TakeoffRecord)
async def update_takeoff(
    takeoff_id: str,
    request: Request,
    claims: dict = Depends(authenticate),
    service: TakeoffService = Depends(get_takeoff_service),
):
    with _internal_errors("update takeoff"):
        form = await read_takeoff_form(request)
        return await service.update_takeoff(
            takeoff_id, form.fields, form.files, form.pdf_preview
        )


@router.delete("/takeoffs/{takeoff_id}", response_model=DeleteResponse)
async def delete_takeoff(
    takeoff_id: str,
    claims: dict = Depends(require_admin),
    service: TakeoffService = Depends(get_takeoff_service),
):
    with _internal_errors("delete takeoff"):
        return await service.delete_takeoff(takeoff_id)
