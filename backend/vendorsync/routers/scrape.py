"""Sync trigger and sync history endpoints.

  - POST /api/scrape/{vendor_id}: run a vendor sync and return its summary
  - GET  /api/scrape/logs: paginated sync run history
"""

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from vendorsync.auth import verify_api_key
from vendorsync.database import get_db
from vendorsync.errors import RunFatalError, SyncInProgress
from vendorsync.models import Vendor, VendorSyncLog
from vendorsync.schemas import SyncLogListResponse, SyncLogResponse, SyncResponse
from vendorsync.sync import VendorSync, is_sync_running

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scrape", tags=["Scraping"])


# ── Logs ─────────────────────────────────────────────────────────────────────

@router.get("/logs", response_model=SyncLogListResponse)
async def list_sync_logs(
    vendor_id: Optional[str] = Query(None, description="Filter by vendor"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    query = select(VendorSyncLog)
    count_query = select(func.count(VendorSyncLog.id))
    if vendor_id:
        query = query.where(VendorSyncLog.vendor_id == vendor_id)
        count_query = count_query.where(VendorSyncLog.vendor_id == vendor_id)

    total = (await db.execute(count_query)).scalar() or 0
    offset = (page - 1) * per_page
    result = await db.execute(
        query.order_by(desc(VendorSyncLog.sync_date), desc(VendorSyncLog.id)).offset(offset).limit(per_page)
    )
    logs = result.scalars().all()
    return SyncLogListResponse(
        items=[SyncLogResponse.model_validate(log) for log in logs],
        total=total, page=page, per_page=per_page,
        pages=math.ceil(total / per_page) if total else 0,
    )


# ── Trigger ──────────────────────────────────────────────────────────────────

@router.post("/{vendor_id}", response_model=SyncResponse)
async def trigger_sync(
    vendor_id: str,
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    """Run a full sync for one vendor and return the run summary.

    The request stays open until the run finishes. A run that fails before
    producing results answers 500 with ``{success: false, error}``.
    """
    result = await db.execute(select(Vendor).where(Vendor.vendor_id == vendor_id))
    vendor = result.scalar_one_or_none()
    if not vendor:
        raise HTTPException(status_code=404, detail=f"Vendor {vendor_id} not found")
    if not vendor.is_active:
        raise HTTPException(status_code=400, detail=f"Vendor {vendor_id} is not active")
    if is_sync_running(vendor_id):
        raise HTTPException(status_code=409, detail=f"A sync for {vendor_id} is already running.")

    try:
        outcome = await VendorSync(db, vendor).run()
    except SyncInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RunFatalError as e:
        logger.error(f"Sync for {vendor_id} failed: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return outcome.to_response()
