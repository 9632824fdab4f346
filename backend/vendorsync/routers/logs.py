"""System log endpoints."""

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, desc, delete
from sqlalchemy.ext.asyncio import AsyncSession

from vendorsync.auth import verify_api_key
from vendorsync.database import get_db
from vendorsync.models import LogLevel, SystemLog
from vendorsync.schemas import SystemLogListResponse, SystemLogResponse

router = APIRouter(prefix="/api/logs", tags=["Logs"])


@router.get("", response_model=SystemLogListResponse)
async def list_system_logs(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    level: Optional[str] = Query(None, description="Filter by level: debug,info,warning,error,critical"),
    source: Optional[str] = Query(None, description="Filter by source: sync,images,api"),
    vendor_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    query = select(SystemLog)
    count_query = select(func.count(SystemLog.id))

    if level:
        try:
            lv = LogLevel(level.lower())
            query = query.where(SystemLog.level == lv)
            count_query = count_query.where(SystemLog.level == lv)
        except ValueError:
            pass
    if source:
        query = query.where(SystemLog.source == source)
        count_query = count_query.where(SystemLog.source == source)
    if vendor_id:
        query = query.where(SystemLog.vendor_id == vendor_id)
        count_query = count_query.where(SystemLog.vendor_id == vendor_id)

    total = (await db.execute(count_query)).scalar() or 0
    offset = (page - 1) * per_page
    result = await db.execute(
        query.order_by(desc(SystemLog.timestamp), desc(SystemLog.id)).offset(offset).limit(per_page)
    )
    logs = result.scalars().all()

    return SystemLogListResponse(
        items=[SystemLogResponse.model_validate(log) for log in logs],
        total=total, page=page, per_page=per_page,
        pages=math.ceil(total / per_page) if total else 0,
    )


@router.delete("", status_code=204)
async def clear_system_logs(
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    """Clear all system logs."""
    await db.execute(delete(SystemLog))
    await db.flush()
