"""Vendor management and per-vendor statistics endpoints."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, func, desc, or_
from sqlalchemy.ext.asyncio import AsyncSession

from vendorsync.auth import verify_api_key
from vendorsync.database import get_db
from vendorsync.models import Vehicle, Vendor, VendorStatus, VendorSyncLog
from vendorsync.pricing import MarkupType
from vendorsync.schemas import VendorCreate, VendorResponse, VendorStats, VendorUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vendors", tags=["Vendors"])

MARKUP_FIELDS = {"markup_type", "markup_value"}


async def _get_vendor_or_404(db: AsyncSession, vendor_id: str) -> Vendor:
    result = await db.execute(select(Vendor).where(Vendor.vendor_id == vendor_id))
    vendor = result.scalar_one_or_none()
    if not vendor:
        raise HTTPException(status_code=404, detail=f"Vendor {vendor_id} not found")
    return vendor


@router.get("", response_model=List[VendorResponse])
async def list_vendors(
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    result = await db.execute(select(Vendor).order_by(Vendor.vendor_name))
    return [VendorResponse.model_validate(v) for v in result.scalars().all()]


@router.post("", response_model=VendorResponse, status_code=201)
async def create_vendor(
    body: VendorCreate,
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    existing = await db.execute(select(Vendor.id).where(Vendor.vendor_id == body.vendor_id))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail=f"Vendor {body.vendor_id} already exists")

    vendor = Vendor(**body.model_dump())
    db.add(vendor)
    await db.flush()
    await db.refresh(vendor)
    logger.info(f"Vendor created: {vendor.vendor_id}")
    return VendorResponse.model_validate(vendor)


@router.get("/stats", response_model=List[VendorStats])
async def vendor_stats(
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    """Active, unlisted and sold counts plus the last sync of every vendor."""
    vendors = (await db.execute(select(Vendor).order_by(Vendor.vendor_name))).scalars().all()

    counts = {}
    rows = await db.execute(
        select(Vehicle.vendor_id, Vehicle.vendor_status, Vehicle.is_sold, func.count(Vehicle.id))
        .where(Vehicle.vendor_id.isnot(None))
        .group_by(Vehicle.vendor_id, Vehicle.vendor_status, Vehicle.is_sold)
    )
    for vendor_id, vendor_status, is_sold, count in rows:
        bucket = counts.setdefault(vendor_id, {"active": 0, "unlisted": 0, "sold": 0})
        if is_sold:
            bucket["sold"] += count
        elif vendor_status == VendorStatus.UNLISTED:
            bucket["unlisted"] += count
        else:
            bucket["active"] += count

    stats = []
    for vendor in vendors:
        last = (await db.execute(
            select(VendorSyncLog)
            .where(VendorSyncLog.vendor_id == vendor.vendor_id)
            .order_by(desc(VendorSyncLog.sync_date), desc(VendorSyncLog.id))
            .limit(1)
        )).scalar_one_or_none()
        bucket = counts.get(vendor.vendor_id, {})
        stats.append(VendorStats(
            vendor_id=vendor.vendor_id,
            vendor_name=vendor.vendor_name,
            active_vehicles=bucket.get("active", 0),
            unlisted_vehicles=bucket.get("unlisted", 0),
            sold_vehicles=bucket.get("sold", 0),
            last_sync=last.sync_date if last else None,
            last_sync_status=last.status if last else None,
        ))
    return stats


@router.get("/{vendor_id}", response_model=VendorResponse)
async def get_vendor(
    vendor_id: str,
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    return VendorResponse.model_validate(await _get_vendor_or_404(db, vendor_id))


@router.patch("/{vendor_id}", response_model=VendorResponse)
async def update_vendor(
    vendor_id: str,
    body: VendorUpdate,
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    """Update a vendor. A new default markup reprices its vendor_default vehicles."""
    vendor = await _get_vendor_or_404(db, vendor_id)
    changes = body.model_dump(exclude_unset=True)
    for key, value in changes.items():
        if value is None and key in ("vendor_name", "base_url", "listing_path", "max_pages", "is_active"):
            continue
        setattr(vendor, key, value)

    if MARKUP_FIELDS & changes.keys():
        result = await db.execute(
            select(Vehicle).where(
                Vehicle.vendor_id == vendor.vendor_id,
                or_(
                    Vehicle.price_markup_type == MarkupType.VENDOR_DEFAULT,
                    Vehicle.price_markup_type.is_(None),
                ),
            )
        )
        vehicles = result.scalars().all()
        for vehicle in vehicles:
            vehicle.recompute_display_price(vendor.markup_type, vendor.markup_value)
        logger.info(f"Repriced {len(vehicles)} vehicles of {vendor.vendor_id} after markup change")

    await db.flush()
    await db.refresh(vendor)
    return VendorResponse.model_validate(vendor)
