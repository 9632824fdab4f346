"""Vehicle API endpoints."""

import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, desc, asc
from sqlalchemy.ext.asyncio import AsyncSession

from vendorsync.auth import verify_api_key
from vendorsync.database import get_db
from vendorsync.models import ListingStatus, Vehicle, Vendor, VendorStatus
from vendorsync.schemas import VehicleListResponse, VehicleResponse, VehicleUpdate

router = APIRouter(prefix="/api/vehicles", tags=["Vehicles"])

PRICING_FIELDS = {"price", "price_markup_type", "price_markup_value"}

SORTABLE_COLUMNS = {
    "created_at": Vehicle.created_at,
    "updated_at": Vehicle.updated_at,
    "last_seen_from_vendor": Vehicle.last_seen_from_vendor,
    "year": Vehicle.year,
    "make": Vehicle.make,
    "model": Vehicle.model,
    "price": Vehicle.price,
    "display_price": Vehicle.display_price,
    "odometer": Vehicle.odometer,
}


@router.get("", response_model=VehicleListResponse)
async def list_vehicles(
    vendor_id: Optional[str] = Query(None, description="Filter by vendor"),
    vendor_status: Optional[VendorStatus] = Query(None, description="active or unlisted"),
    listing_status: Optional[ListingStatus] = Query(None, description="draft, published, unlisted or sold"),
    make: Optional[str] = Query(None, description="Filter by make"),
    sort_by: str = Query("created_at", description="Sort field"),
    order: str = Query("desc", description="Sort order: asc or desc"),
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    """List vehicles with filtering, sorting, and pagination."""
    query = select(Vehicle)
    count_query = select(func.count(Vehicle.id))

    filters = []
    if vendor_id:
        filters.append(Vehicle.vendor_id == vendor_id)
    if vendor_status:
        filters.append(Vehicle.vendor_status == vendor_status)
    if listing_status:
        filters.append(Vehicle.listing_status == listing_status)
    if make:
        filters.append(Vehicle.make.ilike(f"%{make}%"))

    for f in filters:
        query = query.where(f)
        count_query = count_query.where(f)

    total = (await db.execute(count_query)).scalar() or 0

    sort_column = SORTABLE_COLUMNS.get(sort_by, Vehicle.created_at)
    if order.lower() == "asc":
        query = query.order_by(asc(sort_column), asc(Vehicle.id))
    else:
        query = query.order_by(desc(sort_column), desc(Vehicle.id))

    offset = (page - 1) * per_page
    result = await db.execute(query.offset(offset).limit(per_page))
    vehicles = result.scalars().all()

    return VehicleListResponse(
        items=[VehicleResponse.model_validate(v) for v in vehicles],
        total=total,
        page=page,
        per_page=per_page,
        pages=math.ceil(total / per_page) if total > 0 else 0,
    )


async def _get_vehicle_or_404(db: AsyncSession, vehicle_id: int) -> Vehicle:
    vehicle = await db.get(Vehicle, vehicle_id)
    if not vehicle:
        raise HTTPException(status_code=404, detail=f"Vehicle {vehicle_id} not found")
    return vehicle


@router.get("/{vehicle_id}", response_model=VehicleResponse)
async def get_vehicle(
    vehicle_id: int,
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    """Get a single vehicle by id."""
    return VehicleResponse.model_validate(await _get_vehicle_or_404(db, vehicle_id))


@router.patch("/{vehicle_id}", response_model=VehicleResponse)
async def update_vehicle(
    vehicle_id: int,
    body: VehicleUpdate,
    db: AsyncSession = Depends(get_db),
    _api_key=Depends(verify_api_key),
):
    """
    Update price, markup, sold flag or listing status.

    ``is_sold`` and ``listing_status`` are kept in step, and the display
    price is recomputed whenever a pricing field changes.
    """
    vehicle = await _get_vehicle_or_404(db, vehicle_id)
    changes = body.model_dump(exclude_unset=True)

    if "is_sold" in changes and "listing_status" in changes:
        if changes["is_sold"] != (changes["listing_status"] == ListingStatus.SOLD):
            raise HTTPException(status_code=400, detail="is_sold contradicts listing_status")

    if "price" in changes and changes["price"] is not None:
        vehicle.price = changes["price"]
    if "price_markup_type" in changes:
        vehicle.price_markup_type = changes["price_markup_type"]
    if "price_markup_value" in changes:
        vehicle.price_markup_value = changes["price_markup_value"]
    if "description" in changes:
        vehicle.description = changes["description"]
    if changes.get("listing_status") is not None:
        vehicle.set_listing_status(changes["listing_status"])
    elif changes.get("is_sold") is not None:
        vehicle.set_sold(changes["is_sold"])

    if PRICING_FIELDS & changes.keys():
        vendor = None
        if vehicle.vendor_id:
            result = await db.execute(select(Vendor).where(Vendor.vendor_id == vehicle.vendor_id))
            vendor = result.scalar_one_or_none()
        vehicle.recompute_display_price(
            vendor.markup_type if vendor else None,
            vendor.markup_value if vendor else None,
        )

    await db.flush()
    await db.refresh(vehicle)
    return VehicleResponse.model_validate(vehicle)
