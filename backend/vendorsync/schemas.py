"""Pydantic request/response schemas."""

from datetime import datetime, timezone
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from vendorsync.models import ListingStatus, LogLevel, SyncStatus, VendorStatus
from vendorsync.pricing import MarkupType


# ── Scraped vehicle ──────────────────────────────────────────────────────────

class VendorVehicle(BaseModel):
    """A vehicle as observed on a vendor's detail page."""
    vin: Optional[str] = None
    stock_number: str = ""
    make: Optional[str] = None
    model: Optional[str] = None
    trim: Optional[str] = None
    year: Optional[int] = None
    price: int = 0
    odometer: int = 0
    body_type: Optional[str] = None
    color: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    drivetrain: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    source_url: str = ""
    scraped_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def identity(self) -> str:
        return self.vin or self.stock_number


# ── Vehicle Schemas ──────────────────────────────────────────────────────────

class VehicleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vin: Optional[str] = None
    stock_number: Optional[str] = None
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    trim: Optional[str] = None
    price: int = 0
    odometer: int = 0
    color: Optional[str] = None
    body_type: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    drivetrain: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    source_url: Optional[str] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_status: Optional[VendorStatus] = None
    last_seen_from_vendor: Optional[datetime] = None
    price_markup_type: Optional[MarkupType] = None
    price_markup_value: Optional[float] = None
    display_price: int = 0
    is_sold: bool = False
    listing_status: Optional[ListingStatus] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class VehicleListResponse(BaseModel):
    items: List[VehicleResponse]
    total: int
    page: int
    per_page: int
    pages: int


class VehicleUpdate(BaseModel):
    price: Optional[int] = Field(None, ge=0)
    price_markup_type: Optional[MarkupType] = None
    price_markup_value: Optional[float] = None
    is_sold: Optional[bool] = None
    listing_status: Optional[ListingStatus] = None
    description: Optional[str] = None


# ── Vendor Schemas ───────────────────────────────────────────────────────────

class VendorProfile(BaseModel):
    """Everything a sync run needs to know about a vendor."""
    model_config = ConfigDict(from_attributes=True)

    vendor_id: str
    vendor_name: str
    base_url: str
    listing_path: str
    first_page_path: Optional[str] = None
    detail_link_pattern: Optional[str] = None
    max_pages: int = 2
    id_prefix: str = "VND"
    markup_type: MarkupType = MarkupType.NONE
    markup_value: float = 0
    is_active: bool = True


class VendorCreate(BaseModel):
    vendor_id: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z0-9_-]+$")
    vendor_name: str = Field(..., min_length=1, max_length=200)
    base_url: str = Field(..., min_length=1)
    listing_path: str = Field(..., min_length=1)
    first_page_path: Optional[str] = None
    detail_link_pattern: Optional[str] = None
    max_pages: int = Field(2, ge=1, le=50)
    id_prefix: str = Field("VND", min_length=1, max_length=10)
    markup_type: MarkupType = MarkupType.NONE
    markup_value: float = 0
    is_active: bool = True


class VendorUpdate(BaseModel):
    vendor_name: Optional[str] = Field(None, min_length=1, max_length=200)
    base_url: Optional[str] = None
    listing_path: Optional[str] = None
    first_page_path: Optional[str] = None
    detail_link_pattern: Optional[str] = None
    max_pages: Optional[int] = Field(None, ge=1, le=50)
    markup_type: Optional[MarkupType] = None
    markup_value: Optional[float] = None
    is_active: Optional[bool] = None


class VendorResponse(VendorProfile):
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None


class VendorStats(BaseModel):
    vendor_id: str
    vendor_name: str
    active_vehicles: int = 0
    unlisted_vehicles: int = 0
    sold_vehicles: int = 0
    last_sync: Optional[datetime] = None
    last_sync_status: Optional[SyncStatus] = None


# ── Sync Schemas ─────────────────────────────────────────────────────────────

class SyncStats(BaseModel):
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    unlisted: int = 0
    total: int = 0


class SyncResponse(BaseModel):
    """Summary returned by the scrape trigger."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    vendor: str
    status: SyncStatus
    vehicles: List[VendorVehicle]
    count: int
    stats: SyncStats
    errors: List[str] = Field(default_factory=list)
    images_uploaded: bool = Field(False, serialization_alias="imagesUploaded")
    duration: float


class SyncLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vendor_id: str
    vendor_name: Optional[str] = None
    sync_date: datetime
    vehicles_found: int = 0
    new_vehicles: int = 0
    updated_vehicles: int = 0
    unchanged_vehicles: int = 0
    unlisted_vehicles: int = 0
    status: SyncStatus
    error_detail: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    duration_seconds: float = 0


class SyncLogListResponse(BaseModel):
    items: List[SyncLogResponse]
    total: int
    page: int
    per_page: int
    pages: int


# ── System Log Schemas ───────────────────────────────────────────────────────

class SystemLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    timestamp: datetime
    level: LogLevel
    source: str
    message: str
    details: Dict = Field(default_factory=dict)
    vendor_id: Optional[str] = None


class SystemLogListResponse(BaseModel):
    items: List[SystemLogResponse]
    total: int
    page: int
    per_page: int
    pages: int
