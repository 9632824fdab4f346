"""SQLAlchemy ORM models."""

import enum
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Float, DateTime, Enum, JSON, Index, UniqueConstraint
)
from vendorsync.database import Base
from vendorsync.pricing import MarkupType, display_price, resolve_markup


class VendorStatus(str, enum.Enum):
    ACTIVE = "active"
    UNLISTED = "unlisted"


class ListingStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    UNLISTED = "unlisted"
    SOLD = "sold"


class SyncStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class LogLevel(str, enum.Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _utcnow():
    return datetime.now(timezone.utc)


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vin = Column(String(17), nullable=True, index=True)
    stock_number = Column(String(50), nullable=True, index=True)
    year = Column(Integer, nullable=True, index=True)
    make = Column(String(100), nullable=True, index=True)
    model = Column(String(100), nullable=True, index=True)
    trim = Column(String(200), nullable=True)

    price = Column(Integer, nullable=False, default=0)
    odometer = Column(Integer, nullable=False, default=0)
    color = Column(String(100), nullable=True)
    body_type = Column(String(100), nullable=True, index=True)
    fuel_type = Column(String(50), nullable=True)
    transmission = Column(String(100), nullable=True)
    drivetrain = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    # CDN image ids, or vendor URLs where a relay fell back
    images = Column(JSON, default=list)
    source_url = Column(Text, nullable=True)

    vendor_id = Column(String(50), nullable=True, index=True)
    vendor_name = Column(String(200), nullable=True)
    vendor_stock_number = Column(String(50), nullable=True)
    vendor_status = Column(Enum(VendorStatus), default=VendorStatus.ACTIVE, index=True)
    last_seen_from_vendor = Column(DateTime(timezone=True), nullable=True)

    price_markup_type = Column(Enum(MarkupType), default=MarkupType.VENDOR_DEFAULT)
    price_markup_value = Column(Float, default=0)
    display_price = Column(Integer, nullable=False, default=0)

    is_sold = Column(Boolean, default=False, index=True)
    listing_status = Column(Enum(ListingStatus), default=ListingStatus.PUBLISHED, index=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("vendor_id", "vin", name="uq_vehicles_vendor_vin"),
        Index("ix_vehicles_make_model", "make", "model"),
        Index("ix_vehicles_vendor_id_status", "vendor_id", "vendor_status"),
    )

    def set_sold(self, sold: bool) -> None:
        """Flip the sold flag and keep listing_status in step."""
        self.is_sold = sold
        if sold:
            self.listing_status = ListingStatus.SOLD
        elif self.listing_status == ListingStatus.SOLD:
            self.listing_status = ListingStatus.PUBLISHED

    def set_listing_status(self, status: ListingStatus) -> None:
        """Change listing_status and keep the sold flag in step."""
        self.listing_status = status
        self.is_sold = status == ListingStatus.SOLD

    def recompute_display_price(
        self,
        vendor_markup_type: Optional[MarkupType] = None,
        vendor_markup_value: Optional[float] = None,
    ) -> int:
        markup_type, markup_value = resolve_markup(
            self.price_markup_type, self.price_markup_value,
            vendor_markup_type, vendor_markup_value,
        )
        self.display_price = display_price(self.price or 0, markup_type, markup_value)
        return self.display_price

    def __repr__(self):
        return f"<Vehicle {self.year} {self.make} {self.model} VIN={self.vin} vendor={self.vendor_id}>"


class Vendor(Base):
    """An external dealership whose inventory is mirrored locally."""
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vendor_id = Column(String(50), unique=True, nullable=False, index=True)
    vendor_name = Column(String(200), nullable=False)
    base_url = Column(String(500), nullable=False)
    listing_path = Column(String(500), nullable=False)  # "{page}" is replaced by the page number
    first_page_path = Column(String(500), nullable=True)
    detail_link_pattern = Column(String(500), nullable=True)  # regex matched against the URL path
    max_pages = Column(Integer, default=2)
    id_prefix = Column(String(10), default="VND")

    markup_type = Column(Enum(MarkupType), default=MarkupType.NONE)
    markup_value = Column(Float, default=0)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Vendor {self.vendor_id} active={self.is_active}>"


class VendorSyncLog(Base):
    """One row per sync run; never updated after insert."""
    __tablename__ = "vendor_sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vendor_id = Column(String(50), nullable=False, index=True)
    vendor_name = Column(String(200), nullable=True)
    sync_date = Column(DateTime(timezone=True), default=_utcnow, index=True)

    vehicles_found = Column(Integer, default=0)
    new_vehicles = Column(Integer, default=0)
    updated_vehicles = Column(Integer, default=0)
    unchanged_vehicles = Column(Integer, default=0)
    unlisted_vehicles = Column(Integer, default=0)

    status = Column(Enum(SyncStatus), nullable=False)
    error_detail = Column(Text, nullable=True)
    errors = Column(JSON, default=list)
    duration_seconds = Column(Float, default=0)

    def __repr__(self):
        return f"<VendorSyncLog {self.id} {self.vendor_id} status={self.status}>"


class SystemLog(Base):
    """Structured log entries for monitoring, debugging, and audit trail."""
    __tablename__ = "system_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow, index=True)
    level = Column(Enum(LogLevel), default=LogLevel.INFO, index=True)
    source = Column(String(100), nullable=False, index=True)  # e.g. "sync", "images", "api"
    message = Column(Text, nullable=False)
    details = Column(JSON, default=dict)
    vendor_id = Column(String(50), nullable=True, index=True)

    def __repr__(self):
        return f"<SystemLog {self.id} [{self.level}] {self.source}: {self.message[:50]}>"


BUILTIN_VENDORS = [
    {
        "vendor_id": "lambert",
        "vendor_name": "Lambert Auto",
        "base_url": "https://www.automobile-lambert.com",
        "listing_path": "/cars/?paged={page}&cars_pp=20",
        "detail_link_pattern": r"^/cars/[^/?]+/$",
        "max_pages": 2,
        "id_prefix": "LAM",
    },
    {
        "vendor_id": "naniauto",
        "vendor_name": "NaniAuto",
        "base_url": "https://naniauto.com",
        "listing_path": "/fr/inventory/p/{page}/",
        "first_page_path": "/fr/inventory/",
        "detail_link_pattern": r"^/fr/details/p/\d+/",
        "max_pages": 10,
        "id_prefix": "NANI",
    },
]
