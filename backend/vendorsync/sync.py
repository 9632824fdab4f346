"""Per-vendor sync run: discover, scrape, diff, relay images, persist, log."""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vendorsync.config import settings
from vendorsync.errors import PersistenceError, RunFatalError, SyncInProgress
from vendorsync.images import ImageRelay, ImageStore, is_cdn_id
from vendorsync.inventory import PersistedVehicle, diff_inventory
from vendorsync.models import ListingStatus, LogLevel, SyncStatus, Vehicle, Vendor, VendorStatus, VendorSyncLog
from vendorsync.pricing import MarkupType, display_price, resolve_markup
from vendorsync.schemas import SyncResponse, SyncStats, VendorProfile, VendorVehicle
from vendorsync.scraper.scraper import ScrapeResult, VendorScraper
from vendorsync.syslog import write_log

logger = logging.getLogger(__name__)


class SyncStage(str, enum.Enum):
    PENDING = "pending"
    DISCOVERING = "discovering"
    SCRAPING = "scraping"
    DIFFING = "diffing"
    IMAGE_UPLOADING = "image_uploading"
    PERSISTING = "persisting"
    LOGGED = "logged"
    FAILED = "failed"


# ── Per-vendor serialization ─────────────────────────────────────────────────

_vendor_locks: Dict[str, asyncio.Lock] = {}


def vendor_lock(vendor_id: str) -> asyncio.Lock:
    """In-process lock guarding one vendor's diff-then-write sequence."""
    if vendor_id not in _vendor_locks:
        _vendor_locks[vendor_id] = asyncio.Lock()
    return _vendor_locks[vendor_id]


def is_sync_running(vendor_id: str) -> bool:
    return vendor_id in _vendor_locks and _vendor_locks[vendor_id].locked()


# ── Outcome ──────────────────────────────────────────────────────────────────

@dataclass
class SyncOutcome:
    vendor_id: str
    vendor_name: str
    status: SyncStatus
    vehicles: List[VendorVehicle] = field(default_factory=list)
    stats: SyncStats = field(default_factory=SyncStats)
    errors: List[str] = field(default_factory=list)
    images_uploaded: bool = False
    duration: float = 0.0
    log_id: Optional[int] = None

    def to_response(self) -> SyncResponse:
        return SyncResponse(
            success=self.status != SyncStatus.FAILED,
            vendor=self.vendor_name,
            status=self.status,
            vehicles=self.vehicles,
            count=len(self.vehicles),
            stats=self.stats,
            errors=self.errors,
            images_uploaded=self.images_uploaded,
            duration=self.duration,
        )


# ── Orchestrator ─────────────────────────────────────────────────────────────

class VendorSync:
    """
    Runs one sync for one vendor.

    Stages run strictly in order over the whole batch. Each row write is
    its own statement and commit, so one failing vehicle is recorded in
    ``errors`` and the run carries on as ``partial``. An exception that
    escapes a stage ends the run as ``failed`` and surfaces as
    RunFatalError. A log row is written either way.
    """

    def __init__(
        self,
        session: AsyncSession,
        vendor: Union[Vendor, VendorProfile],
        scraper: Optional[VendorScraper] = None,
        relay: Optional[ImageRelay] = None,
    ):
        self.session = session
        # Snapshot so rollbacks never leave us reading expired ORM attributes
        self.vendor = vendor if isinstance(vendor, VendorProfile) else VendorProfile.model_validate(vendor)
        self.scraper = scraper or VendorScraper(self.vendor)
        self.relay = relay
        self._owns_relay = False
        self.stage = SyncStage.PENDING
        self.errors: List[str] = []
        self.stats = SyncStats()

    async def run(self) -> SyncOutcome:
        lock = vendor_lock(self.vendor.vendor_id)
        if lock.locked():
            raise SyncInProgress(f"A sync for {self.vendor.vendor_id} is already running")
        async with lock:
            return await self._run()

    def _set_stage(self, stage: SyncStage):
        self.stage = stage
        logger.info(f"[{self.vendor.vendor_id}] Stage: {stage.value}")

    async def _run(self) -> SyncOutcome:
        started = time.monotonic()
        vendor_id = self.vendor.vendor_id
        logger.info(f"[{vendor_id}] Sync started")

        try:
            async with self.scraper as scraper:
                self._set_stage(SyncStage.DISCOVERING)
                scrape = await scraper.discover_detail_urls()

                self._set_stage(SyncStage.SCRAPING)
                scrape = await scraper.scrape_urls(scrape)
            self.errors.extend(scrape.errors)

            self._set_stage(SyncStage.DIFFING)
            persisted = await self._load_persisted()
            diff = diff_inventory(scrape.vehicles, persisted)
            for dup in diff.duplicates:
                logger.warning(f"[{vendor_id}] Duplicate listing skipped: {dup.identity} ({dup.source_url})")
            for row in diff.reactivated:
                logger.info(f"[{vendor_id}] Vehicle {row.vin or row.stock_number} reappeared, reactivating")

            self._set_stage(SyncStage.IMAGE_UPLOADING)
            new_images = await self._relay_images(diff.new)

            self._set_stage(SyncStage.PERSISTING)
            now = datetime.now(timezone.utc)
            for vehicle in diff.new:
                if await self._write(vehicle.identity, insert(Vehicle).values(
                    **self._new_row_values(vehicle, new_images[id(vehicle)], now)
                )):
                    self.stats.new += 1
            for vehicle, row in diff.updated:
                if await self._write(vehicle.identity, update(Vehicle).where(Vehicle.id == row.id).values(
                    **self._updated_row_values(vehicle, row, now)
                )):
                    self.stats.updated += 1
            for vehicle, row in diff.unchanged:
                if await self._write(vehicle.identity, update(Vehicle).where(Vehicle.id == row.id).values(
                    last_seen_from_vendor=now, vendor_status=VendorStatus.ACTIVE,
                )):
                    self.stats.unchanged += 1
            await self._mark_unlisted(scrape, [row.id for row in diff.unlisted])
            self.stats.total = len(scrape.vehicles)

        except Exception as e:
            await self.session.rollback()
            message = str(e) or e.__class__.__name__
            if self.stage != SyncStage.PERSISTING:
                self._set_stage(SyncStage.FAILED)
                logger.error(f"[{vendor_id}] Sync failed: {message}")
                try:
                    await self._log_run(SyncStatus.FAILED, 0, time.monotonic() - started, message)
                except SQLAlchemyError:
                    logger.exception(f"[{vendor_id}] Could not record failed sync")
                if isinstance(e, RunFatalError):
                    raise
                raise RunFatalError(message) from e
            # Rows are already committed, so the run has produced results
            logger.exception(f"[{vendor_id}] Sync interrupted while persisting: {message}")
            self.errors.append(f"Persisting interrupted: {message}")
            self.stats.total = len(scrape.vehicles)

        status = SyncStatus.PARTIAL if self.errors else SyncStatus.SUCCESS
        duration = round(time.monotonic() - started, 2)
        try:
            log_id = await self._log_run(status, len(scrape.vehicles), duration)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception(f"[{vendor_id}] Could not record sync log")
            self.errors.append(f"Sync log not recorded: {getattr(e, 'orig', None) or e}")
            status = SyncStatus.PARTIAL
            log_id = None
        self._set_stage(SyncStage.LOGGED)

        return SyncOutcome(
            vendor_id=vendor_id,
            vendor_name=self.vendor.vendor_name,
            status=status,
            vehicles=scrape.vehicles,
            stats=self.stats,
            errors=list(self.errors),
            images_uploaded=any(
                is_cdn_id(image) for images in new_images.values() for image in images
            ),
            duration=duration,
            log_id=log_id,
        )

    # ── Stages ───────────────────────────────────────────────────────────────

    async def _load_persisted(self) -> List[PersistedVehicle]:
        result = await self.session.execute(
            select(Vehicle)
            .where(Vehicle.vendor_id == self.vendor.vendor_id)
            .execution_options(populate_existing=True)
        )
        return [PersistedVehicle.from_row(row) for row in result.scalars().all()]

    async def _relay_images(self, vehicles: List[VendorVehicle]) -> Dict[int, List[str]]:
        """Relay images of new vehicles one vehicle at a time."""
        relay = self.relay
        if relay is None and settings.images_enabled and any(v.images for v in vehicles):
            relay = ImageRelay(ImageStore())
            self._owns_relay = True

        relayed: Dict[int, List[str]] = {}
        try:
            for vehicle in vehicles:
                if relay is None or not vehicle.images:
                    relayed[id(vehicle)] = list(vehicle.images)
                    continue
                relayed[id(vehicle)] = await relay.relay(vehicle.images, self._image_prefix(vehicle))
        finally:
            if self._owns_relay:
                await relay.store.aclose()
                await relay.aclose()
        return relayed

    def _image_prefix(self, vehicle: VendorVehicle) -> str:
        return f"{settings.IMAGE_ID_PREFIX}-{self.vendor.vendor_id}-{vehicle.identity}"

    def _vendor_markup(self):
        return resolve_markup(
            MarkupType.VENDOR_DEFAULT, None, self.vendor.markup_type, self.vendor.markup_value
        )

    def _new_row_values(self, vehicle: VendorVehicle, images: List[str], now: datetime) -> dict:
        markup_type, markup_value = self._vendor_markup()
        return dict(
            vin=vehicle.vin,
            stock_number=vehicle.stock_number,
            year=vehicle.year,
            make=vehicle.make,
            model=vehicle.model,
            trim=vehicle.trim,
            price=vehicle.price,
            odometer=vehicle.odometer,
            color=vehicle.color,
            body_type=vehicle.body_type,
            fuel_type=vehicle.fuel_type,
            transmission=vehicle.transmission,
            drivetrain=vehicle.drivetrain,
            description=vehicle.description,
            images=images,
            source_url=vehicle.source_url,
            vendor_id=self.vendor.vendor_id,
            vendor_name=self.vendor.vendor_name,
            vendor_stock_number=vehicle.stock_number,
            vendor_status=VendorStatus.ACTIVE,
            last_seen_from_vendor=now,
            price_markup_type=MarkupType.VENDOR_DEFAULT,
            price_markup_value=0,
            display_price=display_price(vehicle.price, markup_type, markup_value),
            is_sold=False,
            listing_status=ListingStatus.PUBLISHED,
        )

    def _updated_row_values(self, vehicle: VendorVehicle, row: PersistedVehicle, now: datetime) -> dict:
        markup_type, markup_value = resolve_markup(
            row.price_markup_type, row.price_markup_value,
            self.vendor.markup_type, self.vendor.markup_value,
        )
        # Stored CDN ids survive; rows still on source URLs take the fresh ones
        images = row.images if any(is_cdn_id(image) for image in row.images) else list(vehicle.images)
        return dict(
            price=vehicle.price,
            odometer=vehicle.odometer,
            description=vehicle.description,
            images=images,
            display_price=display_price(vehicle.price, markup_type, markup_value),
            last_seen_from_vendor=now,
            vendor_status=VendorStatus.ACTIVE,
        )

    async def _mark_unlisted(self, scrape: ScrapeResult, ids: List[int]):
        if not scrape.vehicles:
            logger.warning(f"[{self.vendor.vendor_id}] No vehicles scraped, skipping unlisted marking")
            return
        if not ids:
            return
        if await self._write(
            "unlisted",
            update(Vehicle).where(Vehicle.id.in_(ids)).values(vendor_status=VendorStatus.UNLISTED),
        ):
            self.stats.unlisted = len(ids)
            logger.info(f"[{self.vendor.vendor_id}] Marked {len(ids)} vehicles as unlisted")

    async def _write(self, key: str, statement) -> bool:
        """Execute and commit one statement; failures become run errors."""
        try:
            await self.session.execute(statement)
            await self.session.commit()
            return True
        except SQLAlchemyError as e:
            await self.session.rollback()
            error = PersistenceError(key, getattr(e, "orig", None) or e)
            logger.error(f"[{self.vendor.vendor_id}] Write failed for {error}")
            self.errors.append(str(error))
            return False

    async def _log_run(
        self, status: SyncStatus, found: int, duration: float, error_detail: Optional[str] = None,
    ) -> Optional[int]:
        log = VendorSyncLog(
            vendor_id=self.vendor.vendor_id,
            vendor_name=self.vendor.vendor_name,
            vehicles_found=found,
            new_vehicles=self.stats.new,
            updated_vehicles=self.stats.updated,
            unchanged_vehicles=self.stats.unchanged,
            unlisted_vehicles=self.stats.unlisted,
            status=status,
            error_detail=error_detail,
            errors=list(self.errors),
            duration_seconds=round(duration, 2),
        )
        self.session.add(log)
        await self.session.commit()

        level = {
            SyncStatus.SUCCESS: LogLevel.INFO,
            SyncStatus.PARTIAL: LogLevel.WARNING,
            SyncStatus.FAILED: LogLevel.ERROR,
        }[status]
        await write_log(
            level, "sync",
            f"Sync {status.value} for {self.vendor.vendor_name}: {found} found, "
            f"{self.stats.new} new, {self.stats.updated} updated, {self.stats.unlisted} unlisted",
            details={
                "sync_log_id": log.id,
                "stats": self.stats.model_dump(),
                "errors": self.errors[:20],
                "error_detail": error_detail,
                "duration_seconds": round(duration, 2),
            },
            vendor_id=self.vendor.vendor_id,
            session=self.session,
        )
        return log.id
