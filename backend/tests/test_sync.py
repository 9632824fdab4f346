"""End-to-end tests for the vendor sync orchestrator."""

import pytest
from sqlalchemy import select, update

from vendorsync import sync as sync_module
from vendorsync.database import AsyncSessionLocal
from vendorsync.errors import RunFatalError, SyncInProgress
from vendorsync.models import (
    ListingStatus, LogLevel, SyncStatus, SystemLog, Vehicle, VendorStatus, VendorSyncLog,
)
from vendorsync.pricing import MarkupType
from vendorsync.sync import VendorSync, vendor_lock

from conftest import DEALER, FakeSite, MALFORMED_HTML, dealer_profile, detail_html, listing_html, make_scraper

VIN_1 = "1HGBH41JXMN109186"
VIN_2 = "2T1BURHE5JC123456"
VIN_3 = "3VWDX7AJ5DM654321"

PAGE_1 = f"{DEALER}/inventory/?page=1"
PAGE_2 = f"{DEALER}/inventory/?page=2"


def dealer_site(vehicles, extra=None):
    """Listing page with one link per entry; ``None`` entries serve malformed HTML."""
    pages = {PAGE_2: listing_html()}
    paths = []
    for idx, vehicle in enumerate(vehicles, start=1):
        path = f"/vehicle/{idx}/"
        paths.append(path)
        pages[f"{DEALER}{path}"] = MALFORMED_HTML if vehicle is None else detail_html(*vehicle)
    pages[PAGE_1] = listing_html(*paths)
    pages.update(extra or {})
    return FakeSite(pages)


class RecordingRelay:
    """Stands in for ImageRelay and returns predictable CDN ids."""

    def __init__(self):
        self.calls = []

    async def relay(self, urls, prefix):
        self.calls.append((list(urls), prefix))
        return [f"{prefix}-{i}" for i in range(len(urls))]


async def run_sync(session, site, profile=None, relay=None):
    profile = profile or dealer_profile()
    return await VendorSync(session, profile, scraper=make_scraper(site, profile), relay=relay).run()


async def fetch_vehicles(vendor_id="testdealer"):
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Vehicle).where(Vehicle.vendor_id == vendor_id).order_by(Vehicle.id)
        )
        return {v.vin: v for v in result.scalars().all()}


async def fetch_logs(vendor_id="testdealer"):
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(VendorSyncLog).where(VendorSyncLog.vendor_id == vendor_id).order_by(VendorSyncLog.id)
        )
        return result.scalars().all()


CAR_1 = (2021, "Toyota", "Corolla", VIN_1, 20000, 30000)
CAR_2 = (2019, "Honda", "Civic", VIN_2, 15000, 80000)
CAR_3 = (2020, "Volkswagen", "Jetta", VIN_3, 18000, 50000)


class TestEndToEnd:
    async def test_malformed_page_gives_partial_run(self, db_session):
        site = dealer_site([CAR_1, None, CAR_3])
        outcome = await run_sync(db_session, site)

        assert outcome.status == SyncStatus.PARTIAL
        assert len(outcome.vehicles) == 2
        assert len(outcome.errors) == 1
        assert outcome.stats.new == 2
        assert outcome.stats.total == 2

        logs = await fetch_logs()
        assert len(logs) == 1
        assert logs[0].vehicles_found == 2
        assert logs[0].new_vehicles == 2
        assert logs[0].status == SyncStatus.PARTIAL
        assert len(logs[0].errors) == 1
        assert logs[0].id == outcome.log_id

    async def test_clean_run_is_success(self, db_session):
        outcome = await run_sync(db_session, dealer_site([CAR_1, CAR_2]))
        assert outcome.status == SyncStatus.SUCCESS
        assert outcome.errors == []
        assert outcome.to_response().success is True

    async def test_new_rows(self, db_session):
        await run_sync(db_session, dealer_site([CAR_1]), profile=dealer_profile(
            markup_type=MarkupType.PERCENTAGE, markup_value=10,
        ))
        row = (await fetch_vehicles())[VIN_1]
        assert row.price == 20000
        assert row.display_price == 22000
        assert row.price_markup_type == MarkupType.VENDOR_DEFAULT
        assert row.listing_status == ListingStatus.PUBLISHED
        assert row.vendor_status == VendorStatus.ACTIVE
        assert row.is_sold is False
        assert row.vendor_name == "Test Dealer"
        assert row.vendor_stock_number == "S-9186"
        assert row.last_seen_from_vendor is not None
        assert row.source_url == f"{DEALER}/vehicle/1/"

    async def test_system_log_written(self, db_session):
        await run_sync(db_session, dealer_site([CAR_1, None]))
        async with AsyncSessionLocal() as session:
            logs = (await session.execute(select(SystemLog).where(SystemLog.source == "sync"))).scalars().all()
        assert len(logs) == 1
        assert logs[0].level == LogLevel.WARNING
        assert logs[0].vendor_id == "testdealer"


class TestUpdates:
    async def test_second_run_updates_and_keeps_markup(self, db_session):
        await run_sync(db_session, dealer_site([CAR_1, CAR_2]))
        await db_session.execute(
            update(Vehicle).where(Vehicle.vin == VIN_1).values(
                price_markup_type=MarkupType.AMOUNT, price_markup_value=500,
            )
        )
        await db_session.commit()

        cheaper = (2021, "Toyota", "Corolla", VIN_1, 19000, 31000)
        outcome = await run_sync(db_session, dealer_site([cheaper, CAR_2]))

        assert outcome.stats.new == 0
        assert outcome.stats.updated == 1
        assert outcome.stats.unchanged == 1
        rows = await fetch_vehicles()
        assert len(rows) == 2
        assert rows[VIN_1].price == 19000
        assert rows[VIN_1].odometer == 31000
        assert rows[VIN_1].price_markup_type == MarkupType.AMOUNT
        assert rows[VIN_1].display_price == 19500

    async def test_images_relayed_only_for_new_vehicles(self, db_session):
        photos = ("https://dealer.test/p/1.jpg", "https://dealer.test/p/2.jpg")
        relay = RecordingRelay()
        outcome = await run_sync(db_session, dealer_site([CAR_1 + (photos,)]), relay=relay)

        assert outcome.images_uploaded is True
        assert len(relay.calls) == 1
        urls, prefix = relay.calls[0]
        assert urls == list(photos)
        assert prefix.endswith(f"testdealer-{VIN_1}")
        stored = (await fetch_vehicles())[VIN_1].images
        assert stored == [f"{prefix}-0", f"{prefix}-1"]

        changed = (2021, "Toyota", "Corolla", VIN_1, 18000, 30000, ("https://dealer.test/p/new.jpg",))
        await run_sync(db_session, dealer_site([changed]), relay=relay)
        assert len(relay.calls) == 1
        assert (await fetch_vehicles())[VIN_1].images == stored

    async def test_source_urls_kept_without_image_store(self, db_session):
        photos = ("https://dealer.test/p/1.jpg",)
        outcome = await run_sync(db_session, dealer_site([CAR_1 + (photos,)]))
        assert outcome.images_uploaded is False
        assert (await fetch_vehicles())[VIN_1].images == list(photos)


class TestUnlisted:
    async def test_missing_vehicle_is_unlisted(self, db_session):
        await run_sync(db_session, dealer_site([CAR_1, CAR_2, CAR_3]))
        outcome = await run_sync(db_session, dealer_site([CAR_1, CAR_3]))

        assert outcome.stats.unlisted == 1
        rows = await fetch_vehicles()
        assert len(rows) == 3
        assert rows[VIN_2].vendor_status == VendorStatus.UNLISTED
        assert rows[VIN_2].listing_status == ListingStatus.PUBLISHED
        assert rows[VIN_2].is_sold is False
        assert rows[VIN_1].vendor_status == VendorStatus.ACTIVE
        assert rows[VIN_3].vendor_status == VendorStatus.ACTIVE

    async def test_reappearing_vehicle_is_reactivated(self, db_session):
        await run_sync(db_session, dealer_site([CAR_1, CAR_2]))
        await run_sync(db_session, dealer_site([CAR_1]))
        assert (await fetch_vehicles())[VIN_2].vendor_status == VendorStatus.UNLISTED

        outcome = await run_sync(db_session, dealer_site([CAR_1, CAR_2]))
        assert outcome.stats.new == 0
        assert outcome.stats.unchanged == 2
        rows = await fetch_vehicles()
        assert len(rows) == 2
        assert rows[VIN_2].vendor_status == VendorStatus.ACTIVE

    async def test_blank_scrape_unlists_nothing(self, db_session):
        await run_sync(db_session, dealer_site([CAR_1, CAR_2]))
        outcome = await run_sync(db_session, dealer_site([]))

        assert outcome.stats.unlisted == 0
        assert outcome.status == SyncStatus.SUCCESS
        rows = await fetch_vehicles()
        assert all(r.vendor_status == VendorStatus.ACTIVE for r in rows.values())

    async def test_sold_vehicles_stay_untouched(self, db_session):
        await run_sync(db_session, dealer_site([CAR_1, CAR_2]))
        await db_session.execute(
            update(Vehicle).where(Vehicle.vin == VIN_2).values(is_sold=True, listing_status=ListingStatus.SOLD)
        )
        await db_session.commit()

        outcome = await run_sync(db_session, dealer_site([CAR_1]))
        assert outcome.stats.unlisted == 0
        assert (await fetch_vehicles())[VIN_2].vendor_status == VendorStatus.ACTIVE


class TestFailures:
    async def test_persistence_error_is_recorded(self, db_session, monkeypatch):
        original = VendorSync._new_row_values

        def broken(self, vehicle, images, now):
            values = original(self, vehicle, images, now)
            if vehicle.vin == VIN_2:
                values["price"] = None  # violates NOT NULL
            return values

        monkeypatch.setattr(VendorSync, "_new_row_values", broken)
        outcome = await run_sync(db_session, dealer_site([CAR_1, CAR_2, CAR_3]))

        assert outcome.status == SyncStatus.PARTIAL
        assert outcome.stats.new == 2
        assert len(outcome.errors) == 1
        assert VIN_2 in outcome.errors[0]
        assert set(await fetch_vehicles()) == {VIN_1, VIN_3}

    async def test_listing_failure_is_fatal(self, db_session):
        site = FakeSite({PAGE_1: 500})
        with pytest.raises(RunFatalError):
            await run_sync(db_session, site)

        logs = await fetch_logs()
        assert len(logs) == 1
        assert logs[0].status == SyncStatus.FAILED
        assert logs[0].vehicles_found == 0
        assert logs[0].error_detail

    async def test_unexpected_error_wrapped(self, db_session, monkeypatch):
        def explode(scraped, persisted):
            raise ValueError("diff exploded")

        monkeypatch.setattr(sync_module, "diff_inventory", explode)
        with pytest.raises(RunFatalError, match="diff exploded"):
            await run_sync(db_session, dealer_site([CAR_1]))
        assert (await fetch_logs())[0].status == SyncStatus.FAILED


class TestLocking:
    async def test_concurrent_run_refused(self, db_session):
        lock = vendor_lock("testdealer")
        await lock.acquire()
        try:
            with pytest.raises(SyncInProgress):
                await run_sync(db_session, dealer_site([CAR_1]))
        finally:
            lock.release()
        assert await fetch_logs() == []

    async def test_lock_released_after_run(self, db_session):
        await run_sync(db_session, dealer_site([CAR_1]))
        assert not sync_module.is_sync_running("testdealer")


NO_VIN_HTML = """
<html><body>
<h1>2018 Mazda CX-5 GS</h1>
<dl>
  <dt>Stock #:</dt><dd>A100</dd>
  <dt>Price:</dt><dd>$17,500</dd>
  <dt>Mileage:</dt><dd>90,000 km</dd>
</dl>
</body></html>
"""


class TestIdentity:
    async def test_stock_number_identity_survives_url_change(self, db_session):
        first = FakeSite({PAGE_1: listing_html("/vehicle/1/"), PAGE_2: listing_html(),
                          f"{DEALER}/vehicle/1/": NO_VIN_HTML})
        await run_sync(db_session, first)

        moved = FakeSite({PAGE_1: listing_html("/vehicle/7/"), PAGE_2: listing_html(),
                          f"{DEALER}/vehicle/7/": NO_VIN_HTML})
        outcome = await run_sync(db_session, moved)

        assert outcome.stats.new == 0
        assert outcome.stats.unchanged == 1
        assert outcome.stats.unlisted == 0
        rows = list((await fetch_vehicles()).values())
        assert len(rows) == 1
        assert rows[0].vendor_stock_number == "A100"
        assert rows[0].vendor_status == VendorStatus.ACTIVE

    async def test_malformed_image_url_keeps_run_going(self, db_session):
        broken = CAR_2 + (("http://[broken/x.jpg",),)
        outcome = await run_sync(db_session, dealer_site([CAR_1, broken]))
        assert outcome.status == SyncStatus.SUCCESS
        assert outcome.stats.new == 2
        assert set(await fetch_vehicles()) == {VIN_1, VIN_2}


class TestInterruptedPersist:
    async def test_error_after_writes_is_partial(self, db_session, monkeypatch):
        async def explode(self, scrape, ids):
            raise RuntimeError("unlisting exploded")

        monkeypatch.setattr(VendorSync, "_mark_unlisted", explode)
        outcome = await run_sync(db_session, dealer_site([CAR_1, CAR_2]))

        assert outcome.status == SyncStatus.PARTIAL
        assert outcome.stats.new == 2
        assert any("unlisting exploded" in error for error in outcome.errors)
        logs = await fetch_logs()
        assert len(logs) == 1
        assert logs[0].status == SyncStatus.PARTIAL
        assert logs[0].vehicles_found == 2
        assert set(await fetch_vehicles()) == {VIN_1, VIN_2}

    async def test_log_write_failure_does_not_escape(self, db_session, monkeypatch):
        from sqlalchemy.exc import OperationalError

        async def broken_write_log(*args, **kwargs):
            raise OperationalError("INSERT INTO system_logs", {}, Exception("disk full"))

        monkeypatch.setattr(sync_module, "write_log", broken_write_log)
        outcome = await run_sync(db_session, dealer_site([CAR_1]))

        assert outcome.status == SyncStatus.PARTIAL
        assert outcome.log_id is None
        assert any("Sync log not recorded" in error for error in outcome.errors)
        assert outcome.to_response().success is True
        assert set(await fetch_vehicles()) == {VIN_1}
