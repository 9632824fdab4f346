"""Tests for the orphaned image cleanup task."""

import httpx
import pytest
from sqlalchemy import select

from vendorsync import tasks
from vendorsync.config import settings
from vendorsync.database import Base, SyncSessionLocal, sync_engine
from vendorsync.images import ImageStore
from vendorsync.models import LogLevel, SystemLog, Vehicle


@pytest.fixture
def sync_db():
    Base.metadata.drop_all(sync_engine)
    Base.metadata.create_all(sync_engine)
    yield
    sync_engine.dispose()


def add_vehicles(*image_lists):
    with SyncSessionLocal() as session:
        for idx, images in enumerate(image_lists):
            session.add(Vehicle(vin=f"VIN{idx:014d}", vendor_id="lambert", price=1000, images=images))
        session.commit()


class FakeCdn:
    def __init__(self, stored, fail=()):
        self.stored = list(stored)
        self.fail = set(fail)
        self.deleted = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "DELETE":
            image_id = request.url.path.rsplit("/", 1)[1]
            if image_id in self.fail:
                return httpx.Response(500, json={"success": False})
            self.deleted.append(image_id)
            return httpx.Response(200, json={"success": True})
        page = int(request.url.params.get("page", "1"))
        chunk = self.stored[(page - 1) * 100: page * 100]
        return httpx.Response(200, json={"success": True, "result": {"images": [{"id": i} for i in chunk]}})

    def store(self) -> ImageStore:
        return ImageStore(client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
                          account_id="acct", api_token="token", api_base="https://images.test/client/v4")


class TestFindOrphanedImages:
    def test_only_unreferenced_ids_under_prefix(self):
        stored = ["VendorSync-a-0", "VendorSync-a-1", "Other-a-0", "VendorSyncX-0"]
        assert tasks.find_orphaned_images(stored, {"VendorSync-a-0"}, "VendorSync") == ["VendorSync-a-1"]

    def test_nothing_stored(self):
        assert tasks.find_orphaned_images([], {"VendorSync-a-0"}, "VendorSync") == []


class TestReferencedImageIds:
    def test_collects_cdn_ids_only(self, sync_db):
        add_vehicles(
            ["VendorSync-lambert-A-0", "https://dealer.test/a.jpg"],
            ["VendorSync-lambert-B-0"],
            [],
        )
        with SyncSessionLocal() as session:
            assert tasks.referenced_image_ids(session) == {"VendorSync-lambert-A-0", "VendorSync-lambert-B-0"}


class TestCleanupTask:
    def test_skipped_without_image_store(self, monkeypatch):
        monkeypatch.setattr(settings, "IMAGES_ACCOUNT_ID", "")
        assert tasks.cleanup_orphaned_images() == {"skipped": True}

    def test_deletes_orphans_and_logs(self, sync_db, monkeypatch):
        add_vehicles(["VendorSync-lambert-A-0", "VendorSync-lambert-A-1"])
        cdn = FakeCdn(
            ["VendorSync-lambert-A-0", "VendorSync-lambert-A-1", "VendorSync-lambert-B-0",
             "VendorSync-lambert-C-0", "SomeoneElse-0"],
            fail={"VendorSync-lambert-C-0"},
        )
        stored_summaries = []
        monkeypatch.setattr(settings, "IMAGES_ACCOUNT_ID", "acct")
        monkeypatch.setattr(settings, "IMAGES_API_TOKEN", "token")
        monkeypatch.setattr(tasks, "ImageStore", cdn.store)
        monkeypatch.setattr(tasks, "_store_summary", stored_summaries.append)

        summary = tasks.cleanup_orphaned_images()

        assert summary["stored"] == 5
        assert summary["orphaned"] == 2
        assert summary["deleted"] == 1
        assert summary["failed"] == ["VendorSync-lambert-C-0"]
        assert "finished_at" in summary
        assert cdn.deleted == ["VendorSync-lambert-B-0"]
        assert stored_summaries == [summary]

        with SyncSessionLocal() as session:
            logs = session.execute(select(SystemLog).where(SystemLog.source == "images")).scalars().all()
        assert len(logs) == 1
        assert logs[0].level == LogLevel.WARNING
