"""Shared fixtures: a throwaway SQLite database and fake vendor/CDN servers."""

import io
import os
import tempfile

# Settings are read at import time, so point them at a scratch database first
_TMP_DIR = tempfile.mkdtemp(prefix="vendorsync-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["ADMIN_API_KEY"] = ""
os.environ["IMAGES_ACCOUNT_ID"] = ""
os.environ["IMAGES_API_TOKEN"] = ""
os.environ["SCRAPE_DELAY_MIN"] = "0"
os.environ["SCRAPE_DELAY_MAX"] = "0"

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image

from vendorsync import models  # noqa: F401
from vendorsync import sync as sync_module
from vendorsync.database import AsyncSessionLocal, Base, async_engine, seed_vendors
from vendorsync.main import app
from vendorsync.schemas import VendorProfile
from vendorsync.scraper.scraper import VendorScraper


# ── Database ─────────────────────────────────────────────────────────────────

@pytest.fixture
async def fresh_db():
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        await seed_vendors(session)
    sync_module._vendor_locks.clear()
    yield
    await async_engine.dispose()


@pytest.fixture
async def db_session(fresh_db):
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def client(fresh_db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ── Fake vendor site ─────────────────────────────────────────────────────────

class FakeSite:
    """Serves canned pages keyed by absolute URL; an int value is a status code."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        body = self.pages.get(url)
        if body is None:
            return httpx.Response(404, text="not found")
        if isinstance(body, int):
            return httpx.Response(body, text="error")
        if isinstance(body, bytes):
            return httpx.Response(200, content=body, headers={"content-type": "image/png"})
        return httpx.Response(200, text=body, headers={"content-type": "text/html; charset=utf-8"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


DEALER = "https://dealer.test"


def listing_html(*paths):
    links = "".join(f'<div class="car"><a href="{p}">View</a></div>' for p in paths)
    return f"<html><body><h2>Inventory</h2>{links}<a href='/contact/'>Contact</a></body></html>"


def detail_html(year, make, model, vin, price, km, images=()):
    imgs = "".join(f'<img src="{src}" />' for src in images)
    return f"""
<html><body>
<h1>{year} {make} {model}</h1>
<dl>
  <dt>VIN:</dt><dd>{vin}</dd>
  <dt>Stock #:</dt><dd>S-{vin[-4:]}</dd>
  <dt>Price:</dt><dd>${price:,}</dd>
  <dt>Mileage:</dt><dd>{km:,} km</dd>
</dl>
<div class="gallery">{imgs}</div>
</body></html>
"""


MALFORMED_HTML = "<html><body><div><p>Oops, something went wrong</p></div></body></html>"


def dealer_profile(**overrides) -> VendorProfile:
    data = dict(
        vendor_id="testdealer",
        vendor_name="Test Dealer",
        base_url=DEALER,
        listing_path="/inventory/?page={page}",
        detail_link_pattern=r"^/vehicle/\d+/$",
        max_pages=2,
        id_prefix="TST",
    )
    data.update(overrides)
    return VendorProfile(**data)


def make_scraper(site: FakeSite, profile: VendorProfile) -> VendorScraper:
    return VendorScraper(profile, client=site.client(), delay_min=0, delay_max=0, max_retries=1)


def png_bytes(size=(10, 10)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, "red").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def site():
    return FakeSite()
