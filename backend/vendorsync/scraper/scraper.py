"""HTTP client for vendor dealer sites: listing discovery and detail scraping."""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from urllib.parse import urljoin

import httpx

from vendorsync.config import settings
from vendorsync.errors import ExtractionError, RunFatalError
from vendorsync.schemas import VendorProfile, VendorVehicle
from vendorsync.scraper.parser import find_next_page_url, parse_listing_page, parse_vehicle_detail
from vendorsync.scraper.utils import get_random_user_agent, random_delay, retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass
class ScrapeResult:
    vehicles: List[VendorVehicle] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)


class VendorScraper:
    """
    Scrapes one vendor's inventory with plain GET requests.

    Listing pages are walked up to the vendor's ``max_pages``, then every
    discovered detail page is fetched sequentially with a short random
    delay between requests.
    """

    def __init__(
        self,
        vendor: VendorProfile,
        client: Optional[httpx.AsyncClient] = None,
        delay_min: float = None,
        delay_max: float = None,
        max_retries: int = None,
        progress_callback: Optional[Callable] = None,
    ):
        self.vendor = vendor
        self.base_url = vendor.base_url.rstrip("/")
        self.delay_min = settings.SCRAPE_DELAY_MIN if delay_min is None else delay_min
        self.delay_max = settings.SCRAPE_DELAY_MAX if delay_max is None else delay_max
        self.max_retries = max_retries or settings.SCRAPE_MAX_RETRIES
        self.progress_callback = progress_callback
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "VendorScraper":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.SCRAPE_TIMEOUT,
                follow_redirects=True,
                headers={
                    "User-Agent": get_random_user_agent(),
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "fr-CA,fr;q=0.9,en-US;q=0.8,en;q=0.7",
                },
            )
        return self

    async def __aexit__(self, *exc_info):
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _report_progress(self, **kwargs):
        """Report progress to the callback if set."""
        if self.progress_callback:
            self.progress_callback(**kwargs)

    async def _fetch(self, url: str) -> str:
        """GET a page with retry logic and return its HTML."""
        async def _do_fetch():
            response = await self._client.get(url)
            response.raise_for_status()
            return response.text

        return await retry_with_backoff(
            _do_fetch,
            max_retries=self.max_retries,
            base_delay=1.0,
            jitter=0.5 if self.delay_max > 0 else 0,
            retry_on=(httpx.HTTPError,),
        )

    def listing_url(self, page_num: int) -> str:
        """Absolute URL of listing page ``page_num`` (1-based)."""
        if page_num == 1 and self.vendor.first_page_path:
            path = self.vendor.first_page_path
        else:
            path = self.vendor.listing_path.replace("{page}", str(page_num))
        return urljoin(self.base_url + "/", path)

    async def discover_detail_urls(self) -> ScrapeResult:
        """
        Walk the listing pages and collect detail-page URLs.

        A failed fetch stops pagination; if page 1 itself fails the run
        cannot produce anything and RunFatalError is raised.
        """
        result = ScrapeResult()
        seen = set()
        templated = "{page}" in self.vendor.listing_path
        page_url = self.listing_url(1)

        for page_num in range(1, self.vendor.max_pages + 1):
            logger.info(f"[{self.vendor.vendor_id}] Listing page {page_num}: {page_url}")
            await self._report_progress(
                current_page=page_num,
                total_pages=self.vendor.max_pages,
                message=f"Scraping listing page {page_num}...",
            )

            try:
                html = await self._fetch(page_url)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                if page_num == 1:
                    raise RunFatalError(f"Failed to load listing page {page_url}: {e}") from e
                error_msg = f"Failed to load listing page {page_num}: {e}"
                logger.warning(error_msg)
                result.errors.append(error_msg)
                break

            fresh = [
                url for url in parse_listing_page(html, page_url, self.vendor.detail_link_pattern)
                if url not in seen
            ]
            logger.info(f"[{self.vendor.vendor_id}] Found {len(fresh)} new links on page {page_num}")
            if not fresh:
                break
            seen.update(fresh)
            result.urls.extend(fresh)

            if page_num == self.vendor.max_pages:
                break
            if templated:
                page_url = self.listing_url(page_num + 1)
            else:
                next_url = find_next_page_url(html)
                if not next_url:
                    break
                try:
                    page_url = urljoin(page_url, next_url)
                except ValueError:
                    logger.warning(f"[{self.vendor.vendor_id}] Unparseable next-page link: {next_url}")
                    break
            await random_delay(self.delay_min, self.delay_max)

        if settings.SCRAPE_MAX_VEHICLES:
            result.urls = result.urls[: settings.SCRAPE_MAX_VEHICLES]
        return result

    async def scrape_vehicle(self, url: str) -> VendorVehicle:
        """Fetch one detail page and extract its vehicle.

        Any parser failure surfaces as ExtractionError so one odd page
        only costs that vehicle.
        """
        html = await self._fetch(url)
        try:
            return parse_vehicle_detail(html, url, self.base_url, self.vendor.id_prefix)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(url, f"unexpected parser error: {e}") from e

    async def scrape_inventory(self) -> ScrapeResult:
        """Discover and scrape the vendor's whole inventory."""
        return await self.scrape_urls(await self.discover_detail_urls())

    async def scrape_urls(self, result: ScrapeResult) -> ScrapeResult:
        """
        Scrape every URL in ``result.urls`` into ``result.vehicles``.

        Detail pages that fail to load or to extract are recorded in
        ``errors`` and skipped.
        """
        for idx, url in enumerate(result.urls):
            if idx:
                await random_delay(self.delay_min, self.delay_max)
            await self._report_progress(
                message=f"Scraping vehicle {idx + 1}/{len(result.urls)}",
                vehicles_found=len(result.vehicles),
            )
            try:
                vehicle = await self.scrape_vehicle(url)
            except ExtractionError as e:
                logger.warning(str(e))
                result.errors.append(str(e))
                continue
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                error_msg = f"Error scraping detail page {url}: {e}"
                logger.warning(error_msg)
                result.errors.append(error_msg)
                continue

            result.vehicles.append(vehicle)
            logger.info(
                f"Scraped: {vehicle.year} {vehicle.make} {vehicle.model} "
                f"VIN={vehicle.vin} stock={vehicle.stock_number}"
            )

        return result
