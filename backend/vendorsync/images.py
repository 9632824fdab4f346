"""Image relay: copy vendor-hosted photos into the managed image CDN."""

import asyncio
import io
import json
import logging
from typing import Dict, List, Optional

import httpx
from PIL import Image

from vendorsync.config import settings
from vendorsync.errors import DownloadError, UploadError
from vendorsync.scraper.utils import get_random_user_agent, retry_with_backoff, sanitize_identifier

logger = logging.getLogger(__name__)

# Image store error code for "resource already exists"
DUPLICATE_ID_CODE = 5409
LIST_PAGE_SIZE = 100


def build_image_id(prefix: str, index: int, max_length: int = None) -> str:
    """
    Build ``<prefix>-<index>`` with non-alphanumerics collapsed to '-'.

    The prefix is truncated so the id fits ``max_length`` with the index
    suffix intact; the same prefix and index always give the same id.
    """
    max_length = max_length or settings.IMAGE_ID_MAX_LENGTH
    suffix = f"-{index}"
    head = sanitize_identifier(prefix)[: max_length - len(suffix)].rstrip("-")
    return f"{head}{suffix}"


def is_cdn_id(value: str) -> bool:
    """True for a stored CDN asset id, False for a raw source URL."""
    return bool(value) and not value.startswith(("http://", "https://", "//", "data:"))


class ImageStore:
    """Client for the image CDN's upload, delete and list endpoints."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        account_id: str = None,
        api_token: str = None,
        api_base: str = None,
        delivery_url: str = None,
    ):
        self.account_id = account_id or settings.IMAGES_ACCOUNT_ID
        self.api_token = api_token or settings.IMAGES_API_TOKEN
        self.api_base = (api_base or settings.IMAGES_API_BASE).rstrip("/")
        self.delivery_base = (delivery_url or settings.IMAGES_DELIVERY_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=60.0)

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/accounts/{self.account_id}/images/v1"

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"}

    async def aclose(self):
        await self._client.aclose()

    def delivery_url(self, image_id: str, variant: str = "public") -> str:
        return f"{self.delivery_base}/{image_id}/{variant}"

    async def upload(self, image_id: str, payload: bytes, metadata: Optional[Dict] = None) -> str:
        """
        Upload ``payload`` under ``image_id`` and return the id.

        An "already exists" answer counts as success so re-running a sync
        overwrites instead of duplicating. Anything else raises UploadError.
        """
        files = {"file": (f"{image_id}.jpg", payload, "application/octet-stream")}
        data = {"id": image_id, "metadata": json.dumps(metadata or {})}
        try:
            response = await self._client.post(self.endpoint, headers=self._headers, files=files, data=data)
        except httpx.HTTPError as e:
            raise UploadError(f"Upload of {image_id} failed: {e}") from e

        body = _json_body(response)
        if response.status_code == 409 or _has_error_code(body, DUPLICATE_ID_CODE):
            logger.debug(f"Image {image_id} already exists, keeping it")
            return image_id
        if response.status_code >= 400 or not body.get("success", False):
            raise UploadError(
                f"Upload of {image_id} rejected: HTTP {response.status_code} {body.get('errors') or ''}".strip()
            )
        return (body.get("result") or {}).get("id", image_id)

    async def delete(self, image_id: str) -> bool:
        """Delete one image. Returns False when it no longer exists."""
        response = await self._client.delete(f"{self.endpoint}/{image_id}", headers=self._headers)
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True

    async def list_images(self) -> List[str]:
        """Return the ids of every stored image, following pagination."""
        ids: List[str] = []
        page = 1
        while True:
            response = await self._client.get(
                self.endpoint,
                headers=self._headers,
                params={"page": page, "per_page": LIST_PAGE_SIZE},
            )
            response.raise_for_status()
            images = (_json_body(response).get("result") or {}).get("images") or []
            ids.extend(image["id"] for image in images if image.get("id"))
            if len(images) < LIST_PAGE_SIZE:
                return ids
            page += 1


class ImageRelay:
    """
    Downloads vendor images and re-uploads them to the ImageStore.

    ``relay`` never drops a slot: an image that cannot be downloaded or
    uploaded keeps its source URL in the output.
    """

    def __init__(
        self,
        store: ImageStore,
        client: Optional[httpx.AsyncClient] = None,
        max_bytes: int = None,
        attempts: int = None,
        base_delay: float = None,
    ):
        self.store = store
        self._client = client or httpx.AsyncClient(
            timeout=30.0,
            follow_redirects=True,
            headers={"User-Agent": get_random_user_agent()},
        )
        self.max_bytes = max_bytes or settings.IMAGE_MAX_BYTES
        self.attempts = attempts or settings.IMAGE_UPLOAD_ATTEMPTS
        self.base_delay = settings.IMAGE_RETRY_BASE_DELAY if base_delay is None else base_delay

    async def aclose(self):
        await self._client.aclose()

    async def relay(self, urls: List[str], prefix: str) -> List[str]:
        """Relay every URL concurrently; output has the input's length and order."""
        return list(
            await asyncio.gather(*(self._relay_one(url, prefix, idx) for idx, url in enumerate(urls)))
        )

    async def _relay_one(self, url: str, prefix: str, index: int) -> str:
        image_id = build_image_id(prefix, index)
        try:
            payload = await self.download(url)
            return await retry_with_backoff(
                self.store.upload,
                image_id,
                payload,
                {"source": url, "index": index},
                max_retries=self.attempts,
                base_delay=self.base_delay,
                jitter=0,
                retry_on=(UploadError,),
            )
        except (DownloadError, UploadError) as e:
            logger.warning(f"Keeping source URL for {image_id}: {e}")
            return url
        except Exception as e:
            logger.exception(f"Unexpected error relaying {url}, keeping source URL: {e}")
            return url

    async def download(self, url: str) -> bytes:
        """Fetch an image and check it is a decodable image within the size limit.

        The body is streamed so an oversized image is abandoned once it
        passes ``max_bytes``, whether or not a Content-Length was sent.
        """
        chunks: List[bytes] = []
        received = 0
        try:
            async with self._client.stream("GET", url) as response:
                response.raise_for_status()
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise DownloadError(f"{url} is {declared} bytes, over the {self.max_bytes} limit")
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise DownloadError(f"{url} is over the {self.max_bytes} byte limit")
                    chunks.append(chunk)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DownloadError(f"Download of {url} failed: {e}") from e
        payload = b"".join(chunks)

        try:
            with Image.open(io.BytesIO(payload)) as img:
                img.verify()
        except Exception as e:
            raise DownloadError(f"{url} is not a valid image: {e}") from e
        return payload


def _json_body(response: httpx.Response) -> Dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _has_error_code(body: Dict, code: int) -> bool:
    return any(isinstance(err, dict) and err.get("code") == code for err in body.get("errors") or [])
