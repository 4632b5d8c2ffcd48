import os
from typing import Optional
from urllib.parse import urlparse

import httpx
import logging

from app.errors import UploadFailed

logger = logging.getLogger(__name__)


class StorageClient:
    """Minimal object-storage client for product images.

    Speaks the storage REST API of the hosted backend:
    `POST /object/{bucket}/{name}` to upload, `DELETE /object/{bucket}` to
    remove, and `/object/public/{bucket}/{name}` as the public URL.

    Environment variables:
    - STORAGE_BASE_URL: base URL, e.g., https://<project>.example.co/storage/v1
    - STORAGE_API_KEY: service key used as bearer token
    - STORAGE_BUCKET: bucket name (default product-images)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        bucket: Optional[str] = None,
        timeout_seconds: int = 30,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("STORAGE_BASE_URL") or "").rstrip("/")
        self.api_key = api_key or os.getenv("STORAGE_API_KEY") or ""
        self.bucket = bucket or os.getenv("STORAGE_BUCKET") or "product-images"
        self.timeout_seconds = timeout_seconds
        if not self.base_url:
            raise ValueError("STORAGE_BASE_URL is required")
        if not self.api_key:
            raise ValueError("STORAGE_API_KEY is required")

        self._client = httpx.Client(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}", "apikey": self.api_key},
            timeout=self.timeout_seconds,
            transport=transport,
        )

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close the client."""
        self.close()

    def close(self):
        """Explicitly close the HTTP client."""
        if hasattr(self, '_client'):
            self._client.close()

    def public_url(self, name: str) -> str:
        return f"{self.base_url}/object/public/{self.bucket}/{name}"

    def upload(self, data: bytes, name: str, content_type: str = "image/jpeg") -> str:
        """Uploads an object under `name` and returns its public URL.

        Existing objects are never overwritten; callers pass unique names.
        """
        url = f"/object/{self.bucket}/{name}"
        try:
            response = self._client.post(
                url,
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "false"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"❌ Error uploading {name}: {e}")
            raise UploadFailed("Failed to upload image") from e

        logger.info(f"✅ Uploaded {name} ({len(data)} bytes)")
        return self.public_url(name)

    def download(self, url: str) -> bytes:
        """Fetches an object by public URL (or by name within the bucket)."""
        target = url if urlparse(url).scheme else self.public_url(url)
        try:
            response = self._client.get(target)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"❌ Error downloading {target}: {e}")
            raise UploadFailed("Failed to fetch image") from e
        return response.content

    def delete(self, url: str) -> bool:
        """Deletes an object by its public URL.

        Best effort: failures are logged and reported as False, never raised.
        """
        name = object_name(url)
        if not name:
            return False
        try:
            response = self._client.request(
                "DELETE",
                f"/object/{self.bucket}",
                json={"prefixes": [name]},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"❌ Error deleting image {name}: {e}")
            return False

        logger.info(f"🗑️ Deleted image {name}")
        return True


def object_name(url: str) -> str:
    """Last path segment of a public URL, which is the object name."""
    return urlparse(url).path.rstrip("/").split("/")[-1]
