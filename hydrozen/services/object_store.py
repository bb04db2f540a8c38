"""
ObjectStore — leak photo uploads via the Firebase Storage REST API.

Objects are written under `<prefix>/<epoch-ms>-<sanitised filename>` and the
returned download URL embeds the object's download token, so it stays stable
for the verdict client and the dashboard.

Mock mode (STORAGE_MOCK_MODE=true, the default) keeps nothing and returns a
deterministic mock:// URL, for tests and local dev without a bucket.
"""

import logging
import re
import time
from urllib.parse import quote

import httpx

from hydrozen.core.errors import UploadError
from hydrozen.models.leakage import ImageUpload

logger = logging.getLogger(__name__)

STORAGE_BASE_URL = "https://firebasestorage.googleapis.com/v0/b"


def object_name(prefix: str, filename: str, now_ms: int | None = None) -> str:
    """Unique object path; anything outside [A-Za-z0-9.] becomes '_'."""
    safe = re.sub(r"[^a-zA-Z0-9.]", "_", filename) or "image"
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{prefix}/{stamp}-{safe}"


class ObjectStore:
    """Thin async wrapper around a Firebase Storage bucket."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        bucket: str,
        prefix: str = "leakage-images",
        mock_mode: bool = True,
    ) -> None:
        self.http = http
        self.bucket = bucket
        self.prefix = prefix
        self.mock_mode = mock_mode or not bucket

        if self.mock_mode:
            logger.info("ObjectStore initialised in MOCK mode")

    def _download_url(self, name: str, token: str) -> str:
        return (
            f"{STORAGE_BASE_URL}/{self.bucket}/o/{quote(name, safe='')}"
            f"?alt=media&token={token}"
        )

    async def upload(self, image: ImageUpload) -> str:
        """
        Store *image* and return its download URL.

        Raises:
            UploadError: on any transport failure or non-2xx response.
        """
        name = object_name(self.prefix, image.filename)

        if self.mock_mode:
            return f"mock://{self.prefix}/{name.rsplit('/', 1)[-1]}"

        try:
            response = await self.http.post(
                f"{STORAGE_BASE_URL}/{self.bucket}/o",
                params={"uploadType": "media", "name": name},
                headers={"Content-Type": image.mime_type},
                content=image.data,
            )
            response.raise_for_status()
            metadata = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Storage upload error: %s — %s",
                exc.response.status_code,
                exc.response.text[:200],
            )
            raise UploadError(
                f"Upload failed: {exc.response.status_code}",
                status=exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Storage upload failed: %s", exc)
            raise UploadError(f"Upload failed: {exc}") from exc

        token = (metadata.get("downloadTokens") or "").split(",")[0]
        if not token:
            raise UploadError("Upload succeeded but storage returned no download token")

        logger.info("Uploaded %s (%d bytes)", name, image.size)
        return self._download_url(name, token)
