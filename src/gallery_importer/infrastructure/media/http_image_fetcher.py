"""HTTP downloader for remote gallery images."""

from __future__ import annotations

import time
from pathlib import PurePosixPath
from urllib.parse import unquote, urlparse

import httpx

from gallery_importer.domain.errors import ImageFetchError
from gallery_importer.domain.gallery import FetchedImage


class HttpImageFetcher:
    """Downloads images with httpx."""

    def __init__(
        self,
        timeout_seconds: float = 45.0,
        max_image_bytes: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._max_image_bytes = max_image_bytes
        self._transport = transport

    async def fetch(self, url: str) -> FetchedImage:
        """Download one image; raises ImageFetchError on any failure."""

        if urlparse(url).scheme not in {"http", "https"}:
            raise ImageFetchError(f"Unsupported image URL '{url}'.")
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
                follow_redirects=True,
            ) as http_client:
                response = await http_client.get(url)
        except httpx.HTTPError as exc:
            raise ImageFetchError(f"GET {url} failed: {exc}") from exc

        if not response.is_success:
            raise ImageFetchError(f"GET {url} failed: {response.status_code}")
        content = response.content
        if not content:
            raise ImageFetchError(f"GET {url} returned an empty body")
        if self._max_image_bytes is not None and len(content) > self._max_image_bytes:
            raise ImageFetchError(f"GET {url} exceeded {self._max_image_bytes} bytes")

        content_type = response.headers.get("content-type")
        return FetchedImage(
            url=url,
            filename=self._filename(url),
            content=content,
            content_type=content_type.split(";")[0].strip() if content_type else None,
        )

    def _filename(self, url: str) -> str:
        name = PurePosixPath(unquote(urlparse(url).path)).name
        return name or f"image-{int(time.time())}.jpg"


__all__ = ["HttpImageFetcher"]
