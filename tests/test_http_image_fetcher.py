from __future__ import annotations

import asyncio

import httpx
import pytest

from gallery_importer.domain.errors import ImageFetchError
from gallery_importer.infrastructure.media import HttpImageFetcher


def test_fetch_returns_content_and_filename() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            status_code=200,
            content=b"jpeg-bytes",
            headers={"content-type": "image/jpeg"},
        )

    fetcher = HttpImageFetcher(transport=httpx.MockTransport(handler))
    image = asyncio.run(fetcher.fetch("https://old.example.com/files/summer%20fair.jpg"))

    assert len(requests) == 1
    assert requests[0].method == "GET"
    assert image.filename == "summer fair.jpg"
    assert image.content == b"jpeg-bytes"
    assert image.content_type == "image/jpeg"


@pytest.mark.parametrize(
    ("response", "message"),
    [
        (httpx.Response(status_code=404), "failed: 404"),
        (httpx.Response(status_code=200, content=b""), "empty body"),
        (httpx.Response(status_code=200, content=b"x" * 11), "exceeded 10 bytes"),
    ],
)
def test_fetch_rejects_unusable_responses(response: httpx.Response, message: str) -> None:
    fetcher = HttpImageFetcher(
        max_image_bytes=10,
        transport=httpx.MockTransport(lambda _: response),
    )

    with pytest.raises(ImageFetchError, match=message):
        asyncio.run(fetcher.fetch("https://old.example.com/a.jpg"))


def test_fetch_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = HttpImageFetcher(transport=httpx.MockTransport(handler))

    with pytest.raises(ImageFetchError, match="connection refused"):
        asyncio.run(fetcher.fetch("https://old.example.com/a.jpg"))


def test_fetch_rejects_non_http_urls() -> None:
    fetcher = HttpImageFetcher()

    with pytest.raises(ImageFetchError, match="Unsupported image URL"):
        asyncio.run(fetcher.fetch("files/a.jpg"))
