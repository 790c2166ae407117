"""Remote media adapters."""

from gallery_importer.infrastructure.media.http_image_fetcher import HttpImageFetcher

__all__ = ["HttpImageFetcher"]
