"""PostgreSQL gallery, term and image storage."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import asyncpg  # type: ignore[import-untyped]

from gallery_importer.domain.errors import GalleryNotFoundError, GalleryStoreError
from gallery_importer.domain.gallery import (
    ClassificationTerm,
    FetchedImage,
    Gallery,
    NewGallery,
    StoredImage,
)
from gallery_importer.domain.ports import GalleryStore, MediaStore, TermStore

_GALLERY_COLUMNS = """
    g.id,
    g.title,
    g.description,
    g.summary,
    g.published_at,
    g.external_id,
    g.source_link,
    g.representative_image_id,
    COALESCE(
        (SELECT array_agg(gi.image_id ORDER BY gi.position)
         FROM gallery_images gi WHERE gi.gallery_id = g.id),
        '{}'
    ) AS image_ids,
    COALESCE(
        (SELECT array_agg(gt.term_id ORDER BY gt.term_id)
         FROM gallery_terms gt WHERE gt.gallery_id = g.id),
        '{}'
    ) AS term_ids
"""


def _as_id(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class PostgresGalleryCatalog(GalleryStore, TermStore, MediaStore):
    """Gallery catalog backed by PostgreSQL."""

    def __init__(
        self,
        dsn: str,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
    ) -> None:
        self._dsn = dsn
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()
        self._term_cache: dict[str, ClassificationTerm] = {}

    async def create_gallery(self, gallery: NewGallery) -> Gallery:
        """Insert a gallery with its term links."""

        pool = await self._get_pool()
        term_ids = [_as_id(term_id) for term_id in gallery.term_ids]
        if any(term_id is None for term_id in term_ids):
            raise GalleryStoreError("Term ids must be numeric.")
        try:
            async with pool.acquire() as connection:
                async with connection.transaction():
                    gallery_id = await connection.fetchval(
                        """
                        INSERT INTO galleries (
                            title, description, summary, published_at, external_id, source_link
                        ) VALUES ($1, $2, $3, $4, $5, $6)
                        RETURNING id
                        """,
                        gallery.title,
                        gallery.description,
                        gallery.summary,
                        gallery.published_at,
                        gallery.external_id,
                        gallery.source_link,
                    )
                    if term_ids:
                        await connection.executemany(
                            """
                            INSERT INTO gallery_terms (gallery_id, term_id) VALUES ($1, $2)
                            ON CONFLICT DO NOTHING
                            """,
                            [(gallery_id, term_id) for term_id in term_ids],
                        )
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not create gallery: {exc}") from exc

        return Gallery(
            gallery_id=str(gallery_id),
            title=gallery.title,
            description=gallery.description,
            summary=gallery.summary,
            published_at=gallery.published_at,
            external_id=gallery.external_id,
            source_link=gallery.source_link,
            term_ids=list(gallery.term_ids),
        )

    async def get_gallery(self, gallery_id: str) -> Gallery | None:
        numeric_id = _as_id(gallery_id)
        if numeric_id is None:
            return None
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"SELECT {_GALLERY_COLUMNS} FROM galleries g WHERE g.id = $1",
            numeric_id,
        )
        return None if row is None else self._to_gallery(row)

    async def find_by_external_id(self, external_id: str) -> Gallery | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                SELECT {_GALLERY_COLUMNS}
                FROM galleries g
                WHERE g.external_id = $1
                ORDER BY g.id ASC
                LIMIT 1
                """,
                external_id,
            )
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not look up external id {external_id}: {exc}") from exc
        return None if row is None else self._to_gallery(row)

    async def attach_images(
        self,
        gallery_id: str,
        image_ids: Sequence[str],
        *,
        representative_image_id: str | None,
    ) -> None:
        """Replace gallery members and the representative image."""

        numeric_id = _as_id(gallery_id)
        if numeric_id is None:
            raise GalleryNotFoundError(f"Gallery '{gallery_id}' not found.")
        pool = await self._get_pool()
        try:
            async with pool.acquire() as connection:
                async with connection.transaction():
                    result = await connection.execute(
                        "UPDATE galleries SET representative_image_id = $2 WHERE id = $1",
                        numeric_id,
                        _as_id(representative_image_id),
                    )
                    if result.endswith(" 0"):
                        raise GalleryNotFoundError(f"Gallery '{gallery_id}' not found.")
                    await connection.execute(
                        "DELETE FROM gallery_images WHERE gallery_id = $1",
                        numeric_id,
                    )
                    await connection.executemany(
                        """
                        INSERT INTO gallery_images (gallery_id, image_id, position)
                        VALUES ($1, $2, $3)
                        """,
                        [
                            (numeric_id, image_id, position)
                            for position, image_id in enumerate(
                                _as_id(value) for value in image_ids
                            )
                            if image_id is not None
                        ],
                    )
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not attach images: {exc}") from exc

    async def delete_gallery(self, gallery_id: str) -> Gallery:
        """Delete a gallery; member and term links cascade."""

        numeric_id = _as_id(gallery_id)
        if numeric_id is None:
            raise GalleryNotFoundError(f"Gallery '{gallery_id}' not found.")
        pool = await self._get_pool()
        async with pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(
                    f"SELECT {_GALLERY_COLUMNS} FROM galleries g WHERE g.id = $1 FOR UPDATE",
                    numeric_id,
                )
                if row is None:
                    raise GalleryNotFoundError(f"Gallery '{gallery_id}' not found.")
                await connection.execute("DELETE FROM galleries WHERE id = $1", numeric_id)
        return self._to_gallery(row)

    async def is_image_referenced(self, image_id: str, *, excluding_gallery_id: str | None) -> bool:
        numeric_id = _as_id(image_id)
        if numeric_id is None:
            return False
        pool = await self._get_pool()
        try:
            referenced = await pool.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1
                    FROM galleries g
                    WHERE ($2::bigint IS NULL OR g.id <> $2)
                      AND (
                        g.representative_image_id = $1
                        OR EXISTS (
                            SELECT 1 FROM gallery_images gi
                            WHERE gi.gallery_id = g.id AND gi.image_id = $1
                        )
                      )
                )
                """,
                numeric_id,
                _as_id(excluding_gallery_id),
            )
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not check image usage: {exc}") from exc
        return bool(referenced)

    async def flush_caches(self) -> None:
        self._term_cache.clear()

    async def find_or_create_term(self, name: str) -> tuple[ClassificationTerm, bool]:
        """Look a term up by name before creating it."""

        normalized = name.strip()
        key = normalized.casefold()
        cached = self._term_cache.get(key)
        if cached is not None:
            return cached, False

        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                INSERT INTO terms (name, name_key) VALUES ($1, $2)
                ON CONFLICT (name_key) DO NOTHING
                RETURNING id, name
                """,
                normalized,
                key,
            )
            created = row is not None
            if row is None:
                row = await pool.fetchrow("SELECT id, name FROM terms WHERE name_key = $1", key)
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not store term '{normalized}': {exc}") from exc
        if row is None:
            raise GalleryStoreError(f"Could not resolve term '{normalized}'.")
        term = ClassificationTerm(term_id=str(row["id"]), name=str(row["name"]))
        self._term_cache[key] = term
        return term, created

    async def get_term(self, term_id: str) -> ClassificationTerm | None:
        numeric_id = _as_id(term_id)
        if numeric_id is None:
            return None
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow("SELECT id, name FROM terms WHERE id = $1", numeric_id)
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not load term {term_id}: {exc}") from exc
        if row is None:
            return None
        return ClassificationTerm(term_id=str(row["id"]), name=str(row["name"]))

    async def term_usage_count(self, term_id: str, *, excluding_gallery_id: str | None) -> int:
        numeric_id = _as_id(term_id)
        if numeric_id is None:
            return 0
        pool = await self._get_pool()
        try:
            usage = await pool.fetchval(
                """
                SELECT COUNT(*)
                FROM gallery_terms
                WHERE term_id = $1 AND ($2::bigint IS NULL OR gallery_id <> $2)
                """,
                numeric_id,
                _as_id(excluding_gallery_id),
            )
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not count term usage: {exc}") from exc
        return int(usage or 0)

    async def delete_term(self, term_id: str) -> bool:
        numeric_id = _as_id(term_id)
        if numeric_id is None:
            return False
        pool = await self._get_pool()
        try:
            result = await pool.execute("DELETE FROM terms WHERE id = $1", numeric_id)
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not delete term {term_id}: {exc}") from exc
        self._term_cache.clear()
        return result.endswith("1")

    async def store_image(self, image: FetchedImage, *, gallery_id: str) -> StoredImage:
        pool = await self._get_pool()
        try:
            image_id = await pool.fetchval(
                """
                INSERT INTO images (gallery_id, filename, content_type, size_bytes, content)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id
                """,
                _as_id(gallery_id),
                image.filename,
                image.content_type,
                len(image.content),
                image.content,
            )
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not store image: {exc}") from exc
        return StoredImage(
            image_id=str(image_id),
            gallery_id=gallery_id,
            filename=image.filename,
            content_type=image.content_type,
            size_bytes=len(image.content),
        )

    async def get_image(self, image_id: str) -> StoredImage | None:
        numeric_id = _as_id(image_id)
        if numeric_id is None:
            return None
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                SELECT id, gallery_id, filename, content_type, size_bytes
                FROM images
                WHERE id = $1
                """,
                numeric_id,
            )
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not load image {image_id}: {exc}") from exc
        if row is None:
            return None
        return StoredImage(
            image_id=str(row["id"]),
            gallery_id=None if row["gallery_id"] is None else str(row["gallery_id"]),
            filename=str(row["filename"]),
            content_type=row["content_type"],
            size_bytes=int(row["size_bytes"]),
        )

    async def delete_image(self, image_id: str) -> bool:
        numeric_id = _as_id(image_id)
        if numeric_id is None:
            return False
        pool = await self._get_pool()
        try:
            result = await pool.execute("DELETE FROM images WHERE id = $1", numeric_id)
        except asyncpg.PostgresError as exc:
            raise GalleryStoreError(f"Could not delete image {image_id}: {exc}") from exc
        return result.endswith("1")

    async def close(self) -> None:
        """Close the pool if it was initialized."""

        pool = self._pool
        self._pool = None
        if pool is not None:
            await pool.close()

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is None:
                pool = await asyncpg.create_pool(
                    dsn=self._dsn,
                    min_size=self._min_pool_size,
                    max_size=self._max_pool_size,
                )
                await self._ensure_schema(pool)
                self._pool = pool
        assert self._pool is not None
        return self._pool

    async def _ensure_schema(self, pool: asyncpg.Pool) -> None:
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS galleries (
                id BIGSERIAL PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                summary TEXT NOT NULL DEFAULT '',
                published_at TEXT,
                external_id TEXT,
                source_link TEXT,
                representative_image_id BIGINT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            CREATE INDEX IF NOT EXISTS idx_galleries_external_id ON galleries (external_id);
            CREATE INDEX IF NOT EXISTS idx_galleries_representative
                ON galleries (representative_image_id);
            """
        )
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS terms (
                id BIGSERIAL PRIMARY KEY,
                name TEXT NOT NULL,
                name_key TEXT NOT NULL UNIQUE
            );
            CREATE TABLE IF NOT EXISTS gallery_terms (
                gallery_id BIGINT NOT NULL REFERENCES galleries(id) ON DELETE CASCADE,
                term_id BIGINT NOT NULL REFERENCES terms(id) ON DELETE CASCADE,
                PRIMARY KEY (gallery_id, term_id)
            );
            CREATE INDEX IF NOT EXISTS idx_gallery_terms_term ON gallery_terms (term_id);
            """
        )
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS images (
                id BIGSERIAL PRIMARY KEY,
                gallery_id BIGINT,
                filename TEXT NOT NULL,
                content_type TEXT,
                size_bytes INTEGER NOT NULL,
                content BYTEA NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            CREATE TABLE IF NOT EXISTS gallery_images (
                gallery_id BIGINT NOT NULL REFERENCES galleries(id) ON DELETE CASCADE,
                image_id BIGINT NOT NULL,
                position INTEGER NOT NULL,
                PRIMARY KEY (gallery_id, position)
            );
            CREATE INDEX IF NOT EXISTS idx_gallery_images_image ON gallery_images (image_id);
            """
        )

    def _to_gallery(self, row: asyncpg.Record) -> Gallery:
        representative = row["representative_image_id"]
        return Gallery(
            gallery_id=str(row["id"]),
            title=str(row["title"]),
            description=str(row["description"] or ""),
            summary=str(row["summary"] or ""),
            published_at=row["published_at"],
            external_id=row["external_id"],
            source_link=row["source_link"],
            term_ids=[str(term_id) for term_id in row["term_ids"]],
            image_ids=[str(image_id) for image_id in row["image_ids"]],
            representative_image_id=None if representative is None else str(representative),
        )


__all__ = ["PostgresGalleryCatalog"]
