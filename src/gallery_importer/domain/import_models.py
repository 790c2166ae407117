"""Pydantic models for import documents."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ImportModel(BaseModel):
    """Base model for import document records."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class GalleryTypeRef(ImportModel):
    """Classification reference attached to a gallery record."""

    name: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value: object) -> object:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value


class GalleryItem(ImportModel):
    """One gallery record of an import document."""

    nid: int | None = None
    title: str
    description: str = ""
    summary: str = ""
    publish_date: str | None = None
    link: str | None = None
    gallery_types: list[GalleryTypeRef] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def require_title(cls, value: str) -> str:
        """Reject records whose title is blank."""

        title = value.strip()
        if not title:
            raise ValueError("title is required")
        return title

    @field_validator("description", "summary", mode="before")
    @classmethod
    def default_text(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("publish_date", "link", mode="before")
    @classmethod
    def blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("gallery_types", "images", mode="before")
    @classmethod
    def null_list(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def external_id(self) -> str | None:
        if not self.nid:
            return None
        return str(self.nid)

    def type_names(self) -> list[str]:
        return [ref.name for ref in self.gallery_types if ref.name]


__all__ = ["GalleryItem", "GalleryTypeRef"]
