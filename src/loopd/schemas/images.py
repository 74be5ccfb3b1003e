"""Image record model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ImageRecord(BaseModel):
    """A downloaded image and the bundle filename assigned to it."""

    model_config = ConfigDict(frozen=True)

    source_url: str
    filename: str
    data: bytes
    content_type: str | None = None

    @property
    def bundle_path(self) -> str:
        return f"images/{self.filename}"
