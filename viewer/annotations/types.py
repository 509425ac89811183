from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from geo.projection import Projection


class FrameCenter(BaseModel):
    model_config = ConfigDict(frozen=True)

    lon: float
    lat: float


class FrameExtent(BaseModel):
    model_config = ConfigDict(frozen=True)

    minLon: float
    minLat: float
    maxLon: float
    maxLat: float


class ViewportFrame(BaseModel):
    """
    Snapshot of what is on screen; scopes every annotation read and write.

    Recomputed on each settle event, never mutated.
    """

    model_config = ConfigDict(frozen=True)

    layerKey: str
    projection: Projection
    date: str | None = None
    zoom: float | None = None
    opacity: float | None = Field(default=None, ge=0.0, le=1.0)
    center: FrameCenter
    extent: FrameExtent

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


@dataclass(eq=False)
class AnnotationFeature:
    """
    Local annotation entity.

    `geometry` is a GeoJSON geometry dict in the source's working projection. `id` stays
    None until the server assigns one; from then on it is authoritative for update/delete.
    Equality is identity: two drawings with the same shape are still two annotations.
    """

    geometry: dict[str, Any]
    properties: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    order: int = 0

    @property
    def pending_persist(self) -> bool:
        return self.id is None

    @property
    def geometry_type(self) -> str:
        return str(self.geometry.get("type") or "")


class AnnotationRecord(BaseModel):
    """
    Normalized server-side annotation; `feature` is a GeoJSON Feature in EPSG:4326.
    """

    id: str
    order: int | None = None
    feature: dict[str, Any]
    properties: dict[str, Any] | None = None
    createdAt: str | None = None
    updatedAt: str | None = None


class AnnotationEnvelope(BaseModel):
    frame: dict[str, Any] | None = None
    features: list[AnnotationRecord] = Field(default_factory=list)
