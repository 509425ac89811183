from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from geo.projection import Projection

LayerKind = Literal["gibs", "trek", "custom"]


class LayerDescriptor(BaseModel):
    """
    One tiled imagery layer from the remote catalog.

    Layers sharing a `bodyId` are expected (not enforced) to share a projection; callers
    switching layers must always adopt the layer's own `projection`.
    """

    model_config = ConfigDict(frozen=True)

    layerKey: str
    title: str
    bodyId: str
    bodyName: str = ""
    kind: LayerKind = "custom"
    projection: Projection = Projection.epsg3857
    # May contain `{date}` plus the usual `{z}/{x}/{y}` placeholders.
    tileTemplate: str | None = None
    requiresDate: bool = False
    defaultDate: str | None = None
    minZoom: float | None = Field(default=None, ge=0.0)
    maxZoom: float | None = Field(default=None, ge=0.0)
    tileSize: int | None = None
    matrixSet: str | None = None
    imageFormat: str | None = None
    description: str | None = None


class BodyEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    bodyId: str
    bodyName: str
    projection: Projection
    layers: list[LayerDescriptor]


LayersCatalog = list[BodyEntry]
