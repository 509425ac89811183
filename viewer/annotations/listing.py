from __future__ import annotations

from dataclasses import dataclass

from shapely.errors import ShapelyError
from shapely.geometry import shape

from annotations.types import AnnotationFeature
from geo.projection import Projection, to_lonlat


@dataclass(frozen=True)
class AnnotationEntry:
    feature: AnnotationFeature
    name: str
    geometry_type: str
    lon: float | None
    lat: float | None


def _anchor(feature: AnnotationFeature, projection: Projection) -> tuple[float | None, float | None]:
    # Polygons are labelled at a point guaranteed to lie inside them.
    try:
        p = shape(feature.geometry).representative_point()
    except (KeyError, ValueError, TypeError, AttributeError, ShapelyError):
        return None, None
    if p.is_empty:
        return None, None
    return to_lonlat(p.x, p.y, projection)


def list_annotations(
    features: list[AnnotationFeature],
    projection: Projection,
    *,
    filter_text: str = "",
) -> list[AnnotationEntry]:
    out: list[AnnotationEntry] = []
    for i, f in enumerate(features):
        raw = f.properties.get("name")
        name = raw if isinstance(raw, str) and raw else f"Annotation {i + 1}"
        lon, lat = _anchor(f, projection)
        out.append(AnnotationEntry(feature=f, name=name, geometry_type=f.geometry_type, lon=lon, lat=lat))

    q = (filter_text or "").strip().lower()
    if not q:
        return out
    return [e for e in out if q in e.name.lower()]
