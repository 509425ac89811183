"""
GeoJSON FeatureCollection import/export for annotations.

Files are always EPSG:4326 lon/lat with 6-decimal coordinates, whatever projection the
viewport is working in.
"""
from __future__ import annotations

import json
from typing import Any

from shapely.errors import ShapelyError

from annotations.types import AnnotationFeature
from geo.projection import Projection, transform_geometry

DATA_PROJECTION = Projection.epsg4326
COORD_DECIMALS = 6
SUPPORTED_GEOMETRIES = frozenset(
    {"Point", "MultiPoint", "LineString", "MultiLineString", "Polygon", "MultiPolygon"}
)


class InterchangeError(ValueError):
    pass


def to_geojson_feature(
    feature: AnnotationFeature,
    feature_projection: Projection,
    *,
    decimals: int | None = None,
) -> dict[str, Any]:
    out: dict[str, Any] = {
        "type": "Feature",
        "geometry": transform_geometry(
            feature.geometry, feature_projection, DATA_PROJECTION, decimals=decimals
        ),
        "properties": dict(feature.properties),
    }
    if feature.id is not None:
        out["id"] = feature.id
    return out


def export_feature_collection(
    features: list[AnnotationFeature], feature_projection: Projection
) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            to_geojson_feature(f, feature_projection, decimals=COORD_DECIMALS) for f in features
        ],
    }


def export_geojson(features: list[AnnotationFeature], feature_projection: Projection) -> str:
    return json.dumps(export_feature_collection(features, feature_projection), ensure_ascii=False)


def from_geojson_feature(
    raw: Any, feature_projection: Projection
) -> AnnotationFeature | None:
    if not isinstance(raw, dict):
        return None
    geometry = raw.get("geometry")
    if not isinstance(geometry, dict):
        return None
    if geometry.get("type") not in SUPPORTED_GEOMETRIES or not geometry.get("coordinates"):
        return None
    properties = raw.get("properties") if isinstance(raw.get("properties"), dict) else {}
    try:
        local = transform_geometry(geometry, DATA_PROJECTION, feature_projection)
    except (ValueError, TypeError, IndexError, ShapelyError):
        # Unreadable coordinates: skip the feature rather than the whole file.
        return None
    return AnnotationFeature(geometry=local, properties=dict(properties))


def parse_geojson(text: str, feature_projection: Projection) -> list[AnnotationFeature]:
    """
    Parse a Feature or FeatureCollection. Ids in the file are ignored: imported
    annotations are new and get server ids once persisted.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise InterchangeError(f"Not a GeoJSON document: {e}") from e
    if not isinstance(data, dict):
        raise InterchangeError("GeoJSON root must be an object")

    if data.get("type") == "FeatureCollection":
        raw_features = data.get("features") or []
    elif data.get("type") == "Feature":
        raw_features = [data]
    else:
        raise InterchangeError(f"Unsupported GeoJSON type: {data.get('type')!r}")

    out: list[AnnotationFeature] = []
    for raw in raw_features:
        f = from_geojson_feature(raw, feature_projection)
        if f is not None:
            out.append(f)
    return out
