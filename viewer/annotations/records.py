from __future__ import annotations

from typing import Any

from annotations.types import AnnotationEnvelope, AnnotationRecord
from catalog.normalize import pick_number, pick_string


def _record_id(raw: dict[str, Any]) -> str | None:
    for key in ("id", "annotationId", "uuid"):
        v = raw.get(key)
        if isinstance(v, bool):
            continue
        if isinstance(v, int):
            return str(v)
        s = pick_string(v)
        if s:
            return s
    return None


def ensure_feature_geometry(
    feature: Any, fallback_lon: float | None, fallback_lat: float | None
) -> dict[str, Any] | None:
    if isinstance(feature, dict) and isinstance(feature.get("geometry"), dict):
        return feature
    if fallback_lon is not None and fallback_lat is not None:
        return {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [fallback_lon, fallback_lat]},
            "properties": {},
        }
    return None


def normalize_annotation(raw: Any) -> AnnotationRecord | None:
    """
    Accept the handful of record shapes the annotation service returns.

    Records without an id or without any usable geometry are dropped.
    """
    if not isinstance(raw, dict):
        return None
    rid = _record_id(raw)
    if not rid:
        return None

    lon = pick_number(raw.get("lon"), raw.get("longitude"))
    lat = pick_number(raw.get("lat"), raw.get("latitude"))
    feature = ensure_feature_geometry(raw.get("feature"), lon, lat)
    if feature is None:
        return None

    properties = raw.get("properties") if isinstance(raw.get("properties"), dict) else None
    feature = dict(feature)
    feature_props = feature.get("properties") if isinstance(feature.get("properties"), dict) else {}
    # Top-level properties are the server-normalized ones; they win.
    feature["properties"] = {**feature_props, **(properties or {})}

    order = pick_number(raw.get("order"))
    return AnnotationRecord(
        id=rid,
        order=int(order) if order is not None and order >= 0 else None,
        feature=feature,
        properties=properties,
        createdAt=pick_string(raw.get("createdAt")),
        updatedAt=pick_string(raw.get("updatedAt")),
    )


def normalize_annotation_list(data: Any) -> list[AnnotationRecord]:
    if isinstance(data, dict):
        raw_list = data.get("items") if isinstance(data.get("items"), list) else data.get("features")
    else:
        raw_list = data
    if not isinstance(raw_list, list):
        return []
    return [r for r in (normalize_annotation(e) for e in raw_list) if r is not None]


def normalize_envelope(data: Any) -> AnnotationEnvelope:
    frame = data.get("frame") if isinstance(data, dict) and isinstance(data.get("frame"), dict) else None
    return AnnotationEnvelope(frame=frame, features=normalize_annotation_list(data))
