"""
Tolerant normalization of `/v1/layers` payloads.

The catalog service has shipped several shapes over time:
- `[{bodyId, layers: [...]}, ...]`
- `{"bodies": [...]}`
- `{"Mars": [layer, ...], "Earth": {...}}`
"""
from __future__ import annotations

import math
import re
from typing import Any

from catalog.types import BodyEntry, LayerDescriptor, LayerKind, LayersCatalog
from geo.projection import Projection, as_projection

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def pick_string(*values: Any) -> str | None:
    for v in values:
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def pick_number(*values: Any) -> float | None:
    for v in values:
        if isinstance(v, bool):
            continue
        if isinstance(v, (int, float)):
            num = float(v)
        elif isinstance(v, str):
            try:
                num = float(v)
            except ValueError:
                continue
        else:
            continue
        if math.isfinite(num):
            return num
    return None


def is_iso_date(value: str) -> bool:
    return bool(_ISO_DATE.match(value or ""))


def guess_kind(layer_key: str, raw_kind: Any = None) -> LayerKind:
    if raw_kind in ("gibs", "trek"):
        return raw_kind
    if layer_key.startswith("gibs:"):
        return "gibs"
    if layer_key.startswith("trek:"):
        return "trek"
    return "custom"


def normalize_layer(
    raw: Any,
    body_id: str,
    body_name: str,
    fallback_projection: Projection,
) -> LayerDescriptor | None:
    if not isinstance(raw, dict):
        return None

    layer_key = pick_string(raw.get("layerKey"), raw.get("key"), raw.get("id"))
    if not layer_key:
        return None

    kind = guess_kind(layer_key, raw.get("kind"))
    tile_template = pick_string(raw.get("tileTemplate"))
    requires_date = raw.get("requiresDate")
    if not isinstance(requires_date, bool):
        requires_date = bool(tile_template and "{date}" in tile_template) or kind == "gibs"
    default_date = pick_string(raw.get("defaultDate"))
    tile_size = pick_number(raw.get("tileSize"))
    min_zoom = pick_number(raw.get("minZoom"), raw.get("minZoomLevel"))
    max_zoom = pick_number(raw.get("maxZoom"), raw.get("maxZoomLevel"))

    return LayerDescriptor(
        layerKey=layer_key,
        title=pick_string(raw.get("title"), raw.get("name")) or layer_key,
        bodyId=body_id,
        bodyName=body_name,
        kind=kind,
        projection=as_projection(raw.get("projection"), fallback_projection),
        tileTemplate=tile_template,
        requiresDate=requires_date,
        defaultDate=default_date if default_date and is_iso_date(default_date) else None,
        minZoom=min_zoom if min_zoom is not None and min_zoom >= 0 else None,
        maxZoom=max_zoom if max_zoom is not None and max_zoom >= 0 else None,
        tileSize=int(tile_size) if tile_size is not None else None,
        matrixSet=pick_string(raw.get("matrixSet")),
        imageFormat=pick_string(raw.get("imageFormat")),
        description=pick_string(raw.get("description"), raw.get("summary")),
    )


def normalize_body(raw: Any) -> BodyEntry | None:
    if not isinstance(raw, dict):
        return None

    body_id = pick_string(
        raw.get("bodyId"), raw.get("id"), raw.get("slug"), raw.get("body"), raw.get("name")
    )
    if not body_id:
        return None
    body_name = pick_string(raw.get("bodyName"), raw.get("name")) or body_id
    projection = as_projection(raw.get("projection"), Projection.epsg3857)

    raw_layers = raw.get("layers")
    if not isinstance(raw_layers, list):
        raw_layers = raw.get("items") if isinstance(raw.get("items"), list) else []

    layers = [
        layer
        for layer in (normalize_layer(r, body_id, body_name, projection) for r in raw_layers)
        if layer is not None
    ]
    if not layers:
        return None
    return BodyEntry(bodyId=body_id, bodyName=body_name, projection=projection, layers=layers)


def _body_from_layer_list(key: str, raw_layers: list[Any]) -> BodyEntry | None:
    first = raw_layers[0] if raw_layers and isinstance(raw_layers[0], dict) else {}
    body_name = pick_string(first.get("bodyName"), first.get("body"), key) or key

    layers: list[LayerDescriptor] = []
    for r in raw_layers:
        projection = as_projection((r or {}).get("projection") if isinstance(r, dict) else None, Projection.epsg3857)
        layer = normalize_layer(r, key, body_name, projection)
        if layer is not None:
            layers.append(layer)
    if not layers:
        return None
    return BodyEntry(bodyId=key, bodyName=body_name, projection=layers[0].projection, layers=layers)


def normalize_layers_response(data: Any) -> LayersCatalog:
    if not data:
        return []

    if isinstance(data, dict) and isinstance(data.get("bodies"), list):
        return normalize_layers_response(data["bodies"])

    out: LayersCatalog = []
    if isinstance(data, list):
        for entry in data:
            body = normalize_body(entry)
            if body is not None:
                out.append(body)
        return out

    if isinstance(data, dict):
        for key, value in data.items():
            if isinstance(value, list):
                body = _body_from_layer_list(str(key), value)
            else:
                # The mapping key names the body unless the entry carries its own id.
                body = normalize_body({"bodyId": str(key), **value}) if isinstance(value, dict) else None
            if body is not None:
                out.append(body)
    return out
