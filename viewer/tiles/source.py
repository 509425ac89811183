from __future__ import annotations

from catalog.cache import layer_default_date, layer_needs_date
from catalog.types import LayerDescriptor

GIBS_WMTS_BASE = "https://gibs.earthdata.nasa.gov/wmts/epsg3857/best"
DEFAULT_MATRIX_SET = "GoogleMapsCompatible_Level9"


def gibs_template(layer: LayerDescriptor) -> str:
    """
    WMTS REST template for a `gibs:<id>` layer that ships no tile template.

    Date-less layers (e.g. static night lights) keep an empty date segment: `default//`.
    """
    layer_id = layer.layerKey.split(":", 1)[1] if ":" in layer.layerKey else layer.layerKey
    matrix_set = layer.matrixSet or DEFAULT_MATRIX_SET
    ext = (layer.imageFormat or "jpg").lower().removeprefix("image/").replace("jpeg", "jpg")
    date_part = "{date}" if layer.requiresDate else ""
    return f"{GIBS_WMTS_BASE}/{layer_id}/default/{date_part}/{matrix_set}/{{z}}/{{y}}/{{x}}.{ext}"


def resolve_tile_url(layer: LayerDescriptor, date: str | None, *, today: str) -> str | None:
    """
    Tile URL template with `{date}` substituted; `{z}/{x}/{y}` are left for the renderer.
    """
    template = layer.tileTemplate
    if not template and layer.kind == "gibs":
        template = gibs_template(layer)
    if not template:
        return None
    if "{date}" in template:
        resolved_date = date if (date and layer_needs_date(layer)) else layer_default_date(layer, today)
        template = template.replace("{date}", resolved_date)
    return template
