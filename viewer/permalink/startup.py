from __future__ import annotations

from dataclasses import dataclass

from catalog.cache import find_layer, flatten_catalog, layer_default_date
from catalog.normalize import is_iso_date
from catalog.types import LayerDescriptor, LayersCatalog
from geo.projection import DEFAULT_PROJECTION, Projection
from permalink.codec import PermalinkState

DEFAULT_ZOOM = 2.0


@dataclass(frozen=True)
class StartupView:
    lon: float
    lat: float
    zoom: float
    date: str
    layer: LayerDescriptor | None
    projection: Projection


def resolve_startup(
    state: PermalinkState,
    catalog: LayersCatalog,
    *,
    today: str,
) -> StartupView:
    """
    Fill whatever the permalink left out.

    - unknown/missing layer -> first catalog layer
    - missing/invalid date -> the layer's default date, then today
    - projection follows the chosen layer; the fragment's projection only matters when
      the catalog is empty
    """
    layer = find_layer(catalog, state.layer_key)
    if layer is None:
        layers = flatten_catalog(catalog)
        layer = layers[0] if layers else None

    if state.date and is_iso_date(state.date):
        date = state.date
    elif layer is not None:
        date = layer_default_date(layer, today)
    else:
        date = today

    if layer is not None:
        projection = layer.projection
    else:
        projection = state.projection or DEFAULT_PROJECTION

    lon = state.lon if state.lon is not None and -180.0 <= state.lon <= 180.0 else 0.0
    lat = state.lat if state.lat is not None and -90.0 <= state.lat <= 90.0 else 0.0
    return StartupView(
        lon=lon,
        lat=lat,
        zoom=state.zoom if state.zoom is not None else DEFAULT_ZOOM,
        date=date,
        layer=layer,
        projection=projection,
    )
