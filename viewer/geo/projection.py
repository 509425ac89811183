from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from pyproj import Transformer
import shapely
from shapely.geometry import mapping, shape

from geo.aoi import BBox

if TYPE_CHECKING:
    from catalog.types import LayerDescriptor


class Projection(str, Enum):
    """
    The two working projections a viewport can use.

    - epsg3857: Web Mercator (meters); GIBS Earth imagery, OSM backdrop available.
    - epsg4326: plate carrée lon/lat degrees; Solar System Treks bodies.
    """

    epsg3857 = "EPSG:3857"
    epsg4326 = "EPSG:4326"


DEFAULT_PROJECTION = Projection.epsg3857
DEFAULT_MAX_ZOOM = 19.0

_MAX_MERCATOR_LAT = 85.05112878
# Resolution at zoom 0 for a 256px tile grid (units per pixel).
_ZOOM0_RESOLUTION = {
    Projection.epsg3857: 2 * math.pi * 6378137.0 / 256.0,
    Projection.epsg4326: 360.0 / 256.0,
}
# Half-width/height of the projected world; PROJ wraps longitudes past these.
_WORLD_HALF_EXTENT = {
    Projection.epsg3857: (20037508.342789244, 20037508.342789244),
    Projection.epsg4326: (180.0, 90.0),
}


def as_projection(value: Any, fallback: Projection | None = None) -> Projection | None:
    if isinstance(value, Projection):
        return value
    try:
        return Projection(str(value).strip().upper())
    except ValueError:
        return fallback


@lru_cache(maxsize=8)
def transformer(src: Projection, dst: Projection) -> Transformer:
    return Transformer.from_crs(src.value, dst.value, always_xy=True)


def to_lonlat(x: float, y: float, projection: Projection) -> tuple[float, float]:
    if projection == Projection.epsg4326:
        return float(x), float(y)
    lon, lat = transformer(projection, Projection.epsg4326).transform(x, y)
    return float(lon), float(lat)


def from_lonlat(lon: float, lat: float, projection: Projection) -> tuple[float, float]:
    if projection == Projection.epsg4326:
        return float(lon), float(lat)
    # Web Mercator diverges at the poles.
    lat = max(-_MAX_MERCATOR_LAT, min(_MAX_MERCATOR_LAT, float(lat)))
    x, y = transformer(Projection.epsg4326, projection).transform(float(lon), lat)
    return float(x), float(y)


@dataclass(frozen=True)
class ViewState:
    """
    Settled view of the map collaborator: center in `projection` units plus zoom.
    """

    center: tuple[float, float]
    zoom: float
    projection: Projection = DEFAULT_PROJECTION

    def center_lonlat(self) -> tuple[float, float]:
        return to_lonlat(self.center[0], self.center[1], self.projection)

    @classmethod
    def from_lonlat(
        cls, lon: float, lat: float, zoom: float, projection: Projection
    ) -> "ViewState":
        return cls(center=from_lonlat(lon, lat, projection), zoom=float(zoom), projection=projection)


@dataclass(frozen=True)
class ProjectedView:
    view: ViewState
    min_zoom: float
    max_zoom: float
    # The OSM backdrop only lines up with Web Mercator imagery.
    show_base_layer: bool


def zoom_bounds(layer: "LayerDescriptor") -> tuple[float, float]:
    min_zoom = float(layer.minZoom) if layer.minZoom is not None else 0.0
    max_zoom = float(layer.maxZoom) if layer.maxZoom is not None else DEFAULT_MAX_ZOOM
    return min_zoom, max(min_zoom, max_zoom)


def ensure_projection(
    current_view: ViewState,
    target_layer: "LayerDescriptor",
    *,
    keep_center: bool = True,
) -> ProjectedView:
    """
    Compute the view to use once `target_layer` becomes active.

    Pure: depends only on its arguments and returns a new view.
    """
    target = target_layer.projection
    min_zoom, max_zoom = zoom_bounds(target_layer)
    zoom = max(min_zoom, min(max_zoom, float(current_view.zoom)))

    if current_view.projection == target:
        view = replace(current_view, zoom=zoom)
        if not keep_center:
            view = replace(view, center=from_lonlat(0.0, 0.0, target))
    else:
        lon, lat = current_view.center_lonlat() if keep_center else (0.0, 0.0)
        view = ViewState(center=from_lonlat(lon, lat, target), zoom=zoom, projection=target)

    return ProjectedView(
        view=view,
        min_zoom=min_zoom,
        max_zoom=max_zoom,
        show_base_layer=target == Projection.epsg3857,
    )


def resolution_for_zoom(zoom: float, projection: Projection) -> float:
    return _ZOOM0_RESOLUTION[projection] / (2.0 ** float(zoom))


def view_extent(view: ViewState, size: tuple[int, int]) -> BBox:
    """
    Lon/lat bbox visible in a viewport of `size` (width, height) pixels.
    """
    width, height = int(size[0]), int(size[1])
    res = resolution_for_zoom(view.zoom, view.projection)
    cx, cy = view.center
    half_w = width * res / 2.0
    half_h = height * res / 2.0

    lim_x, lim_y = _WORLD_HALF_EXTENT[view.projection]

    def clip(v: float, limit: float) -> float:
        return max(-limit, min(limit, v))

    min_lon, min_lat = to_lonlat(clip(cx - half_w, lim_x), clip(cy - half_h, lim_y), view.projection)
    max_lon, max_lat = to_lonlat(clip(cx + half_w, lim_x), clip(cy + half_h, lim_y), view.projection)
    return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat).clamped()


def _round_coords(coords: Any, decimals: int) -> Any:
    if isinstance(coords, (list, tuple)):
        if coords and isinstance(coords[0], (int, float)):
            return [round(float(c), decimals) for c in coords]
        return [_round_coords(c, decimals) for c in coords]
    return coords


def _listify(coords: Any) -> Any:
    if isinstance(coords, (list, tuple)):
        return [_listify(c) for c in coords]
    return coords


def transform_geometry(
    geometry: dict[str, Any],
    src: Projection,
    dst: Projection,
    *,
    decimals: int | None = None,
) -> dict[str, Any]:
    """
    Reproject a GeoJSON geometry dict; optionally round coordinates.
    """
    if src == dst:
        out = {"type": geometry["type"], "coordinates": _listify(geometry["coordinates"])}
    else:
        fwd = transformer(src, dst)

        def t(xs, ys):
            if dst == Projection.epsg3857:
                ys = [max(-_MAX_MERCATOR_LAT, min(_MAX_MERCATOR_LAT, float(y))) for y in ys]
            return fwd.transform(list(xs), list(ys))

        geom = shapely.transform(shape(geometry), t, interleaved=False)
        m = mapping(geom)
        out = {"type": m["type"], "coordinates": _listify(m["coordinates"])}
    if decimals is not None:
        out["coordinates"] = _round_coords(out["coordinates"], decimals)
    return out
