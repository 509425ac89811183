from __future__ import annotations

from typing import Any

from annotations.types import FrameCenter, FrameExtent, ViewportFrame
from catalog.cache import layer_needs_date
from catalog.types import LayerDescriptor
from geo.aoi import BBox
from geo.projection import ViewState


def build_frame(
    view: ViewState,
    layer: LayerDescriptor,
    extent: BBox,
    *,
    date: str | None = None,
    opacity: float | None = None,
) -> ViewportFrame:
    """
    Frame for the active layer; projection always comes from the layer itself.
    """
    lon, lat = view.center_lonlat()
    return ViewportFrame(
        layerKey=layer.layerKey,
        projection=layer.projection,
        date=date if (date and layer_needs_date(layer)) else None,
        zoom=round(float(view.zoom), 2),
        opacity=opacity,
        center=FrameCenter(lon=lon, lat=lat),
        extent=FrameExtent(**extent.normalized().as_extent()),
    )


def _coord(v: float) -> str:
    return f"{float(v):.6f}"


def frame_query_params(frame: ViewportFrame) -> dict[str, Any]:
    """
    Read-endpoint query. The bbox goes out twice: minLon/.../maxLat and sw/ne naming,
    since both conventions are still served.
    """
    e = frame.extent
    params: dict[str, Any] = {
        "layerKey": frame.layerKey,
        "projection": frame.projection.value,
    }
    if frame.date:
        params["date"] = frame.date
    if frame.zoom is not None:
        params["zoom"] = str(frame.zoom)
    params.update(
        {
            "centerLon": _coord(frame.center.lon),
            "centerLat": _coord(frame.center.lat),
            "minLon": _coord(e.minLon),
            "minLat": _coord(e.minLat),
            "maxLon": _coord(e.maxLon),
            "maxLat": _coord(e.maxLat),
            "swLon": _coord(e.minLon),
            "swLat": _coord(e.minLat),
            "neLon": _coord(e.maxLon),
            "neLat": _coord(e.maxLat),
        }
    )
    return params
