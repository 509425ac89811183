"""
Viewport permalink: `#<lon>,<lat>,<zoom>,<date>,<layerKey>,<projection>`.

Positional, comma-separated, six slots. Empty values stay as empty slots so a
truncated or hand-edited fragment still lines up.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from geo.projection import Projection, as_projection

SLOTS = 6


@dataclass(frozen=True)
class PermalinkState:
    lon: float | None = None
    lat: float | None = None
    zoom: float | None = None
    date: str | None = None
    layer_key: str | None = None
    projection: Projection | None = None


def _fmt(value: float | None, decimals: int) -> str:
    if value is None:
        return ""
    v = float(value)
    if not math.isfinite(v):
        return ""
    return f"{v:.{decimals}f}"


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Projection):
        return value.value
    # Commas would shift every following slot.
    return str(value).strip().replace(",", "")


def encode(
    center: tuple[float, float] | None,
    zoom: float | None,
    date: str | None,
    layer_key: str | None,
    projection: Projection | str | None,
) -> str:
    lon, lat = center if center is not None else (None, None)
    return ",".join(
        [
            _fmt(lon, 5),
            _fmt(lat, 5),
            _fmt(zoom, 2),
            _text(date),
            _text(layer_key),
            _text(projection),
        ]
    )


def format_fragment(
    center: tuple[float, float] | None,
    zoom: float | None,
    date: str | None,
    layer_key: str | None,
    projection: Projection | str | None,
) -> str:
    return "#" + encode(center, zoom, date, layer_key, projection)


def _number(token: str) -> float | None:
    if not token:
        return None
    try:
        v = float(token)
    except ValueError:
        return None
    return v if math.isfinite(v) else None


def decode(fragment: str | None) -> PermalinkState:
    if not isinstance(fragment, str):
        return PermalinkState()
    raw = fragment.strip()
    if raw.startswith("#"):
        raw = raw[1:]
    if not raw:
        return PermalinkState()

    parts = [p.strip() for p in raw.split(",")]
    parts += [""] * (SLOTS - len(parts))
    lon, lat, zoom, date, layer_key, projection = parts[:SLOTS]
    return PermalinkState(
        lon=_number(lon),
        lat=_number(lat),
        zoom=_number(zoom),
        date=date or None,
        layer_key=layer_key or None,
        projection=as_projection(projection) if projection else None,
    )
