from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lon/lat degrees.

    Convention used throughout this repo:
    - minLon, minLat, maxLon, maxLat
    - south-west corner == (minLon, minLat), north-east corner == (maxLon, maxLat)
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def normalized(self) -> "BBox":
        min_lon = min(self.min_lon, self.max_lon)
        max_lon = max(self.min_lon, self.max_lon)
        min_lat = min(self.min_lat, self.max_lat)
        max_lat = max(self.min_lat, self.max_lat)
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def clamped(self) -> "BBox":
        """
        Clamp to the valid geographic range (viewports can extend past the antimeridian/poles).
        """
        b = self.normalized()
        return BBox(
            min_lon=max(-180.0, b.min_lon),
            min_lat=max(-90.0, b.min_lat),
            max_lon=min(180.0, b.max_lon),
            max_lat=min(90.0, b.max_lat),
        )

    @property
    def sw(self) -> tuple[float, float]:
        return (self.min_lon, self.min_lat)

    @property
    def ne(self) -> tuple[float, float]:
        return (self.max_lon, self.max_lat)

    def as_extent(self) -> dict[str, float]:
        return {
            "minLon": self.min_lon,
            "minLat": self.min_lat,
            "maxLon": self.max_lon,
            "maxLat": self.max_lat,
        }
