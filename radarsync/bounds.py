import math
from dataclasses import dataclass

from radarsync.catalog import Corner, CaptureRecord
from radarsync.log import log
from radarsync.sources import RadarSource

KM_PER_DEG_LAT = 111.32


@dataclass(frozen=True)
class BoundsRect:
    lat_min: float
    lon_min: float
    lat_max: float
    lon_max: float

    @property
    def height(self) -> float:
        return self.lat_max - self.lat_min

    @property
    def width(self) -> float:
        return self.lon_max - self.lon_min

    @property
    def center(self) -> tuple[float, float]:
        return (self.lat_min + self.lat_max) / 2, (self.lon_min + self.lon_max) / 2

    def as_corners(self) -> list[list[float]]:
        return [[self.lat_min, self.lon_min], [self.lat_max, self.lon_max]]

    def is_valid(self) -> bool:
        return self.lat_min < self.lat_max and self.lon_min < self.lon_max


def normalize_bounds(corners: tuple[Corner, Corner]) -> BoundsRect:
    (lat1, lon1), (lat2, lon2) = corners
    return BoundsRect(
        lat_min=min(lat1, lat2),
        lon_min=min(lon1, lon2),
        lat_max=max(lat1, lat2),
        lon_max=max(lon1, lon2),
    )


def scale_bounds(rect: BoundsRect, center: tuple[float, float], scale_factor: float) -> BoundsRect:
    """Rescale half-extents by scale_factor and recenter on the radar site."""
    if scale_factor == 1.0:
        return rect
    center_lat, center_lon = center
    half_lat = rect.height / 2 * scale_factor
    half_lon = rect.width / 2 * scale_factor
    return BoundsRect(
        lat_min=center_lat - half_lat,
        lon_min=center_lon - half_lon,
        lat_max=center_lat + half_lat,
        lon_max=center_lon + half_lon,
    )


def theoretical_bounds(source: RadarSource) -> BoundsRect:
    """
    Flat-earth square around the radar site from its coverage radius.

    Longitude degrees are stretched by 1/cos(lat); not meaningful near the poles.
    """
    lat, lon = source.center
    half_lat = source.coverage_radius_km / KM_PER_DEG_LAT * source.bounds_scale_factor
    half_lon = half_lat / math.cos(math.radians(lat))
    return BoundsRect(
        lat_min=lat - half_lat,
        lon_min=lon - half_lon,
        lat_max=lat + half_lat,
        lon_max=lon + half_lon,
    )


def resolve_bounds(source: RadarSource, record: CaptureRecord) -> BoundsRect:
    if record.raw_bounds is not None:
        rect = scale_bounds(normalize_bounds(record.raw_bounds), source.center, source.bounds_scale_factor)
        if rect.is_valid():
            return rect
        log(f"WARNING: {source.id} {record.filename}: degenerate bounds {record.raw_bounds}, using theoretical extent")
    return theoretical_bounds(source)
