import os
from dataclasses import dataclass

DATA_ROOT = os.getenv("RADARSYNC_DATA_ROOT", "data").rstrip("/")


@dataclass(frozen=True)
class RadarSource:
    """Static description of one ground radar and where its captures are published."""

    id: str
    display_name: str
    center: tuple[float, float]
    coverage_radius_km: float
    catalog_base_path: str
    bounds_scale_factor: float = 1.0
    render_dimension_px: int = 1000
    z_order: int = 200

    def __post_init__(self):
        if not self.id:
            raise ValueError("radar source id must not be empty")
        if self.coverage_radius_km <= 0:
            raise ValueError(f"{self.id}: coverage_radius_km must be > 0")
        if self.bounds_scale_factor <= 0:
            raise ValueError(f"{self.id}: bounds_scale_factor must be > 0")
        if len(self.center) != 2:
            raise ValueError(f"{self.id}: center must be a (lat, lon) pair")


def default_sources(data_root: str | None = None) -> list[RadarSource]:
    root = (data_root if data_root is not None else DATA_ROOT).rstrip("/")
    return [
        RadarSource(
            id="guaxx",
            display_name="Radar GUAXX",
            center=(-4.035698, -79.871928),
            coverage_radius_km=100,
            catalog_base_path=f"{root}/guaxx",
            # empirical correction measured against coastline features
            bounds_scale_factor=0.95,
            render_dimension_px=1000,
            z_order=201,
        ),
        RadarSource(
            id="loxx",
            display_name="Radar LOXX",
            center=(-3.98687, -79.14434),
            coverage_radius_km=70,
            catalog_base_path=f"{root}/loxx",
            bounds_scale_factor=1.345,
            render_dimension_px=949,
            z_order=200,
        ),
    ]


def source_by_id(sources: list[RadarSource], radar_id: str) -> RadarSource:
    for source in sources:
        if source.id == radar_id:
            return source
    raise ValueError(f"unknown radar id: {radar_id}")
