"""
Routing configuration.
Tile endpoints, codec calibration, corridor filter and cost model settings.
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional

from rasterrouting.services.rgb_dem import RGBCalibration, TERRAIN_RGB, get_calibration

DEFAULT_DEM_URL = "https://shop.robofactory.ch/swissalps/{z}/{x}/{y}.png"
DEFAULT_HAZARD_URL = "https://shop.robofactory.ch/riskmap/{z}/{x}/{y}.hfz"
DEFAULT_CONCURRENCY = 16


@dataclass(frozen=True)
class CorridorConfig:
    """Elliptical corridor: keep tiles with dA + dB <= direct * scale + margin_m"""
    name: str
    scale: float
    margin_m: float

    def threshold(self, direct_distance_m: float) -> float:
        return direct_distance_m * self.scale + self.margin_m


CORRIDOR_TIGHT = CorridorConfig("tight", scale=1.0, margin_m=1500.0)
CORRIDOR_WIDE = CorridorConfig("wide", scale=1.5, margin_m=1500.0)

CORRIDORS = {c.name: c for c in (CORRIDOR_TIGHT, CORRIDOR_WIDE)}

COST_MODELS = ("tobler", "elevation")


@dataclass
class RoutingConfig:
    """Configuration for tile retrieval and least-cost routing"""

    # Tile endpoints (template with {z}/{x}/{y})
    dem_url: str = None
    hazard_url: Optional[str] = None

    # Codec per source: 'rgb', 'hfz' or 'hf2'
    dem_encoding: str = "rgb"
    hazard_encoding: str = "hfz"
    rgb_calibration: RGBCalibration = None

    # Retrieval
    working_zoom: int = 15
    concurrency: int = DEFAULT_CONCURRENCY
    request_timeout: float = 30.0

    # Candidate tiles
    corridor: CorridorConfig = None
    max_distance_m: float = 6000.0

    # Cost model
    cost_model: str = "tobler"
    pixel_spacing_m: float = 6.515
    hazard_weight: float = 25.0
    use_hazard: bool = True

    # Post-processing
    simplify_epsilon: float = 6.5  # pixels
    smooth_passes: int = 3

    def __post_init__(self):
        """Fill defaults, honouring environment overrides"""
        if self.dem_url is None:
            self.dem_url = os.environ.get("RASTER_DEM_URL", DEFAULT_DEM_URL)

        if self.hazard_url is None and self.use_hazard:
            self.hazard_url = os.environ.get("RASTER_HAZARD_URL", DEFAULT_HAZARD_URL)

        if self.rgb_calibration is None:
            self.rgb_calibration = self.get_default_calibration()
        elif isinstance(self.rgb_calibration, str):
            self.rgb_calibration = get_calibration(self.rgb_calibration)

        if self.corridor is None:
            self.corridor = CORRIDOR_TIGHT
        elif isinstance(self.corridor, str):
            self.corridor = get_corridor(self.corridor)

        if self.cost_model not in COST_MODELS:
            raise ValueError(f"Unknown cost model {self.cost_model!r}; expected one of {COST_MODELS}")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")

    @staticmethod
    def get_default_calibration() -> RGBCalibration:
        name = os.environ.get("RASTER_RGB_CALIBRATION")
        return get_calibration(name) if name else TERRAIN_RGB

    @property
    def hazard_enabled(self) -> bool:
        return self.use_hazard and bool(self.hazard_url)

    def summary(self) -> Dict:
        return {
            "dem_url": self.dem_url,
            "hazard_url": self.hazard_url if self.hazard_enabled else None,
            "working_zoom": self.working_zoom,
            "concurrency": self.concurrency,
            "corridor": self.corridor.name,
            "cost_model": self.cost_model,
            "rgb_calibration": self.rgb_calibration.name,
        }


def get_corridor(name: str) -> CorridorConfig:
    try:
        return CORRIDORS[name]
    except KeyError:
        raise ValueError(f"Unknown corridor {name!r}; expected one of {sorted(CORRIDORS)}") from None


class RoutingPresets:
    """Predefined routing configurations"""

    @staticmethod
    def default() -> RoutingConfig:
        """Tobler cost over elevation plus hazard, tight corridor"""
        return RoutingConfig()

    @staticmethod
    def elevation_only() -> RoutingConfig:
        """No hazard layer; cost is 1 + |dh| per step"""
        return RoutingConfig(use_hazard=False, cost_model="elevation")

    @staticmethod
    def wide_corridor() -> RoutingConfig:
        """Load a wider ellipse of tiles around the direct line"""
        return RoutingConfig(corridor=CORRIDOR_WIDE)


PRESETS = {
    "default": RoutingPresets.default,
    "elevation_only": RoutingPresets.elevation_only,
    "wide_corridor": RoutingPresets.wide_corridor,
}


def get_preset(name: str) -> RoutingConfig:
    try:
        factory = PRESETS[name]
    except KeyError:
        raise ValueError(f"Unknown preset {name!r}; expected one of {sorted(PRESETS)}") from None
    return factory()
