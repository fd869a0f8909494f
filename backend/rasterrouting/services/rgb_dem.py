"""
RGB-packed elevation tiles.

Each pixel stores a 24-bit big-endian fixed-point value across its red,
green and blue channels:

    elevation = base_offset + (R * 65536 + G * 256 + B) * quantization_step
"""

import warnings
from dataclasses import dataclass

import numpy as np
from rasterio.errors import NotGeoreferencedWarning, RasterioIOError
from rasterio.io import MemoryFile


class RGBDecodeError(ValueError):
    """Raised when an image payload cannot be decoded to elevations"""


@dataclass(frozen=True)
class RGBCalibration:
    name: str
    base_offset: float
    quantization_step: float

    def decode(self, rgb: np.ndarray) -> np.ndarray:
        """Convert a (3, rows, cols) uint8 array to float32 elevations"""
        r = rgb[0].astype(np.float64)
        g = rgb[1].astype(np.float64)
        b = rgb[2].astype(np.float64)
        packed = r * 65536.0 + g * 256.0 + b
        return (self.base_offset + packed * self.quantization_step).astype(np.float32)


# Mapbox Terrain-RGB style encoding: 0.1 m steps from -10000 m
TERRAIN_RGB = RGBCalibration("terrain_rgb", base_offset=-10000.0, quantization_step=0.1)

# R * 256 + G + B / 256: whole meters in R/G, 1/256 m fraction in B
FIXED_POINT_METERS = RGBCalibration("fixed_point_meters", base_offset=0.0, quantization_step=1.0 / 256.0)

CALIBRATIONS = {c.name: c for c in (TERRAIN_RGB, FIXED_POINT_METERS)}


def get_calibration(name: str) -> RGBCalibration:
    try:
        return CALIBRATIONS[name]
    except KeyError:
        raise ValueError(
            f"Unknown RGB calibration {name!r}; expected one of {sorted(CALIBRATIONS)}"
        ) from None


def decode_rgb_elevation(data: bytes, calibration: RGBCalibration = TERRAIN_RGB) -> np.ndarray:
    """Decode a PNG/WebP RGB elevation tile into a float32 grid"""
    try:
        with warnings.catch_warnings():
            # Map tiles carry no georeferencing; their position comes from the tile index
            warnings.simplefilter("ignore", NotGeoreferencedWarning)
            with MemoryFile(data) as memfile:
                with memfile.open() as dataset:
                    if dataset.count < 3:
                        raise RGBDecodeError(
                            f"Expected at least 3 bands for RGB elevation, got {dataset.count}"
                        )
                    rgb = dataset.read(indexes=[1, 2, 3])
    except RasterioIOError as e:
        raise RGBDecodeError(f"Could not decode image payload: {e}") from e

    return calibration.decode(rgb)
