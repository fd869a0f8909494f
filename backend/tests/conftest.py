"""
Pytest configuration and shared fixtures
"""

import pytest
import sys
import os

# Add backend directory to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Import all fixtures from raster_fixtures
from tests.fixtures.raster_fixtures import (
    alps_tile,
    flat_rgb_png,
    zero_hazard_hfz,
    fake_tile_server,
    adjacent_tiles_scenario,
    sample_route_request
)

# Re-export all fixtures
__all__ = [
    'alps_tile',
    'flat_rgb_png',
    'zero_hazard_hfz',
    'fake_tile_server',
    'adjacent_tiles_scenario',
    'sample_route_request'
]


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep tile endpoint overrides from the host environment out of tests"""
    for name in ("RASTER_DEM_URL", "RASTER_HAZARD_URL", "RASTER_RGB_CALIBRATION"):
        monkeypatch.delenv(name, raising=False)
