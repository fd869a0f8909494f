"""
Tests for RouteFinderService orchestration
"""

import pytest
from unittest.mock import patch

from rasterrouting.models.route import Coordinate
from rasterrouting.services.route_finder import RouteFinderService
from rasterrouting.services.routing_config import RoutingConfig
from tests.fixtures.raster_fixtures import DEM_TEMPLATE, HAZARD_TEMPLATE, FakeTileServer

START = Coordinate(lat=46.9758, lon=8.6497)
END = Coordinate(lat=46.9762, lon=8.6510)


def elevation_only_config(**kwargs):
    return RoutingConfig(dem_url=DEM_TEMPLATE, use_hazard=False, cost_model="elevation", **kwargs)


@pytest.mark.unit
class TestValidation:

    def test_rejects_identical_points(self):
        service = RouteFinderService(elevation_only_config(), fetch=FakeTileServer())
        assert not service.validate_route_request(START, START)

    def test_rejects_long_routes(self):
        service = RouteFinderService(elevation_only_config(), fetch=FakeTileServer())
        far = Coordinate(lat=47.05, lon=8.6497)
        assert not service.validate_route_request(START, far)
        assert service.validate_route_request(START, END)

    def test_haversine_distance(self):
        service = RouteFinderService(elevation_only_config(), fetch=FakeTileServer())
        one_degree = service._calculate_distance(Coordinate(lat=0, lon=0), Coordinate(lat=1, lon=0))
        assert one_degree == pytest.approx(111.19, rel=0.001)

    def test_default_transport_pools_both_sources(self):
        with patch("rasterrouting.services.route_finder.make_http_fetch") as make_fetch:
            RouteFinderService(elevation_only_config(concurrency=8))

        make_fetch.assert_called_once_with(timeout=30.0, pool_size=16)


@pytest.mark.unit
def test_sources_follow_config(fake_tile_server):
    service = RouteFinderService(RoutingConfig(dem_url=DEM_TEMPLATE, hazard_url=HAZARD_TEMPLATE),
                                 fetch=fake_tile_server)
    dem, hazard = service.build_sources()
    assert (dem.name, dem.encoding) == ("dem", "rgb")
    assert (hazard.name, hazard.encoding) == ("hazard", "hfz")
    assert dem.atlas is not hazard.atlas

    _, no_hazard = RouteFinderService(elevation_only_config(), fetch=fake_tile_server).build_sources()
    assert no_hazard is None


@pytest.mark.unit
def test_each_request_gets_fresh_atlases(fake_tile_server):
    service = RouteFinderService(elevation_only_config(), fetch=fake_tile_server)
    first, _ = service.build_sources()
    second, _ = service.build_sources()
    assert first.atlas is not second.atlas


@pytest.mark.unit
def test_compute_route_on_flat_terrain(fake_tile_server):
    service = RouteFinderService(elevation_only_config(), fetch=fake_tile_server)

    path, stats = service.compute_route(START, END)

    assert len(path) >= 2
    assert path[0].lat == pytest.approx(START.lat, abs=1e-4)
    assert path[0].lon == pytest.approx(START.lon, abs=1e-4)
    assert path[-1].lat == pytest.approx(END.lat, abs=1e-4)
    assert path[-1].lon == pytest.approx(END.lon, abs=1e-4)

    assert stats["elevation_gain_m"] == 0
    assert stats["min_elevation_m"] == pytest.approx(1500.0, abs=0.1)
    assert stats["direct_distance_m"] == pytest.approx(110, rel=0.1)
    assert stats["distance_km"] >= stats["direct_distance_m"] / 1000 * 0.95
    assert stats["simplified_nodes"] < stats["raw_nodes"]
    assert stats["waypoints"] == len(path)
    assert stats["tile_loads"]["dem"]["loaded"] == stats["tiles_requested"]
    assert "hazard" not in stats["tile_loads"]
    assert len(stats["path_with_elevation"]) == len(path)
    assert stats["path_with_elevation"][0]["elevation"] == pytest.approx(1500.0, abs=0.1)
    assert stats["loaded_tiles"]["type"] == "FeatureCollection"
    assert len(stats["loaded_tiles"]["features"]) == stats["tiles_requested"]


@pytest.mark.unit
def test_compute_route_with_hazard_layer(fake_tile_server):
    config = RoutingConfig(dem_url=DEM_TEMPLATE, hazard_url=HAZARD_TEMPLATE)
    service = RouteFinderService(config, fetch=fake_tile_server)

    path, stats = service.compute_route(START, END)

    assert path
    assert stats["tile_loads"]["hazard"]["loaded"] == stats["tiles_requested"]
    assert any(url.endswith(".hfz") for url in fake_tile_server.requests)


@pytest.mark.unit
def test_compute_route_without_tiles_reports_no_route():
    service = RouteFinderService(elevation_only_config(), fetch=FakeTileServer())

    path, stats = service.compute_route(START, END)

    assert path == []
    assert stats["error"] == "No route found"
    assert stats["tile_loads"]["dem"]["failed"] == stats["tiles_requested"]
    assert stats["loaded_tiles"]["features"] == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_find_route(fake_tile_server):
    service = RouteFinderService(elevation_only_config(), fetch=fake_tile_server)

    path, stats = await service.find_route(START, END)

    assert path
    assert "error" not in stats


@pytest.mark.unit
@pytest.mark.asyncio
async def test_find_route_rejects_before_loading_tiles(fake_tile_server):
    service = RouteFinderService(elevation_only_config(), fetch=fake_tile_server)

    path, stats = await service.find_route(START, START)

    assert path == []
    assert "Invalid route request" in stats["error"]
    assert fake_tile_server.requests == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_find_route_reports_unexpected_errors(fake_tile_server):
    service = RouteFinderService(elevation_only_config(), fetch=fake_tile_server)

    with patch.object(service, "compute_route", side_effect=RuntimeError("boom")):
        path, stats = await service.find_route(START, END)

    assert path == []
    assert stats == {"error": "boom"}
