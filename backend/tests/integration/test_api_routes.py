import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

from rasterrouting.main import SHARED_POOL_SIZE, app, routes_storage
from rasterrouting.services.route_finder import RouteFinderService
from rasterrouting.services.routing_config import RoutingConfig
from tests.fixtures.raster_fixtures import FakeTileServer

client = TestClient(app)


@pytest.fixture
def tile_server(fake_tile_server):
    """Route every tile request made by the API to the in-process tile server"""
    with patch("rasterrouting.main.shared_fetch", fake_tile_server):
        yield fake_tile_server


def start_route(request_data):
    response = client.post("/api/routes/calculate", json=request_data)
    assert response.status_code == 202
    return response.json()["routeId"]


@pytest.mark.integration
def test_health_check():
    """Test the health check endpoint"""
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "raster-router-api"}


@pytest.mark.integration
def test_calculate_route_completes(tile_server, sample_route_request):
    """Background calculation finishes and exposes path, stats and loaded tiles"""
    route_id = start_route(sample_route_request)

    status_response = client.get(f"/api/routes/{route_id}/status")
    assert status_response.status_code == 200
    assert status_response.json()["status"] == "completed"
    assert status_response.json()["progress"] == 100

    route_response = client.get(f"/api/routes/{route_id}")
    assert route_response.status_code == 200
    data = route_response.json()
    assert data["routeId"] == route_id
    assert len(data["path"]) >= 2
    assert data["stats"]["waypoints"] == len(data["path"])
    assert data["loadedTiles"]["type"] == "FeatureCollection"
    assert len(data["loadedTiles"]["features"]) == data["stats"]["tiles_requested"]
    assert "loaded_tiles" not in data["stats"]


@pytest.mark.integration
def test_calculate_route_with_hazard_layer(tile_server, sample_route_request):
    """Default preset loads both DEM and hazard tiles"""
    sample_route_request["options"] = {"preset": "default"}
    route_id = start_route(sample_route_request)

    data = client.get(f"/api/routes/{route_id}").json()
    assert set(data["stats"]["tile_loads"]) == {"dem", "hazard"}
    assert any(url.endswith(".hfz") for url in tile_server.requests)


@pytest.mark.integration
def test_calculate_route_invalid_coordinates():
    """Test route calculation with invalid coordinates"""
    request_data = {
        "start": {"lat": 86, "lon": 8.6497},  # Outside Web-Mercator
        "end": {"lat": 46.9762, "lon": 8.6510}
    }

    response = client.post("/api/routes/calculate", json=request_data)
    assert response.status_code == 422  # Validation error


@pytest.mark.integration
def test_calculate_route_invalid_options(sample_route_request):
    sample_route_request["options"] = {"costModel": "astar"}
    response = client.post("/api/routes/calculate", json=sample_route_request)
    assert response.status_code == 422


@pytest.mark.integration
def test_identical_points_fail(tile_server, sample_route_request):
    sample_route_request["end"] = dict(sample_route_request["start"])
    route_id = start_route(sample_route_request)

    status = client.get(f"/api/routes/{route_id}/status").json()
    assert status["status"] == "failed"
    assert status["message"] == "Invalid route request"
    assert tile_server.requests == []


@pytest.mark.integration
def test_missing_tiles_fail_with_no_route(sample_route_request):
    with patch("rasterrouting.main.shared_fetch", FakeTileServer()):
        route_id = start_route(sample_route_request)

    status = client.get(f"/api/routes/{route_id}/status").json()
    assert status["status"] == "failed"
    assert status["message"] == "No route found"

    # Not ready: no route or GPX to hand out
    assert client.get(f"/api/routes/{route_id}").status_code == 400
    assert client.get(f"/api/routes/{route_id}/gpx").status_code == 400
    assert routes_storage[route_id]["loaded_tiles"]["features"] == []


@pytest.mark.integration
def test_download_gpx(tile_server, sample_route_request):
    route_id = start_route(sample_route_request)

    response = client.get(f"/api/routes/{route_id}/gpx")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/gpx+xml")
    assert f"route_{route_id[:8]}.gpx" in response.headers["content-disposition"]
    assert "<trkpt" in response.text
    assert "<ele>1500" in response.text


@pytest.mark.integration
def test_find_route_synchronously(tile_server, sample_route_request):
    response = client.post("/api/routes/find", json=sample_route_request)
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert len(data["path"]) >= 2
    assert data["loadedTiles"]["features"]


@pytest.mark.integration
def test_find_route_synchronously_without_path(sample_route_request):
    with patch("rasterrouting.main.shared_fetch", FakeTileServer()):
        response = client.post("/api/routes/find", json=sample_route_request)
    assert response.status_code == 404
    assert response.json()["detail"] == "No route found"


@pytest.mark.integration
def test_find_route_rejects_identical_points(sample_route_request):
    sample_route_request["end"] = dict(sample_route_request["start"])
    response = client.post("/api/routes/find", json=sample_route_request)
    assert response.status_code == 400


@pytest.mark.integration
def test_get_route_not_found():
    """Test getting a non-existent route"""
    assert client.get("/api/routes/nonexistent-route-id").status_code == 404
    assert client.get("/api/routes/nonexistent-route-id/status").status_code == 404
    assert client.get("/api/routes/nonexistent-route-id/gpx").status_code == 404


@pytest.mark.integration
def test_calculate_route_rejects_unknown_preset(sample_route_request):
    sample_route_request["options"] = {"preset": "mountain_goat"}
    response = client.post("/api/routes/calculate", json=sample_route_request)
    assert response.status_code == 422


@pytest.mark.integration
def test_find_route_passes_only_endpoints(tile_server, sample_route_request):
    """Options shape the configuration; the service sees only the endpoints"""
    sample_route_request["options"] = {"preset": "elevation_only", "corridor": "wide"}
    mock_find = AsyncMock(return_value=([], {"error": "No route found"}))

    with patch.object(RouteFinderService, "find_route", mock_find):
        response = client.post("/api/routes/find", json=sample_route_request)

    assert response.status_code == 404
    mock_find.assert_awaited_once()
    start, end = mock_find.await_args.args
    assert not mock_find.await_args.kwargs
    assert (start.lat, start.lon) == (sample_route_request["start"]["lat"], sample_route_request["start"]["lon"])
    assert (end.lat, end.lon) == (sample_route_request["end"]["lat"], sample_route_request["end"]["lon"])


@pytest.mark.integration
def test_shared_session_pools_dem_and_hazard_workers():
    config = RoutingConfig()
    assert SHARED_POOL_SIZE >= 2 * config.concurrency
