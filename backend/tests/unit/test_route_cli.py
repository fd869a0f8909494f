"""
Tests for the route command-line tool
"""

import argparse
from unittest.mock import patch

import pytest

import route_cli
from tests.fixtures.raster_fixtures import DEM_TEMPLATE


@pytest.mark.unit
@pytest.mark.parametrize("text,expected", [
    ("Start: 46.9758, 8.6497", (46.9758, 8.6497)),
    ("End: 46.9801,8.6712", (46.9801, 8.6712)),
    ("  -33.5 , -70  ", (-33.5, -70.0)),
])
def test_parse_coordinate(text, expected):
    assert route_cli.parse_coordinate(text) == expected


@pytest.mark.unit
@pytest.mark.parametrize("text", ["46.9758", "north, east", "46.9758; 8.6497"])
def test_parse_coordinate_rejects_bad_input(text):
    with pytest.raises(ValueError):
        route_cli.parse_coordinate(text)


@pytest.mark.unit
def test_format_time():
    assert route_cli.format_time(0.25) == "250ms"
    assert route_cli.format_time(12.34) == "12.3s"
    assert route_cli.format_time(125) == "2m 5s"


@pytest.mark.unit
def test_find_route_locally(fake_tile_server):
    args = argparse.Namespace(preset="elevation_only", dem_url=DEM_TEMPLATE, hazard_url=None, zoom=None)

    with patch("rasterrouting.services.route_finder.make_http_fetch", return_value=fake_tile_server):
        path, stats = route_cli.find_route_locally(46.9758, 8.6497, 46.9762, 8.6510, args)

    assert path[0]["elevation"] == pytest.approx(1500.0, abs=0.1)
    assert stats["waypoints"] == len(path)
    assert all(url.startswith("https://tiles.test/dem/15/") for url in fake_tile_server.requests)


@pytest.mark.unit
def test_find_route_locally_rejects_identical_points(fake_tile_server):
    args = argparse.Namespace(preset="default", dem_url=None, hazard_url=None, zoom=None)

    with patch("rasterrouting.services.route_finder.make_http_fetch", return_value=fake_tile_server):
        path, stats = route_cli.find_route_locally(46.9758, 8.6497, 46.9758, 8.6497, args)

    assert path is None
    assert fake_tile_server.requests == []


@pytest.mark.unit
def test_unknown_preset_is_a_usage_error(capsys):
    argv = ["route_cli.py", "--preset", "mountain_goat", "46.9758, 8.6497", "46.9762, 8.6510"]

    with patch("sys.argv", argv), pytest.raises(SystemExit) as exc_info:
        route_cli.main()

    assert exc_info.value.code == 2
    assert "mountain_goat" in capsys.readouterr().err
