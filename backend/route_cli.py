#!/usr/bin/env python3
"""
Command-line tool for finding least-cost routes between coordinates.

Usage:
    # Using local libraries (default):
    python route_cli.py "Start: 46.9758, 8.6497" "End: 46.9801, 8.6712"

    # Elevation-only routing and a GPX export:
    python route_cli.py --preset elevation_only --gpx route.gpx "46.9758, 8.6497" "46.9801, 8.6712"

    # Using API service:
    python route_cli.py --api --api-url http://localhost:8000 "46.9758, 8.6497" "46.9801, 8.6712"
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

import time
import re
import argparse
import logging
import requests


class TimedStep:
    """Context manager for timing individual steps"""
    def __init__(self, description):
        self.description = description
        self.start_time = None

    def __enter__(self):
        print(f"\n📍 {self.description}...")
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        if exc_type is None:
            print(f"   ✓ Completed in {format_time(duration)}")
        else:
            print(f"   ✗ Failed after {format_time(duration)}")


def parse_coordinate(coord_str):
    """Parse coordinate string like 'Start: 46.9758, 8.6497' or '46.9801, 8.6712'"""
    coord_str = coord_str.replace('Start:', '').replace('End:', '').strip()

    match = re.match(r'^\s*(-?\d+\.?\d*)\s*,\s*(-?\d+\.?\d*)\s*$', coord_str)
    if match:
        lat = float(match.group(1))
        lon = float(match.group(2))
        return lat, lon
    else:
        raise ValueError(f"Invalid coordinate format: {coord_str}")


def format_time(seconds):
    """Format time in human-readable way"""
    if seconds < 1:
        return f"{seconds*1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        minutes = int(seconds / 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.0f}s"


def find_route_via_api(start_lat, start_lon, end_lat, end_lon, api_url="http://localhost:8000", preset="default"):
    """Find route using the API service"""
    payload = {
        "start": {"lat": start_lat, "lon": start_lon},
        "end": {"lat": end_lat, "lon": end_lon},
        "options": {"preset": preset}
    }

    with TimedStep("Starting route calculation via API"):
        try:
            response = requests.post(f"{api_url}/api/routes/calculate", json=payload, timeout=5)
            response.raise_for_status()
            route_id = response.json()["routeId"]
            print(f"   Route ID: {route_id}")
        except requests.exceptions.ConnectionError:
            print(f"   ✗ Cannot connect to API at {api_url}")
            return None
        except requests.exceptions.RequestException as e:
            print(f"   ✗ API request failed: {e}")
            return None

    with TimedStep("Waiting for route calculation"):
        max_attempts = 120
        for _ in range(max_attempts):
            try:
                response = requests.get(f"{api_url}/api/routes/{route_id}/status", timeout=5)
                response.raise_for_status()
                status_data = response.json()

                status = status_data["status"]
                progress = status_data.get("progress", 0)
                print(f"\r   Progress: {progress}% - Status: {status}", end="", flush=True)

                if status.upper() == "COMPLETED":
                    print()
                    break
                elif status.upper() == "FAILED":
                    print(f"\n   ✗ Route calculation failed: {status_data.get('message', 'Unknown error')}")
                    return None

                time.sleep(1)
            except requests.exceptions.RequestException as e:
                print(f"\n   ✗ Status check failed: {e}")
                return None
        else:
            print("\n   ✗ Route calculation timed out")
            return None

    with TimedStep("Retrieving route data"):
        try:
            response = requests.get(f"{api_url}/api/routes/{route_id}", timeout=5)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            print(f"   ✗ Failed to retrieve route: {e}")
            return None


def find_route_locally(start_lat, start_lon, end_lat, end_lon, args):
    """Find route in-process; returns (path as list of dicts, stats)"""
    from rasterrouting.models.route import Coordinate
    from rasterrouting.services.route_finder import RouteFinderService
    from rasterrouting.services.routing_config import get_preset

    with TimedStep("Building routing configuration"):
        config = get_preset(args.preset)
        if args.dem_url:
            config.dem_url = args.dem_url
        if args.hazard_url:
            config.hazard_url = args.hazard_url
        if args.zoom:
            config.working_zoom = args.zoom
        print(f"   {config.summary()}")

    service = RouteFinderService(config=config)
    start = Coordinate(lat=start_lat, lon=start_lon)
    end = Coordinate(lat=end_lat, lon=end_lon)

    if not service.validate_route_request(start, end):
        print(f"   ✗ Endpoints identical or farther apart than {config.max_distance_m / 1000:.1f} km")
        return None, {}

    with TimedStep("Loading tiles and searching"):
        path, stats = service.compute_route(start, end)

    if not path:
        return None, stats
    return stats.get("path_with_elevation") or [{"lat": c.lat, "lon": c.lon} for c in path], stats


def main():
    """Main CLI function"""
    parser = argparse.ArgumentParser(
        description='Find least-cost routes over tiled elevation and hazard rasters',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('start', help='Start coordinates (e.g., "Start: 46.9758, 8.6497")')
    parser.add_argument('end', help='End coordinates (e.g., "End: 46.9801, 8.6712")')
    parser.add_argument('--preset', default='default', choices=['default', 'elevation_only', 'wide_corridor'],
                        help='Routing preset')
    parser.add_argument('--dem-url', help='Elevation tile URL template with {z}/{x}/{y}')
    parser.add_argument('--hazard-url', help='Hazard tile URL template with {z}/{x}/{y}')
    parser.add_argument('--zoom', type=int, help='Working zoom level (default 15)')
    parser.add_argument('--gpx', help='Write the route to this GPX file')
    parser.add_argument('--api', action='store_true', help='Use API service instead of local libraries')
    parser.add_argument('--api-url', default='http://localhost:8000', help='API service URL')
    parser.add_argument('--verbose', action='store_true', help='Show library log output')

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    overall_start = time.time()

    with TimedStep("Parsing coordinates"):
        try:
            start_lat, start_lon = parse_coordinate(args.start)
            end_lat, end_lon = parse_coordinate(args.end)
        except ValueError as e:
            print(f"❌ Error parsing coordinates: {e}")
            print('\nExpected format: "Start: 46.9758, 8.6497"')
            sys.exit(1)

    print("\n🏔️  RASTER ROUTER")
    print("="*60)
    print(f"Mode:  {'API Service' if args.api else 'Local Libraries'}")
    print(f"Start: {start_lat}, {start_lon}")
    print(f"End:   {end_lat}, {end_lon}")
    print("-"*60)

    if args.api:
        route_data = find_route_via_api(start_lat, start_lon, end_lat, end_lon, args.api_url, args.preset)
        stats = route_data.get('stats', {}) if route_data else {}
        path = stats.get('path_with_elevation') or (route_data or {}).get('path')
    else:
        path, stats = find_route_locally(start_lat, start_lon, end_lat, end_lon, args)

    route_time = time.time() - overall_start

    if not path:
        print(f"\n❌ {stats.get('error', 'No route found')} (total time: {format_time(route_time)})")
        sys.exit(2)

    print(f"\n✅ ROUTE FOUND!")
    print("="*60)
    print(f"   Path distance:    {stats.get('distance_km', 0):.2f} km")
    print(f"   Direct distance:  {stats.get('direct_distance_m', 0):.0f} m")
    print(f"   Elevation gain:   {stats.get('elevation_gain_m', 0)} m")
    print(f"   Waypoints:        {len(path)} (raw {stats.get('raw_nodes', '?')})")
    print(f"   Nodes expanded:   {stats.get('nodes_expanded', '?')}")
    for name, load in stats.get('tile_loads', {}).items():
        print(f"   {name} tiles:        {load['loaded']}/{load['requested']} in {load['elapsed_s']}s")

    if args.gpx:
        from rasterrouting.services.gpx_generator import GPXGenerator
        with TimedStep(f"Writing GPX to {args.gpx}"):
            with open(args.gpx, "w") as f:
                f.write(GPXGenerator.create_gpx(path, stats=stats))

    print("\n" + "="*60)
    print(f"✓ Complete! Total time: {format_time(time.time() - overall_start)}")


if __name__ == "__main__":
    main()
