import asyncio
import logging
import math
import time
from typing import Dict, List, Optional, Tuple

from rasterrouting.models.route import Coordinate
from rasterrouting.services.path_processing import nodes_to_pixels, pixels_to_points, simplify, smooth
from rasterrouting.services.pathfinding import TiledGridPathfinder, build_cost_model
from rasterrouting.services.routing_config import RoutingConfig
from rasterrouting.services.tile_selector import identify_needed_tiles, ruler_distance
from rasterrouting.services.tile_source import (
    Fetch, TileAtlas, TileSource, load_sources_concurrently, make_http_fetch
)
from rasterrouting.services.tilebelt import point_to_tile_fraction

logger = logging.getLogger(__name__)


class RouteFinderService:
    """Service for finding least-cost routes between two coordinates"""

    def __init__(self, config: RoutingConfig = None, fetch: Fetch = None):
        self.config = config or RoutingConfig()
        self.max_distance_m = self.config.max_distance_m

        # One transport shared by every request; atlases stay per request.
        # DEM and hazard sources load in parallel on it.
        self.fetch = fetch or make_http_fetch(
            timeout=self.config.request_timeout, pool_size=2 * self.config.concurrency
        )
        logger.info(f"RouteFinderService initialized with {self.config.summary()}")

    def validate_route_request(self, start: Coordinate, end: Coordinate) -> bool:
        """Validate that the route request is reasonable"""
        if start.lat == end.lat and start.lon == end.lon:
            return False

        distance = ruler_distance(start.to_lonlat(), end.to_lonlat())
        if distance > self.max_distance_m:
            return False

        return True

    def _calculate_distance(self, coord1: Coordinate, coord2: Coordinate) -> float:
        """Calculate distance between two coordinates in kilometers using Haversine formula"""
        R = 6371  # Earth's radius in kilometers

        lat1, lon1 = math.radians(coord1.lat), math.radians(coord1.lon)
        lat2, lon2 = math.radians(coord2.lat), math.radians(coord2.lon)

        dlat = lat2 - lat1
        dlon = lon2 - lon1

        a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))

        return R * c

    def build_sources(self) -> Tuple[TileSource, Optional[TileSource]]:
        """Fresh tile sources, each owning an empty atlas for this request"""
        config = self.config
        dem_source = TileSource(
            config.dem_url,
            encoding=config.dem_encoding,
            concurrency=config.concurrency,
            fetch=self.fetch,
            name="dem",
            atlas=TileAtlas(),
            calibration=config.rgb_calibration,
        )
        hazard_source = None
        if config.hazard_enabled:
            hazard_source = TileSource(
                config.hazard_url,
                encoding=config.hazard_encoding,
                concurrency=config.concurrency,
                fetch=self.fetch,
                name="hazard",
                atlas=TileAtlas(),
                calibration=config.rgb_calibration,
            )
        return dem_source, hazard_source

    def sample_elevation(self, atlas: TileAtlas, lon: float, lat: float) -> Optional[float]:
        """Nearest-pixel elevation at a point, or None where no tile is loaded"""
        tile, px, py = point_to_tile_fraction(lon, lat, self.config.working_zoom)
        tile_data = atlas.get(tile)
        if tile_data is None:
            return None
        value = float(tile_data.data[int(py), int(px)])
        return None if math.isnan(value) else value

    def compute_route(self, start: Coordinate, end: Coordinate) -> Tuple[List[Coordinate], dict]:
        """
        Load the tiles around the endpoints, search, and post-process.
        Returns: (path_coordinates, statistics)
        """
        config = self.config
        route_start = time.time()
        endpoint_a, endpoint_b = start.to_lonlat(), end.to_lonlat()

        tiles = identify_needed_tiles(endpoint_a, endpoint_b, config.working_zoom, config.corridor)
        dem_source, hazard_source = self.build_sources()
        sources = [s for s in (dem_source, hazard_source) if s is not None]
        reports = load_sources_concurrently(sources, tiles)

        loaded_tiles = (hazard_source or dem_source).atlas.to_geojson()
        load_stats = {name: report.to_dict() for name, report in reports.items()}

        pathfinder = TiledGridPathfinder(
            elevation=dem_source.atlas,
            hazard=hazard_source.atlas if hazard_source is not None else None,
            cost_model=build_cost_model(config.cost_model, config.pixel_spacing_m, config.hazard_weight),
            zoom=config.working_zoom,
        )
        result = pathfinder.find_path(endpoint_a, endpoint_b)

        if not result.found:
            logger.error(f"[ROUTE] No route found ({result.nodes_expanded} nodes expanded)")
            return [], {
                "error": "No route found",
                "tiles_requested": len(tiles),
                "tile_loads": load_stats,
                "nodes_expanded": result.nodes_expanded,
                "loaded_tiles": loaded_tiles,
            }

        pixels = nodes_to_pixels(result.path)
        simplified = simplify(pixels, config.simplify_epsilon)
        smoothed = smooth(simplified, config.smooth_passes)
        points = pixels_to_points(smoothed, config.working_zoom)
        path = [Coordinate(lat=lat, lon=lon) for lon, lat in points]

        # Elevation profile along the raw search path
        elevations = []
        for node in result.path:
            tile_data = dem_source.atlas.get(node.tile)
            elevations.append(float(tile_data.data[node.py, node.px]))
        elevation_gain = sum(max(b - a, 0.0) for a, b in zip(elevations, elevations[1:]))
        elevation_loss = sum(max(a - b, 0.0) for a, b in zip(elevations, elevations[1:]))

        total_distance = 0
        for i in range(1, len(path)):
            total_distance += self._calculate_distance(path[i-1], path[i])

        path_with_elevation = [
            {
                "lat": coord.lat,
                "lon": coord.lon,
                "elevation": self.sample_elevation(dem_source.atlas, coord.lon, coord.lat),
            }
            for coord in path
        ]

        stats = {
            "distance_km": round(total_distance, 3),
            "direct_distance_m": round(ruler_distance(endpoint_a, endpoint_b), 1),
            "elevation_gain_m": round(elevation_gain),
            "elevation_loss_m": round(elevation_loss),
            "min_elevation_m": round(min(elevations), 1),
            "max_elevation_m": round(max(elevations), 1),
            "path_cost": round(result.cost, 3),
            "raw_nodes": len(result.path),
            "simplified_nodes": len(simplified),
            "waypoints": len(path),
            "nodes_expanded": result.nodes_expanded,
            "tiles_requested": len(tiles),
            "tile_loads": load_stats,
            "search_time_s": round(result.elapsed_s, 3),
            "total_time_s": round(time.time() - route_start, 3),
            "path_with_elevation": path_with_elevation,
            "loaded_tiles": loaded_tiles,
        }
        logger.info(
            f"[ROUTE] {len(path)} waypoints, {stats['distance_km']} km, "
            f"+{stats['elevation_gain_m']} m in {stats['total_time_s']}s"
        )
        return path, stats

    async def find_route(self, start: Coordinate, end: Coordinate) -> Tuple[List[Coordinate], dict]:
        """
        Find the least-cost route between two coordinates
        Returns: (path_coordinates, statistics)
        """
        try:
            if not self.validate_route_request(start, end):
                return [], {
                    "error": f"Invalid route request: coordinates identical or more than "
                             f"{self.max_distance_m / 1000:.1f} km apart"
                }

            # Tile loading blocks on network I/O and the search is CPU bound
            return await asyncio.to_thread(self.compute_route, start, end)

        except Exception as e:
            logger.error(f"Error finding route: {str(e)}")
            return [], {"error": str(e)}
