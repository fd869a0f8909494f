"""
GPX file generator for computed routes
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple

import gpxpy
import gpxpy.gpx


class GPXGenerator:
    """Generate GPX files from route data"""

    @staticmethod
    def create_gpx(
        path_with_elevation: List[Dict[str, Any]],
        route_name: str = "Raster Route",
        route_description: str = "",
        stats: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Create a GPX track from route points with optional elevation

        Args:
            path_with_elevation: List of points with lat, lon and elevation (may be None)
            route_name: Name for the track
            route_description: Description of the route
            stats: Optional statistics, summarised into the description when given

        Returns:
            GPX XML string
        """
        gpx = gpxpy.gpx.GPX()
        gpx.creator = "Raster Router"
        gpx.name = route_name
        gpx.description = route_description or GPXGenerator.describe(stats) or \
            f"Route with {len(path_with_elevation)} points"

        track = gpxpy.gpx.GPXTrack(name=route_name)
        track.type = "Hiking"
        gpx.tracks.append(track)

        segment = gpxpy.gpx.GPXTrackSegment()
        track.segments.append(segment)

        for point in path_with_elevation:
            elevation = point.get("elevation")
            segment.points.append(gpxpy.gpx.GPXTrackPoint(
                latitude=point["lat"],
                longitude=point["lon"],
                elevation=round(elevation, 1) if elevation is not None else None,
            ))

        return gpx.to_xml()

    @staticmethod
    def create_simple_gpx(path: Sequence[Tuple[float, float]], route_name: str = "Raster Route") -> str:
        """Create a GPX track from (lon, lat) tuples"""
        points = [{"lat": lat, "lon": lon, "elevation": None} for lon, lat in path]
        return GPXGenerator.create_gpx(points, route_name=route_name)

    @staticmethod
    def describe(stats: Optional[Dict[str, Any]]) -> str:
        if not stats:
            return ""
        parts = []
        if 'distance_km' in stats:
            parts.append(f"Distance: {stats['distance_km']:.2f} km")
        if 'elevation_gain_m' in stats:
            parts.append(f"Elevation gain: {stats['elevation_gain_m']} m")
        if 'elevation_loss_m' in stats:
            parts.append(f"Elevation loss: {stats['elevation_loss_m']} m")
        if 'path_cost' in stats:
            parts.append(f"Cost: {stats['path_cost']:.1f}")
        return " | ".join(parts)
