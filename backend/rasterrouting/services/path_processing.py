"""
Turn raw pixel paths into display-ready polylines: line simplification,
corner-cutting smoothing and pixel to lon/lat conversion.
"""

from typing import List, Sequence, Tuple

from shapely.geometry import LineString

from rasterrouting.services.pathfinding import PathNode
from rasterrouting.services.tilebelt import TILE_SIZE, frac_tile_to_point

Point = Tuple[float, float]


def simplify(points: Sequence[Point], epsilon: float) -> List[Point]:
    """
    Ramer-Douglas-Peucker simplification via GEOS.

    A span is split at its farthest interior point while that distance
    exceeds epsilon; otherwise it collapses to its endpoints. Topology is
    not preserved, so self-crossing paths simplify the same as any other.
    """
    points = list(points)
    if len(points) < 3:
        return points
    line = LineString(points).simplify(epsilon, preserve_topology=False)
    return [(x, y) for x, y in line.coords]


def smooth(points: Sequence[Point], passes: int = 3) -> List[Point]:
    """
    Chaikin corner cutting. Each pass replaces every segment with points at
    1/4 and 3/4 along it; the input's first and last points are kept.
    """
    points = list(points)
    if len(points) < 2 or passes <= 0:
        return points

    first, last = points[0], points[-1]
    current = points
    for _ in range(passes):
        cut = []
        for (x0, y0), (x1, y1) in zip(current, current[1:]):
            cut.append((0.75 * x0 + 0.25 * x1, 0.75 * y0 + 0.25 * y1))
            cut.append((0.25 * x0 + 0.75 * x1, 0.25 * y0 + 0.75 * y1))
        current = cut

    return [first] + current + [last]


def nodes_to_pixels(path: Sequence[PathNode]) -> List[Point]:
    """Global pixel coordinates of node centers at the search zoom"""
    return [(gx + 0.5, gy + 0.5) for gx, gy in (node.global_pixel for node in path)]


def pixels_to_points(pixels: Sequence[Point], zoom: int) -> List[Point]:
    """Global pixel coordinates to (lon, lat)"""
    return [frac_tile_to_point(x / TILE_SIZE, y / TILE_SIZE, zoom) for x, y in pixels]
