"""
Tile math for Web-Mercator quad-tree pyramids (256 pixel tiles).

Tile addressing, bounds, quadkeys and the tree walk come from mercantile;
this module wraps its tiles in a validated `Tile` and adds the sub-tile
pixel offsets the search engine works in.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Tuple

import mercantile

TILE_SIZE = 256
MAX_ZOOM = 28

D2R = math.pi / 180.0

# west, south, east, north in degrees
BBox = Tuple[float, float, float, float]


@dataclass(frozen=True)
class Tile:
    """A single quad-tree cell at zoom z"""
    x: int
    y: int
    z: int

    def __post_init__(self):
        if self.z < 0 or not (0 <= self.x < 1 << self.z and 0 <= self.y < 1 << self.z):
            raise ValueError(f"Tile ({self.x}, {self.y}, {self.z}) is outside the z{self.z} grid")

    @classmethod
    def from_mercantile(cls, tile: mercantile.Tile) -> "Tile":
        return cls(int(tile.x), int(tile.y), int(tile.z))

    @property
    def quadkey(self) -> str:
        return tile_to_quadkey(self)

    def __iter__(self):
        return iter((self.x, self.y, self.z))


def point_to_fractional_tile(lon: float, lat: float, zoom: int) -> Tuple[float, float]:
    """Global fractional tile coordinates of a point at the given zoom"""
    sin = math.sin(lat * D2R)
    z2 = 2 ** zoom
    x = z2 * (lon / 360.0 + 0.5)
    y = z2 * (0.5 - 0.25 * math.log((1 + sin) / (1 - sin)) / math.pi)
    return x, y


def point_to_tile(lon: float, lat: float, zoom: int) -> Tile:
    """Tile containing a point, clamped to the grid at the world edges"""
    return Tile.from_mercantile(mercantile.tile(lon, lat, zoom))


def point_to_tile_fraction(lon: float, lat: float, zoom: int) -> Tuple[Tile, float, float]:
    """
    Tile containing a point plus the sub-tile pixel offset.

    Returns:
        (tile, px, py) where px and py lie in [0, 256)
    """
    tile = point_to_tile(lon, lat, zoom)
    x, y = point_to_fractional_tile(lon, lat, zoom)
    px = min(max((x - tile.x) * TILE_SIZE, 0.0), math.nextafter(TILE_SIZE, 0))
    py = min(max((y - tile.y) * TILE_SIZE, 0.0), math.nextafter(TILE_SIZE, 0))
    return tile, px, py


def frac_tile_to_point(x: float, y: float, zoom: int) -> Tuple[float, float]:
    """Inverse of point_to_fractional_tile: (lon, lat) of fractional tile coordinates"""
    corner = mercantile.ul(x, y, zoom)
    return corner.lng, corner.lat


def tile_to_bbox(tile: Tile) -> BBox:
    """Geographic bounds of a tile as (west, south, east, north)"""
    bounds = mercantile.bounds(tile.x, tile.y, tile.z)
    return bounds.west, bounds.south, bounds.east, bounds.north


def bbox_center(bbox: BBox) -> Tuple[float, float]:
    return (bbox[0] + bbox[2]) / 2.0, (bbox[1] + bbox[3]) / 2.0


def tile_to_quadkey(tile: Tile) -> str:
    return mercantile.quadkey(tile.x, tile.y, tile.z)


def quadkey_to_tile(quadkey: str) -> Tile:
    try:
        return Tile.from_mercantile(mercantile.quadkey_to_tile(quadkey))
    except mercantile.QuadKeyError as e:
        raise ValueError(f"Invalid quadkey {quadkey!r}: {e}") from None


def get_children(tile: Tile) -> List[Tile]:
    if tile.z >= MAX_ZOOM:
        raise ValueError(f"Tiles at z{MAX_ZOOM} have no children")
    return [Tile.from_mercantile(child) for child in mercantile.children(tile.x, tile.y, tile.z)]


def get_parent(tile: Tile) -> Tile:
    if tile.z == 0:
        raise ValueError("The root tile has no parent")
    return Tile.from_mercantile(mercantile.parent(tile.x, tile.y, tile.z))


def bbox_to_tile(bbox: BBox) -> Tile:
    """Smallest tile that fully encloses the bounding box"""
    west, east = min(bbox[0], bbox[2]), max(bbox[0], bbox[2])
    south, north = min(bbox[1], bbox[3]), max(bbox[1], bbox[3])
    return Tile.from_mercantile(mercantile.bounding_tile(west, south, east, north))


def tile_to_geojson(tile: Tile) -> Dict:
    """Polygon feature outlining a tile, for display of loaded coverage"""
    return mercantile.feature(
        (tile.x, tile.y, tile.z),
        fid=tile.quadkey,
        props={"quadkey": tile.quadkey, "x": tile.x, "y": tile.y, "z": tile.z},
    )
