"""
Least-cost path search over a lazily loaded, tiled pixel grid.

The grid is the union of 256x256 pixel nodes of every tile in the atlases.
Each node has 8 chessboard neighbors; a neighbor offset that leaves
[0, 255] wraps into the adjacent tile, so tile boundaries need no special
handling. The queue is ordered by accumulated cost plus a heuristic that is
zero by default, which makes this a uniform-cost (Dijkstra) search.
"""

import heapq
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from rasterrouting.services.tile_source import TileAtlas
from rasterrouting.services.tilebelt import TILE_SIZE, Tile, point_to_tile_fraction

logger = logging.getLogger(__name__)

# (dx, dy) in a fixed symmetric order: the opposite of index i is 7 - i
NEIGHBOR_OFFSETS = [
    (-1, -1), (0, -1), (1, -1),
    (-1, 0),           (1, 0),
    (-1, 1),  (0, 1),  (1, 1),
]

NO_PREDECESSOR = -1

LonLat = Tuple[float, float]
Heuristic = Callable[[int, int, int, int, int, int, int, int], float]


class SearchStatus(str, Enum):
    UNSTARTED = "unstarted"
    RUNNING = "running"
    FOUND = "found"
    EXHAUSTED = "exhausted"


@dataclass
class PathNode:
    px: int
    py: int
    tile: Tile
    cost: float = 0.0
    heuristic: float = 0.0

    @property
    def global_pixel(self) -> Tuple[int, int]:
        return self.tile.x * TILE_SIZE + self.px, self.tile.y * TILE_SIZE + self.py


@dataclass
class SearchResult:
    status: SearchStatus
    path: List[PathNode] = field(default_factory=list)
    cost: Optional[float] = None
    nodes_expanded: int = 0
    tiles_touched: int = 0
    elapsed_s: float = 0.0

    @property
    def found(self) -> bool:
        return self.status == SearchStatus.FOUND


class CostModel:
    """Cost of stepping between two neighboring pixels"""

    def edge_cost(self, h1: float, h2: float, dx: int, dy: int, risk: float) -> float:
        raise NotImplementedError


class ToblerHazardCost(CostModel):
    """
    Tobler-derived walking effort plus a weighted hazard penalty.

    slope = dh / horizontal distance; effort = 0.6 * e^(3.5 * |slope + 0.05|),
    which is cheapest on a gentle descent and asymmetric uphill vs downhill.
    """

    def __init__(self, pixel_spacing_m: float = 6.515, hazard_weight: float = 25.0):
        self.pixel_spacing_m = pixel_spacing_m
        self.hazard_weight = hazard_weight

    def edge_cost(self, h1, h2, dx, dy, risk):
        horizontal = math.hypot(dx, dy) * self.pixel_spacing_m
        slope = (h2 - h1) / horizontal
        return 0.6 * math.exp(3.5 * abs(slope + 0.05)) + risk * self.hazard_weight


class ElevationDeltaCost(CostModel):
    """1 + |dh| per step; ignores hazard"""

    def edge_cost(self, h1, h2, dx, dy, risk):
        return 1.0 + abs(h2 - h1)


def zero_heuristic(tx, ty, px, py, goal_tx, goal_ty, goal_px, goal_py) -> float:
    return 0.0


class _TileSearchState:
    """Per-tile search grids, allocated the first time the search touches a tile"""

    __slots__ = ("tile", "visited", "cost", "came_from", "elevation", "hazard", "passable")

    def __init__(self, tile: Tile, elevation: Optional[np.ndarray], hazard: Optional[np.ndarray],
                 hazard_required: bool):
        self.tile = tile
        self.visited = np.zeros((TILE_SIZE, TILE_SIZE), dtype=bool)
        self.cost = np.full((TILE_SIZE, TILE_SIZE), np.inf, dtype=np.float64)
        self.came_from = np.full((TILE_SIZE, TILE_SIZE), NO_PREDECESSOR, dtype=np.int8)
        self.elevation = elevation
        self.hazard = hazard
        self.passable = elevation is not None and (hazard is not None or not hazard_required)


class TiledGridPathfinder:
    """
    Uniform-cost search across tiles held in request-scoped atlases.

    Args:
        elevation: atlas of elevation tiles (required layer)
        hazard: optional atlas of hazard tiles; when given it is a required
            layer and its samples feed the cost model's risk term
        cost_model: edge cost strategy (defaults to ToblerHazardCost)
        zoom: working zoom all searches run at
        heuristic: priority term added to accumulated cost (zero by default)
    """

    def __init__(self, elevation: TileAtlas, hazard: TileAtlas = None, cost_model: CostModel = None,
                 zoom: int = 15, heuristic: Heuristic = zero_heuristic):
        self.elevation = elevation
        self.hazard = hazard
        self.cost_model = cost_model or ToblerHazardCost()
        self.zoom = zoom
        self.heuristic = heuristic
        self.status = SearchStatus.UNSTARTED

    def _touch(self, states: Dict[Tuple[int, int], _TileSearchState], tx: int, ty: int) -> _TileSearchState:
        state = states.get((tx, ty))
        if state is None:
            tile = Tile(tx, ty, self.zoom)
            dem = self.elevation.get(tile)
            risk = self.hazard.get(tile) if self.hazard is not None else None
            state = _TileSearchState(
                tile,
                dem.data if dem is not None else None,
                risk.data if risk is not None else None,
                hazard_required=self.hazard is not None,
            )
            states[(tx, ty)] = state
        return state

    def _step(self, tx: int, ty: int, px: int, py: int, dx: int, dy: int) -> Optional[Tuple[int, int, int, int]]:
        """Apply a pixel offset, wrapping into the adjacent tile at an edge"""
        nx, ny = px + dx, py + dy
        if nx < 0:
            tx, nx = tx - 1, nx + TILE_SIZE
        elif nx >= TILE_SIZE:
            tx, nx = tx + 1, nx - TILE_SIZE
        if ny < 0:
            ty, ny = ty - 1, ny + TILE_SIZE
        elif ny >= TILE_SIZE:
            ty, ny = ty + 1, ny - TILE_SIZE

        limit = 1 << self.zoom
        if not (0 <= tx < limit and 0 <= ty < limit):
            return None
        return tx, ty, nx, ny

    def neighbors(self, node: PathNode) -> List[Optional[PathNode]]:
        """The 8 neighbors of a node in NEIGHBOR_OFFSETS order (None past the world edge)"""
        result = []
        for dx, dy in NEIGHBOR_OFFSETS:
            stepped = self._step(node.tile.x, node.tile.y, node.px, node.py, dx, dy)
            if stepped is None:
                result.append(None)
                continue
            tx, ty, nx, ny = stepped
            result.append(PathNode(nx, ny, Tile(tx, ty, self.zoom)))
        return result

    def discretize(self, point: LonLat) -> Tuple[Tile, int, int]:
        tile, px, py = point_to_tile_fraction(point[0], point[1], self.zoom)
        return tile, int(px), int(py)

    def find_path(self, start: LonLat, end: LonLat) -> SearchResult:
        """
        Search for the least-cost path between two (lon, lat) points.

        Returns a FOUND result with the origin-to-destination node list, or an
        EXHAUSTED result with an empty path when the queue drains first.
        """
        self.status = SearchStatus.RUNNING
        start_time = time.time()

        start_tile, start_px, start_py = self.discretize(start)
        goal_tile, goal_px, goal_py = self.discretize(end)
        origin = (start_tile.x, start_tile.y, start_px, start_py)
        goal = (goal_tile.x, goal_tile.y, goal_px, goal_py)

        logger.info(f"[SEARCH] Start {origin} -> goal {goal} at z{self.zoom}")

        states: Dict[Tuple[int, int], _TileSearchState] = {}
        cost_model = self.cost_model
        heuristic = self.heuristic

        # (priority, tie_breaker, tx, ty, px, py, accumulated_cost)
        tie_breaker = 0
        open_set = [(0.0, tie_breaker, start_tile.x, start_tile.y, start_px, start_py, 0.0)]
        nodes_expanded = 0

        while open_set:
            _, _, tx, ty, px, py, current_cost = heapq.heappop(open_set)
            state = self._touch(states, tx, ty)

            # Stale duplicate of a node that was already settled
            if state.visited[py, px]:
                continue
            state.visited[py, px] = True
            state.cost[py, px] = current_cost
            nodes_expanded += 1

            if (tx, ty, px, py) == goal:
                path = self._reconstruct(states, origin, goal)
                self.status = SearchStatus.FOUND
                elapsed = time.time() - start_time
                logger.info(
                    f"[SEARCH] Path found: {len(path)} nodes, cost {current_cost:.2f}, "
                    f"{nodes_expanded} expanded over {len(states)} tiles in {elapsed:.2f}s"
                )
                return SearchResult(
                    status=SearchStatus.FOUND,
                    path=path,
                    cost=current_cost,
                    nodes_expanded=nodes_expanded,
                    tiles_touched=len(states),
                    elapsed_s=elapsed,
                )

            if not state.passable:
                continue
            current_height = float(state.elevation[py, px])

            for index, (dx, dy) in enumerate(NEIGHBOR_OFFSETS):
                stepped = self._step(tx, ty, px, py, dx, dy)
                if stepped is None:
                    continue
                ntx, nty, npx, npy = stepped
                neighbor_state = state if (ntx, nty) == (tx, ty) else self._touch(states, ntx, nty)

                if neighbor_state.visited[npy, npx]:
                    continue
                # Missing data in any required layer makes the neighbor impassable
                if not neighbor_state.passable:
                    continue

                neighbor_height = float(neighbor_state.elevation[npy, npx])
                risk = float(neighbor_state.hazard[npy, npx]) if neighbor_state.hazard is not None else 0.0
                new_cost = current_cost + cost_model.edge_cost(current_height, neighbor_height, dx, dy, risk)

                if new_cost < neighbor_state.cost[npy, npx]:
                    neighbor_state.cost[npy, npx] = new_cost
                    neighbor_state.came_from[npy, npx] = index
                    tie_breaker += 1
                    priority = new_cost + heuristic(ntx, nty, npx, npy, *goal)
                    heapq.heappush(open_set, (priority, tie_breaker, ntx, nty, npx, npy, new_cost))

        self.status = SearchStatus.EXHAUSTED
        elapsed = time.time() - start_time
        logger.info(
            f"[SEARCH] No path found after expanding {nodes_expanded} nodes "
            f"over {len(states)} tiles in {elapsed:.2f}s"
        )
        return SearchResult(
            status=SearchStatus.EXHAUSTED,
            nodes_expanded=nodes_expanded,
            tiles_touched=len(states),
            elapsed_s=elapsed,
        )

    def _reconstruct(self, states: Dict[Tuple[int, int], _TileSearchState],
                     origin: Tuple[int, int, int, int], goal: Tuple[int, int, int, int]) -> List[PathNode]:
        """Walk stored arrival directions back from the goal, stepping to neighbor 7 - i"""
        path = []
        tx, ty, px, py = goal
        while (tx, ty, px, py) != origin:
            state = states[(tx, ty)]
            index = int(state.came_from[py, px])
            if index == NO_PREDECESSOR:
                raise RuntimeError(f"Broken predecessor chain at {(tx, ty, px, py)}")
            path.append(PathNode(px, py, state.tile, cost=float(state.cost[py, px])))
            dx, dy = NEIGHBOR_OFFSETS[7 - index]
            tx, ty, px, py = self._step(tx, ty, px, py, dx, dy)

        path.append(PathNode(px, py, states[(tx, ty)].tile, cost=0.0))
        path.reverse()
        return path


def build_cost_model(name: str, pixel_spacing_m: float = 6.515, hazard_weight: float = 25.0) -> CostModel:
    if name == "tobler":
        return ToblerHazardCost(pixel_spacing_m=pixel_spacing_m, hazard_weight=hazard_weight)
    if name == "elevation":
        return ElevationDeltaCost()
    raise ValueError(f"Unknown cost model {name!r}")
