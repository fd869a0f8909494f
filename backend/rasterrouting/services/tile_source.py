"""
Tile Source - retrieves, decodes and caches raster tiles keyed by quadkey
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Union

import numpy as np
import requests
from requests.adapters import HTTPAdapter

from rasterrouting.services.hf2_parser import decode_hf2, decode_hfz
from rasterrouting.services.rgb_dem import RGBCalibration, TERRAIN_RGB, decode_rgb_elevation
from rasterrouting.services.tilebelt import TILE_SIZE, Tile, tile_to_geojson

logger = logging.getLogger(__name__)

ENCODINGS = ("rgb", "hfz", "hf2")

Fetch = Callable[[str], bytes]


class TileSourceConfigError(ValueError):
    """Raised when a tile source is configured with an unsupported codec"""


@dataclass
class TileData:
    """Decoded 256x256 raster for one tile"""
    tile: Tile
    data: np.ndarray

    @property
    def quadkey(self) -> str:
        return self.tile.quadkey


class TileAtlas:
    """
    Quadkey-keyed store of decoded tiles.
    Append-only for the lifetime of a request; no eviction.
    """

    def __init__(self):
        self._tiles: Dict[str, TileData] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(tile: Union[Tile, str]) -> str:
        return tile if isinstance(tile, str) else tile.quadkey

    def get(self, tile: Union[Tile, str]) -> Optional[TileData]:
        return self._tiles.get(self._key(tile))

    def put(self, tile_data: TileData):
        with self._lock:
            self._tiles[tile_data.quadkey] = tile_data

    def __contains__(self, tile: Union[Tile, str]) -> bool:
        return self._key(tile) in self._tiles

    def __len__(self) -> int:
        return len(self._tiles)

    def tiles(self) -> List[Tile]:
        return [tile_data.tile for tile_data in list(self._tiles.values())]

    def to_geojson(self) -> Dict:
        """FeatureCollection of loaded tile outlines"""
        return {
            "type": "FeatureCollection",
            "features": [tile_to_geojson(tile) for tile in self.tiles()],
        }


@dataclass
class TileLoadReport:
    source: str
    requested: int = 0
    loaded: int = 0
    failed: int = 0
    skipped: int = 0
    bytes_loaded: int = 0
    elapsed_s: float = 0.0
    failed_quadkeys: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "source": self.source,
            "requested": self.requested,
            "loaded": self.loaded,
            "failed": self.failed,
            "skipped": self.skipped,
            "megabytes": round(self.bytes_loaded / (1024 * 1024), 3),
            "elapsed_s": round(self.elapsed_s, 3),
        }


def make_http_fetch(session: Optional[requests.Session] = None, timeout: float = 30.0,
                    pool_size: int = 16) -> Fetch:
    """Build the default retrieve-bytes-by-URL primitive on a requests session"""
    if session is None:
        session = requests.Session()
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

    def fetch(url: str) -> bytes:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
        return response.content

    return fetch


class TileSource:
    """
    One raster layer served as a {z}/{x}/{y} tile pyramid.

    Tiles are fetched by a bounded pool of worker threads and decoded with
    the codec selected at construction. Failed tiles are logged and left
    out of the atlas; callers treat a missing entry as "no data".
    """

    def __init__(self, url_template: str, encoding: str = "rgb", concurrency: int = 16,
                 fetch: Fetch = None, name: str = None, atlas: TileAtlas = None,
                 calibration: RGBCalibration = TERRAIN_RGB, timeout: float = 30.0):
        if encoding not in ENCODINGS:
            raise TileSourceConfigError(
                f"Unsupported tile encoding {encoding!r}; expected one of {ENCODINGS}"
            )
        if concurrency < 1:
            raise TileSourceConfigError("concurrency must be at least 1")

        self.url_template = url_template
        self.encoding = encoding
        self.concurrency = concurrency
        self.name = name or encoding
        self.calibration = calibration
        self.atlas = atlas if atlas is not None else TileAtlas()
        self.fetch = fetch or make_http_fetch(timeout=timeout, pool_size=concurrency)

        logger.info(f"TileSource '{self.name}' initialized ({encoding}, concurrency={concurrency})")

    def get_tile_url(self, tile: Tile) -> str:
        return (self.url_template
                .replace("{z}", str(tile.z))
                .replace("{x}", str(tile.x))
                .replace("{y}", str(tile.y)))

    def decode(self, payload: bytes) -> np.ndarray:
        if self.encoding == "rgb":
            grid = decode_rgb_elevation(payload, self.calibration)
        elif self.encoding == "hfz":
            grid = decode_hfz(payload)
        else:
            grid = decode_hf2(payload)

        if grid.shape != (TILE_SIZE, TILE_SIZE):
            raise ValueError(f"Expected a {TILE_SIZE}x{TILE_SIZE} tile, decoded {grid.shape}")

        grid = np.ascontiguousarray(grid, dtype=np.float32)
        grid.setflags(write=False)
        return grid

    def _load_tile(self, url: str, tile: Tile) -> int:
        payload = self.fetch(url)
        grid = self.decode(payload)
        self.atlas.put(TileData(tile=tile, data=grid))
        return len(payload)

    def load_tiles(self, tiles: Iterable[Tile]) -> TileLoadReport:
        """
        Load tiles into the atlas with at most `concurrency` requests in flight.

        Returns once every queued tile has either landed in the atlas or
        failed. Failures never abort the batch and are not retried.
        """
        report = TileLoadReport(source=self.name)
        start_time = time.time()

        work = []
        for tile in tiles:
            report.requested += 1
            if tile in self.atlas:
                report.skipped += 1
                continue
            work.append((self.get_tile_url(tile), tile))

        if work:
            with ThreadPoolExecutor(max_workers=min(self.concurrency, len(work)),
                                    thread_name_prefix=f"{self.name}-loader") as executor:
                futures = {executor.submit(self._load_tile, url, tile): (url, tile) for url, tile in work}
                done, _ = wait(futures)

            for future in done:
                url, tile = futures[future]
                try:
                    report.bytes_loaded += future.result()
                    report.loaded += 1
                except Exception as e:
                    report.failed += 1
                    report.failed_quadkeys.append(tile.quadkey)
                    logger.warning(f"[TILE FAIL] {self.name} tile {tuple(tile)} from {url}: {e}")

        report.elapsed_s = time.time() - start_time
        logger.info(
            f"[TILE LOAD] {self.name}: {report.loaded}/{report.requested} tiles "
            f"({report.bytes_loaded / (1024 * 1024):.2f} MB) in {report.elapsed_s:.2f}s, "
            f"{report.failed} failed, {report.skipped} cached"
        )
        return report


def load_sources_concurrently(sources: List[TileSource], tiles: List[Tile]) -> Dict[str, TileLoadReport]:
    """Load the same tile set from several sources in parallel"""
    if not sources:
        return {}
    with ThreadPoolExecutor(max_workers=len(sources), thread_name_prefix="source") as executor:
        futures = {source.name: executor.submit(source.load_tiles, tiles) for source in sources}
    return {name: future.result() for name, future in futures.items()}
