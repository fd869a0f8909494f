"""
Parser for HF2/HFZ heightfield rasters.

HF2 stores a width x height float grid as a row-major sequence of square
tiles. Every tile row is delta encoded: one absolute int32 start value
followed by (cols - 1) signed deltas whose byte width (1, 2 or 4) is chosen
per row. Reconstructed integers are mapped to meters with the per-tile
scale and offset. HFZ is the same payload wrapped in gzip.
"""

import gzip
import struct
import zlib
from dataclasses import dataclass, field
from typing import List

import numpy as np

HF2_MAGIC = "HF2"
GZIP_MAGIC = b"\x1f\x8b"

HEADER_STRUCT = struct.Struct("<4sHIIHffI")
BLOCK_HEADER_SIZE = 24  # 4-byte type, 16-byte name, u32 length
DELTA_DTYPES = {1: np.dtype("<i1"), 2: np.dtype("<i2"), 4: np.dtype("<i4")}


class HF2FormatError(ValueError):
    """Raised when an HF2 payload is malformed or unsupported"""


@dataclass
class HF2Header:
    width: int
    height: int
    tile_size: int
    vert_precision: float
    horiz_scale: float
    ext_header_length: int


@dataclass
class ExtendedHeaderBlock:
    block_type: str
    block_name: str
    block_data: bytes


@dataclass
class HF2Raster:
    header: HF2Header
    extended_header: List[ExtendedHeaderBlock] = field(default_factory=list)
    tiles: List[np.ndarray] = field(default_factory=list)
    grid: np.ndarray = None


class HF2Parser:
    """Streaming reader over an in-memory HF2 buffer"""

    def __init__(self, buffer: bytes):
        self.buffer = memoryview(buffer)
        self.offset = 0
        self.buffer_length = len(self.buffer)

    def check_bounds(self, size: int):
        if self.offset + size > self.buffer_length:
            raise HF2FormatError(
                f"Unexpected end of data: need {size} bytes at offset {self.offset}, "
                f"buffer has {self.buffer_length}"
            )

    def read_uint8(self) -> int:
        self.check_bounds(1)
        value = self.buffer[self.offset]
        self.offset += 1
        return value

    def read_int32(self) -> int:
        self.check_bounds(4)
        (value,) = struct.unpack_from("<i", self.buffer, self.offset)
        self.offset += 4
        return value

    def read_uint32(self) -> int:
        self.check_bounds(4)
        (value,) = struct.unpack_from("<I", self.buffer, self.offset)
        self.offset += 4
        return value

    def read_float32(self) -> float:
        self.check_bounds(4)
        (value,) = struct.unpack_from("<f", self.buffer, self.offset)
        self.offset += 4
        return value

    def read_string(self, length: int) -> str:
        self.check_bounds(length)
        raw = bytes(self.buffer[self.offset:self.offset + length])
        self.offset += length
        return raw.decode("ascii", errors="replace").replace("\x00", "")

    def read_header(self) -> HF2Header:
        self.check_bounds(HEADER_STRUCT.size)
        (magic, version, width, height, tile_size,
         vert_precision, horiz_scale, ext_length) = HEADER_STRUCT.unpack_from(self.buffer, self.offset)
        self.offset += HEADER_STRUCT.size

        if magic.decode("ascii", errors="replace").replace("\x00", "") != HF2_MAGIC:
            raise HF2FormatError(f"Invalid HF2 file id {magic!r}")
        if version != 0:
            raise HF2FormatError(f"Unsupported HF2 version {version}")
        if tile_size == 0:
            raise HF2FormatError("HF2 tile size must be positive")

        return HF2Header(
            width=width,
            height=height,
            tile_size=tile_size,
            vert_precision=vert_precision,
            horiz_scale=horiz_scale,
            ext_header_length=ext_length,
        )

    def read_extended_header(self, length: int) -> List[ExtendedHeaderBlock]:
        end = self.offset + length
        if end > self.buffer_length:
            raise HF2FormatError("Extended header length exceeds file size")

        blocks = []
        while self.offset < end:
            if self.offset + BLOCK_HEADER_SIZE > end:
                raise HF2FormatError("Malformed extended header block")

            block_type = self.read_string(4)
            block_name = self.read_string(16)
            block_length = self.read_uint32()

            if self.offset + block_length > end:
                raise HF2FormatError(
                    f"Extended header block {block_name!r} overruns the header"
                )

            block_data = bytes(self.buffer[self.offset:self.offset + block_length])
            self.offset += block_length
            blocks.append(ExtendedHeaderBlock(block_type, block_name, block_data))

        return blocks

    def read_tile(self, tile_size: int, remaining_width: int, remaining_height: int) -> np.ndarray:
        """Read one tile, clipped to the raster edge, as a float32 (rows, cols) array"""
        vert_scale = self.read_float32()
        vert_offset = self.read_float32()

        rows = min(tile_size, remaining_height)
        cols = min(tile_size, remaining_width)
        values = np.empty((rows, cols), dtype=np.int64)

        for row in range(rows):
            byte_depth = self.read_uint8()
            start_value = self.read_int32()

            dtype = DELTA_DTYPES.get(byte_depth)
            if dtype is None:
                raise HF2FormatError(f"Invalid delta byte depth {byte_depth}")

            count = cols - 1
            self.check_bounds(count * dtype.itemsize)
            deltas = np.frombuffer(self.buffer, dtype=dtype, count=count, offset=self.offset)
            self.offset += count * dtype.itemsize

            values[row, 0] = start_value
            if count:
                values[row, 1:] = start_value + np.cumsum(deltas, dtype=np.int64)

        return (values * np.float64(vert_scale) + np.float64(vert_offset)).astype(np.float32)

    def parse(self) -> HF2Raster:
        header = self.read_header()
        extended_header = []
        if header.ext_header_length > 0:
            extended_header = self.read_extended_header(header.ext_header_length)

        tile_size = header.tile_size
        tiles_per_row = -(-header.width // tile_size)
        tiles_per_col = -(-header.height // tile_size)

        tiles = []
        for row in range(tiles_per_col):
            for col in range(tiles_per_row):
                tiles.append(self.read_tile(
                    tile_size,
                    header.width - col * tile_size,
                    header.height - row * tile_size,
                ))

        grid = stitch_tiles(tiles, header)
        return HF2Raster(header=header, extended_header=extended_header, tiles=tiles, grid=grid)


def stitch_tiles(tiles: List[np.ndarray], header: HF2Header) -> np.ndarray:
    """
    Reassemble decoded tiles into one height x width grid.

    HF2 rows run south to north, so the file grid is flipped to put the
    northernmost row first.
    """
    tile_size = header.tile_size
    tiles_per_row = -(-header.width // tile_size)
    file_grid = np.empty((header.height, header.width), dtype=np.float32)

    for index, tile in enumerate(tiles):
        tile_row, tile_col = divmod(index, tiles_per_row)
        y0 = tile_row * tile_size
        x0 = tile_col * tile_size
        file_grid[y0:y0 + tile.shape[0], x0:x0 + tile.shape[1]] = tile

    return np.flipud(file_grid)


def ungzip(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise HF2FormatError(f"Could not gunzip HFZ payload: {e}") from e


def decode_hf2(data: bytes) -> np.ndarray:
    """Decode a raw HF2 payload into its stitched float32 grid"""
    return HF2Parser(data).parse().grid


def decode_hfz(data: bytes) -> np.ndarray:
    """Decode an HFZ payload, unwrapping gzip when the gzip magic is present"""
    if data[:2] == GZIP_MAGIC:
        data = ungzip(data)
    return decode_hf2(data)
