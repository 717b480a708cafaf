"""Web-Mercator tile math and quad-tree helpers."""

import math
from typing import Optional

from ..models.tile import BoundingBox, Tile, TileRange, check_finite


def lon_to_tile_x(lon: float, zoom: int) -> int:
    """Convert longitude to tile X coordinate (unclamped)."""
    n = 2 ** zoom
    return math.floor((lon + 180) / 360 * n)


def lat_to_tile_y(lat: float, zoom: int) -> int:
    """Convert latitude to tile Y coordinate (unclamped).

    Y grows southwards, so larger latitudes give smaller indices.
    """
    n = 2 ** zoom
    lat_rad = math.radians(lat)
    return math.floor((1 - math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad)) / math.pi) / 2 * n)


def _clamp_index(value: int, zoom: int) -> int:
    return max(0, min(2 ** zoom - 1, value))


def tile_range_for_bounds(bbox: BoundingBox, zoom: int) -> TileRange:
    """
    Get the inclusive tile index range covering a bounding box.

    The south-west corner gives min X and max Y, the north-east corner gives
    max X and min Y. Indices are clamped to the grid so that the eastern
    edge (lon 180) maps to the last column.

    Args:
        bbox: Geographic bounding box
        zoom: Zoom level

    Returns:
        TileRange at ``zoom``
    """
    check_finite(*bbox.to_tuple())
    min_x = _clamp_index(lon_to_tile_x(bbox.min_lon, zoom), zoom)
    max_y = _clamp_index(lat_to_tile_y(bbox.min_lat, zoom), zoom)
    max_x = _clamp_index(lon_to_tile_x(bbox.max_lon, zoom), zoom)
    min_y = _clamp_index(lat_to_tile_y(bbox.max_lat, zoom), zoom)

    return TileRange(zoom=zoom, min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y)


def bbox_tiles(bbox: BoundingBox, zoom: int) -> list[Tile]:
    """All tiles at ``zoom`` covering ``bbox``, row by row."""
    return list(tile_range_for_bounds(bbox, zoom).tiles())


def world_tiles(zoom: int) -> list[Tile]:
    """Every tile at ``zoom``, row by row."""
    n = 2 ** zoom
    return list(TileRange(zoom=zoom, min_x=0, min_y=0, max_x=n - 1, max_y=n - 1).tiles())


def expand_pyramid(root: Tile, max_zoom: int) -> list[Tile]:
    """
    Enumerate a tile and all its descendants down to ``max_zoom``.

    Children at ``max_zoom`` are leaves. Traversal uses an explicit work
    list, so depth is not limited by the interpreter's recursion limit.

    Args:
        root: Root tile (included in the result)
        max_zoom: Deepest zoom level to include

    Returns:
        Tiles sorted by (z, x, y)
    """
    tiles = [root]
    frontier = 0
    while frontier < len(tiles):
        tile = tiles[frontier]
        frontier += 1
        if tile.z >= max_zoom:
            continue
        for child in tile.children():
            if child.z <= max_zoom:
                tiles.append(child)

    tiles.sort()
    return tiles


def pyramid_size(root_zoom: int, max_zoom: int) -> int:
    """Number of tiles in a pyramid rooted at ``root_zoom``."""
    depth = max(0, max_zoom - root_zoom)
    return sum(4 ** d for d in range(depth + 1))


def extract_zxy(url: str) -> Optional[Tile]:
    """
    Parse the trailing ``/{z}/{x}/{y}[.ext]`` of a URL or path.

    Args:
        url: URL or path ending in z/x/y

    Returns:
        The tile, or None when fewer than three usable segments remain or a
        segment is not an integer
    """
    if "/" not in url:
        return None

    segments = url.split("/")
    if len(segments) <= 3:
        return None

    z_segment, x_segment, y_segment = segments[-3:]
    if "." in y_segment:
        y_segment = y_segment[: y_segment.rindex(".")]

    try:
        return Tile(int(z_segment), int(x_segment), int(y_segment))
    except ValueError:
        return None
