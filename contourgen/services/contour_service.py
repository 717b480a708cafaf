"""Contour vector tile generation from DEM tiles."""

import logging
import math
import threading
from typing import Optional

import mapbox_vector_tile
import numpy as np
from matplotlib.figure import Figure
from shapely.geometry import LineString, MultiLineString

from ..errors import GenerationError, TileCancelledError
from ..models.contour import ContourOptions
from ..models.tile import Tile
from .dem_service import DemService

logger = logging.getLogger(__name__)


def contour_thresholds(grid: np.ndarray, levels: list[float]) -> list[float]:
    """Elevations to trace: every multiple of the smallest interval within the grid's range."""
    if not levels:
        return []
    valid = grid[np.isfinite(grid)]
    if valid.size == 0:
        return []

    interval = min(levels)
    low = math.ceil(float(valid.min()) / interval)
    high = math.floor(float(valid.max()) / interval)
    return [i * interval for i in range(low, high + 1)]


def level_index(elevation: float, levels: list[float]) -> int:
    """Index of the largest interval that divides ``elevation`` (0 if none does)."""
    index = 0
    for i, interval in enumerate(levels):
        ratio = elevation / interval
        if math.isclose(ratio, round(ratio), abs_tol=1e-9):
            index = i
    return index


def crop_to_tile(grid: np.ndarray, tile: Tile, source_tile: Tile) -> tuple[np.ndarray, int, int]:
    """
    Cut the part of an ancestor's DEM grid that covers ``tile``.

    At least two pixels are kept along each axis so contours can still be
    traced when the tile is far below the source zoom.

    Returns:
        (sub-grid, column offset, row offset) within the source grid
    """
    factor = 2 ** (tile.z - source_tile.z)
    height, width = grid.shape
    dx = tile.x - source_tile.x * factor
    dy = tile.y - source_tile.y * factor

    def window(offset: int, size: int) -> tuple[int, int]:
        start = math.floor(offset * size / factor)
        stop = math.ceil((offset + 1) * size / factor)
        if stop - start < 2:
            stop = min(size, start + 2)
            start = max(0, stop - 2)
        return start, stop

    x0, x1 = window(dx, width)
    y0, y1 = window(dy, height)
    return grid[y0:y1, x0:x1], x0, y0


class ContourTileService:
    """Generates contour line vector tiles (MVT) for single tiles."""

    def __init__(self, dem: DemService, options: Optional[ContourOptions] = None):
        """
        Initialize contour tile service.

        Args:
            dem: DEM service the elevation grids are read from
            options: Contour levels and vector tile layout
        """
        self.dem = dem
        self.options = options or ContourOptions()

    def fetch_tile(
        self,
        tile: Tile,
        cancel_event: Optional[threading.Event] = None,
    ) -> bytes:
        """
        Generate the contour tile for ``tile``.

        Tiles deeper than the DEM source's max zoom are cut out of their
        ancestor at the source max zoom.

        Args:
            tile: Output tile
            cancel_event: Cancellation flag, checked between steps

        Returns:
            Encoded Mapbox Vector Tile bytes
        """
        levels = self.options.levels_for_zoom(tile.z)
        if not levels:
            return self.encode(tile, [])

        source_tile = tile.ancestor(min(tile.z, self.dem.max_zoom))
        grid = self.dem.get_elevation(source_tile, cancel_event)
        if cancel_event is not None and cancel_event.is_set():
            raise TileCancelledError(f"Tile {tile.tile_id} was cancelled")

        features = self.contour_features(grid, tile, source_tile, levels)
        logger.debug("Tile %s: %d contour features", tile.tile_id, len(features))
        return self.encode(tile, features)

    def contour_features(
        self,
        grid: np.ndarray,
        tile: Tile,
        source_tile: Tile,
        levels: list[float],
    ) -> list[dict]:
        """Trace contour lines and convert them to tile-extent features."""
        source_height, source_width = grid.shape
        sub_grid, x0, y0 = crop_to_tile(grid, tile, source_tile)
        sub_grid = sub_grid * self.options.multiplier

        thresholds = contour_thresholds(sub_grid, levels)
        if not thresholds:
            return []

        factor = 2 ** (tile.z - source_tile.z)
        dx = tile.x - source_tile.x * factor
        dy = tile.y - source_tile.y * factor
        extent = self.options.extent

        def to_tile_coords(segment: np.ndarray) -> list[tuple[float, float]]:
            # Pixel centers, expressed as a fraction of the output tile
            fx = ((segment[:, 0] + x0 + 0.5) / source_width * factor - dx) * extent
            fy = ((segment[:, 1] + y0 + 0.5) / source_height * factor - dy) * extent
            return list(zip(fx.tolist(), fy.tolist()))

        fig = Figure()
        ax = fig.add_subplot()
        try:
            contour_set = ax.contour(sub_grid, levels=thresholds)
            all_segments = contour_set.allsegs
        except ValueError as e:
            raise GenerationError(f"Contouring failed for tile {tile.tile_id}: {e}") from e

        features = []
        for elevation, segments in zip(thresholds, all_segments):
            lines = [LineString(to_tile_coords(seg)) for seg in segments if len(seg) >= 2]
            if not lines:
                continue
            ele = int(elevation) if float(elevation).is_integer() else elevation
            features.append({
                "geometry": MultiLineString(lines),
                "properties": {
                    self.options.elevation_key: ele,
                    self.options.level_key: level_index(elevation, levels),
                },
            })

        return features

    def encode(self, tile: Tile, features: list[dict]) -> bytes:
        """Encode features as a single-layer vector tile."""
        layer = {"name": self.options.contour_layer, "features": features}
        try:
            return mapbox_vector_tile.encode(
                [layer],
                default_options={"extents": self.options.extent, "y_coord_down": True},
            )
        except Exception as e:
            raise GenerationError(f"Failed to encode tile {tile.tile_id}: {e}") from e
