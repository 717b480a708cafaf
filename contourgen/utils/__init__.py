"""Utility functions for tile pyramid generation."""

from .tile_utils import (
    bbox_tiles,
    expand_pyramid,
    extract_zxy,
    lat_to_tile_y,
    lon_to_tile_x,
    pyramid_size,
    tile_range_for_bounds,
    world_tiles,
)

__all__ = [
    "bbox_tiles",
    "expand_pyramid",
    "extract_zxy",
    "lat_to_tile_y",
    "lon_to_tile_x",
    "pyramid_size",
    "tile_range_for_bounds",
    "world_tiles",
]
