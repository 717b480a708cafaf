"""Data models for contour pyramid generation."""

from .contour import (
    DEFAULT_THRESHOLDS,
    ContourLevels,
    ContourOptions,
    Encoding,
    FixedIncrement,
    ThresholdTable,
    contour_levels_from_increment,
    resolve_thresholds,
)
from .job import GenerationSettings, PyramidJob, RunState
from .tile import MERCATOR_MAX_LAT, BoundingBox, Tile, TileRange

__all__ = [
    "DEFAULT_THRESHOLDS",
    "ContourLevels",
    "ContourOptions",
    "Encoding",
    "FixedIncrement",
    "ThresholdTable",
    "contour_levels_from_increment",
    "resolve_thresholds",
    "GenerationSettings",
    "PyramidJob",
    "RunState",
    "MERCATOR_MAX_LAT",
    "BoundingBox",
    "Tile",
    "TileRange",
]
