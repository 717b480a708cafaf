"""Contour level configuration and per-zoom threshold resolution."""

from enum import Enum
from typing import Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field, field_validator

ThresholdValue = Union[float, Sequence[float]]

# Contour intervals (meters) inherited downward from the nearest zoom at or below
DEFAULT_THRESHOLDS: dict[int, list[float]] = {
    1: [600, 3000],
    4: [300, 1500],
    8: [150, 750],
    9: [80, 400],
    10: [40, 200],
    11: [20, 100],
    12: [10, 50],
    14: [5, 25],
    16: [1, 5],
}


class Encoding(str, Enum):
    """RGB elevation encoding of the source DEM tiles."""

    MAPBOX = "mapbox"
    TERRARIUM = "terrarium"


def _as_levels(value: ThresholdValue) -> list[float]:
    if isinstance(value, (int, float)):
        return [float(value)]
    return [float(v) for v in value]


def resolve_thresholds(table: Mapping[int, ThresholdValue], zoom: int) -> list[float]:
    """Resolve a sparse zoom -> levels table for one zoom level.

    Picks the entry with the largest key that is <= ``zoom``. Zoom levels
    below every key resolve to an empty list.

    Args:
        table: Mapping from zoom level to a level or list of levels
        zoom: Zoom level being generated

    Returns:
        Levels in effect at ``zoom``
    """
    candidates = [int(k) for k in table if int(k) <= zoom]
    if not candidates:
        return []
    best = max(candidates)
    for key, value in table.items():
        if int(key) == best:
            return _as_levels(value)
    return []


class FixedIncrement(BaseModel):
    """A single contour interval used at every zoom."""

    kind: Literal["increment"] = "increment"
    value: float = Field(..., gt=0, description="Contour interval")

    model_config = {"frozen": True}

    def levels_for_zoom(self, zoom: int) -> list[float]:
        return [self.value]


class ThresholdTable(BaseModel):
    """Per-zoom contour intervals resolved by floor lookup."""

    kind: Literal["thresholds"] = "thresholds"
    thresholds: dict[int, list[float]] = Field(
        default_factory=lambda: {z: list(v) for z, v in DEFAULT_THRESHOLDS.items()},
        description="Zoom level -> contour intervals",
    )

    model_config = {"frozen": True}

    @field_validator("thresholds", mode="before")
    @classmethod
    def _normalize_values(cls, value):
        if isinstance(value, Mapping):
            return {int(k): _as_levels(v) for k, v in value.items()}
        return value

    @field_validator("thresholds")
    @classmethod
    def _check_positive(cls, value: dict[int, list[float]]) -> dict[int, list[float]]:
        for zoom, levels in value.items():
            if zoom < 0:
                raise ValueError(f"Threshold zoom must be >= 0, got {zoom}")
            if any(level <= 0 for level in levels):
                raise ValueError(f"Contour intervals must be positive (zoom {zoom}: {levels})")
        return value

    def levels_for_zoom(self, zoom: int) -> list[float]:
        return resolve_thresholds(self.thresholds, zoom)


ContourLevels = Union[FixedIncrement, ThresholdTable]


def contour_levels_from_increment(
    increment: float,
    thresholds: Optional[Mapping[int, ThresholdValue]] = None,
) -> ContourLevels:
    """Select the level configuration once per job.

    A non-zero increment wins; zero means "use the threshold table".
    """
    if increment:
        return FixedIncrement(value=increment)
    if thresholds is not None:
        return ThresholdTable(thresholds=thresholds)
    return ThresholdTable()


class ContourOptions(BaseModel):
    """Shape of the generated contour vector tiles."""

    levels: ContourLevels = Field(default_factory=ThresholdTable, discriminator="kind")
    multiplier: float = Field(default=1.0, gt=0, description="Factor applied to elevations")
    contour_layer: str = Field(default="contours", description="Vector tile layer name")
    elevation_key: str = Field(default="ele", description="Feature property for the elevation")
    level_key: str = Field(default="level", description="Feature property for the level index")
    extent: int = Field(default=4096, gt=0, description="Vector tile extent")

    model_config = {"frozen": True}

    def levels_for_zoom(self, zoom: int) -> list[float]:
        """Contour intervals in effect at ``zoom``."""
        return self.levels.levels_for_zoom(zoom)
