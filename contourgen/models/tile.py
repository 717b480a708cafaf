"""Tile and bounding box models."""

import math
from dataclasses import dataclass
from typing import Iterator

from pydantic import BaseModel, Field, model_validator

from ..errors import CoordinateError

# Latitude limit of the spherical Web-Mercator projection
MERCATOR_MAX_LAT = 85.0511


@dataclass(frozen=True, order=True)
class Tile:
    """A (zoom, column, row) cell of the quad-tree tiling of the world.

    Field order makes tiles sort by zoom, then x, then y.
    """

    z: int
    x: int
    y: int

    def __post_init__(self):
        if self.z < 0:
            raise CoordinateError(f"Zoom must be >= 0, got {self.z}")
        n = 2 ** self.z
        if not (0 <= self.x < n and 0 <= self.y < n):
            raise CoordinateError(
                f"Tile {self.z}/{self.x}/{self.y} is outside the {n}x{n} grid at zoom {self.z}"
            )

    @property
    def tile_id(self) -> str:
        """Path-style identifier, e.g. '5/3/2'."""
        return f"{self.z}/{self.x}/{self.y}"

    def children(self) -> tuple["Tile", "Tile", "Tile", "Tile"]:
        """Return the four tiles one zoom level below."""
        z, x, y = self.z + 1, self.x * 2, self.y * 2
        return (
            Tile(z, x, y),
            Tile(z, x + 1, y),
            Tile(z, x, y + 1),
            Tile(z, x + 1, y + 1),
        )

    def parent(self) -> "Tile":
        """Return the tile one zoom level above."""
        if self.z == 0:
            raise CoordinateError("Tile 0/0/0 has no parent")
        return Tile(self.z - 1, self.x // 2, self.y // 2)

    def ancestor(self, zoom: int) -> "Tile":
        """Return the tile at ``zoom`` that contains this one."""
        if zoom > self.z:
            raise CoordinateError(f"Ancestor zoom {zoom} is below tile zoom {self.z}")
        shift = self.z - zoom
        return Tile(zoom, self.x >> shift, self.y >> shift)


class BoundingBox(BaseModel):
    """Geographic bounding box in degrees (lon/lat, Web-Mercator extent)."""

    min_lon: float = Field(..., ge=-180, le=180, description="Western longitude boundary")
    min_lat: float = Field(
        ..., ge=-MERCATOR_MAX_LAT, le=MERCATOR_MAX_LAT, description="Southern latitude boundary"
    )
    max_lon: float = Field(..., ge=-180, le=180, description="Eastern longitude boundary")
    max_lat: float = Field(
        ..., ge=-MERCATOR_MAX_LAT, le=MERCATOR_MAX_LAT, description="Northern latitude boundary"
    )

    model_config = {"frozen": True, "allow_inf_nan": False}

    @model_validator(mode="after")
    def _check_ordering(self) -> "BoundingBox":
        if self.min_lon > self.max_lon:
            raise ValueError(f"min_lon ({self.min_lon}) must not exceed max_lon ({self.max_lon})")
        if self.min_lat > self.max_lat:
            raise ValueError(f"min_lat ({self.min_lat}) must not exceed max_lat ({self.max_lat})")
        return self

    @classmethod
    def from_tuple(cls, bounds: tuple[float, float, float, float]) -> "BoundingBox":
        """Build from a (min_lon, min_lat, max_lon, max_lat) tuple."""
        min_lon, min_lat, max_lon, max_lat = bounds
        return cls(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def to_tuple(self) -> tuple[float, float, float, float]:
        """Return as (min_lon, min_lat, max_lon, max_lat)."""
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    def to_bounds_string(self) -> str:
        """Return the comma-separated bounds string used in tileset metadata."""
        return ",".join(f"{v:.6f}" for v in self.to_tuple())


@dataclass(frozen=True)
class TileRange:
    """Inclusive range of tile indices at a single zoom level."""

    zoom: int
    min_x: int
    min_y: int
    max_x: int
    max_y: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def count(self) -> int:
        """Number of tiles in the range."""
        return self.width * self.height

    def tiles(self) -> Iterator[Tile]:
        """Iterate the range row by row (y outer, x inner)."""
        for y in range(self.min_y, self.max_y + 1):
            for x in range(self.min_x, self.max_x + 1):
                yield Tile(self.zoom, x, y)


def check_finite(*values: float) -> None:
    """Raise CoordinateError if any value is NaN or infinite."""
    for value in values:
        if not math.isfinite(value):
            raise CoordinateError(f"Coordinate must be finite, got {value}")
