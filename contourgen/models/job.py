"""Pyramid job configuration."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from .contour import ContourOptions, Encoding
from .tile import Tile


class RunState(str, Enum):
    """Lifecycle of a pyramid run."""

    IDLE = "idle"
    BUILDING_TILE_SET = "building_tile_set"
    DISPATCHING = "dispatching"
    AWAITING_WORKERS = "awaiting_workers"
    WRITING_METADATA = "writing_metadata"
    DONE = "done"
    ERRORED = "errored"


class GenerationSettings(BaseModel):
    """Options shared by every root job of a run."""

    dem_url: str = Field(..., min_length=1, description="DEM tile URL template or pmtiles:// path")
    encoding: Encoding = Field(default=Encoding.MAPBOX, description="DEM RGB encoding")
    source_max_zoom: int = Field(default=8, ge=0, description="Maximum zoom of the DEM source")
    output_max_zoom: int = Field(default=8, ge=0, description="Deepest zoom of the output pyramid")
    output_dir: Path = Field(default=Path("./output"), description="Root directory for z/x/y.pbf files")
    batch_size: int = Field(default=25, gt=0, description="Tiles generated concurrently per worker")
    contour: ContourOptions = Field(default_factory=ContourOptions)

    model_config = {"frozen": True}


class PyramidJob(BaseModel):
    """One root tile and everything needed to generate its pyramid."""

    root: Tile
    settings: GenerationSettings

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_zoom(self) -> "PyramidJob":
        if self.root.z > self.settings.output_max_zoom:
            raise ValueError(
                f"Root zoom {self.root.z} is deeper than output max zoom "
                f"{self.settings.output_max_zoom}"
            )
        return self

    @property
    def label(self) -> str:
        """Short identity used in log prefixes, e.g. '5-3-2'."""
        return f"{self.root.z}-{self.root.x}-{self.root.y}"
