"""Configuration management for contour pyramid generation."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .models.contour import ThresholdTable


class AppConfig(BaseModel):
    """Application-level configuration."""

    # Directories
    output_dir: Path = Field(
        default=Path("./output"),
        description="Default output directory for tiles and metadata.json",
    )

    # Scheduling defaults
    processes: int = Field(default=8, gt=0, description="Default number of parallel workers")
    batch_size: int = Field(default=25, gt=0, description="Tiles generated concurrently per worker")

    # DEM source settings
    cache_size: int = Field(default=100, gt=0, description="Decoded DEM tiles kept in memory")
    timeout_seconds: float = Field(default=10.0, gt=0, description="DEM tile fetch timeout")

    @classmethod
    def load(cls) -> "AppConfig":
        """Load configuration from environment and defaults."""
        fields = cls.model_fields
        return cls(
            output_dir=Path(os.environ.get("CONTOURGEN_OUTPUT_DIR", str(fields["output_dir"].default))),
            processes=int(os.environ.get("CONTOURGEN_PROCESSES", fields["processes"].default)),
            batch_size=int(os.environ.get("CONTOURGEN_BATCH_SIZE", fields["batch_size"].default)),
            cache_size=int(os.environ.get("CONTOURGEN_CACHE_SIZE", fields["cache_size"].default)),
            timeout_seconds=float(os.environ.get("CONTOURGEN_TIMEOUT", fields["timeout_seconds"].default)),
        )


# Global config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get or create global configuration."""
    global _config
    if _config is None:
        _config = AppConfig.load()
    return _config


def load_threshold_table(path: Path) -> ThresholdTable:
    """
    Load a zoom -> contour interval table from YAML.

    The file is a mapping of zoom levels to an interval or a list of
    intervals, optionally nested under a ``thresholds`` key::

        thresholds:
          0: [1000, 5000]
          10: [50, 250]

    Args:
        path: YAML file path

    Returns:
        ThresholdTable built from the file
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid threshold file {path}: {e}") from e

    if isinstance(data, dict) and "thresholds" in data:
        data = data["thresholds"]
    if not isinstance(data, dict) or not data:
        raise ValueError(f"Threshold file {path} must contain a non-empty zoom -> interval mapping")

    return ThresholdTable(thresholds=data)
