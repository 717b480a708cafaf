"""Tileset metadata (metadata.json) for generated contour pyramids."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..models.contour import ContourOptions

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"

# Output always advertises the whole Web-Mercator world
WORLD_BOUNDS = "-180.000000,-85.051129,180.000000,85.051129"


def build_metadata(
    min_zoom: int,
    max_zoom: int,
    options: Optional[ContourOptions] = None,
    generated_at: Optional[datetime] = None,
) -> dict[str, str]:
    """
    Build the tileset metadata record.

    Args:
        min_zoom: Shallowest zoom of the output
        max_zoom: Deepest zoom of the output
        options: Contour options (layer and field names)
        generated_at: Generation time, defaults to now (UTC)

    Returns:
        Metadata with string values, vector layer schema JSON-encoded
    """
    options = options or ContourOptions()
    generated_at = generated_at or datetime.now(timezone.utc)

    vector_layers = {
        "vector_layers": [
            {
                "id": options.contour_layer,
                "fields": {
                    options.elevation_key: "Number",
                    options.level_key: "Number",
                },
                "minzoom": min_zoom,
                "maxzoom": max_zoom,
            }
        ]
    }

    return {
        "name": f"Contour_z{min_zoom}_Z{max_zoom}",
        "type": "baselayer",
        "description": generated_at.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "version": "1",
        "format": "pbf",
        "minzoom": str(min_zoom),
        "maxzoom": str(max_zoom),
        "json": json.dumps(vector_layers),
        "bounds": WORLD_BOUNDS,
    }


def write_metadata(
    output_dir: Path,
    min_zoom: int,
    max_zoom: int,
    options: Optional[ContourOptions] = None,
) -> Path:
    """Write metadata.json into ``output_dir`` and return its path."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    metadata_path = output_dir / METADATA_FILENAME
    metadata = build_metadata(min_zoom, max_zoom, options)
    metadata_path.write_text(json.dumps(metadata, indent=2))

    logger.info("%s has been created in %s", METADATA_FILENAME, output_dir)
    return metadata_path
