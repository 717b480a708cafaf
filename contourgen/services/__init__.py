"""Contour pyramid generation services."""

from .batch_service import BatchScheduler, partition_tiles, split_batches
from .contour_service import ContourTileService
from .dem_service import DemService, HttpTileSource, PMTilesSource, decode_dem
from .metadata_service import build_metadata, write_metadata
from .pyramid_service import PyramidGenerator, PyramidRunner, RunResult, write_tile
from .worker_service import InProcessWorker, SubprocessWorker

__all__ = [
    "BatchScheduler",
    "partition_tiles",
    "split_batches",
    "ContourTileService",
    "DemService",
    "HttpTileSource",
    "PMTilesSource",
    "decode_dem",
    "build_metadata",
    "write_metadata",
    "PyramidGenerator",
    "PyramidRunner",
    "RunResult",
    "write_tile",
    "InProcessWorker",
    "SubprocessWorker",
]
