"""Pyramid generation and run orchestration.

A run turns a set of root tiles into one pyramid job per root:
1. Build the root tile set (single tile, whole zoom level, or bounding box)
2. Partition the jobs round-robin over the configured number of workers
3. Each worker generates its pyramids one after another, batching tiles
4. Write metadata.json once every job succeeded
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from ..models.job import GenerationSettings, PyramidJob, RunState
from ..models.tile import BoundingBox, Tile
from ..utils.tile_utils import bbox_tiles, expand_pyramid, world_tiles
from .batch_service import BatchScheduler, partition_tiles
from .metadata_service import write_metadata

logger = logging.getLogger(__name__)

TILE_EXTENSION = "pbf"

# progress_callback(completed_roots, total_roots)
ProgressCallback = Callable[[int, int], None]


class TileService(Protocol):
    """Anything that can produce the encoded bytes of one tile."""

    def fetch_tile(self, tile: Tile, cancel_event=None) -> bytes:
        ...


def tile_path(output_dir: Path, tile: Tile) -> Path:
    """Path of a tile inside the output directory: ``z/x/y.pbf``."""
    return Path(output_dir) / str(tile.z) / str(tile.x) / f"{tile.y}.{TILE_EXTENSION}"


def write_tile(output_dir: Path, tile: Tile, data: bytes) -> Path:
    """Write one tile, creating its z/x directory if needed.

    Sibling tiles may create the same directory concurrently, so an
    existing directory is not an error.
    """
    path = tile_path(output_dir, tile)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


class PyramidGenerator:
    """Generates every tile of one root tile's pyramid."""

    def __init__(self, job: PyramidJob, tile_service: TileService):
        self.job = job
        self.tile_service = tile_service

    def tiles(self) -> list[Tile]:
        """Tiles of the pyramid, sorted by zoom then x then y."""
        return expand_pyramid(self.job.root, self.job.settings.output_max_zoom)

    def _generate_tile_sync(self, tile: Tile, cancel_event) -> None:
        data = self.tile_service.fetch_tile(tile, cancel_event)
        write_tile(self.job.settings.output_dir, tile, data)

    async def generate_tile(self, tile: Tile, cancel_event) -> None:
        """Generate and write one tile without blocking the event loop."""
        await asyncio.to_thread(self._generate_tile_sync, tile, cancel_event)

    async def run(self) -> int:
        """
        Generate the whole pyramid.

        Returns:
            Number of tiles written
        """
        tiles = self.tiles()
        root_id = self.job.root.tile_id
        logger.info(
            "Processing tile %s: %d tiles down to zoom %d",
            root_id,
            len(tiles),
            self.job.settings.output_max_zoom,
        )

        scheduler = BatchScheduler(batch_size=self.job.settings.batch_size, label=root_id)
        await scheduler.run(tiles, self.generate_tile)

        logger.info("All files for tile %s have been written!", root_id)
        return len(tiles)


class Worker(Protocol):
    """Executes pyramid jobs; see worker_service for implementations."""

    async def submit(self, job: PyramidJob) -> None:
        ...


@dataclass
class RunResult:
    """Outcome of a successful run."""

    roots: list[Tile]
    min_zoom: int
    max_zoom: int
    metadata_path: Path
    elapsed_time: float = 0.0
    states: list[RunState] = field(default_factory=list)


class PyramidRunner:
    """Dispatches pyramid jobs to workers and emits metadata on success."""

    def __init__(
        self,
        settings: GenerationSettings,
        worker: Worker,
        processes: int = 8,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        Initialize pyramid runner.

        Args:
            settings: Options shared by every job of the run
            worker: Worker executing individual pyramid jobs
            processes: Number of concurrent worker slots
            progress_callback: Optional callback(completed_roots, total_roots)
        """
        if processes <= 0:
            raise ValueError(f"Number of processes must be positive, got {processes}")
        self.settings = settings
        self.worker = worker
        self.processes = processes
        self.progress_callback = progress_callback

        self._state = RunState.IDLE
        self._history: list[RunState] = [RunState.IDLE]
        self._completed = 0
        self._total = 0

    @property
    def state(self) -> RunState:
        return self._state

    def _transition(self, state: RunState) -> None:
        logger.debug("Run state: %s -> %s", self._state.value, state.value)
        self._state = state
        self._history.append(state)

    async def run_pyramid(self, root: Tile) -> RunResult:
        """Generate a single root tile's pyramid."""
        return await self._run(lambda: [root], min_zoom=root.z)

    async def run_zoom(self, zoom: int) -> RunResult:
        """Generate pyramids rooted at every tile of the world at ``zoom``."""
        return await self._run(lambda: world_tiles(zoom), min_zoom=zoom)

    async def run_bbox(self, bbox: BoundingBox, zoom: int) -> RunResult:
        """Generate pyramids rooted at every tile covering ``bbox`` at ``zoom``."""
        return await self._run(lambda: bbox_tiles(bbox, zoom), min_zoom=zoom)

    async def _run(self, build_roots: Callable[[], Sequence[Tile]], min_zoom: int) -> RunResult:
        if self._state != RunState.IDLE:
            raise RuntimeError(f"Runner already used (state: {self._state.value})")
        start_time = time.time()

        try:
            self._transition(RunState.BUILDING_TILE_SET)
            roots = list(build_roots())
            jobs = [PyramidJob(root=root, settings=self.settings) for root in roots]
            self._total = len(jobs)

            self._transition(RunState.DISPATCHING)
            groups = partition_tiles(jobs, self.processes)
            logger.info(
                "Dispatching %d root tiles to %d workers (batch size %d)",
                len(jobs),
                self.processes,
                self.settings.batch_size,
            )
            tasks = [
                asyncio.create_task(self._run_group(index, group))
                for index, group in enumerate(groups)
                if group
            ]

            self._transition(RunState.AWAITING_WORKERS)
            results = await asyncio.gather(*tasks, return_exceptions=True)
            errors = [r for r in results if isinstance(r, Exception)]
            if errors:
                for error in errors[1:]:
                    logger.error("Worker failed: %s", error)
                raise errors[0]

            self._transition(RunState.WRITING_METADATA)
            metadata_path = write_metadata(
                self.settings.output_dir,
                min_zoom,
                self.settings.output_max_zoom,
                self.settings.contour,
            )
        except Exception:
            self._transition(RunState.ERRORED)
            raise

        self._transition(RunState.DONE)
        return RunResult(
            roots=roots,
            min_zoom=min_zoom,
            max_zoom=self.settings.output_max_zoom,
            metadata_path=metadata_path,
            elapsed_time=time.time() - start_time,
            states=list(self._history),
        )

    async def _run_group(self, index: int, jobs: list[PyramidJob]) -> None:
        """Run one worker slot's jobs one after another."""
        logger.debug("Worker %d: %d root tiles", index, len(jobs))
        for job in jobs:
            await self.worker.submit(job)
            self._completed += 1
            if self.progress_callback:
                self.progress_callback(self._completed, self._total)
