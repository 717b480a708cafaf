"""Work partitioning and batched tile scheduling."""

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from ..errors import TileCancelledError
from ..models.tile import Tile

logger = logging.getLogger(__name__)

T = TypeVar("T")

# generate(tile, cancel_event) -> awaitable completing when the tile is written
TileGenerator = Callable[[Tile, threading.Event], Awaitable[None]]

DEFAULT_BATCH_SIZE = 25


def partition_tiles(items: Sequence[T], worker_count: int) -> list[list[T]]:
    """
    Distribute items round-robin over ``worker_count`` groups.

    Item ``i`` goes to group ``i % worker_count``, regardless of its cost,
    so every group receives floor(N/W) or ceil(N/W) items.

    Args:
        items: Ordered items (usually tiles or jobs)
        worker_count: Number of groups

    Returns:
        Exactly ``worker_count`` groups, some possibly empty
    """
    if worker_count <= 0:
        raise ValueError(f"Worker count must be positive, got {worker_count}")

    groups: list[list[T]] = [[] for _ in range(worker_count)]
    for i, item in enumerate(items):
        groups[i % worker_count].append(item)
    return groups


def split_batches(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split items into consecutive batches of at most ``batch_size``."""
    if batch_size <= 0:
        raise ValueError(f"Batch size must be positive, got {batch_size}")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


class BatchScheduler:
    """Runs tile generation in sequential batches of concurrent calls.

    Every call of a batch runs concurrently; the next batch starts only once
    every call of the previous one has finished. The first failure stops
    the run after its batch has settled.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE, label: Optional[str] = None):
        """
        Args:
            batch_size: Maximum number of concurrent calls
            label: Identity used in progress messages (e.g. the root tile)
        """
        if batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {batch_size}")
        self.batch_size = batch_size
        self.label = label

    async def run(self, tiles: Sequence[Tile], generate: TileGenerator) -> None:
        """
        Generate every tile, one batch at a time.

        Args:
            tiles: Tiles in the order they should be scheduled
            generate: Coroutine function producing one tile

        Raises:
            The first error raised by ``generate`` in the failing batch
        """
        batches = split_batches(tiles, self.batch_size)
        total = len(batches)
        suffix = f" of tile {self.label}" if self.label else ""

        for index, batch in enumerate(batches, start=1):
            logger.info("Processing batch %d of %d%s", index, total, suffix)
            await self._run_batch(batch, generate)
            logger.info("Processed batch %d of %d%s", index, total, suffix)

    async def _run_batch(self, batch: list[Tile], generate: TileGenerator) -> None:
        cancel_event = threading.Event()

        async def guarded(tile: Tile) -> None:
            try:
                await generate(tile, cancel_event)
            except Exception:
                cancel_event.set()
                raise

        results = await asyncio.gather(*(guarded(tile) for tile in batch), return_exceptions=True)

        errors = [r for r in results if isinstance(r, Exception)]
        if not errors:
            return

        # Prefer the failure that triggered cancellation over the cancellations it caused
        primary = next((e for e in errors if not isinstance(e, TileCancelledError)), errors[0])
        logger.error(
            "Batch failed%s: %d of %d tiles raised, first error: %s",
            f" for tile {self.label}" if self.label else "",
            len(errors),
            len(batch),
            primary,
        )
        raise primary
