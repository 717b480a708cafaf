"""Workers executing pyramid jobs, in-process or as child processes."""

import asyncio
import logging
import sys
from collections import deque
from typing import Optional, Sequence

from ..errors import WorkerError
from ..models.job import PyramidJob
from .pyramid_service import PyramidGenerator, TileService

logger = logging.getLogger(__name__)

# Command prefix used to launch a child pyramid generator
DEFAULT_BASE_COMMAND = (sys.executable, "-m", "contourgen")


def job_to_cli_args(job: PyramidJob) -> list[str]:
    """Arguments of the hidden ``generate-pyramid`` command for ``job``."""
    settings = job.settings
    args = [
        "generate-pyramid",
        "--x", str(job.root.x),
        "--y", str(job.root.y),
        "--z", str(job.root.z),
        "--demUrl", settings.dem_url,
        "--encoding", settings.encoding.value,
        "--sourceMaxZoom", str(settings.source_max_zoom),
        "--outputMaxZoom", str(settings.output_max_zoom),
        "--outputDir", str(settings.output_dir),
        "--batchSize", str(settings.batch_size),
        "--contourJson", settings.contour.model_dump_json(),
    ]
    return args


class InProcessWorker:
    """Runs pyramid jobs as tasks on the current event loop.

    The tile service (and the DEM archive handle behind it) is created once
    and shared read-only by every job this worker runs.
    """

    def __init__(self, tile_service: TileService):
        self.tile_service = tile_service

    async def submit(self, job: PyramidJob) -> None:
        logger.info("Processing tile - Zoom: %d, X: %d, Y: %d, outputMaxZoom: %d",
                    job.root.z, job.root.x, job.root.y, job.settings.output_max_zoom)
        await PyramidGenerator(job, self.tile_service).run()


class SubprocessWorker:
    """Runs each pyramid job in its own child process."""

    def __init__(
        self,
        verbose: bool = False,
        base_command: Optional[Sequence[str]] = None,
        env: Optional[dict[str, str]] = None,
    ):
        """
        Initialize subprocess worker.

        Args:
            verbose: Relay the child's output lines to the log
            base_command: Command prefix, defaults to ``python -m contourgen``
            env: Environment for the child (inherits the current one if None)
        """
        self.verbose = verbose
        self.base_command = list(base_command or DEFAULT_BASE_COMMAND)
        self.env = env

    def command_for(self, job: PyramidJob) -> list[str]:
        return [*self.base_command, *job_to_cli_args(job)]

    async def submit(self, job: PyramidJob) -> None:
        prefix = f"Process {job.label}: "
        if self.verbose:
            logger.info("Processing tile - Zoom: %d, X: %d, Y: %d, outputMaxZoom: %d",
                        job.root.z, job.root.x, job.root.y, job.settings.output_max_zoom)

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command_for(job),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except OSError as e:
            raise WorkerError(prefix + f"failed to start: {e}") from e

        tail: deque[str] = deque(maxlen=1)
        await asyncio.gather(
            self._relay(process.stdout, prefix, tail),
            self._relay(process.stderr, prefix, tail),
        )
        code = await process.wait()

        if code != 0:
            detail = f" ({tail[-1]})" if tail else ""
            raise WorkerError(prefix + f"exited with code {code}{detail}")

        if self.verbose:
            logger.info(prefix + "Finished processing")

    async def _relay(self, stream: Optional[asyncio.StreamReader], prefix: str, tail: deque) -> None:
        if stream is None:
            return
        async for raw in stream:
            line = raw.decode(errors="replace").strip()
            if not line:
                continue
            tail.append(line)
            if self.verbose:
                logger.info(prefix + line)

